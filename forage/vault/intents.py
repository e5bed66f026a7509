"""Intent extraction — research tasks from free-text notes.

Two sources of intent, checked per note in this order:

  explicit   ``#investigate <query>`` (also ``#investigate: <query>``)
  heuristic  phrases like "look into X", "curious about X", "what is X"

Queries are normalized (quotes stripped, trailing filler and subordinate
clauses cut, first comma clause kept) and must look like a real topic.
Output is deterministic and de-duplicated case-insensitively.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from forage.models.schemas import ResearchTask, TaskReason
from forage.vault.notes import Note

EXPLICIT_TAG = "#investigate"
_EXPLICIT = re.compile(r"#investigate\b(?::|\s+)?([^\n#]*)", re.IGNORECASE)

HINT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\bread about\s+(.+)",
        r"\blook into\s+(.+)",
        r"\bresearch\s+(.+)",
        r"\bwondering what\s+(.+)",
        r"\b(?:something|smth) about\s+(.+)",
        r"\bexplore\s+(.+)",
        r"\bdig into\s+(.+)",
        r"\bcheck out\s+(.+)",
        r"\blearn (?:more )?about\s+(.+)",
        r"\bfigure out\s+(.+)",
        r"\bunderstand\s+(.+)",
        r"\bhow does\s+(.+)\s+work",
        r"\bwhat is\s+(.+)",
        r"\bwhat are\s+(.+)",
        r"\bwhy (?:is|are|does|do)\s+(.+)",
        r"\bneed to (?:know|understand|learn)\s+(.+)",
        r"\bcurious about\s+(.+)",
        r"\binvestigate\s+(.+)",
        r"\bfollow up on\s+(.+)",
        r"\bkeep an eye on\s+(.+)",
    )
]

BAD_STARTS = frozenset({"that", "this", "it", "as", "well", "maybe", "and", "but", "so", "the", "a", "an"})

_LEADING = re.compile(r"^[:\-\s]+")
_QUOTES = re.compile(r"[\"'`]+")
_SPACES = re.compile(r"\s+")
_FILLER_TAIL = re.compile(r"\b(as well|maybe|for now|at some point)\b.*$", re.IGNORECASE)
_CLAUSE_TAIL = re.compile(r"\b(could help|might help|is|are)\b.*$", re.IGNORECASE)
_TRAILING_PUNCT = re.compile(r"[.?!;:]+$")
_ALNUM = re.compile(r"[a-z0-9]", re.IGNORECASE)


def normalize_query(text: str) -> str:
    value = _LEADING.sub("", text)
    value = _SPACES.sub(" ", _QUOTES.sub("", value)).strip()
    value = _FILLER_TAIL.sub("", value)
    value = _CLAUSE_TAIL.sub("", value).strip()
    value = value.split(",")[0].strip()
    return _TRAILING_PUNCT.sub("", value).strip()


def is_reasonable_query(query: str) -> bool:
    if not query or not 3 <= len(query) <= 80:
        return False
    if query.split()[0].lower() in BAD_STARTS:
        return False
    return bool(_ALNUM.search(query))


def _explicit_tasks(note: Note) -> Iterable[ResearchTask]:
    for match in _EXPLICIT.finditer(note.content):
        raw = match.group(1).strip()
        if not raw:
            continue
        query = normalize_query(raw)
        if is_reasonable_query(query):
            yield ResearchTask(
                query=query,
                source_id=note.rel_path,
                reason=TaskReason.EXPLICIT,
                snippet=match.group(0).strip(),
            )


def _heuristic_tasks(note: Note) -> Iterable[ResearchTask]:
    for line in note.content.splitlines():
        line = line.strip()
        if not line or EXPLICIT_TAG in line.lower():
            continue
        for pattern in HINT_PATTERNS:
            match = pattern.search(line)
            if not match:
                continue
            query = normalize_query(match.group(1))
            if not is_reasonable_query(query):
                continue
            yield ResearchTask(
                query=query,
                source_id=note.rel_path,
                reason=TaskReason.HEURISTIC,
                snippet=line,
            )
            # One intent per line.
            break


def extract_research_tasks(notes: Iterable[Note], limit: int | None = 5) -> list[ResearchTask]:
    """Tasks in note order, explicit before heuristic within a note.

    ``limit=None`` returns every task (used by ``rerun``).
    """
    tasks: list[ResearchTask] = []
    seen: set[str] = set()
    for note in notes:
        for task in (*_explicit_tasks(note), *_heuristic_tasks(note)):
            key = task.query.lower()
            if key in seen:
                continue
            seen.add(key)
            tasks.append(task)
        if limit is not None and len(tasks) >= limit:
            break
    return tasks if limit is None else tasks[:limit]
