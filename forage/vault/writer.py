"""Finding writer — renders ResearchResults into the vault.

Layout (defaults)::

    <vault>/Inbox/Findings/2026-02-23 - vector-database-comparison.md
    <vault>/Inbox/Findings/Run Summaries/2026-02-23T10-04-11-123456Z-cycle-1.md
    <vault>/Inbox/Findings/assets/<slug>-search.png      (browser screenshots)

Each finding gets a backlink in its originating note under ``## Forage
Findings``; the same link line is never added twice.
"""

from __future__ import annotations

import os
from pathlib import Path

import structlog

from forage.config import ForageSettings
from forage.models.schemas import ResearchResult, ResearchTask, RunStats
from forage.models.state import StateFile
from forage.tasks.state import save_state
from forage.utils.clock import file_stamp, today_str
from forage.utils.text import escape_quotes, slugify

logger = structlog.get_logger().bind(component="vault.writer")

BACKLINK_HEADING = "## Forage Findings"
SUMMARY_DIRNAME = "Run Summaries"


def suggested_move(task: ResearchTask, result: ResearchResult) -> str:
    if not result.sources:
        return f'Re-run investigation for "{task.query}" with a refined prompt in your note using #investigate.'
    return (
        f'Review the top source, add one concrete next action under #execute for "{task.query}", '
        "then run Forage again."
    )


def default_open_questions(task: ResearchTask) -> list[str]:
    return [
        f'What is the strongest practical use-case of "{task.query}" for your current work?',
        "Which cited source should you validate directly first?",
        "What should be tested in the next 7 days?",
    ]


def derive_tags(task: ResearchTask) -> list[str]:
    words = [w for w in slugify(task.query, 200).split("-") if len(w) > 2][:3]
    return ["forage", "research", *words]


def derive_project(task: ResearchTask) -> str:
    first = task.source_id.split("/")[0].strip()
    if not first or first.lower().endswith(".md"):
        return "general"
    return "".join(c if c.isalnum() or c in "_-" else "-" for c in first.lower())


def _bullets(items: list[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in items) if items else f"- {empty}"


def render_finding(task: ResearchTask, result: ResearchResult, date: str) -> str:
    artifacts = result.artifacts
    evidence = [f"[{s.title or s.url}]({s.url})" for s in result.sources]
    tags = "\n".join(f"  - {tag}" for tag in derive_tags(task))
    open_questions = result.open_questions or default_open_questions(task)

    return f"""---
type: forage_finding
date: {date}
query: "{escape_quotes(task.query)}"
source_note: "{escape_quotes(task.source_id)}"
confidence: {result.confidence:.2f}
mode: {result.mode}
synthesis: {result.synthesis}
tags:
{tags}
project: {derive_project(task)}
---

# Forage Finding: {task.query}

## What changed
{result.summary}

## Key insights
{_bullets(result.insights, "No insights extracted")}

## Why it matters
This topic appeared in your notes and has been converted into a research task tied to your workflow.

## Suggested move
{suggested_move(task, result)}

## Evidence links
{_bullets(evidence, "No sources captured")}

## Citations
{_bullets(result.citations, "None")}

## Confidence
- Score: {result.confidence:.2f}
{_bullets(result.confidence_reasons, "No reasons recorded")}

## Artifacts
- Source note: {task.source_id}
- Browser session: {artifacts.session_id or "N/A"}
- Live view: {artifacts.live_view_url or "N/A"}
- Replay: {artifacts.replay_url or "N/A"}
- Replay hint: {artifacts.replay_hint or "N/A"}
- Screenshots:
{_bullets(artifacts.screenshots, "None")}

## Open questions
{_bullets(open_questions, "None")}
"""


def _vault_link(vault_dir: Path, target: Path) -> str:
    rel = os.path.relpath(target, vault_dir).replace("\\", "/")
    return rel[:-3] if rel.lower().endswith(".md") else rel


def insert_backlink(vault_dir: Path, source_id: str, finding_path: Path, date: str) -> bool:
    """Append a wiki-link to the finding under the backlink heading.

    Returns False when the note is missing or already carries the link.
    """
    note_path = Path(vault_dir) / source_id
    try:
        content = note_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug("backlink_note_missing", note=source_id)
        return False

    link_line = f"- {date}: [[{_vault_link(Path(vault_dir), finding_path)}]]"
    if link_line in content:
        return False

    if BACKLINK_HEADING in content:
        updated = f"{content.rstrip()}\n{link_line}\n"
    else:
        updated = f"{content.rstrip()}\n\n{BACKLINK_HEADING}\n{link_line}\n"
    note_path.write_text(updated, encoding="utf-8")
    return True


def write_finding(settings: ForageSettings, task: ResearchTask, result: ResearchResult) -> Path:
    """Write the finding note and backlink it from the source note."""
    date = today_str()
    slug = slugify(task.query) or "finding"
    path = settings.findings_dir / f"{date} - {slug}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_finding(task, result, date), encoding="utf-8")
    insert_backlink(settings.vault_dir, task.source_id, path, date)
    logger.info("finding_written", query=task.query, path=str(path))
    return path


def render_cycle_summary(stats: RunStats, cycle: int) -> str:
    skips = [f"{s.query} ({s.source_id}): {s.reason}" for s in stats.skips]
    return f"""---
type: forage_cycle_summary
cycle: {cycle}
started_at: {stats.started_at.isoformat()}
ended_at: {stats.ended_at.isoformat() if stats.ended_at else ""}
---

# Forage Cycle {cycle}

- Duration: {stats.duration_ms or 0} ms
- Total tasks: {stats.total}
- Processed: {stats.processed}
- Succeeded: {stats.succeeded}
- Failed: {stats.failed}
- Skipped: {stats.skipped}

## Skipped tasks
{_bullets(skips, "None")}
"""


def write_cycle_summary(settings: ForageSettings, stats: RunStats, cycle: int) -> Path:
    path = settings.findings_dir / SUMMARY_DIRNAME / f"{file_stamp()}-cycle-{cycle}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_cycle_summary(stats, cycle), encoding="utf-8")
    logger.info("cycle_summary_written", cycle=cycle, path=str(path))
    return path


def init_workspace(settings: ForageSettings) -> list[Path]:
    """Create the findings dir, state dir and an empty state file. Returns what was created."""
    settings.require_vault()
    created: list[Path] = []
    for directory in (settings.findings_dir, settings.state_file.parent):
        if not directory.exists():
            directory.mkdir(parents=True)
            created.append(directory)
    if not settings.state_file.exists():
        save_state(settings.state_file, StateFile())
        created.append(settings.state_file)
    return created
