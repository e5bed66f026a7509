"""Note discovery — every markdown file under the vault, minus tooling dirs.

Skipped: ``.obsidian``, ``node_modules``, any hidden directory (this covers
``.forage``), and the findings directory so Forage never researches its own
output.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import structlog

from forage.config import ConfigError
from forage.utils.clock import as_utc, now_utc

logger = structlog.get_logger().bind(component="vault.notes")

_SKIP_DIRS = frozenset({".obsidian", "node_modules"})
_RELATIVE_SINCE = re.compile(r"^(\d+)\s*([dhm])$", re.IGNORECASE)
_UNITS = {"d": "days", "h": "hours", "m": "minutes"}


@dataclass(frozen=True)
class Note:
    rel_path: str
    path: Path
    content: str
    mtime: float


def parse_since(value: str | None, now: datetime | None = None) -> datetime | None:
    """'7d' / '12h' / '30m' / '2026-01-31' → UTC cutoff. None passes through.

    Raises:
        ConfigError: the value is neither a relative window nor an ISO date.
    """
    if value is None or not value.strip():
        return None
    value = value.strip()
    now = now or now_utc()

    match = _RELATIVE_SINCE.match(value)
    if match:
        amount, unit = int(match.group(1)), match.group(2).lower()
        return now - timedelta(**{_UNITS[unit]: amount})

    try:
        return as_utc(datetime.fromisoformat(value))
    except ValueError:
        raise ConfigError(
            f"Invalid --since value {value!r}: use 7d, 12h, 30m or an ISO date."
        ) from None


def _is_excluded(path: Path, excluded: list[Path]) -> bool:
    return any(path == ex or ex in path.parents for ex in excluded)


def load_notes(
    vault_dir: Path,
    since: datetime | None = None,
    exclude: Iterable[Path] = (),
) -> list[Note]:
    """All notes under ``vault_dir``, sorted by relative path.

    ``since`` keeps only notes modified at or after the cutoff.
    """
    root = Path(vault_dir).resolve()
    excluded = [Path(p).resolve() for p in exclude]
    cutoff = since.timestamp() if since is not None else None
    notes: list[Note] = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        dirnames[:] = sorted(
            d
            for d in dirnames
            if d not in _SKIP_DIRS
            and not d.startswith(".")
            and not _is_excluded(current / d, excluded)
        )
        for name in sorted(filenames):
            if not name.lower().endswith(".md"):
                continue
            path = current / name
            try:
                mtime = path.stat().st_mtime
                if cutoff is not None and mtime < cutoff:
                    continue
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("note_unreadable", path=str(path), error=str(exc))
                continue
            notes.append(
                Note(
                    rel_path=path.relative_to(root).as_posix(),
                    path=path,
                    content=content,
                    mtime=mtime,
                )
            )

    notes.sort(key=lambda n: n.rel_path)
    logger.debug("notes_loaded", vault=str(root), count=len(notes))
    return notes
