"""Task state store — per-task lifecycle with exponential backoff.

The state file is loaded whole and rewritten whole on every save; there is no
journal and the write is last-writer-wins.  The loop lock (``forage.tasks.lock``)
is what keeps a single writer per workspace.

Lifecycle::

    pending ──mark_started──▶ in_progress ──mark_success──▶ done
                                   │
                                   └──mark_failure──▶ failed ──(backoff elapsed)──▶ …

A crash between ``mark_started`` and the following save leaves the record
``in_progress``.  Nothing reclaims it automatically; ``forage status`` reports
the count so it stays visible.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import structlog
from pydantic import ValidationError

from forage.config import ForageSettings
from forage.models.schemas import ResearchArtifacts, ResearchTask
from forage.models.state import STATE_VERSION, StateFile, TaskStateRecord, TaskStatus
from forage.utils.clock import now_utc

logger = structlog.get_logger().bind(component="tasks.state")

# Backoff ceiling: one day.
MAX_BACKOFF_MINUTES = 24 * 60


@dataclass(frozen=True)
class Decision:
    run: bool
    reason: str | None = None


@dataclass
class PurgeResult:
    removed: int
    kept: int
    removed_keys: list[str] = field(default_factory=list)


# ── Persistence ──────────────────────────────────────────────────────────────


def load_state(path: Path) -> StateFile:
    """Load the state file; anything missing or malformed yields an empty state."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return StateFile()
    except (OSError, ValueError) as exc:
        logger.warning("state_unreadable", path=str(path), error=str(exc))
        return StateFile()

    if not isinstance(raw, dict) or raw.get("version") != STATE_VERSION or not isinstance(raw.get("tasks"), dict):
        logger.warning("state_schema_unrecognized", path=str(path))
        return StateFile()

    try:
        return StateFile.model_validate(raw)
    except ValidationError as exc:
        logger.warning("state_invalid", path=str(path), error=str(exc)[:200])
        return StateFile()


def save_state(path: Path, state: StateFile) -> None:
    """Stamp ``updated_at`` and overwrite the whole file."""
    state.updated_at = now_utc()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
    os.replace(tmp, path)


# ── Records ──────────────────────────────────────────────────────────────────


def task_key(task: ResearchTask) -> str:
    return hashlib.sha1(f"{task.source_id}::{task.query.lower()}".encode("utf-8")).hexdigest()


def get_or_create(state: StateFile, task: ResearchTask, source_version: float) -> TaskStateRecord:
    key = task_key(task)
    record = state.tasks.get(key)
    if record is not None:
        return record

    record = TaskStateRecord(
        key=key,
        query=task.query,
        source_id=task.source_id,
        last_note_version=source_version,
    )
    state.tasks[key] = record
    return record


def decide(
    record: TaskStateRecord,
    note_version: float,
    settings: ForageSettings,
    now: datetime | None = None,
) -> Decision:
    """Should this task run now?  Rules are checked in precedence order."""
    now = now or now_utc()

    if settings.force:
        return Decision(run=True)

    if (
        record.status is TaskStatus.DONE
        and record.last_note_version is not None
        and note_version <= record.last_note_version
    ):
        return Decision(run=False, reason="up_to_date")

    if record.status is TaskStatus.FAILED and record.next_retry_at is not None and now < record.next_retry_at:
        return Decision(run=False, reason="backoff_active")

    if record.status is TaskStatus.FAILED and record.attempts >= settings.max_retries:
        return Decision(run=False, reason="max_retries_reached")

    return Decision(run=True)


def mark_started(record: TaskStateRecord, source_version: float) -> None:
    record.status = TaskStatus.IN_PROGRESS
    record.last_run_at = now_utc()
    record.last_note_version = source_version


def mark_success(
    record: TaskStateRecord,
    finding_path: str | Path,
    source_version: float,
    artifacts: ResearchArtifacts | None = None,
) -> None:
    artifacts = artifacts or ResearchArtifacts()
    record.status = TaskStatus.DONE
    record.attempts = 0
    record.last_success_at = now_utc()
    record.last_error = None
    record.next_retry_at = None
    record.finding_path = str(finding_path)
    record.last_note_version = source_version
    record.last_session_id = artifacts.session_id
    record.last_live_view_url = artifacts.live_view_url
    record.last_replay_url = artifacts.replay_url
    record.last_replay_hint = artifacts.replay_hint


def backoff_minutes(attempts: int, base_minutes: int) -> int:
    """Minutes to wait after the ``attempts``-th consecutive failure."""
    return min(base_minutes * 2 ** max(attempts - 1, 0), MAX_BACKOFF_MINUTES)


def mark_failure(
    record: TaskStateRecord,
    message: str,
    settings: ForageSettings,
    now: datetime | None = None,
) -> None:
    now = now or now_utc()
    record.status = TaskStatus.FAILED
    record.attempts += 1
    record.last_failure_at = now
    record.last_error = message
    record.next_retry_at = now + timedelta(minutes=backoff_minutes(record.attempts, settings.retry_base_minutes))


def purge_orphans(state: StateFile, existing_source_ids: Iterable[str]) -> PurgeResult:
    """Drop records whose note no longer exists. Does not save."""
    existing = set(existing_source_ids)
    removed_keys = [key for key, record in state.tasks.items() if record.source_id not in existing]
    for key in removed_keys:
        del state.tasks[key]
    return PurgeResult(removed=len(removed_keys), kept=len(state.tasks), removed_keys=removed_keys)
