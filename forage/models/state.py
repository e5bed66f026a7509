"""Persisted models — the task state file and the run lock payload.

StateFile is the only persisted aggregate: loaded whole, rewritten whole.
LockPayload is the sole content of the loop lock file.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from forage.utils.clock import EPOCH, now_utc

STATE_VERSION = 1


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class TaskStateRecord(BaseModel):
    """Lifecycle of a single task across runs, keyed by ``task_key``."""

    key: str
    query: str
    source_id: str
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None
    next_retry_at: datetime | None = None
    last_note_version: float | None = Field(
        default=None,
        description="mtime (epoch seconds) of the note when the task last ran",
    )
    finding_path: str | None = None
    last_error: str | None = None
    last_session_id: str | None = None
    last_live_view_url: str | None = None
    last_replay_url: str | None = None
    last_replay_hint: str | None = None


class StateFile(BaseModel):
    version: int = STATE_VERSION
    updated_at: datetime = EPOCH
    tasks: dict[str, TaskStateRecord] = {}


class LockPayload(BaseModel):
    pid: int = Field(gt=0)
    started_at: datetime = Field(default_factory=now_utc)
