from .schemas import (
    ResearchArtifacts,
    ResearchResult,
    ResearchTask,
    RunStats,
    SkippedTask,
    SourceLink,
    TaskReason,
)
from .state import LockPayload, StateFile, TaskStateRecord, TaskStatus

__all__ = [
    "LockPayload",
    "ResearchArtifacts",
    "ResearchResult",
    "ResearchTask",
    "RunStats",
    "SkippedTask",
    "SourceLink",
    "StateFile",
    "TaskReason",
    "TaskStateRecord",
    "TaskStatus",
]
