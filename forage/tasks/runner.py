"""CycleRunner — one cycle = notes → tasks → state policy → research → findings.

Each cycle:
  1. Loads the state file and the vault's notes (optionally ``--since``).
  2. Extracts research tasks (or resolves the ``rerun`` query).
  3. Asks the state store whether each task should run; declined tasks are
     counted as skipped with their reason.
  4. Runs the remaining tasks one at a time, end to end:
     mark_started → save → research → write finding → mark_success/failure → save.
  5. Returns RunStats.  Loop mode also writes a cycle summary note.

A failing task is recorded with backoff and never aborts the cycle.

Collaborators (pipeline, writer, note loader, sleep) are injectable so the
whole cycle runs offline in tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

import structlog

from forage.config import ConfigError, ForageSettings
from forage.models.schemas import ResearchResult, ResearchTask, RunStats, SkippedTask, TaskReason
from forage.models.state import TaskStateRecord, TaskStatus
from forage.tasks.lock import RunLock
from forage.tasks.state import (
    PurgeResult,
    decide,
    get_or_create,
    load_state,
    mark_failure,
    mark_started,
    mark_success,
    purge_orphans,
    save_state,
)
from forage.utils.clock import now_utc
from forage.vault.intents import extract_research_tasks
from forage.vault.notes import Note, load_notes, parse_since
from forage.vault.writer import write_cycle_summary, write_finding

logger = structlog.get_logger().bind(component="tasks.runner")


class Researcher(Protocol):
    async def run(self, task: ResearchTask, output_dir: Path) -> ResearchResult: ...

    async def close(self) -> None: ...


FindingWriter = Callable[[ForageSettings, ResearchTask, ResearchResult], Path]
SummaryWriter = Callable[[ForageSettings, RunStats, int], Path]
NotesLoader = Callable[..., list[Note]]
Sleeper = Callable[[float], Awaitable[None]]


class CycleRunner:
    """Runs research cycles against one workspace.

    Args:
        settings:        Resolved settings (paths, policy, per-invocation flags).
        pipeline:        Researcher; defaults to ``ResearchPipeline.from_settings``
                         created on first use so dry runs never open a client.
        write_finding:   Finding writer.
        write_summary:   Cycle summary writer (loop mode).
        notes_loader:    Note discovery.
        sleep:           Async sleep for rate limiting and loop intervals.
    """

    def __init__(
        self,
        settings: ForageSettings,
        *,
        pipeline: Researcher | None = None,
        write_finding: FindingWriter = write_finding,
        write_summary: SummaryWriter = write_cycle_summary,
        notes_loader: NotesLoader = load_notes,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self._pipeline = pipeline
        self._write_finding = write_finding
        self._write_summary = write_summary
        self._load_notes = notes_loader
        self._sleep = sleep

    @property
    def pipeline(self) -> Researcher:
        if self._pipeline is None:
            from forage.research.pipeline import ResearchPipeline

            self._pipeline = ResearchPipeline.from_settings(self.settings)
        return self._pipeline

    async def close(self) -> None:
        if self._pipeline is not None:
            await self._pipeline.close()

    # ── Task selection ───────────────────────────────────────────────────

    def _notes(self) -> list[Note]:
        since = parse_since(self.settings.since)
        return self._load_notes(
            self.settings.vault_dir,
            since=since,
            exclude=[self.settings.findings_dir],
        )

    def resolve_rerun(self, query: str, notes: list[Note]) -> list[ResearchTask]:
        """Matching extracted tasks, or one synthetic task on the first note."""
        query = query.strip()
        if not query:
            raise ConfigError('rerun requires a query. Example: forage rerun "letta code"')

        matches = [
            task
            for task in extract_research_tasks(notes, limit=None)
            if task.query.lower() == query.lower()
        ]
        if matches:
            return matches[: self.settings.max_tasks]

        source = notes[0].rel_path if notes else "Manual.md"
        return [
            ResearchTask(
                query=query,
                source_id=source,
                reason=TaskReason.EXPLICIT,
                snippet=f"rerun:{query}",
            )
        ]

    # ── One cycle ────────────────────────────────────────────────────────

    async def run_once(self, rerun_query: str | None = None) -> RunStats:
        settings = self.settings
        settings.require_vault()
        stats = RunStats()

        notes = self._notes()
        note_map = {note.rel_path: note for note in notes}
        state = load_state(settings.state_file)

        if rerun_query is not None:
            tasks = self.resolve_rerun(rerun_query, notes)
        else:
            tasks = extract_research_tasks(notes, limit=settings.max_tasks)
        stats.total = len(tasks)

        if not tasks:
            logger.info("no_research_intents", hint="Add #investigate <topic> to a note.")
            return stats.finish()

        # Versions are note mtimes; a synthetic rerun task has no note, so "now".
        versions: dict[int, float] = {}
        runnable: list[ResearchTask] = []
        for task in tasks:
            note = note_map.get(task.source_id)
            if note is None and rerun_query is None:
                self._skip(stats, task, "missing_note")
                continue
            version = note.mtime if note is not None else now_utc().timestamp()
            if rerun_query is None:
                record = get_or_create(state, task, version)
                decision = decide(record, version, settings)
                if not decision.run:
                    self._skip(stats, task, decision.reason or "declined")
                    continue
            versions[id(task)] = version
            runnable.append(task)

        if settings.dry_run:
            for task in runnable:
                stats.processed += 1
                self._skip(stats, task, "dry_run")
            logger.info("dry_run_complete", runnable=len(runnable), skipped=stats.skipped)
            return stats.finish()

        save_state(settings.state_file, state)
        if not runnable:
            logger.info("no_runnable_tasks", skipped=stats.skipped)
            return stats.finish()

        logger.info("tasks_found", runnable=len(runnable), total=stats.total)
        for index, task in enumerate(runnable):
            if index and settings.rate_limit_ms:
                await self._sleep(settings.rate_limit_ms / 1000)
            await self._run_task(state, task, versions[id(task)], stats)

        stats.finish()
        logger.info(
            "run_summary",
            total=stats.total,
            processed=stats.processed,
            succeeded=stats.succeeded,
            failed=stats.failed,
            skipped=stats.skipped,
            duration_ms=stats.duration_ms,
        )
        return stats

    def _skip(self, stats: RunStats, task: ResearchTask, reason: str) -> None:
        stats.skipped += 1
        stats.skips.append(SkippedTask(query=task.query, source_id=task.source_id, reason=reason))
        logger.info("task_skipped", query=task.query, source=task.source_id, reason=reason)

    def _version_after_write(self, task: ResearchTask, version: float) -> float:
        """Note mtime after the backlink was appended, so our own edit is not a change."""
        try:
            return max(version, (self.settings.vault_dir / task.source_id).stat().st_mtime)
        except OSError:
            return version

    async def _run_task(self, state, task: ResearchTask, version: float, stats: RunStats) -> None:
        settings = self.settings
        record = get_or_create(state, task, version)
        mark_started(record, version)
        save_state(settings.state_file, state)
        logger.info("task_started", query=task.query, source=task.source_id)

        try:
            result = await self.pipeline.run(task, settings.findings_dir)
            finding = self._write_finding(settings, task, result)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            mark_failure(record, message, settings)
            stats.failed += 1
            logger.error(
                "task_failed",
                query=task.query,
                source=task.source_id,
                error=message,
                attempts=record.attempts,
                next_retry_at=record.next_retry_at.isoformat() if record.next_retry_at else None,
            )
        else:
            mark_success(record, finding, self._version_after_write(task, version), result.artifacts)
            stats.succeeded += 1
            if result.warning:
                logger.warning("research_warning", query=task.query, warning=result.warning)
            logger.info(
                "finding_recorded",
                query=task.query,
                path=str(finding),
                mode=result.mode,
                confidence=result.confidence,
                session_id=result.artifacts.session_id,
            )
        finally:
            stats.processed += 1
            save_state(settings.state_file, state)

    # ── Loop ─────────────────────────────────────────────────────────────

    async def run_loop(self, max_cycles: int | None = None) -> int:
        """Run cycles until ``max_cycles`` (forever when None). Returns cycles run."""
        interval = self.settings.loop_interval_minutes * 60
        cycle = 0
        while max_cycles is None or cycle < max_cycles:
            cycle += 1
            logger.info("loop_cycle_start", cycle=cycle, interval_minutes=self.settings.loop_interval_minutes)
            stats = await self.run_once()
            self._write_summary(self.settings, stats, cycle)
            if max_cycles is not None and cycle >= max_cycles:
                break
            await self._sleep(interval)
        return cycle


# ── Read-only / maintenance helpers ──────────────────────────────────────────


@dataclass
class StatusReport:
    counts: dict[str, int]
    total: int
    with_session: int
    lock_pid: int | None
    updated_at: datetime
    state_file: Path
    failed: list[TaskStateRecord] = field(default_factory=list)


def show_status(settings: ForageSettings) -> StatusReport:
    state = load_state(settings.state_file)
    records = list(state.tasks.values())
    holder = RunLock(settings.lock_file, settings.lock_stale_minutes).holder()
    return StatusReport(
        counts={status.value: sum(1 for r in records if r.status is status) for status in TaskStatus},
        total=len(records),
        with_session=sum(1 for r in records if r.last_session_id),
        lock_pid=holder.pid if holder else None,
        updated_at=state.updated_at,
        state_file=settings.state_file,
        failed=[r for r in records if r.status is TaskStatus.FAILED],
    )


def find_replay(settings: ForageSettings, token: str) -> TaskStateRecord | None:
    """First record whose session id equals ``token`` or whose query matches it."""
    token = token.strip()
    if not token:
        raise ConfigError('replay requires a query or session id. Example: forage replay "letta code"')
    state = load_state(settings.state_file)
    for record in state.tasks.values():
        if record.last_session_id == token or record.query.lower() == token.lower():
            return record
    return None


def purge_workspace(settings: ForageSettings) -> PurgeResult:
    """Drop state records whose note is gone, then save."""
    settings.require_vault()
    notes = load_notes(settings.vault_dir, exclude=[settings.findings_dir])
    state = load_state(settings.state_file)
    result = purge_orphans(state, (note.rel_path for note in notes))
    save_state(settings.state_file, state)
    logger.info("state_purged", removed=result.removed, kept=result.kept)
    return result
