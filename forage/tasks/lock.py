"""Run lock — one loop instance per workspace.

The lock is a JSON file ``{"pid": …, "started_at": …}``; its existence is the
lock.  Acquisition is a create-only write.  A held lock is reclaimed when it
is stale: unreadable payload, older than ``stale_minutes``, or owned by a pid
that is no longer alive.

The lock is single-host.  It guards the state file and findings directory,
which tolerate exactly one writer.

Process liveness and signalling go through :class:`ProcessProbe` so tests can
swap in a fake.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path

import psutil
import structlog
from pydantic import ValidationError

from forage.models.state import LockPayload
from forage.utils.clock import as_utc, now_utc

logger = structlog.get_logger().bind(component="tasks.lock")


class LockHeldError(RuntimeError):
    """The lock belongs to another live process."""

    def __init__(self, pid: int) -> None:
        super().__init__(f"Run lock is already held by pid {pid}.")
        self.pid = pid


class ProcessProbe:
    """psutil-backed process queries. Replace with a fake in tests."""

    def is_alive(self, pid: int) -> bool:
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            # Exists, owned by someone else.
            return True

    def signal(self, pid: int, force: bool = False) -> None:
        """SIGTERM (or SIGKILL when ``force``). A vanished process is ignored."""
        try:
            proc = psutil.Process(pid)
            if force:
                proc.kill()
            else:
                proc.terminate()
        except psutil.NoSuchProcess:
            pass


def read_lock(path: Path) -> LockPayload | None:
    """Return the lock payload, or None when absent or unreadable."""
    try:
        return LockPayload.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError, ValidationError):
        return None


def _write_exclusive(path: Path, payload: LockPayload) -> None:
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(payload.model_dump_json())


class RunLock:
    """Create-only lock file with staleness detection.

    Usage::

        with RunLock(settings.lock_file, settings.lock_stale_minutes):
            await runner.run_loop()
    """

    def __init__(
        self,
        path: Path,
        stale_minutes: int = 180,
        probe: ProcessProbe | None = None,
    ) -> None:
        self.path = Path(path)
        self.stale_after = timedelta(minutes=stale_minutes)
        self.probe = probe or ProcessProbe()
        self.pid = os.getpid()

    def is_stale(self, payload: LockPayload | None) -> bool:
        if payload is None:
            return True
        if now_utc() - as_utc(payload.started_at) > self.stale_after:
            return True
        return not self.probe.is_alive(payload.pid)

    def holder(self) -> LockPayload | None:
        """The live, non-stale holder of the lock, if any."""
        if not self.path.exists():
            return None
        payload = read_lock(self.path)
        return None if self.is_stale(payload) else payload

    def acquire(self) -> LockPayload:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = LockPayload(pid=self.pid)
        try:
            _write_exclusive(self.path, payload)
            logger.debug("lock_acquired", path=str(self.path), pid=self.pid)
            return payload
        except FileExistsError:
            pass

        existing = read_lock(self.path)
        if not self.is_stale(existing):
            raise LockHeldError(existing.pid)

        logger.warning(
            "lock_stale_reclaimed",
            path=str(self.path),
            previous_pid=existing.pid if existing else None,
        )
        self.path.unlink(missing_ok=True)
        try:
            _write_exclusive(self.path, payload)
        except FileExistsError:
            # Someone else won the race for the reclaimed lock.
            winner = read_lock(self.path)
            raise LockHeldError(winner.pid if winner else -1) from None
        return payload

    def release(self) -> None:
        """Remove the lock only if this process owns it."""
        existing = read_lock(self.path)
        if existing is not None and existing.pid == self.pid:
            self.path.unlink(missing_ok=True)
            logger.debug("lock_released", path=str(self.path), pid=self.pid)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


# ── Stop ─────────────────────────────────────────────────────────────────────


class StopOutcome(str, Enum):
    NOT_RUNNING = "not_running"
    STALE_LOCK_CLEANED = "stale_lock_cleaned"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class StopResult:
    outcome: StopOutcome
    pid: int | None = None


def stop_daemon(
    path: Path,
    probe: ProcessProbe | None = None,
    *,
    force: bool = False,
    attempts: int = 20,
    interval: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> StopResult:
    """Terminate the process holding the lock at ``path``.

    SIGTERM first (SIGKILL right away when ``force``), poll for up to
    ``attempts × interval`` seconds, then escalate to SIGKILL and poll again.
    """
    probe = probe or ProcessProbe()
    path = Path(path)
    payload = read_lock(path)
    if payload is None:
        if path.exists():
            path.unlink(missing_ok=True)
        return StopResult(StopOutcome.NOT_RUNNING)

    pid = payload.pid
    if not probe.is_alive(pid):
        path.unlink(missing_ok=True)
        logger.info("stale_lock_cleaned", pid=pid)
        return StopResult(StopOutcome.STALE_LOCK_CLEANED, pid)

    def _wait_for_exit() -> bool:
        for _ in range(attempts):
            if not probe.is_alive(pid):
                return True
            sleep(interval)
        return not probe.is_alive(pid)

    probe.signal(pid, force=force)
    dead = _wait_for_exit()
    if not dead and not force:
        logger.warning("daemon_ignored_sigterm", pid=pid)
        probe.signal(pid, force=True)
        dead = _wait_for_exit()

    if not dead:
        logger.error("daemon_stop_failed", pid=pid)
        return StopResult(StopOutcome.FAILED, pid)

    path.unlink(missing_ok=True)
    logger.info("daemon_stopped", pid=pid)
    return StopResult(StopOutcome.STOPPED, pid)
