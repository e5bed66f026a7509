"""Tests for RunLock and stop_daemon.

Process liveness goes through FakeProbe — no real processes are signalled.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path

import pytest

from forage.models.state import LockPayload
from forage.tasks.lock import LockHeldError, RunLock, StopOutcome, read_lock, stop_daemon
from forage.utils.clock import now_utc

OTHER_PID = 424242


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / ".forage" / "loop.lock"


def _write_lock(path: Path, pid: int, age: timedelta = timedelta()) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(LockPayload(pid=pid, started_at=now_utc() - age).model_dump_json(), encoding="utf-8")


# ── Acquire / release ─────────────────────────────────────────────────────────


class TestRunLock:
    def test_acquire_writes_payload(self, lock_path, fake_probe):
        lock = RunLock(lock_path, probe=fake_probe)
        payload = lock.acquire()
        assert payload.pid == os.getpid()
        assert read_lock(lock_path).pid == os.getpid()

    def test_second_acquire_raises_already_held(self, lock_path, fake_probe):
        RunLock(lock_path, probe=fake_probe).acquire()
        with pytest.raises(LockHeldError, match="already held") as exc_info:
            RunLock(lock_path, probe=fake_probe).acquire()
        assert exc_info.value.pid == os.getpid()

    def test_reacquire_after_release(self, lock_path, fake_probe):
        first = RunLock(lock_path, probe=fake_probe)
        first.acquire()
        first.release()
        assert not lock_path.exists()
        RunLock(lock_path, probe=fake_probe).acquire()
        assert lock_path.exists()

    def test_context_manager_releases(self, lock_path, fake_probe):
        with RunLock(lock_path, probe=fake_probe):
            assert lock_path.exists()
        assert not lock_path.exists()

    def test_dead_holder_is_reclaimed(self, lock_path, fake_probe):
        _write_lock(lock_path, OTHER_PID)
        payload = RunLock(lock_path, probe=fake_probe).acquire()
        assert payload.pid == os.getpid()

    def test_old_lock_is_reclaimed_even_if_alive(self, lock_path, probe_factory):
        probe = probe_factory(alive={os.getpid(), OTHER_PID})
        _write_lock(lock_path, OTHER_PID, age=timedelta(minutes=181))
        assert RunLock(lock_path, stale_minutes=180, probe=probe).acquire().pid == os.getpid()

    def test_live_recent_holder_blocks(self, lock_path, probe_factory):
        probe = probe_factory(alive={os.getpid(), OTHER_PID})
        _write_lock(lock_path, OTHER_PID, age=timedelta(minutes=5))
        with pytest.raises(LockHeldError, match=f"pid {OTHER_PID}"):
            RunLock(lock_path, probe=probe).acquire()

    def test_unreadable_lock_is_reclaimed(self, lock_path, fake_probe):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("garbage", encoding="utf-8")
        assert RunLock(lock_path, probe=fake_probe).acquire().pid == os.getpid()

    def test_release_leaves_foreign_lock(self, lock_path, fake_probe):
        _write_lock(lock_path, OTHER_PID)
        RunLock(lock_path, probe=fake_probe).release()
        assert lock_path.exists()

    def test_holder(self, lock_path, probe_factory):
        probe = probe_factory(alive={OTHER_PID})
        lock = RunLock(lock_path, probe=probe)
        assert lock.holder() is None
        _write_lock(lock_path, OTHER_PID)
        assert lock.holder().pid == OTHER_PID
        probe.alive.clear()
        assert lock.holder() is None


# ── stop_daemon ───────────────────────────────────────────────────────────────


def _stop(path: Path, probe, **kwargs):
    return stop_daemon(path, probe, attempts=3, interval=0.0, sleep=lambda _: None, **kwargs)


class TestStopDaemon:
    def test_no_lock_is_not_running(self, lock_path, probe_factory):
        result = _stop(lock_path, probe_factory())
        assert result.outcome is StopOutcome.NOT_RUNNING
        assert result.pid is None

    def test_unreadable_lock_is_removed(self, lock_path, probe_factory):
        lock_path.parent.mkdir(parents=True)
        lock_path.write_text("{", encoding="utf-8")
        assert _stop(lock_path, probe_factory()).outcome is StopOutcome.NOT_RUNNING
        assert not lock_path.exists()

    def test_dead_pid_cleans_stale_lock(self, lock_path, probe_factory):
        _write_lock(lock_path, OTHER_PID)
        probe = probe_factory()
        result = _stop(lock_path, probe)
        assert result.outcome is StopOutcome.STALE_LOCK_CLEANED
        assert result.pid == OTHER_PID
        assert probe.signals == []
        assert not lock_path.exists()

    def test_sigterm_stops(self, lock_path, probe_factory):
        _write_lock(lock_path, OTHER_PID)
        probe = probe_factory(alive={OTHER_PID})
        result = _stop(lock_path, probe)
        assert result.outcome is StopOutcome.STOPPED
        assert probe.signals == [(OTHER_PID, False)]
        assert not lock_path.exists()

    def test_escalates_to_sigkill(self, lock_path, probe_factory):
        _write_lock(lock_path, OTHER_PID)
        probe = probe_factory(alive={OTHER_PID}, dies_on_term=False)
        result = _stop(lock_path, probe)
        assert result.outcome is StopOutcome.STOPPED
        assert probe.signals == [(OTHER_PID, False), (OTHER_PID, True)]

    def test_force_kills_immediately(self, lock_path, probe_factory):
        _write_lock(lock_path, OTHER_PID)
        probe = probe_factory(alive={OTHER_PID}, dies_on_term=False)
        result = _stop(lock_path, probe, force=True)
        assert result.outcome is StopOutcome.STOPPED
        assert probe.signals == [(OTHER_PID, True)]

    def test_survivor_fails_and_keeps_lock(self, lock_path, probe_factory):
        _write_lock(lock_path, OTHER_PID)
        probe = probe_factory(alive={OTHER_PID}, dies_on_term=False, dies_on_kill=False)
        result = _stop(lock_path, probe)
        assert result.outcome is StopOutcome.FAILED
        assert result.pid == OTHER_PID
        assert lock_path.exists()
