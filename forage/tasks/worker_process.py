"""Loop process control — foreground loop, detached daemon, lock lifecycle.

``forage loop --daemon`` re-executes itself as a detached child::

    python -m forage --vault-dir <vault> --json --log-level INFO \
        loop --interval-minutes 60 [--max-cycles N] [--force] [--since 7d]

The child holds the run lock for its lifetime; ``forage loop --stop`` finds it
through the lock payload's pid (see :func:`forage.tasks.lock.stop_daemon`).

Foreground and daemon loops both go through :func:`run_loop_forever`, which
acquires the lock, cancels the running cycle on SIGTERM / SIGINT and always
releases the lock on the way out.  The handlers sit on the event loop, so a
signal that lands during the inter-cycle sleep takes effect immediately.
"""

from __future__ import annotations

import asyncio
import signal
import subprocess
import sys
from pathlib import Path

import structlog

from forage.config import ForageSettings
from forage.tasks.lock import LockHeldError, ProcessProbe, RunLock
from forage.tasks.runner import CycleRunner

logger = structlog.get_logger().bind(component="tasks.worker_process")

_STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def build_loop_argv(
    settings: ForageSettings,
    *,
    interval_minutes: int | None = None,
    max_cycles: int | None = None,
) -> list[str]:
    """argv that re-runs the loop with the same configuration in a child process."""
    argv = [
        sys.executable,
        "-m",
        "forage",
        "--vault-dir",
        str(settings.vault_dir),
        "--json",
        "--log-level",
        settings.log_level.upper(),
        "loop",
        "--interval-minutes",
        str(interval_minutes or settings.loop_interval_minutes),
    ]
    if max_cycles or settings.loop_max_cycles:
        argv += ["--max-cycles", str(max_cycles or settings.loop_max_cycles)]
    if settings.force:
        argv.append("--force")
    if settings.dry_run:
        argv.append("--dry-run")
    if settings.since:
        argv += ["--since", settings.since]
    return argv


def spawn_daemon(
    settings: ForageSettings,
    argv: list[str],
    probe: ProcessProbe | None = None,
) -> int:
    """Start the detached loop process and return its pid.

    Raises:
        LockHeldError: a live loop already holds the lock for this workspace.
    """
    holder = RunLock(settings.lock_file, settings.lock_stale_minutes, probe=probe).holder()
    if holder is not None:
        raise LockHeldError(holder.pid)

    log_file = Path(settings.daemon_log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(log_file, "ab") as log:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            close_fds=True,
        )
    logger.info("daemon_spawned", pid=proc.pid, log_file=str(log_file))
    return proc.pid


def run_loop_forever(
    settings: ForageSettings,
    runner: CycleRunner,
    max_cycles: int | None = None,
    probe: ProcessProbe | None = None,
) -> int | None:
    """Hold the run lock and run cycles until done or signalled.

    Returns the number of cycles completed, or None when interrupted.

    Raises:
        LockHeldError: another live loop holds the lock.
    """
    lock = RunLock(settings.lock_file, settings.lock_stale_minutes, probe=probe)
    lock.acquire()
    logger.info("loop_started", pid=lock.pid, lock_file=str(lock.path), max_cycles=max_cycles)

    loop = asyncio.new_event_loop()
    main = loop.create_task(runner.run_loop(max_cycles))

    def _shutdown(signum: int) -> None:
        logger.info("loop_signal_received", signal=signum)
        main.cancel()

    previous = {sig: signal.getsignal(sig) for sig in _STOP_SIGNALS}
    cycles: int | None = None
    try:
        for sig in _STOP_SIGNALS:
            loop.add_signal_handler(sig, _shutdown, sig)
        cycles = loop.run_until_complete(main)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("loop_interrupted")
    finally:
        for sig, handler in previous.items():
            loop.remove_signal_handler(sig)
            signal.signal(sig, handler)
        try:
            loop.run_until_complete(runner.close())
        finally:
            loop.close()
            lock.release()
            logger.info("loop_stopped", cycles=cycles)
    return cycles
