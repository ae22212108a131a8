"""
Worker process supervisor.

Starts detached worker processes and stops them with SIGTERM. The PIDs of
the started workers are kept in a pid file so a later ``queuectl worker stop``
can find them.
"""

import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from queuectl.config import get_settings

logger = logging.getLogger(__name__)


def _pid_file(pid_file: str | Path | None) -> Path:
    return Path(pid_file or get_settings().worker_pid_file)


def read_pids(pid_file: str | Path | None = None) -> list[int]:
    """Read the recorded worker PIDs, ignoring blank or malformed lines."""
    path = _pid_file(pid_file)
    if not path.exists():
        return []

    pids = []
    for line in path.read_text().splitlines():
        line = line.strip()
        if line.isdigit():
            pids.append(int(line))
    return pids


def start_workers(count: int, pid_file: str | Path | None = None) -> list[int]:
    """
    Start ``count`` detached worker processes.

    Each worker runs ``python -m queuectl.worker.main`` in its own session
    so it survives the CLI process exiting. PIDs are appended to the pid file.

    Args:
        count: Number of workers to start.
        pid_file: Optional pid file path, defaults to the configured one.

    Returns:
        PIDs of the started workers.
    """
    if count < 1:
        raise ValueError("count must be at least 1")

    path = _pid_file(pid_file)
    pids = []
    for _ in range(count):
        process = subprocess.Popen(
            [sys.executable, "-m", "queuectl.worker.main"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        pids.append(process.pid)

    existing = read_pids(path)
    path.write_text("\n".join(str(pid) for pid in existing + pids) + "\n")

    logger.info(f"Started {count} worker(s)", extra={"pids": pids, "pid_file": str(path)})
    return pids


def stop_workers(pid_file: str | Path | None = None) -> list[int]:
    """
    Send SIGTERM to every recorded worker and remove the pid file.

    Workers finish their current job before exiting. PIDs that no longer
    exist are skipped.

    Returns:
        PIDs that were signalled.
    """
    path = _pid_file(pid_file)
    signalled = []

    for pid in read_pids(path):
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("Worker already exited", extra={"pid": pid})
            continue
        signalled.append(pid)

    path.unlink(missing_ok=True)
    logger.info("Stopped workers", extra={"pids": signalled})
    return signalled
