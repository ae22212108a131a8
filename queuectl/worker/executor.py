"""
Command executor.

Runs one shell command with a wall-clock timeout and turns whatever happens
into a single ExecutionResult. Nothing here raises for a failing command.
"""

import asyncio
import logging
import os
import signal
import time

from queuectl.types.job import ExecutionResult

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it spawned."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        process.kill()


async def execute_command(command: str, timeout_ms: int) -> ExecutionResult:
    """
    Execute a command through the shell with a timeout.

    The command is tokenized on whitespace and the program plus its arguments
    are handed to /bin/sh. The process runs in its own process group so a
    timeout kills the whole pipeline, not just the shell.

    Args:
        command: The command line.
        timeout_ms: Maximum wall-clock time in milliseconds.

    Returns:
        ExecutionResult for success, non-zero exit, timeout or launch failure.
    """
    program, *args = command.split() or [""]
    command_line = " ".join([program, *args])
    start = time.monotonic()

    try:
        process = await asyncio.create_subprocess_shell(
            command_line,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(
            "Failed to launch command",
            extra={"command": command, "error": str(e)},
        )
        return ExecutionResult(
            success=False,
            error=str(e),
            duration_ms=_elapsed_ms(start),
        )

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout_ms / 1000,
        )
    except asyncio.CancelledError:
        _kill_process_group(process)
        raise
    except TimeoutError:
        _kill_process_group(process)
        await process.wait()
        duration_ms = _elapsed_ms(start)
        logger.warning(
            "Command timed out",
            extra={"command": command, "timeout_ms": timeout_ms, "pid": process.pid},
        )
        return ExecutionResult(
            success=False,
            error=f"timed out after {timeout_ms}ms",
            duration_ms=duration_ms,
            timed_out=True,
        )

    duration_ms = _elapsed_ms(start)
    output = stdout.decode(errors="replace")
    error_output = stderr.decode(errors="replace")
    exit_code = process.returncode

    if exit_code == 0:
        return ExecutionResult(
            success=True,
            output=output,
            duration_ms=duration_ms,
            exit_code=exit_code,
        )

    return ExecutionResult(
        success=False,
        output=output,
        error=error_output or f"exit code {exit_code}",
        duration_ms=duration_ms,
        exit_code=exit_code,
    )
