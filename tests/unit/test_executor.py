"""
Unit tests for the command executor.
"""

import pytest

from queuectl.worker.executor import execute_command


class TestExecuteCommand:
    """Tests for execute_command."""

    @pytest.mark.asyncio
    async def test_success_captures_stdout(self):
        """A zero exit is a success with stdout as output."""
        result = await execute_command("echo hello", timeout_ms=5000)

        assert result.success is True
        assert result.output == "hello\n"
        assert result.error is None
        assert result.exit_code == 0
        assert result.timed_out is False
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_stderr(self):
        """A failing command with no stderr reports its exit code."""
        result = await execute_command("exit 1", timeout_ms=5000)

        assert result.success is False
        assert result.exit_code == 1
        assert result.error == "exit code 1"
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_nonzero_exit_reports_stderr(self):
        result = await execute_command("ls /definitely/not/a/path", timeout_ms=5000)

        assert result.success is False
        assert result.exit_code != 0
        assert "/definitely/not/a/path" in result.error

    @pytest.mark.asyncio
    async def test_unknown_program_is_a_failure(self):
        """The shell reports a missing program as a non-zero exit."""
        result = await execute_command("no-such-program-xyz", timeout_ms=5000)

        assert result.success is False
        assert result.error

    @pytest.mark.asyncio
    async def test_whitespace_is_normalized(self):
        result = await execute_command("  echo   a    b  ", timeout_ms=5000)

        assert result.success is True
        assert result.output == "a b\n"

    @pytest.mark.asyncio
    async def test_timeout_kills_command(self):
        """A command past its deadline is killed and reported as timed out."""
        result = await execute_command("sleep 5", timeout_ms=100)

        assert result.success is False
        assert result.timed_out is True
        assert result.error == "timed out after 100ms"
        assert 90 <= result.duration_ms < 2000
