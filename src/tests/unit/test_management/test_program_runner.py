"""Tests for external program invocation."""

import asyncio
import socket
import sys
from unittest.mock import Mock, patch

import psutil
import pytest

from harness_fakes import FAKE_CLIENT
from mongo_harness.errors import HarnessTimeout, ProgramError
from mongo_harness.management.output_watcher import OutputWatcher
from mongo_harness.management.program_runner import (
    ExitCode,
    ProgramResult,
    ProgramRunner,
    find_free_port,
    is_port_open,
    kill_process_tree,
)


class TestProgramRunner:
    """Test the ProgramRunner class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.output = OutputWatcher("programs")
        self.runner = ProgramRunner(self.output, poll_interval=0.01, max_poll_interval=0.1)

    @pytest.mark.asyncio
    async def test_successful_program(self):
        result = await self.runner.run(
            [sys.executable, FAKE_CLIENT, "mongodb://localhost:27017/test"], timeout=15
        )

        assert result.exit_code == ExitCode.SUCCESS
        assert result.succeeded
        assert "connecting to: mongodb://localhost:27017/test" in result.output
        assert result.duration > 0

    @pytest.mark.asyncio
    async def test_output_is_shared_with_prefix(self):
        """Captured output also lands in the shared watcher, tagged with the pid."""
        await self.runner.run([sys.executable, FAKE_CLIENT, "somewhere"], timeout=15)

        text = self.output.text()
        assert "| connecting to: somewhere" in text
        assert text.startswith("sh")

    @pytest.mark.asyncio
    async def test_exit_code_is_reported(self):
        result = await self.runner.run(
            [sys.executable, FAKE_CLIENT, "--fail-with", "3"], timeout=15
        )

        assert result.exit_code == 3
        assert not result.succeeded
        assert not result.failed_resolution

    @pytest.mark.asyncio
    async def test_resolution_failure_is_recognised(self):
        result = await self.runner.run(
            [sys.executable, FAKE_CLIENT, "mongodb+srv://unresolvable.example.com/"],
            timeout=15,
        )

        assert result.exit_code == ExitCode.CONNECT_FAILED
        assert result.failed_resolution

    @pytest.mark.asyncio
    async def test_timeout_kills_program(self):
        """A program that never exits is killed and reported as a timeout."""
        argv = [sys.executable, "-c", "import time; time.sleep(60)"]

        with pytest.raises(HarnessTimeout) as exc_info:
            await self.runner.run(argv, timeout=0.3)

        assert exc_info.value.operation == "run_program"
        assert exc_info.value.timeout == 0.3

    @pytest.mark.asyncio
    async def test_missing_program(self, tmp_path):
        """A client binary that does not exist is a harness error."""
        missing = str(tmp_path / "no-such-mongo")

        with pytest.raises(ProgramError) as exc_info:
            await self.runner.run([missing, "--nodb"], timeout=5)

        assert missing in str(exc_info.value)
        assert exc_info.value.details["argv"] == [missing, "--nodb"]

    @pytest.mark.asyncio
    async def test_cancelled_run_kills_program(self):
        argv = [sys.executable, "-c", "import time; time.sleep(60)"]

        with patch("mongo_harness.management.program_runner.kill_process_tree") as kill:
            kill.side_effect = kill_process_tree
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(self.runner.run(argv, timeout=30), 0.3)

        kill.assert_called_once()
        # Reaped by the runner, so the pid is gone entirely
        assert not psutil.pid_exists(kill.call_args.args[0])


class TestProgramResult:
    """Test exit status interpretation."""

    def test_success_never_counts_as_resolution_failure(self):
        result = ProgramResult(argv=["mongo"], exit_code=0, output="DNSHostNotFound", duration=0.1)

        assert result.succeeded
        assert not result.failed_resolution

    def test_handshake_failure_is_not_resolution_failure(self):
        result = ProgramResult(
            argv=["mongo"], exit_code=1, output="SSL peer certificate revoked", duration=0.1
        )

        assert not result.failed_resolution


class TestProcessHelpers:
    """Test port and process helpers."""

    def test_find_free_port_is_bindable(self):
        port = find_free_port()

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", port))

    def test_is_port_open(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            port = sock.getsockname()[1]

            assert is_port_open("127.0.0.1", port)

        assert not is_port_open("127.0.0.1", port)

    def test_kill_process_tree_ignores_missing_process(self):
        with patch(
            "mongo_harness.management.program_runner.psutil.Process",
            side_effect=psutil.NoSuchProcess(99999),
        ):
            kill_process_tree(99999)

    def test_kill_process_tree_kills_children_first(self):
        child = Mock()
        parent = Mock()
        parent.children.return_value = [child]

        with patch(
            "mongo_harness.management.program_runner.psutil.Process", return_value=parent
        ), patch(
            "mongo_harness.management.program_runner.psutil.wait_procs",
            return_value=([child, parent], []),
        ) as wait_procs:
            kill_process_tree(1234, timeout=2)

        child.kill.assert_called_once()
        parent.kill.assert_called_once()
        wait_procs.assert_called_once_with([child, parent], timeout=2)
