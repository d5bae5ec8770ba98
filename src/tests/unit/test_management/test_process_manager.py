"""Tests for the process manager against the helper server process."""

import asyncio
import socket
from pathlib import Path
from unittest.mock import Mock

import psutil
import pytest

from harness_fakes import requires_posix
from mongo_harness.client.results import CommandResult
from mongo_harness.errors import ConfigurationError, ConnectError, HarnessTimeout, StartupFailure
from mongo_harness.management.process_handle import ProcessState
from mongo_harness.management.process_manager import ProcessManager
from mongo_harness.management.server_config import ServerConfig

pytestmark = requires_posix


def refuse_connection(endpoint, tls, settings):
    raise ConnectError(f"Could not connect to {endpoint}")


def _child_pids():
    pids = set()
    for child in psutil.Process().children(recursive=True):
        try:
            if child.status() != psutil.STATUS_ZOMBIE:
                pids.add(child.pid)
        except psutil.NoSuchProcess:
            pass
    return pids


class TestProcessManager:
    """Test the ProcessManager class."""

    @pytest.fixture(autouse=True)
    def _manager(self, harness_settings):
        self.settings = harness_settings
        self.manager = ProcessManager(harness_settings, session_factory=refuse_connection)
        self.data_root = Path(harness_settings.data_root)

    def config(self, label="db", **overrides):
        overrides.setdefault("dbpath", str(self.data_root / label))
        return ServerConfig(**overrides)

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        """A started server is running and alive, a stopped one neither."""
        handle = await self.manager.start(self.config(), scenario_id="s1")

        try:
            assert handle.state is ProcessState.RUNNING
            assert handle.port is not None
            assert self.manager.is_alive(handle)
            assert handle.watcher.contains("waiting for connections")
            assert await self.manager.registry.get_handles("s1") == [handle]
        finally:
            await self.manager.stop(handle)

        assert handle.state is ProcessState.STOPPED
        assert handle.exit_code is not None
        assert not self.manager.is_alive(handle)
        assert await self.manager.registry.get_handles("s1") == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        handle = await self.manager.start(self.config())

        await self.manager.stop(handle)
        exit_code = handle.exit_code
        await self.manager.stop(handle)

        assert handle.state is ProcessState.STOPPED
        assert handle.exit_code == exit_code

    @pytest.mark.asyncio
    async def test_readiness_by_open_port(self):
        """A server that never prints the readiness line is ready once it listens."""
        handle = await self.manager.start(self.config(extra_flags={"fakeQuiet": None}))

        try:
            assert handle.is_running
            assert not handle.watcher.contains("waiting for connections")
        finally:
            await self.manager.stop(handle)

    @pytest.mark.asyncio
    async def test_exit_during_startup(self):
        """An early exit raises StartupFailure carrying code and output."""
        with pytest.raises(StartupFailure) as exc_info:
            await self.manager.start(self.config(extra_flags={"fakeExitCode": "14"}))

        error = exc_info.value
        assert error.exit_code == 14
        assert "Fatal assertion during startup" in error.output
        assert not error.lock_contention
        assert await self.manager.registry.active_scenarios() == []

    @pytest.mark.asyncio
    async def test_lock_contention(self):
        """A second server on a locked dbpath fails with the lock signature."""
        first = await self.manager.start(self.config("shared"), scenario_id="lock")

        try:
            with pytest.raises(StartupFailure) as exc_info:
                await self.manager.start(self.config("shared", clean_data=False), scenario_id="lock")

            assert exc_info.value.lock_contention
            assert exc_info.value.exit_code == 100
            assert self.manager.program_output.contains("Unable to lock the lock file")
            assert first.is_running
            assert self.manager.is_alive(first)
        finally:
            await self.manager.stop(first)

    @pytest.mark.asyncio
    async def test_try_start_returns_none_on_failure(self):
        handle = await self.manager.try_start(self.config(extra_flags={"fakeExitCode": "100"}))

        assert handle is None

    @pytest.mark.asyncio
    async def test_startup_timeout_kills_process(self):
        """A process that neither exits nor becomes ready is killed."""
        self.settings.startup_timeout = 0.5
        manager = ProcessManager(self.settings, session_factory=refuse_connection)

        with pytest.raises(HarnessTimeout) as exc_info:
            await manager.start(self.config(extra_flags={"fakeHang": None}))

        assert exc_info.value.operation == "server_start"

    @pytest.mark.asyncio
    async def test_port_held_by_another_listener(self):
        """Someone else listening on the port is a startup failure, not readiness."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as squatter:
            squatter.bind(("127.0.0.1", 0))
            squatter.listen(1)
            port = squatter.getsockname()[1]
            children_before = _child_pids()

            with pytest.raises(StartupFailure, match="already in use"):
                await self.manager.start(self.config(port=port), scenario_id="squat")

            assert _child_pids() == children_before
            assert await self.manager.registry.get_handles("squat") == []

    @pytest.mark.asyncio
    async def test_cancelled_start_kills_process(self):
        """Cancelling a pending start leaves no server process behind."""
        children_before = _child_pids()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                self.manager.start(self.config(extra_flags={"fakeHang": None})), 0.5
            )

        assert _child_pids() == children_before

    @pytest.mark.asyncio
    async def test_refuses_to_clean_dbpath_in_use(self):
        handle = await self.manager.start(self.config("busy"))

        try:
            with pytest.raises(ConfigurationError, match="Refusing to clean"):
                await self.manager.start(self.config("busy"))
        finally:
            await self.manager.stop(handle)

    @pytest.mark.asyncio
    async def test_clean_data_wipes_directory(self):
        dbpath = self.data_root / "wipe"
        dbpath.mkdir(parents=True)
        (dbpath / "leftover.wt").write_text("stale")

        handle = await self.manager.start(self.config("wipe"))
        await self.manager.stop(handle)

        assert not (dbpath / "leftover.wt").exists()

    @pytest.mark.asyncio
    async def test_authorized_shutdown(self, harness_settings):
        """Credentials are used before asking the server to shut down."""
        session = Mock()
        session.authenticate.return_value = Mock(ok=True)
        session.shutdown_server.return_value = CommandResult.failure(13, "not authorized")
        manager = ProcessManager(harness_settings, session_factory=Mock(return_value=session))

        handle = await manager.start(self.config("authd", auth=True))
        await manager.stop(handle, credentials=("root", "root"))

        session.authenticate.assert_called_once_with("root", "root", "admin")
        session.shutdown_server.assert_called_once_with(force=True)
        session.close.assert_called_once()
        assert handle.state is ProcessState.STOPPED
        assert not manager.is_alive(handle)

    @pytest.mark.asyncio
    async def test_stop_scenario_stops_newest_first(self):
        first = await self.manager.start(self.config("one"), scenario_id="multi")
        second = await self.manager.start(self.config("two"), scenario_id="multi")

        stopped = await self.manager.stop_scenario("multi")

        assert stopped == [first, second]
        assert first.state is ProcessState.STOPPED
        assert second.state is ProcessState.STOPPED
        assert first.exit_code is not None and second.exit_code is not None

    @pytest.mark.asyncio
    async def test_run_program_output_is_shared(self, harness_settings):
        result = await self.manager.run_program(
            list(harness_settings.client_command) + ["mongodb://localhost/test"]
        )

        assert result.succeeded
        assert self.manager.program_output.contains("connecting to: mongodb://localhost/test")

        self.manager.clear_program_output()
        assert self.manager.program_output.text() == ""
