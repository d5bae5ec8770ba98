"""Tests for the scenario registry."""

from unittest.mock import Mock

import pytest

from mongo_harness.management.process_handle import ProcessHandle, ProcessState
from mongo_harness.management.scenario_registry import DEFAULT_SCENARIO, ScenarioRegistry
from mongo_harness.management.server_config import ServerConfig


def make_handle(port, scenario_id=None, dbpath="/data/db", running=True):
    process = Mock()
    process.pid = port + 10000
    handle = ProcessHandle(
        name="mongod",
        config=ServerConfig(dbpath=dbpath, port=port),
        process=process,
        scenario_id=scenario_id,
    )
    if running:
        handle.transition(ProcessState.RUNNING)
    return handle


class TestScenarioRegistry:
    """Test the ScenarioRegistry class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.registry = ScenarioRegistry()

    @pytest.mark.asyncio
    async def test_register_keeps_start_order(self):
        first = make_handle(20020, "auth-1")
        second = make_handle(20021, "auth-1")

        await self.registry.register(first)
        await self.registry.register(second)

        assert await self.registry.get_handles("auth-1") == [first, second]
        assert await self.registry.active_scenarios() == ["auth-1"]

    @pytest.mark.asyncio
    async def test_handles_without_scenario_use_default(self):
        handle = make_handle(20022)

        await self.registry.register(handle)

        assert await self.registry.get_handles() == [handle]
        assert await self.registry.active_scenarios() == [DEFAULT_SCENARIO]

    @pytest.mark.asyncio
    async def test_unregister(self):
        handle = make_handle(20023, "lock-1")
        await self.registry.register(handle)

        assert await self.registry.unregister(handle) is True
        assert await self.registry.unregister(handle) is False
        assert await self.registry.active_scenarios() == []

    @pytest.mark.asyncio
    async def test_scenarios_are_isolated(self):
        a = make_handle(20024, "a")
        b = make_handle(20025, "b")
        await self.registry.register(a)
        await self.registry.register(b)

        assert await self.registry.get_handles("a") == [a]
        assert await self.registry.get_handles("b") == [b]

    @pytest.mark.asyncio
    async def test_get_by_port(self):
        handle = make_handle(20026, "a")
        await self.registry.register(handle)

        assert await self.registry.get_by_port(20026) is handle
        assert await self.registry.get_by_port(20027) is None

    @pytest.mark.asyncio
    async def test_dbpath_in_use_only_for_running_handles(self):
        running = make_handle(20028, "a", dbpath="/data/one")
        stopped = make_handle(20029, "a", dbpath="/data/two")
        stopped.transition(ProcessState.STOPPED)
        await self.registry.register(running)
        await self.registry.register(stopped)

        assert await self.registry.is_dbpath_in_use("/data/one")
        assert not await self.registry.is_dbpath_in_use("/data/two")
        assert not await self.registry.is_dbpath_in_use("/data/three")
