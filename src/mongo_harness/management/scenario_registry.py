"""Registry of live process handles keyed by scenario."""

import asyncio
from typing import Dict, List, Optional

from ..config.logging import get_logger
from .process_handle import ProcessHandle

logger = get_logger(__name__)

DEFAULT_SCENARIO = "default"


class ScenarioRegistry:
    """Tracks which handles belong to which scenario.

    Handles are kept in start order so teardown can run in reverse.
    """

    def __init__(self):
        self._handles: Dict[str, List[ProcessHandle]] = {}
        self._lock = asyncio.Lock()

    async def register(self, handle: ProcessHandle) -> None:
        scenario_id = handle.scenario_id or DEFAULT_SCENARIO
        async with self._lock:
            self._handles.setdefault(scenario_id, []).append(handle)
        logger.debug(
            "Process registered",
            scenario_id=scenario_id,
            pid=handle.pid,
            port=handle.port,
        )

    async def unregister(self, handle: ProcessHandle) -> bool:
        scenario_id = handle.scenario_id or DEFAULT_SCENARIO
        async with self._lock:
            handles = self._handles.get(scenario_id, [])
            if handle not in handles:
                return False
            handles.remove(handle)
            if not handles:
                del self._handles[scenario_id]
        logger.debug("Process unregistered", scenario_id=scenario_id, pid=handle.pid)
        return True

    async def get_handles(self, scenario_id: Optional[str] = None) -> List[ProcessHandle]:
        async with self._lock:
            return list(self._handles.get(scenario_id or DEFAULT_SCENARIO, []))

    async def get_by_port(self, port: int) -> Optional[ProcessHandle]:
        async with self._lock:
            for handles in self._handles.values():
                for handle in handles:
                    if handle.port == port:
                        return handle
        return None

    async def active_scenarios(self) -> List[str]:
        async with self._lock:
            return list(self._handles)

    async def is_dbpath_in_use(self, dbpath: str) -> bool:
        """Whether a registered running handle already owns ``dbpath``."""
        async with self._lock:
            return any(
                handle.config.dbpath == dbpath and handle.is_running
                for handles in self._handles.values()
                for handle in handles
            )
