"""Scenario scope: acquire processes, run, always release.

Each scenario gets its own id, data directories and process handles, so a
failing scenario cannot leak state into the next one.
"""

import shutil
import time
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .client.session import ClientSession
from .config.logging import get_logger
from .config.settings import HarnessSettings
from .management.process_handle import ProcessHandle
from .management.process_manager import ProcessManager
from .management.server_config import ClientTLSOptions, ServerConfig


class Scenario:
    """Async context manager owning every process and session of one scenario."""

    def __init__(
        self,
        name: str,
        settings: Optional[HarnessSettings] = None,
        session_factory: Optional[Callable[..., ClientSession]] = None,
        keep_data: bool = False,
    ):
        """Initialize scenario scope.

        Args:
            name: Scenario name, also the prefix of its id
            settings: Harness settings
            session_factory: Replacement for ``ClientSession.connect``
            keep_data: Keep data directories even when the scenario passes
        """
        self.name = name
        self.settings = settings or HarnessSettings()
        self.scenario_id = f"{name}-{uuid.uuid4().hex[:8]}"
        self.logger = get_logger(__name__, scenario=name, scenario_id=self.scenario_id)
        self.session_factory = session_factory or ClientSession.connect
        self.keep_data = keep_data
        self.manager = ProcessManager(
            self.settings,
            session_factory=lambda endpoint, tls, settings: self.session_factory(
                endpoint, tls=tls, settings=settings
            ),
        )

        self.shutdown_credentials: Optional[Tuple[str, str]] = None
        self.shutdown_tls: Optional[ClientTLSOptions] = None
        self._sessions: List[ClientSession] = []
        self._started_at: Optional[float] = None

    @property
    def root(self) -> Path:
        return self.settings.get_data_root() / self.scenario_id

    def data_path(self, label: str = "db") -> str:
        return str(self.root / label)

    def server_config(self, **overrides) -> ServerConfig:
        overrides.setdefault("dbpath", self.data_path())
        overrides.setdefault("bind_ip", self.settings.bind_ip)
        return ServerConfig(**overrides)

    async def start_server(self, name: str = "mongod", **overrides) -> ProcessHandle:
        return await self.manager.start(
            self.server_config(**overrides), scenario_id=self.scenario_id, name=name
        )

    async def try_start_server(
        self, name: str = "mongod", **overrides
    ) -> Optional[ProcessHandle]:
        return await self.manager.try_start(
            self.server_config(**overrides), scenario_id=self.scenario_id, name=name
        )

    def connect(
        self,
        handle: ProcessHandle,
        tls: Optional[ClientTLSOptions] = None,
        supports_multi_auth: bool = False,
    ) -> ClientSession:
        session = self.session_factory(
            handle.endpoint,
            tls=tls,
            settings=self.settings,
            supports_multi_auth=supports_multi_auth,
        )
        self._sessions.append(session)
        return session

    async def __aenter__(self) -> "Scenario":
        self._started_at = time.monotonic()
        self.root.mkdir(parents=True, exist_ok=True)
        self.logger.info("Scenario started")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        for session in self._sessions:
            session.close()
        self._sessions.clear()

        await self.manager.stop_scenario(
            self.scenario_id,
            credentials=self.shutdown_credentials,
            tls=self.shutdown_tls,
        )

        passed = exc_type is None
        if passed and not self.keep_data:
            shutil.rmtree(self.root, ignore_errors=True)

        self.logger.info(
            "Scenario finished",
            passed=passed,
            duration_s=round(time.monotonic() - (self._started_at or time.monotonic()), 3),
            error=str(exc_val) if exc_val else None,
        )
        return False
