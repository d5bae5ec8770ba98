"""Server process manager coordinating launch, readiness and teardown."""

import asyncio
import shutil
import subprocess
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

import psutil

from ..config.logging import get_logger, log_duration, sanitize_log_data
from ..config.settings import HarnessSettings
from ..errors import ConfigurationError, HarnessError, HarnessTimeout, StartupFailure
from .output_watcher import OutputPump, OutputWatcher, compile_pattern
from .process_handle import ProcessHandle, ProcessState
from .program_runner import (
    ProgramResult,
    ProgramRunner,
    find_free_port,
    is_port_open,
    kill_process_tree,
)
from .scenario_registry import ScenarioRegistry
from .server_config import ClientTLSOptions, ServerConfig

logger = get_logger(__name__)

# Unix and Windows wording for a data directory already locked by a live process
LOCK_CONTENTION_SIGNATURES = (
    "Unable to lock the lock file",
    "Unable to create/open the lock file",
)

Credentials = Tuple[str, str]


def _default_session_factory(endpoint, tls, settings):
    from ..client.session import ClientSession

    return ClientSession.connect(endpoint, tls=tls, settings=settings)


class ProcessManager:
    """Starts and stops server processes and classifies how they ended."""

    def __init__(
        self,
        settings: Optional[HarnessSettings] = None,
        session_factory: Optional[Callable] = None,
    ):
        """Initialize process manager.

        Args:
            settings: Harness settings (default: loaded from environment)
            session_factory: Callable ``(endpoint, tls, settings)`` returning a
                connected client session, used for authorized shutdown
        """
        self.settings = settings or HarnessSettings()
        self.session_factory = session_factory or _default_session_factory
        self.registry = ScenarioRegistry()
        self.program_output = OutputWatcher(name="programs")
        self.runner = ProgramRunner(
            self.program_output,
            poll_interval=self.settings.poll_interval,
            max_poll_interval=self.settings.max_poll_interval,
            kill_timeout=self.settings.shutdown_timeout,
        )
        self._readiness = compile_pattern(self.settings.readiness_log_line, ignore_case=True)

    async def start(
        self,
        config: ServerConfig,
        scenario_id: Optional[str] = None,
        name: str = "mongod",
    ) -> ProcessHandle:
        """Start a server and wait until it is ready.

        Args:
            config: Launch configuration
            scenario_id: Registry key owning the process
            name: Label used in logs and output prefixes

        Returns:
            ProcessHandle: Handle in state Running

        Raises:
            StartupFailure: The port is held by another listener, or the process
                exited before becoming ready
            HarnessTimeout: Neither ready nor exited within the startup timeout
        """
        config = await self._prepare(config)
        argv = list(self.settings.server_command) + config.to_argv()
        start_time = time.monotonic()

        logger.info(
            "Starting server",
            name=name,
            scenario_id=scenario_id,
            config=sanitize_log_data(config.to_dict()),
        )

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise StartupFailure(
                f"Could not launch '{argv[0]}': {e}", output="", exit_code=None
            )

        handle = ProcessHandle(
            name=name,
            config=config,
            process=process,
            watcher=OutputWatcher(name=f"{name}{config.port}"),
            scenario_id=scenario_id,
        )
        handle.pump = OutputPump(
            process.stdout,
            [handle.watcher, self.program_output],
            prefix=f"{name}{config.port}| ",
            name=f"pump-{name}{config.port}",
        )
        handle.pump.start()

        try:
            await self._wait_until_ready(handle)
        except BaseException:
            # Cancellation included: a half-started server must not outlive its caller
            if not handle.is_finished:
                logger.warning("Startup interrupted, killing server", pid=handle.pid)
                self._abandon_startup(handle)
            raise

        await self.registry.register(handle)
        log_duration(
            logger,
            "server_start",
            (time.monotonic() - start_time) * 1000,
            pid=handle.pid,
            endpoint=handle.endpoint,
        )
        return handle

    async def try_start(
        self,
        config: ServerConfig,
        scenario_id: Optional[str] = None,
        name: str = "mongod",
    ) -> Optional[ProcessHandle]:
        """Like ``start`` but returns None when the process fails to start."""
        try:
            return await self.start(config, scenario_id=scenario_id, name=name)
        except StartupFailure as e:
            logger.info(
                "Server failed to start",
                name=name,
                exit_code=e.exit_code,
                lock_contention=e.lock_contention,
            )
            return None

    async def stop(
        self,
        handle: ProcessHandle,
        credentials: Optional[Credentials] = None,
        tls: Optional[ClientTLSOptions] = None,
    ) -> None:
        """Stop a server. Idempotent, best effort, never raises.

        Args:
            handle: Process to stop
            credentials: ``(user, password)`` on admin for servers running with auth
            tls: Client TLS options for reaching a TLS-only server
        """
        if handle.is_finished:
            return

        logger.info("Stopping server", name=handle.name, pid=handle.pid, port=handle.port)

        try:
            if handle.poll() is None and handle.is_running:
                await self._request_shutdown(handle, credentials, tls)
            if not await self._wait_for_exit(handle, self.settings.shutdown_timeout):
                logger.info("Server still up after shutdown, terminating", pid=handle.pid)
                handle.process.terminate()
                await self._wait_for_exit(handle, self.settings.shutdown_timeout)
        except Exception as e:
            logger.warning("Error during shutdown", pid=handle.pid, error=str(e))

        if handle.poll() is None:
            logger.warning("Server ignored shutdown, killing", pid=handle.pid)
            try:
                kill_process_tree(handle.pid)
                handle.process.wait(timeout=self.settings.shutdown_timeout)
            except (psutil.Error, subprocess.TimeoutExpired) as e:
                logger.error("Failed to kill server", pid=handle.pid, error=str(e))
            handle.poll()

        handle.transition(
            ProcessState.STOPPED if handle.is_running else ProcessState.FAILED_TO_START
        )
        if handle.pump is not None:
            await handle.pump.drain(timeout=5.0)
        await self.registry.unregister(handle)

        logger.info("Server stopped", name=handle.name, pid=handle.pid, exit_code=handle.exit_code)

    async def stop_scenario(
        self,
        scenario_id: str,
        credentials: Optional[Credentials] = None,
        tls: Optional[ClientTLSOptions] = None,
    ) -> List[ProcessHandle]:
        """Stop every process owned by a scenario, newest first."""
        handles = await self.registry.get_handles(scenario_id)
        for handle in reversed(handles):
            await self.stop(handle, credentials=credentials, tls=tls)
        return handles

    async def run_program(
        self, argv: Sequence[str], timeout: Optional[float] = None
    ) -> ProgramResult:
        """Run an external client program; its output joins ``program_output``."""
        return await self.runner.run(argv, timeout or self.settings.program_timeout)

    def clear_program_output(self) -> None:
        self.program_output.reset()

    def is_alive(self, handle: ProcessHandle) -> bool:
        try:
            process = psutil.Process(handle.pid)
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    async def _prepare(self, config: ServerConfig) -> ServerConfig:
        """Resolve the port and reset the data directory when asked to."""
        dbpath = Path(config.dbpath)

        if config.clean_data:
            if await self.registry.is_dbpath_in_use(str(dbpath)):
                raise ConfigurationError(
                    f"Refusing to clean {dbpath}: a running server uses it",
                    {"dbpath": str(dbpath)},
                )
            if dbpath.exists():
                shutil.rmtree(dbpath)
        dbpath.mkdir(parents=True, exist_ok=True)

        if config.port is None:
            config = replace(config, port=find_free_port(config.bind_ip))
        elif is_port_open(config.bind_ip, config.port):
            raise StartupFailure(
                f"Port {config.port} is already in use by another listener",
                output="",
                exit_code=None,
            )
        return config

    async def _wait_until_ready(self, handle: ProcessHandle) -> None:
        timeout = self.settings.startup_timeout
        deadline = time.monotonic() + timeout
        delay = self.settings.poll_interval

        while True:
            exit_code = handle.poll()
            if exit_code is not None:
                await self._fail_startup(handle, exit_code)

            if handle.watcher.contains(self._readiness) or is_port_open(
                handle.host, handle.port
            ):
                # Ready only if the process is still alive after the signal
                exit_code = handle.poll()
                if exit_code is not None:
                    await self._fail_startup(handle, exit_code)
                handle.transition(ProcessState.RUNNING)
                logger.info("Server is ready", pid=handle.pid, endpoint=handle.endpoint)
                return

            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.settings.max_poll_interval)

        logger.error("Server did not become ready", pid=handle.pid, timeout=timeout)
        self._abandon_startup(handle)
        raise HarnessTimeout(
            "server_start",
            timeout,
            f"Server on port {handle.port} was neither ready nor exited within {timeout}s",
        )

    def _abandon_startup(self, handle: ProcessHandle) -> None:
        """Kill a server that never became ready and mark it FailedToStart.

        Synchronous so it also completes inside a cancelled task.
        """
        try:
            kill_process_tree(handle.pid)
            handle.process.wait(timeout=self.settings.shutdown_timeout)
        except (psutil.Error, subprocess.TimeoutExpired) as e:
            logger.error("Failed to kill server", pid=handle.pid, error=str(e))
        handle.poll()
        handle.transition(ProcessState.FAILED_TO_START)
        if handle.pump is not None:
            # Stream hits EOF once the process is gone
            handle.pump.join(timeout=1.0)

    async def _fail_startup(self, handle: ProcessHandle, exit_code: int) -> None:
        # Drain the rest of the output so the signature check sees all of it
        if handle.pump is not None:
            await handle.pump.drain(timeout=5.0)
        handle.transition(ProcessState.FAILED_TO_START)

        lock_contention = handle.watcher.contains_any(LOCK_CONTENTION_SIGNATURES)
        logger.warning(
            "Server exited during startup",
            pid=handle.pid,
            exit_code=exit_code,
            lock_contention=lock_contention,
        )
        raise StartupFailure(
            f"Server on port {handle.port} exited with code {exit_code} before becoming ready",
            output=handle.watcher.text(),
            exit_code=exit_code,
            lock_contention=lock_contention,
        )

    async def _request_shutdown(
        self,
        handle: ProcessHandle,
        credentials: Optional[Credentials],
        tls: Optional[ClientTLSOptions],
    ) -> None:
        try:
            session = self.session_factory(handle.endpoint, tls, self.settings)
        except HarnessError as e:
            logger.debug("Shutdown connection failed, terminating", pid=handle.pid, error=str(e))
            handle.process.terminate()
            return

        try:
            if handle.config.auth and credentials:
                user, password = credentials
                auth = session.authenticate(user, password, "admin")
                if not auth.ok:
                    logger.warning("Shutdown credentials rejected", user=user, code=auth.code)

            result = session.shutdown_server(force=True)
            if not result.ok:
                logger.info(
                    "Shutdown command refused, terminating",
                    pid=handle.pid,
                    code=result.code,
                )
                handle.process.terminate()
        except HarnessError as e:
            logger.debug("Shutdown command failed, terminating", pid=handle.pid, error=str(e))
            handle.process.terminate()
        finally:
            session.close()

    async def _wait_for_exit(self, handle: ProcessHandle, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        delay = self.settings.poll_interval
        while handle.poll() is None:
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.settings.max_poll_interval)
        return True
