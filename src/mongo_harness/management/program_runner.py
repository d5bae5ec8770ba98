"""Invocation of external client programs with captured output and exit status."""

import asyncio
import subprocess
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Sequence

import psutil

from ..config.logging import get_logger
from ..errors import HarnessTimeout, ProgramError
from .output_watcher import OutputPump, OutputWatcher

logger = get_logger(__name__)

# Output fragments the client prints when a host or SRV record cannot be resolved
RESOLUTION_FAILURE_SIGNATURES = (
    "DNSHostNotFound",
    "Failed to look up service",
    "DNSProtocolError",
    "nodename nor servname provided",
    "Name or service not known",
)


class ExitCode(IntEnum):
    """Exit status contract of the external client."""

    SUCCESS = 0
    CONNECT_FAILED = 1


@dataclass
class ProgramResult:
    """Outcome of one external program invocation."""

    argv: List[str]
    exit_code: int
    output: str
    duration: float

    @property
    def succeeded(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    @property
    def failed_resolution(self) -> bool:
        """Failure caused by name resolution rather than the handshake."""
        return not self.succeeded and any(
            signature in self.output for signature in RESOLUTION_FAILURE_SIGNATURES
        )


def kill_process_tree(pid: int, timeout: float = 5.0) -> None:
    """Kill a process and all of its children, ignoring ones already gone."""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    processes = parent.children(recursive=True) + [parent]
    for process in processes:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(processes, timeout=timeout)
    for process in alive:
        logger.warning("Process survived kill", pid=process.pid)


class ProgramRunner:
    """Runs external programs to completion under a timeout."""

    def __init__(
        self,
        program_output: OutputWatcher,
        poll_interval: float = 0.05,
        max_poll_interval: float = 0.5,
        kill_timeout: float = 5.0,
    ):
        self.program_output = program_output
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.kill_timeout = kill_timeout

    async def run(self, argv: Sequence[str], timeout: float) -> ProgramResult:
        """Run ``argv`` and return its exit status and captured output.

        Raises:
            HarnessTimeout: the program did not exit in time; it is killed first.
            ProgramError: the program could not be launched.
        """
        argv = [str(arg) for arg in argv]
        local_output = OutputWatcher(name=argv[0])
        start = time.monotonic()

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
            raise ProgramError(
                f"Could not launch '{argv[0]}': {e}",
                "Check client_command in the harness settings",
                {"argv": argv},
            )
        pump = OutputPump(
            process.stdout,
            [local_output, self.program_output],
            prefix=f"sh{process.pid}| ",
            name=f"pump-sh{process.pid}",
        )
        pump.start()
        logger.debug("Program started", argv=argv, pid=process.pid)

        deadline = start + timeout
        delay = self.poll_interval
        try:
            while process.poll() is None:
                if time.monotonic() >= deadline:
                    self._kill(process)
                    await pump.drain(timeout=1.0)
                    raise HarnessTimeout(
                        "run_program",
                        timeout,
                        f"Program '{argv[0]}' did not exit within {timeout}s",
                    )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_poll_interval)
        except asyncio.CancelledError:
            self._kill(process)
            raise

        await pump.drain(timeout=5.0)
        result = ProgramResult(
            argv=argv,
            exit_code=process.returncode,
            output=local_output.text(),
            duration=time.monotonic() - start,
        )
        logger.info(
            "Program exited",
            program=argv[0],
            exit_code=result.exit_code,
            duration_s=round(result.duration, 3),
        )
        return result

    def _kill(self, process: subprocess.Popen) -> None:
        kill_process_tree(process.pid)
        try:
            process.wait(timeout=self.kill_timeout)
        except subprocess.TimeoutExpired:
            logger.error("Program survived kill", pid=process.pid)


def find_free_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for an ephemeral port that is currently free."""
    import socket

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def is_port_open(host: str, port: int, timeout: float = 0.5) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    import socket

    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False
