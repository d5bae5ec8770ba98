"""Lifecycle record for one spawned server process."""

import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import InvalidStateTransition
from .output_watcher import OutputPump, OutputWatcher
from .server_config import ServerConfig


class ProcessState(Enum):
    """Process lifecycle states."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED_TO_START = "failed_to_start"


_ALLOWED_TRANSITIONS = {
    ProcessState.STARTING: {ProcessState.RUNNING, ProcessState.FAILED_TO_START},
    ProcessState.RUNNING: {ProcessState.STOPPED},
    ProcessState.STOPPED: set(),
    ProcessState.FAILED_TO_START: set(),
}


@dataclass
class ProcessHandle:
    """One spawned server instance, owned by the process manager."""

    name: str
    config: ServerConfig
    process: subprocess.Popen
    watcher: OutputWatcher = field(default_factory=OutputWatcher)
    scenario_id: Optional[str] = None
    state: ProcessState = ProcessState.STARTING
    start_time: float = field(default_factory=time.time)
    exit_code: Optional[int] = None
    pump: Optional[OutputPump] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def host(self) -> str:
        return self.config.bind_ip

    @property
    def port(self) -> int:
        return self.config.port

    @property
    def endpoint(self) -> str:
        return self.config.endpoint

    @property
    def is_running(self) -> bool:
        return self.state is ProcessState.RUNNING

    @property
    def is_finished(self) -> bool:
        return self.state in (ProcessState.STOPPED, ProcessState.FAILED_TO_START)

    @property
    def uptime(self) -> float:
        return time.time() - self.start_time

    def transition(self, new_state: ProcessState) -> None:
        """Move to ``new_state``; each lifecycle edge is taken at most once."""
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransition(
                f"Process '{self.name}' cannot go from {self.state.value} "
                f"to {new_state.value}",
                details={"pid": self.pid, "port": self.port},
            )
        self.state = new_state

    def poll(self) -> Optional[int]:
        """Return the exit code if the process has exited."""
        code = self.process.poll()
        if code is not None:
            self.exit_code = code
        return code

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "pid": self.pid,
            "endpoint": self.endpoint,
            "dbpath": self.config.dbpath,
            "scenario_id": self.scenario_id,
            "state": self.state.value,
            "exit_code": self.exit_code,
        }
