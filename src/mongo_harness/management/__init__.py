"""Server process lifecycle management."""

from .output_watcher import OutputPump, OutputWatcher
from .process_handle import ProcessHandle, ProcessState
from .process_manager import LOCK_CONTENTION_SIGNATURES, ProcessManager
from .program_runner import ExitCode, ProgramResult, ProgramRunner
from .scenario_registry import ScenarioRegistry
from .server_config import ClientTLSOptions, ServerConfig, ServerTLSOptions, TLSMode

__all__ = [
    "ClientTLSOptions",
    "ExitCode",
    "LOCK_CONTENTION_SIGNATURES",
    "OutputPump",
    "OutputWatcher",
    "ProcessHandle",
    "ProcessManager",
    "ProcessState",
    "ProgramResult",
    "ProgramRunner",
    "ScenarioRegistry",
    "ServerConfig",
    "ServerTLSOptions",
    "TLSMode",
]
