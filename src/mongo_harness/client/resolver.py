"""Connection string resolution and driven client probes.

SRV strings are never resolved here: the harness only reports the service
record a client would look up and observes the external client's exit status.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import parse_qsl, urlsplit

from pymongo.errors import PyMongoError
from pymongo.uri_parser import parse_uri

from ..config.logging import get_logger
from ..errors import ResolutionError
from ..management.process_manager import ProcessManager
from ..management.program_runner import ProgramResult
from ..management.server_config import ClientTLSOptions

logger = get_logger(__name__)

SCHEME = "mongodb://"
SRV_SCHEME = "mongodb+srv://"
SRV_SERVICE_PREFIX = "_mongodb._tcp."
INERT_SCRIPT = ("--eval", ";")


@dataclass
class ResolvedTarget:
    """One place a client would connect to."""

    host: str
    port: Optional[int] = None
    srv: bool = False
    database: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    @property
    def service_name(self) -> Optional[str]:
        return f"{SRV_SERVICE_PREFIX}{self.host}" if self.srv else None

    @property
    def address(self) -> str:
        return self.host if self.port is None else f"{self.host}:{self.port}"


class ConnectionResolver:
    """Turns connection strings into targets and probes them with the external client."""

    def __init__(self, manager: Optional[ProcessManager] = None):
        self.manager = manager

    def resolve(self, connection_string: str) -> List[ResolvedTarget]:
        if connection_string.startswith(SRV_SCHEME):
            return [self._resolve_srv(connection_string)]
        if connection_string.startswith(SCHEME):
            return self._resolve_standard(connection_string)
        raise ResolutionError(
            f"Unsupported connection string scheme: {connection_string.split(':', 1)[0]}",
            f"Use {SCHEME} or {SRV_SCHEME}",
        )

    def is_srv(self, connection_string: str) -> bool:
        return connection_string.startswith(SRV_SCHEME)

    async def probe(
        self, connection_string: str, extra_args: Sequence[str] = ()
    ) -> ProgramResult:
        """Invoke the external client against a connection string with an inert script."""
        argv = [connection_string, *extra_args, *INERT_SCRIPT]
        return await self._run_client(argv, connection_string)

    async def probe_endpoint(
        self,
        host: str,
        port: int,
        tls: Optional[ClientTLSOptions] = None,
    ) -> ProgramResult:
        argv = ["--host", host, "--port", str(port)]
        if tls is not None:
            argv += tls.to_shell_args()
        argv += list(INERT_SCRIPT)
        return await self._run_client(argv, f"{host}:{port}")

    async def _run_client(self, args: List[str], target: str) -> ProgramResult:
        if self.manager is None:
            raise ResolutionError("Probing needs a process manager to run the client")

        result = await self.manager.run_program(
            list(self.manager.settings.client_command) + args
        )
        logger.info(
            "Client probe finished",
            target=target,
            exit_code=result.exit_code,
            failed_resolution=result.failed_resolution,
        )
        return result

    def _resolve_standard(self, connection_string: str) -> List[ResolvedTarget]:
        try:
            parsed = parse_uri(connection_string)
        except (PyMongoError, ValueError) as e:
            raise ResolutionError(f"Invalid connection string: {e}")

        options = dict(parsed.get("options") or {})
        return [
            ResolvedTarget(host=host, port=port, database=parsed.get("database"), options=options)
            for host, port in parsed["nodelist"]
        ]

    def _resolve_srv(self, connection_string: str) -> ResolvedTarget:
        parts = urlsplit(connection_string)
        hostinfo = parts.netloc.rpartition("@")[2]

        if not hostinfo or "," in hostinfo:
            raise ResolutionError(
                "SRV connection strings take exactly one host name",
                details={"hosts": hostinfo},
            )
        if ":" in hostinfo:
            raise ResolutionError(
                "SRV connection strings cannot carry a port",
                details={"host": hostinfo},
            )

        host = hostinfo.rstrip(".")
        if host.count(".") < 2:
            raise ResolutionError(
                "SRV host name needs a host, a domain and a top-level domain",
                details={"host": host},
            )

        database = parts.path.lstrip("/") or None
        return ResolvedTarget(
            host=host,
            srv=True,
            database=database,
            options=dict(parse_qsl(parts.query)),
        )
