"""Client sessions against a running server, built on pymongo."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from pymongo import MongoClient
from pymongo.errors import (
    ConfigurationError as DriverConfigurationError,
    ConnectionFailure,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
)

from ..config.logging import get_logger
from ..config.settings import HarnessSettings
from ..errors import AuthFailure, ConfigurationError, ConnectError, HarnessError, HarnessTimeout
from ..management.server_config import ClientTLSOptions
from .principal import Principal
from .results import AuthResult, CommandResult, ResultKind

logger = get_logger(__name__)

ClientFactory = Callable[..., Any]

DEFAULT_BATCH_SIZE = 101


@dataclass
class AuthenticatedPrincipal:
    """A principal the server accepted on this session."""

    username: str
    database: str
    client: Any = field(repr=False, compare=False)

    @property
    def qualified_name(self) -> str:
        return f"{self.username}@{self.database}"


@dataclass
class SessionState:
    """Principals currently authenticated on a session, oldest first."""

    principals: List[AuthenticatedPrincipal] = field(default_factory=list)
    last_result: Optional[CommandResult] = None

    @property
    def authenticated_names(self) -> List[str]:
        return [p.qualified_name for p in self.principals]

    @property
    def is_authenticated(self) -> bool:
        return bool(self.principals)

    def find(self, username: str, database: str) -> Optional[AuthenticatedPrincipal]:
        for principal in self.principals:
            if principal.username == username and principal.database == database:
                return principal
        return None


def parse_endpoint(endpoint: str) -> Tuple[str, int]:
    """Split ``host:port`` (IPv6 hosts in brackets)."""
    host, sep, port = endpoint.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigurationError(f"Invalid endpoint '{endpoint}'", {"endpoint": endpoint})
    return host.strip("[]"), int(port)


class ClientSession:
    """One connection to a running server and the principals authenticated on it.

    ``supports_multi_auth`` states whether the target lets several principals be
    authenticated at once. When it is off, authenticating a second, different
    principal raises ``AuthFailure`` with ``already_authenticated`` set.
    """

    def __init__(
        self,
        endpoint: str,
        tls: Optional[ClientTLSOptions] = None,
        settings: Optional[HarnessSettings] = None,
        supports_multi_auth: bool = False,
        client_factory: ClientFactory = MongoClient,
    ):
        self.endpoint = endpoint
        self.host, self.port = parse_endpoint(endpoint)
        self.tls = tls
        self.settings = settings or HarnessSettings()
        self.supports_multi_auth = supports_multi_auth
        self.client_factory = client_factory
        self.state = SessionState()
        self._base_client = None

    @classmethod
    def connect(
        cls,
        endpoint: str,
        tls: Optional[ClientTLSOptions] = None,
        settings: Optional[HarnessSettings] = None,
        supports_multi_auth: bool = False,
        client_factory: ClientFactory = MongoClient,
    ) -> "ClientSession":
        """Open a session and complete the handshake, or raise ``ConnectError``."""
        session = cls(endpoint, tls, settings, supports_multi_auth, client_factory)
        session.open()
        return session

    def open(self) -> None:
        client = self._new_client()
        try:
            client["admin"].command("ping")
        except PyMongoError as e:
            client.close()
            raise self._translate(e, "connect")
        self._base_client = client
        logger.debug("Session connected", endpoint=self.endpoint, tls=self.tls is not None)

    @property
    def connected(self) -> bool:
        return self._base_client is not None

    def close(self) -> None:
        for principal in self.state.principals:
            principal.client.close()
        self.state.principals.clear()
        if self._base_client is not None:
            self._base_client.close()
            self._base_client = None

    def __enter__(self) -> "ClientSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Authentication

    def authenticate(self, username: str, password: str, database: str = "admin") -> AuthResult:
        """Authenticate a principal; credential mismatches return a failed result."""
        self._require_connected()

        others = [
            p
            for p in self.state.principals
            if (p.username, p.database) != (username, database)
        ]
        if others and not self.supports_multi_auth:
            raise AuthFailure(
                f"Session already authenticated as {others[-1].qualified_name}",
                already_authenticated=True,
            )

        client = self._new_client(username=username, password=password, auth_source=database)
        try:
            client[database].command("connectionStatus")
        except OperationFailure as e:
            client.close()
            logger.info(
                "Authentication rejected",
                user=f"{username}@{database}",
                code=e.code,
            )
            return AuthResult(
                ok=False,
                username=username,
                database=database,
                code=e.code,
                message=_errmsg(e),
            )
        except PyMongoError as e:
            client.close()
            raise self._translate(e, "authenticate")

        existing = self.state.find(username, database)
        if existing is not None:
            existing.client.close()
            self.state.principals.remove(existing)
        self.state.principals.append(AuthenticatedPrincipal(username, database, client))

        logger.info("Authenticated", user=f"{username}@{database}", endpoint=self.endpoint)
        return AuthResult(ok=True, username=username, database=database)

    def authenticate_principal(self, principal: Principal) -> AuthResult:
        return self.authenticate(principal.username, principal.password, principal.database)

    def logout(self, database: Optional[str] = None) -> bool:
        """Drop the most recent principal, or the one authenticated on ``database``."""
        for principal in reversed(self.state.principals):
            if database is None or principal.database == database:
                principal.client.close()
                self.state.principals.remove(principal)
                logger.info("Logged out", user=principal.qualified_name)
                return True
        return False

    # Commands

    def run(
        self,
        command: Dict[str, Any],
        database: str = "test",
        kind: ResultKind = ResultKind.COMMAND,
        session: Any = None,
    ) -> CommandResult:
        """Execute a command in the current authentication context.

        Server-side failures come back as failed results; transport failures raise.
        """
        self._require_connected()
        name = next(iter(command))

        try:
            if session is not None:
                reply = self._active_client()[database].command(command, session=session)
            else:
                reply = self._active_client()[database].command(command)
        except OperationFailure as e:
            result = CommandResult.failure(e.code, _errmsg(e), kind, name)
        except PyMongoError as e:
            raise self._translate(e, name)
        else:
            result = CommandResult.from_reply(reply, kind, name)

        self.state.last_result = result
        if not result.ok:
            logger.debug("Command failed", command=name, code=result.code, kind=kind.value)
        return result

    def insert(
        self, collection: str, documents: List[Dict[str, Any]], database: str = "test"
    ) -> CommandResult:
        return self.run(
            {"insert": collection, "documents": list(documents)},
            database,
            kind=ResultKind.WRITE,
        )

    def find_all(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        database: str = "test",
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> CommandResult:
        """Full scan following the cursor through ``getMore`` continuations.

        The success payload is ``{"documents": [...], "batches": n}``.
        """
        client = self._active_client()
        with client.start_session() as driver_session:
            first = self.run(
                {"find": collection, "filter": filter or {}, "batchSize": batch_size},
                database,
                session=driver_session,
            )
            if not first.ok:
                return first

            cursor = first.payload["cursor"]
            documents = list(cursor["firstBatch"])
            cursor_id = cursor["id"]
            batches = 1

            while cursor_id:
                more = self.run(
                    {"getMore": cursor_id, "collection": collection, "batchSize": batch_size},
                    database,
                    session=driver_session,
                )
                if not more.ok:
                    return more
                cursor = more.payload["cursor"]
                documents.extend(cursor["nextBatch"])
                cursor_id = cursor["id"]
                batches += 1

        result = CommandResult.success({"documents": documents, "batches": batches}, command="find")
        self.state.last_result = result
        return result

    def find_one(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        database: str = "test",
    ) -> Optional[Dict[str, Any]]:
        """Point read; raises ``CommandError`` when the server refuses it."""
        result = self.run(
            {"find": collection, "filter": filter or {}, "limit": 1, "singleBatch": True},
            database,
        ).raise_for_error()
        batch = result.payload["cursor"]["firstBatch"]
        return batch[0] if batch else None

    def count(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        database: str = "test",
    ) -> int:
        """Document count; raises ``CommandError`` when the server refuses it."""
        result = self.run({"count": collection, "query": filter or {}}, database)
        return int(result.raise_for_error().payload["n"])

    def create_user(self, principal: Principal) -> CommandResult:
        return self.run(principal.create_user_command(), principal.database)

    def drop_all_users(self, database: str = "test") -> CommandResult:
        return self.run({"dropAllUsersFromDatabase": 1}, database)

    def change_password(
        self, username: str, new_password: str, database: str = "test"
    ) -> CommandResult:
        return self.run({"updateUser": username, "pwd": new_password}, database)

    def set_profiling_level(self, level: int, database: str = "test") -> CommandResult:
        return self.run({"profile": level}, database)

    def profile_count(
        self, filter: Optional[Dict[str, Any]] = None, database: str = "test"
    ) -> int:
        return self.count("system.profile", filter, database)

    def shutdown_server(self, force: bool = False) -> CommandResult:
        """Ask the server to exit. A dropped connection counts as success."""
        self._require_connected()
        try:
            reply = self._active_client()["admin"].command({"shutdown": 1, "force": force})
        except OperationFailure as e:
            return CommandResult.failure(e.code, _errmsg(e), command="shutdown")
        except ConnectionFailure:
            return CommandResult.success({"ok": 1, "connectionClosed": True}, command="shutdown")
        return CommandResult.from_reply(reply, command="shutdown")

    # Internals

    def _require_connected(self) -> None:
        if self._base_client is None:
            raise ConnectError(
                f"Session to {self.endpoint} is not connected",
                "Call ClientSession.connect() before issuing commands",
            )

    def _active_client(self):
        if self.state.principals:
            return self.state.principals[-1].client
        return self._base_client

    def _new_client(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        auth_source: Optional[str] = None,
    ):
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "directConnection": True,
            "serverSelectionTimeoutMS": self.settings.connect_timeout_ms,
            "connectTimeoutMS": self.settings.connect_timeout_ms,
            "socketTimeoutMS": self.settings.command_timeout_ms,
        }
        if self.tls is not None:
            kwargs.update(self.tls.to_driver_kwargs())
        if username is not None:
            kwargs.update(username=username, password=password, authSource=auth_source)

        try:
            return self.client_factory(**kwargs)
        except DriverConfigurationError as e:
            raise ConfigurationError(f"Invalid client configuration: {e}", {"endpoint": self.endpoint})

    def _translate(self, error: PyMongoError, operation: str) -> HarnessError:
        if isinstance(error, ServerSelectionTimeoutError):
            return ConnectError(
                f"Could not connect to {self.endpoint}: {error}",
                "The server is down or rejected the handshake",
                {"operation": operation, "tls": self.tls is not None},
            )
        if isinstance(error, (NetworkTimeout, ExecutionTimeout)):
            return HarnessTimeout(operation, self.settings.command_timeout_ms / 1000.0)
        if isinstance(error, ConnectionFailure):
            return ConnectError(
                f"Connection to {self.endpoint} failed during {operation}: {error}",
                details={"operation": operation},
            )
        return HarnessError(f"Driver error during {operation}: {error}")


def _errmsg(error: OperationFailure) -> str:
    details = error.details or {}
    return details.get("errmsg") or str(error)
