"""Login, logout and password-change sequences checked against expected authorization state."""

from typing import Iterable, Optional

from .. import assertions
from ..config.logging import get_logger
from ..errors import AuthFailure, CommandError
from .error_codes import ErrorCode
from .principal import Principal
from .session import ClientSession

logger = get_logger(__name__)

# Commands that need an authenticated principal with privileges
PRIVILEGED_PROBES = (
    ({"getLog": "global"}, "admin"),
    ({"listDatabases": 1}, "admin"),
)


class AuthVerifier:
    """Drives authentication flows and asserts on the observed outcomes."""

    def __init__(self, attempts: int = 1):
        """Initialize verifier.

        Args:
            attempts: How many times each credential check is repeated, to
                catch stale-credential windows
        """
        self.attempts = max(1, attempts)

    def create_principal(self, admin_session: ClientSession, principal: Principal) -> Principal:
        result = admin_session.create_user(principal)
        assertions.expect_command_worked(result, f"createUser {principal.qualified_name}")
        logger.info(
            "Principal created",
            user=principal.qualified_name,
            roles=list(principal.roles),
        )
        return principal

    def verify_login(self, session: ClientSession, principal: Principal) -> None:
        for _ in range(self.attempts):
            outcome = session.authenticate_principal(principal)
            assertions.expect_true(
                outcome.ok, f"auth failed for {principal.qualified_name}"
            )
        assertions.expect_true(
            principal.qualified_name in session.state.authenticated_names,
            f"{principal.qualified_name} missing from session state",
        )

    def verify_login_rejected(
        self,
        session: ClientSession,
        username: str,
        password: str,
        database: str = "test",
    ) -> None:
        """Bad credentials fail with the documented code, whatever the reason."""
        before = list(session.state.authenticated_names)
        for _ in range(self.attempts):
            outcome = session.authenticate(username, password, database)
            assertions.expect_true(
                not outcome.ok, f"auth succeeded with wrong password for {username}@{database}"
            )
            assertions.expect_equal(
                outcome.code,
                ErrorCode.AUTHENTICATION_FAILED,
                "rejected login returned an unexpected code",
            )
        assertions.expect_equal(
            session.state.authenticated_names,
            before,
            "rejected login changed the session principals",
        )

    def verify_password_change(
        self,
        session: ClientSession,
        principal: Principal,
        new_password: str,
        verifier_session: Optional[ClientSession] = None,
    ) -> Principal:
        """Change a password and prove only the new secret works from then on.

        ``verifier_session`` is used for the login checks so that they do not
        disturb the acting session; defaults to the acting session.
        """
        result = session.change_password(principal.username, new_password, principal.database)
        assertions.expect_command_worked(result, f"updateUser {principal.qualified_name}")

        updated = principal.with_password(new_password)
        checker = verifier_session or session
        self.verify_login_rejected(
            checker, principal.username, principal.password, principal.database
        )
        self.verify_login(checker, updated)
        return updated

    def verify_unauthorized(
        self,
        session: ClientSession,
        commands: Iterable = PRIVILEGED_PROBES,
    ) -> None:
        """Each ``(command, database)`` pair must fail with Unauthorized."""
        for command, database in commands:
            result = session.run(command, database)
            assertions.expect_command_failed(result, ErrorCode.UNAUTHORIZED)

    def verify_read_denied(self, session: ClientSession, collection: str, database: str = "test") -> None:
        error = assertions.expect_throws(
            lambda: session.find_one(collection, database=database),
            "read without login",
            CommandError,
        )
        assertions.expect_equal(error.code, ErrorCode.UNAUTHORIZED, "read without login code")

    def verify_read_only(
        self,
        session: ClientSession,
        collection: str,
        expected_count: int,
        database: str = "test",
        batch_size: int = 101,
    ) -> None:
        """Reads succeed, writes fail as write errors, and nothing changes."""
        assertions.expect_equal(session.count(collection, database=database), expected_count, "read-only count")

        scan = assertions.expect_command_worked(
            session.find_all(collection, database=database, batch_size=batch_size)
        )
        assertions.expect_equal(
            len(scan.payload["documents"]), expected_count, "read-only full scan"
        )
        if expected_count > batch_size:
            assertions.expect_less(1, scan.payload["batches"], "scan never issued getMore")

        assertions.expect_command_worked(session.run({"isMaster": 1}, database))

        write = session.insert(collection, [{}], database)
        assertions.expect_write_error(write)

        assertions.expect_equal(
            session.count(collection, database=database),
            expected_count,
            "read-only write changed the collection",
        )

    def verify_reauthentication(
        self,
        session: ClientSession,
        first: Principal,
        second: Principal,
    ) -> None:
        """Authenticate two principals and assert the target's multi-auth behaviour."""
        self.verify_login(session, first)

        if session.supports_multi_auth:
            outcome = session.authenticate_principal(second)
            assertions.expect_true(outcome.ok, f"layered auth failed for {second.qualified_name}")
            assertions.expect_equal(
                session.state.authenticated_names[-2:],
                [first.qualified_name, second.qualified_name],
                "layered principals",
            )
            return

        error = assertions.expect_throws(
            lambda: session.authenticate_principal(second),
            "second principal accepted on a single-auth session",
            AuthFailure,
        )
        assertions.expect_true(error.already_authenticated, "expected an already-authenticated failure")
        assertions.expect_equal(
            session.state.authenticated_names,
            [first.qualified_name],
            "single-auth session principals",
        )

    def verify_profiled_user(
        self,
        session: ClientSession,
        principal: Principal,
        collection: str,
    ) -> int:
        """Profile one count and check the profiler attributes it to ``principal``."""
        database = principal.database
        assertions.expect_command_worked(session.set_profiling_level(2, database))
        session.count(collection, database=database)
        assertions.expect_command_worked(session.set_profiling_level(0, database))

        entries = session.profile_count({"user": principal.qualified_name}, database)
        assertions.expect_less(0, entries, f"no profile entries for {principal.qualified_name}")
        return entries
