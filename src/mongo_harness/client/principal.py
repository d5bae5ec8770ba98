"""Principals known to a test and the role vocabulary passed to the server."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Tuple

ROOT_ROLES: Tuple[str, ...] = ("root",)
SYSTEM_ROLES: Tuple[str, ...] = ("__system",)
BASIC_USER_ROLES: Tuple[str, ...] = ("dbOwner",)
READ_ONLY_USER_ROLES: Tuple[str, ...] = ("read",)


@dataclass(frozen=True)
class Principal:
    """A user the test created, with the secret it expects to be valid.

    The server holds the authoritative state; this is only the expectation.
    """

    username: str
    password: str = field(repr=False)
    roles: Tuple[str, ...] = BASIC_USER_ROLES
    database: str = "test"

    @property
    def qualified_name(self) -> str:
        return f"{self.username}@{self.database}"

    def with_password(self, password: str) -> "Principal":
        return replace(self, password=password)

    def create_user_command(self) -> Dict[str, Any]:
        return {
            "createUser": self.username,
            "pwd": self.password,
            "roles": list(self.roles),
        }
