"""Client-side sessions, authorization checks and connection resolution."""

from .auth_verifier import AuthVerifier
from .error_codes import ErrorCode
from .principal import (
    BASIC_USER_ROLES,
    READ_ONLY_USER_ROLES,
    ROOT_ROLES,
    SYSTEM_ROLES,
    Principal,
)
from .resolver import ConnectionResolver, ResolvedTarget
from .results import AuthResult, CommandResult, ResultKind
from .session import ClientSession, SessionState

__all__ = [
    "AuthResult",
    "AuthVerifier",
    "BASIC_USER_ROLES",
    "ClientSession",
    "CommandResult",
    "ConnectionResolver",
    "ErrorCode",
    "Principal",
    "READ_ONLY_USER_ROLES",
    "ROOT_ROLES",
    "ResolvedTarget",
    "ResultKind",
    "SYSTEM_ROLES",
    "SessionState",
]
