"""Structured outcomes of commands and authentication attempts."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import CommandError
from .error_codes import WRITE_ERROR_FIELDS


class ResultKind(Enum):
    """Which path produced a result."""

    COMMAND = "command"
    WRITE = "write"


@dataclass
class CommandResult:
    """Either a success payload or a failure ``{code, message}``, never both."""

    payload: Optional[Dict[str, Any]] = None
    code: Optional[int] = None
    message: Optional[str] = None
    kind: ResultKind = ResultKind.COMMAND
    command: Optional[str] = None

    def __post_init__(self):
        has_payload = self.payload is not None
        has_failure = self.code is not None or self.message is not None
        if has_payload == has_failure:
            raise ValueError(
                "CommandResult needs exactly one of payload or failure descriptor"
            )

    @classmethod
    def success(
        cls,
        payload: Dict[str, Any],
        kind: ResultKind = ResultKind.COMMAND,
        command: Optional[str] = None,
    ) -> "CommandResult":
        return cls(payload=payload, kind=kind, command=command)

    @classmethod
    def failure(
        cls,
        code: Optional[int],
        message: str,
        kind: ResultKind = ResultKind.COMMAND,
        command: Optional[str] = None,
    ) -> "CommandResult":
        return cls(code=code, message=message or "unknown error", kind=kind, command=command)

    @classmethod
    def from_reply(
        cls,
        reply: Dict[str, Any],
        kind: ResultKind = ResultKind.COMMAND,
        command: Optional[str] = None,
    ) -> "CommandResult":
        """Interpret a raw server reply, including write errors nested in it."""
        if kind is ResultKind.WRITE:
            for error_field in WRITE_ERROR_FIELDS:
                errors = reply.get(error_field)
                if errors:
                    first = errors[0] if isinstance(errors, list) else errors
                    return cls.failure(
                        first.get("code"), first.get("errmsg", ""), kind, command
                    )

        if reply.get("ok", 1) in (0, 0.0, False):
            return cls.failure(reply.get("code"), reply.get("errmsg", ""), kind, command)
        return cls.success(reply, kind, command)

    @property
    def ok(self) -> bool:
        return self.payload is not None

    @property
    def is_write_error(self) -> bool:
        return not self.ok and self.kind is ResultKind.WRITE

    def raise_for_error(self) -> "CommandResult":
        if not self.ok:
            raise CommandError(self.code, self.message, self.command)
        return self

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "kind": self.kind.value, "payload": self.payload}
        return {
            "ok": False,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class AuthResult:
    """Outcome of one authentication attempt."""

    ok: bool
    username: str
    database: str
    code: Optional[int] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.ok
