"""Expectation primitives producing pass/fail verdicts.

Every helper raises ``AssertionFailure`` on mismatch; the first failure ends
the scenario and the scenario scope still runs cleanup.
"""

from typing import Any, Callable, Optional, Tuple, Type, Union

from .client.results import CommandResult
from .config.logging import get_logger
from .errors import AssertionFailure

logger = get_logger(__name__)

ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


def _fail(message: str, **values: Any) -> None:
    failure = AssertionFailure(message, **values)
    logger.error("Assertion failed", detail=str(failure))
    raise failure


def expect_equal(actual: Any, expected: Any, message: str = "values differ") -> None:
    if actual != expected:
        _fail(message, actual=actual, expected=expected)


def expect_not_equal(actual: Any, unexpected: Any, message: str = "values are equal") -> None:
    if actual == unexpected:
        _fail(message, actual=actual, expected=f"anything but {unexpected!r}")


def expect_true(condition: Any, message: str = "condition is false") -> None:
    if not condition:
        _fail(message, actual=condition, expected=True)


def expect_less(a: Any, b: Any, message: str = "not less") -> None:
    if not a < b:
        _fail(message, actual=a, expected=f"< {b!r}")


def expect_throws(
    operation: Callable[[], Any],
    message: str = "operation did not raise",
    exception: ExceptionTypes = Exception,
) -> BaseException:
    """Run ``operation`` and return the exception it raised."""
    try:
        value = operation()
    except AssertionFailure:
        raise
    except exception as e:
        return e
    _fail(message, actual=value, expected=f"raise {_names(exception)}")


def expect_command_worked(result: CommandResult, message: str = "command failed") -> CommandResult:
    if not result.ok:
        _fail(
            f"{message} ({result.command})",
            actual={"code": result.code, "message": result.message},
            expected="ok",
        )
    return result


def expect_command_failed(
    result: CommandResult,
    code: Optional[int] = None,
    message: str = "command unexpectedly succeeded",
) -> CommandResult:
    if result.ok:
        _fail(f"{message} ({result.command})", actual=result.payload, expected="failure")
    if code is not None and result.code != code:
        _fail(
            f"{result.command} failed with the wrong code",
            actual=result.code,
            expected=int(code),
        )
    return result


def expect_write_error(
    result: CommandResult,
    code: Optional[int] = None,
    message: str = "expected a write error",
) -> CommandResult:
    if not result.is_write_error:
        _fail(message, actual=result.to_dict(), expected="write error")
    return expect_command_failed(result, code, message)


def _names(exception: ExceptionTypes) -> str:
    if isinstance(exception, tuple):
        return " | ".join(e.__name__ for e in exception)
    return exception.__name__
