"""Server error codes the harness treats as contract constants."""

from enum import IntEnum


class ErrorCode(IntEnum):
    """Numeric server error codes asserted on by scenarios."""

    UNAUTHORIZED = 13
    AUTHENTICATION_FAILED = 18
    ILLEGAL_OPERATION = 20
    NAMESPACE_NOT_FOUND = 26
    USER_NOT_FOUND = 11


# Error labels that only show up on write paths
WRITE_ERROR_FIELDS = ("writeErrors", "writeConcernError")
