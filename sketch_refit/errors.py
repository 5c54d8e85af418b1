"""Failure taxonomy for the refit engines.

Helpers raise these; public entry points catch them and hand back a result
object with ``ok=False`` so nothing escapes to the caller.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    DOMAIN_VIOLATION = "domain_violation"
    SINGULAR_SYSTEM = "singular_system"
    UNSUPPORTED_COMMAND = "unsupported_command"
    UNKNOWN_RULE = "unknown_rule"


class RefitError(Exception):
    kind: ErrorKind = ErrorKind.INSUFFICIENT_DATA

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InsufficientDataError(RefitError):
    kind = ErrorKind.INSUFFICIENT_DATA


class DomainViolationError(RefitError):
    kind = ErrorKind.DOMAIN_VIOLATION


class SingularSystemError(RefitError):
    kind = ErrorKind.SINGULAR_SYSTEM


class UnsupportedCommandError(RefitError):
    kind = ErrorKind.UNSUPPORTED_COMMAND


class UnknownRuleError(RefitError):
    kind = ErrorKind.UNKNOWN_RULE
