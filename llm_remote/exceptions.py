"""LLM Remote — Exception hierarchy.

All exceptions raised by the security core inherit from LLMRemoteError so
that callers can catch the full family with a single except clause when
needed.

Hierarchy:
    LLMRemoteError
    ├── ConfigurationError
    ├── SecurityError
    │   ├── IntegrityError
    │   │   └── FormatError
    │   ├── UnauthorizedIdentityError
    │   ├── InvalidPinError
    │   ├── LockedOutError
    │   ├── SessionRequiredError
    │   └── RateLimitExceededError
    └── StorageError
"""

from __future__ import annotations

import math
from typing import Any


class LLMRemoteError(Exception):
    """Base exception for all LLM Remote errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


class ConfigurationError(LLMRemoteError):
    """Settings are missing or invalid.  Raised once, at startup."""


# ---------------------------------------------------------------------------
# Security layer
# ---------------------------------------------------------------------------


class SecurityError(LLMRemoteError):
    """Base for all security-related errors."""


class IntegrityError(SecurityError):
    """A ciphertext token failed authentication.

    The message is the same for every cause (tampering,
    truncation, wrong key) so callers cannot tell which check failed.
    """

    def __init__(self, message: str = "Integrity check failed") -> None:
        super().__init__(message)


class FormatError(IntegrityError):
    """A ciphertext token is not valid canonical base64."""


class UnauthorizedIdentityError(SecurityError):
    """The identity is not on the whitelist."""

    def __init__(self, identity: int) -> None:
        super().__init__("Identity is not authorized", context={"identity": identity})
        self.identity = identity


class InvalidPinError(SecurityError):
    """The supplied PIN does not match."""

    def __init__(self, attempts: int) -> None:
        super().__init__("Invalid PIN", context={"attempts": attempts})
        self.attempts = attempts


class LockedOutError(SecurityError):
    """Too many failed attempts — the identity is inside a lockout window."""

    def __init__(self, wait_seconds: float) -> None:
        minutes = max(1, math.ceil(wait_seconds / 60))
        super().__init__(
            f"Locked out after repeated failed attempts, retry in {minutes} min",
            context={"wait_seconds": wait_seconds},
        )
        self.wait_seconds = wait_seconds


class SessionRequiredError(SecurityError):
    """The identity has no valid session."""

    def __init__(self, identity: int) -> None:
        super().__init__("Session expired or not authenticated", context={"identity": identity})
        self.identity = identity


class RateLimitExceededError(SecurityError):
    """An identity has exceeded its per-minute request limit."""

    def __init__(self, identity: int, limit: int, wait_seconds: int) -> None:
        super().__init__(
            f"Rate limit exceeded: max {limit} per minute, retry in {wait_seconds}s",
            context={"identity": identity, "limit": limit, "wait_seconds": wait_seconds},
        )
        self.identity = identity
        self.limit = limit
        self.wait_seconds = wait_seconds


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(LLMRemoteError):
    """Reading or writing a data file failed."""
