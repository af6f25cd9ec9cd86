"""Security layer — Records and decision values.

Every record here is a frozen dataclass.  Components own their tables of
these records and hand copies across boundaries; nothing outside the
owning component holds a reference it can mutate.

  - ``Session``             — one authenticated identity
  - ``FailedAttemptRecord`` — brute-force bookkeeping for one identity
  - ``AuditEntry``          — one decrypted audit line
  - ``RateDecision``        — result of a rate limiter check
  - ``AuthResult``          — result of a PIN authentication attempt
  - ``InboundRequest`` / ``AdmitDecision`` — input and output of the guard
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Session:
    """An authenticated identity.  Valid while ``now - last_activity_at <= timeout``.

    ``generation`` is the identity's revocation counter at authentication
    time; a snapshot entry whose generation is below the current counter
    belongs to a locked session and is not restored.
    """

    identity: int
    authenticated_at: float
    last_activity_at: float
    working_context: str
    generation: int = 0

    def is_expired(self, now: float, timeout: float) -> bool:
        return now - self.last_activity_at > timeout

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "generation": self.generation,
            "authenticated_at": self.authenticated_at,
            "last_activity_at": self.last_activity_at,
            "working_context": self.working_context,
        }

    @classmethod
    def from_dict(cls, identity: int, data: dict[str, Any]) -> "Session":
        """Rebuild a session stored under *identity*.

        Raises:
            ValueError: The payload names another identity, or a timestamp
                is not a finite number.
        """
        if int(data.get("identity", identity)) != identity:
            raise ValueError("session entry belongs to another identity")
        authenticated_at = float(data["authenticated_at"])
        last_activity_at = float(data["last_activity_at"])
        if not (math.isfinite(authenticated_at) and math.isfinite(last_activity_at)):
            raise ValueError("session timestamps must be finite")
        return cls(
            identity=identity,
            authenticated_at=authenticated_at,
            last_activity_at=last_activity_at,
            working_context=str(data["working_context"]),
            generation=int(data.get("generation", 0)),
        )


@dataclass(frozen=True)
class SessionInfo:
    """Read-only view of a session for status displays."""

    working_context: str
    authenticated_at: float
    last_activity_at: float
    remaining_seconds: float

    @property
    def remaining_minutes(self) -> int:
        return round(self.remaining_seconds / 60)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FailedAttemptRecord:
    """Failure count only ever grows until a successful authentication clears it."""

    count: int
    last_attempt_at: float


class AuthOutcome(str, Enum):
    SUCCESS = "success"
    UNAUTHORIZED_IDENTITY = "unauthorized_identity"
    INVALID_PIN = "invalid_pin"
    LOCKED_OUT = "locked_out"


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    attempts: int = 0
    wait_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.SUCCESS


# ---------------------------------------------------------------------------
# Guard
# ---------------------------------------------------------------------------


class ChatType(str, Enum):
    PRIVATE = "private"
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"

    @property
    def is_group(self) -> bool:
        return self in (ChatType.GROUP, ChatType.SUPERGROUP)


@dataclass(frozen=True)
class InboundRequest:
    """Transport-neutral view of one inbound chat message."""

    identity: int | None
    chat_type: ChatType = ChatType.PRIVATE
    text: str = ""
    username: str | None = None
    reply_to_bot: bool = False
    has_voice: bool = False
    has_photo: bool = False
    has_document: bool = False
    request_id: str | None = None

    @property
    def has_media(self) -> bool:
        return self.has_voice or self.has_photo or self.has_document

    @property
    def is_command(self) -> bool:
        return self.text.startswith("/")


class DenyReason(str, Enum):
    NO_IDENTITY = "no_identity"
    UNAUTHORIZED_IDENTITY = "unauthorized_identity"
    IGNORED_GROUP_MESSAGE = "ignored_group_message"
    LOCKED_OUT = "locked_out"
    NOT_AUTHENTICATED = "not_authenticated"


_SILENT_REASONS = frozenset(
    {
        DenyReason.NO_IDENTITY,
        DenyReason.UNAUTHORIZED_IDENTITY,
        DenyReason.IGNORED_GROUP_MESSAGE,
    }
)


@dataclass(frozen=True)
class AdmitDecision:
    """Outcome of :meth:`AuthGuard.admit`.

    ``text`` is the message text with any bot mention stripped.  ``reply``
    is the message to send back, or None when the denial must stay silent.
    """

    allowed: bool
    text: str = ""
    reason: DenyReason | None = None
    reply: str | None = None
    wait_seconds: float = 0.0

    @property
    def silent(self) -> bool:
        return self.reason in _SILENT_REASONS

    @classmethod
    def allow(cls, text: str) -> "AdmitDecision":
        return cls(allowed=True, text=text)

    @classmethod
    def deny(
        cls,
        reason: DenyReason,
        *,
        text: str = "",
        reply: str | None = None,
        wait_seconds: float = 0.0,
    ) -> "AdmitDecision":
        return cls(allowed=False, text=text, reason=reason, reply=reply, wait_seconds=wait_seconds)


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    remaining: int = 0
    wait_seconds: int = 0


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditEntry:
    """One audit record.  ``identity_hash`` is a keyed hash, never the raw id."""

    timestamp: str
    identity_hash: str
    action: str
    data: dict[str, Any] | None = field(default=None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "identity_hash": self.identity_hash,
            "action": self.action,
            "data": self.data,
        }


@dataclass(frozen=True)
class AuditVerification:
    total: int
    valid: int
    corrupted: int

    @property
    def intact(self) -> bool:
        return self.corrupted == 0
