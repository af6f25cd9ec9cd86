"""Security layer — Authentication guard.

The AuthGuard is the single entry gate for inbound requests.  It runs
before every command handler — no exception.

Checks performed (in order):
  1. Whitelist              — silent drop for unknown identities
  2. Group filter           — only commands, mentions, replies to the bot, media
  3. Brute-force lockout    — exponential backoff after repeated PIN failures
  4. Open commands          — /start, /help and /auth need no session
  5. Session presence       — everything else needs a valid session (touched on pass)

Lockout
-------
After ``threshold`` failures the identity is locked for ``base`` seconds,
anchored at the most recent failure.  Every further block of
``threshold`` failures doubles the window, up to ``cap``.  Leaving the
window does not reset the count; only a successful authentication does.
"""

from __future__ import annotations

import math
import time
from typing import Callable

from llm_remote.logging import get_logger
from llm_remote.security.models import (
    AdmitDecision,
    AuthOutcome,
    AuthResult,
    DenyReason,
    FailedAttemptRecord,
    InboundRequest,
)
from llm_remote.security.session import SessionStore

log = get_logger(__name__)

LOCKOUT_THRESHOLD = 5
LOCKOUT_BASE_SECONDS = 15 * 60.0
LOCKOUT_MAX_SECONDS = 24 * 60 * 60.0

_OPEN_COMMANDS = ("/start", "/help")
_AUTH_COMMAND = "/auth"

# 2**32 doublings is far past any cap.
_MAX_DOUBLINGS = 32


def lockout_duration(
    count: int,
    *,
    threshold: int = LOCKOUT_THRESHOLD,
    base: float = LOCKOUT_BASE_SECONDS,
    cap: float = LOCKOUT_MAX_SECONDS,
) -> float:
    """Lockout window in seconds for *count* cumulative failures (0 below threshold)."""
    if count < threshold:
        return 0.0
    doublings = min((count - threshold) // threshold, _MAX_DOUBLINGS)
    return min(base * (2**doublings), cap)


def lockout_remaining(
    record: FailedAttemptRecord | None,
    now: float,
    *,
    threshold: int = LOCKOUT_THRESHOLD,
    base: float = LOCKOUT_BASE_SECONDS,
    cap: float = LOCKOUT_MAX_SECONDS,
) -> float:
    """Seconds left in the lockout window, 0.0 if not locked."""
    if record is None:
        return 0.0
    duration = lockout_duration(record.count, threshold=threshold, base=base, cap=cap)
    return max(0.0, duration - (now - record.last_attempt_at))


class AuthGuard:
    """Composes whitelist, lockout and session checks into one decision.

    Usage::

        guard = AuthGuard(session_store, bot_username="my_bot")
        decision = guard.admit(request)
        if not decision.allowed:
            if decision.reply:
                await reply(decision.reply)
            return
        await handle(decision.text)
    """

    def __init__(
        self,
        sessions: SessionStore,
        *,
        bot_username: str | None = None,
        threshold: int = LOCKOUT_THRESHOLD,
        lockout_base: float = LOCKOUT_BASE_SECONDS,
        lockout_cap: float = LOCKOUT_MAX_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions = sessions
        self._mention = f"@{bot_username.lstrip('@')}" if bot_username else None
        self._threshold = threshold
        self._base = lockout_base
        self._cap = lockout_cap
        self._clock = clock
        self._failed: dict[int, FailedAttemptRecord] = {}

    @property
    def threshold(self) -> int:
        return self._threshold

    # ------------------------------------------------------------------
    # Request admission
    # ------------------------------------------------------------------

    def admit(self, request: InboundRequest) -> AdmitDecision:
        """Decide whether *request* may reach a command handler."""
        identity = request.identity
        if identity is None:
            return AdmitDecision.deny(DenyReason.NO_IDENTITY)

        if not self._sessions.is_whitelisted(identity):
            if not request.chat_type.is_group:
                log.warning("unauthorized_identity_blocked", identity=identity, username=request.username)
            return AdmitDecision.deny(DenyReason.UNAUTHORIZED_IDENTITY)

        text = request.text
        if request.chat_type.is_group:
            if not self._addresses_bot(request):
                return AdmitDecision.deny(DenyReason.IGNORED_GROUP_MESSAGE)
            text = self._strip_mention(text)

        remaining = self.lockout_remaining(identity)
        if remaining > 0:
            minutes = math.ceil(remaining / 60)
            return AdmitDecision.deny(
                DenyReason.LOCKED_OUT,
                text=text,
                reply=f"Locked after too many failed attempts. Try again in {minutes} min.",
                wait_seconds=remaining,
            )

        if self._is_open_command(text):
            return AdmitDecision.allow(text)

        if not self._sessions.is_authenticated(identity):
            return AdmitDecision.deny(
                DenyReason.NOT_AUTHENTICATED,
                text=text,
                reply="Session expired or not authenticated.\nUse /auth <PIN> to sign in.",
            )

        self._sessions.touch(identity)
        return AdmitDecision.allow(text)

    # ------------------------------------------------------------------
    # PIN authentication
    # ------------------------------------------------------------------

    def authenticate(self, identity: int, pin: str) -> AuthResult:
        """The /auth flow: whitelist, lockout, PIN, then failure bookkeeping.

        The failure that reaches the threshold already reports LOCKED_OUT.
        """
        if not self._sessions.is_whitelisted(identity):
            return AuthResult(AuthOutcome.UNAUTHORIZED_IDENTITY)

        remaining = self.lockout_remaining(identity)
        if remaining > 0:
            attempts = self._failed[identity].count
            return AuthResult(AuthOutcome.LOCKED_OUT, attempts=attempts, wait_seconds=remaining)

        result = self._sessions.authenticate(identity, pin)
        if result.ok:
            self.clear_failed_auth(identity)
            return result

        attempts = self.record_failed_auth(identity)
        log.warning("auth_failed", identity=identity, attempt=attempts)
        remaining = self.lockout_remaining(identity)
        if remaining > 0:
            return AuthResult(AuthOutcome.LOCKED_OUT, attempts=attempts, wait_seconds=remaining)
        return AuthResult(AuthOutcome.INVALID_PIN, attempts=attempts)

    # ------------------------------------------------------------------
    # Failure bookkeeping
    # ------------------------------------------------------------------

    def record_failed_auth(self, identity: int) -> int:
        """Count one failure for *identity*.  Returns the new cumulative count."""
        previous = self._failed.get(identity)
        count = (previous.count if previous else 0) + 1
        self._failed[identity] = FailedAttemptRecord(count=count, last_attempt_at=self._clock())
        if count >= self._threshold:
            log.warning("identity_locked_out", identity=identity, attempts=count)
        return count

    def clear_failed_auth(self, identity: int) -> None:
        self._failed.pop(identity, None)

    def failed_attempts(self, identity: int) -> FailedAttemptRecord | None:
        return self._failed.get(identity)

    def lockout_remaining(self, identity: int) -> float:
        return lockout_remaining(
            self._failed.get(identity),
            self._clock(),
            threshold=self._threshold,
            base=self._base,
            cap=self._cap,
        )

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _addresses_bot(self, request: InboundRequest) -> bool:
        if request.is_command or request.reply_to_bot or request.has_media:
            return True
        return self._mention is not None and self._mention in request.text

    def _strip_mention(self, text: str) -> str:
        if self._mention is None:
            return text
        return text.replace(self._mention, "").strip()

    @staticmethod
    def _is_open_command(text: str) -> bool:
        command = text.split(maxsplit=1)[0] if text.strip() else ""
        if command in _OPEN_COMMANDS:
            return True
        return command == _AUTH_COMMAND and len(text.split(maxsplit=1)) == 2
