"""Security layer — SecurityManager aggregate.

Single object handed to the command layer, grouping all security
subsystems:

    - ``cipher``       — authenticated encryption and keyed hashing
    - ``sessions``     — PIN authentication, session expiry, working context
    - ``guard``        — whitelist, group filter, lockout and session gate
    - ``rate_limiter`` — per-identity sliding-window admission
    - ``audit``        — encrypted append-only audit trail

Each component owns its own state; the manager only wires them together
and adds the audit records the command layer needs around login, logout
and rate limiting.

Usage::

    settings = Settings.load()
    security = SecurityManager.from_settings(settings)
    result = security.login(user_id, pin)
    decision = security.admit(request)
    security.shutdown()
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Callable

from llm_remote.config import Settings
from llm_remote.exceptions import (
    InvalidPinError,
    LockedOutError,
    SessionRequiredError,
    UnauthorizedIdentityError,
)
from llm_remote.logging import bind_request_context, get_logger
from llm_remote.security.audit import AuditEvent, AuditLog
from llm_remote.security.cipher import CipherEngine
from llm_remote.security.guard import AuthGuard
from llm_remote.security.models import (
    AdmitDecision,
    AuthOutcome,
    AuthResult,
    InboundRequest,
    RateDecision,
)
from llm_remote.security.rate_limiter import RateLimiter
from llm_remote.security.session import SessionStore

log = get_logger(__name__)


@dataclass
class SecurityManager:
    """Aggregate of the five security components."""

    cipher: CipherEngine
    sessions: SessionStore
    guard: AuthGuard
    rate_limiter: RateLimiter
    audit: AuditLog

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        cipher: CipherEngine | None = None,
        clock: Callable[[], float] = time.time,
    ) -> "SecurityManager":
        """Build every component from *settings*.

        Pass an existing *cipher* to skip the slow key derivation.

        Raises:
            ConfigurationError: The master passphrase is too short.
        """
        cipher = cipher or CipherEngine(settings.crypto.master_password)
        auth = settings.auth
        sessions = SessionStore(
            authorized_users=auth.authorized_users,
            pin=auth.pin,
            session_timeout=auth.session_timeout_seconds,
            default_working_context=auth.default_work_dir,
            snapshot_path=settings.paths.sessions_path,
            cipher=cipher if settings.security.encrypt_session_snapshot else None,
            snapshot_interval=settings.security.snapshot_interval_seconds,
            clock=clock,
        )
        guard = AuthGuard(
            sessions,
            bot_username=settings.bot.username,
            threshold=auth.lockout_threshold,
            lockout_base=auth.lockout_base_seconds,
            lockout_cap=auth.lockout_max_seconds,
            clock=clock,
        )
        rate_limiter = RateLimiter(settings.security.rate_limit_per_minute, clock=clock)
        audit = AuditLog(cipher, settings.paths.audit_path, clock=clock)
        log.info(
            "security_initialized",
            authorized_users=len(auth.authorized_users),
            session_timeout_minutes=auth.session_timeout_minutes,
            rate_limit_per_minute=rate_limiter.limit,
        )
        return cls(
            cipher=cipher,
            sessions=sessions,
            guard=guard,
            rate_limiter=rate_limiter,
            audit=audit,
        )

    # ------------------------------------------------------------------
    # Request flow
    # ------------------------------------------------------------------

    def admit(self, request: InboundRequest) -> AdmitDecision:
        """Bind the request to the logging context, then run the guard.

        The context stays bound for the rest of the task, so handler logs
        carry the same ``request_id``.
        """
        bind_request_context(
            request_id=request.request_id or uuid.uuid4().hex[:12],
            chat_type=request.chat_type.value,
        )
        decision = self.guard.admit(request)
        if not decision.allowed and not decision.silent:
            log.info("request_denied", identity=request.identity, reason=decision.reason.value)
        return decision

    def login(self, identity: int, pin: str) -> AuthResult:
        """Run the /auth flow and audit the outcome."""
        result = self.guard.authenticate(identity, pin)
        if result.outcome is AuthOutcome.UNAUTHORIZED_IDENTITY:
            # Logged only; strangers never reach the audit file.
            log.warning("auth_unauthorized_identity", identity=identity)
        elif result.outcome is AuthOutcome.SUCCESS:
            self.audit.record(identity, AuditEvent.AUTH_SUCCESS)
            log.info("auth_success", identity=identity)
        elif result.outcome is AuthOutcome.INVALID_PIN:
            self.audit.record(identity, AuditEvent.AUTH_FAILED, {"attempt": result.attempts})
        else:
            self.audit.record(
                identity,
                AuditEvent.AUTH_LOCKED_OUT,
                {"attempt": result.attempts, "wait_seconds": round(result.wait_seconds)},
            )
        return result

    def login_or_raise(self, identity: int, pin: str) -> None:
        """Run :meth:`login` and raise on anything but success.

        Raises:
            UnauthorizedIdentityError: *identity* is not whitelisted.
            InvalidPinError: Wrong PIN; carries the cumulative attempt count.
            LockedOutError: The identity is inside a lockout window.
        """
        result = self.login(identity, pin)
        if result.outcome is AuthOutcome.UNAUTHORIZED_IDENTITY:
            raise UnauthorizedIdentityError(identity)
        if result.outcome is AuthOutcome.INVALID_PIN:
            raise InvalidPinError(result.attempts)
        if result.outcome is AuthOutcome.LOCKED_OUT:
            raise LockedOutError(result.wait_seconds)

    def logout(self, identity: int) -> None:
        self.sessions.lock(identity)
        self.audit.record(identity, AuditEvent.SESSION_LOCKED)

    def check_rate(self, identity: int) -> RateDecision:
        decision = self.rate_limiter.check(identity)
        if not decision.allowed:
            self.audit.record(identity, AuditEvent.RATE_LIMITED, {"wait_seconds": decision.wait_seconds})
        return decision

    def require_session(self, identity: int) -> None:
        """Raise :class:`SessionRequiredError` unless *identity* has a valid session."""
        if not self.sessions.is_authenticated(identity):
            raise SessionRequiredError(identity)

    def shutdown(self) -> None:
        self.sessions.lock_all()
        log.info("security_shutdown")
