"""Security layer — Cipher engine, sessions, guard, rate limiting, audit trail."""

from llm_remote.security.audit import AuditEvent, AuditLog
from llm_remote.security.cipher import CipherEngine, generate_master_passphrase
from llm_remote.security.guard import AuthGuard, lockout_duration, lockout_remaining
from llm_remote.security.manager import SecurityManager
from llm_remote.security.models import (
    AdmitDecision,
    AuditEntry,
    AuditVerification,
    AuthOutcome,
    AuthResult,
    ChatType,
    DenyReason,
    FailedAttemptRecord,
    InboundRequest,
    RateDecision,
    Session,
    SessionInfo,
)
from llm_remote.security.rate_limiter import RateLimiter
from llm_remote.security.session import SessionStore

__all__ = [
    # Components
    "CipherEngine",
    "SessionStore",
    "AuthGuard",
    "RateLimiter",
    "AuditLog",
    "SecurityManager",
    # Helpers
    "generate_master_passphrase",
    "lockout_duration",
    "lockout_remaining",
    "AuditEvent",
    # Records
    "Session",
    "SessionInfo",
    "FailedAttemptRecord",
    "AuditEntry",
    "AuditVerification",
    "RateDecision",
    "AuthOutcome",
    "AuthResult",
    "ChatType",
    "InboundRequest",
    "DenyReason",
    "AdmitDecision",
]
