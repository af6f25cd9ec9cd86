"""Security layer — Session store.

Holds one session per authenticated identity.  Expiry is lazy: a session
is checked (and dropped) when it is next looked at, never by a background
sweep.

Snapshot file
-------------
Sessions survive a restart through a JSON snapshot keyed by identity::

    {"42": {"identity": 42, "generation": 0, "authenticated_at": ...,
            "last_activity_at": ..., "working_context": "..."}}

With a :class:`CipherEngine` each value is instead an encrypted token of
that dict, and plaintext entries are rejected on restore.  The payload
names its identity, so a token moved under another key is dropped.
Writes happen on authentication, lock and context changes, and at most
once per ``snapshot_interval`` under ordinary activity.  On startup only
still-valid entries are restored; expired, future-dated or unreadable
entries are dropped.

Revocations
-----------
``lock`` bumps the identity's generation and writes the counters to a
second file next to the snapshot (``sessions.revocations.json``).  An
entry from an older snapshot carries an older generation and is refused,
so writing back a pre-logout snapshot does not revive the session.  An
unreadable revocations file blocks the whole restore.

Usage::

    store = SessionStore(
        authorized_users=[42],
        pin="482913",
        session_timeout=15 * 60,
        default_working_context="/home/me",
        snapshot_path=Path("~/.llm-remote/sessions.json"),
        cipher=cipher,
    )
    result = store.authenticate(42, "482913")
    store.is_authenticated(42)          # True
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from collections.abc import Iterable
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from llm_remote.exceptions import IntegrityError
from llm_remote.logging import get_logger
from llm_remote.security.models import AuthOutcome, AuthResult, Session, SessionInfo

if TYPE_CHECKING:
    from llm_remote.security.cipher import CipherEngine

log = get_logger(__name__)

_DEFAULT_SNAPSHOT_INTERVAL = 60.0
_REVOCATIONS_SUFFIX = ".revocations.json"


def _pin_digest(pin: str) -> bytes:
    return hashlib.sha256(pin.encode("utf-8")).digest()


def _write_private(path: Path, text: str) -> None:
    """Atomically replace *path* with *text*, mode 0600."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(text)
    os.replace(tmp_path, path)


class SessionStore:
    """Authoritative in-memory session table with an optional snapshot.

    With ``read_only=True`` the snapshot is restored but never written,
    for inspecting the files of a running process.
    """

    def __init__(
        self,
        *,
        authorized_users: Iterable[int],
        pin: str,
        session_timeout: float,
        default_working_context: str,
        snapshot_path: Path | None = None,
        cipher: CipherEngine | None = None,
        snapshot_interval: float = _DEFAULT_SNAPSHOT_INTERVAL,
        read_only: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authorized: frozenset[int] = frozenset(authorized_users)
        # Fixed-length digest so comparison time does not depend on PIN length.
        self._pin_digest = _pin_digest(pin)
        self._timeout = session_timeout
        self._default_context = default_working_context
        self._snapshot_path = snapshot_path.expanduser() if snapshot_path else None
        self._cipher = cipher
        self._snapshot_interval = snapshot_interval
        self._read_only = read_only
        self._clock = clock
        self._sessions: dict[int, Session] = {}
        self._generations: dict[int, int] = {}
        self._last_save: float | None = None

        if self._snapshot_path is not None:
            self.restore()

    @property
    def session_timeout(self) -> float:
        return self._timeout

    @property
    def default_working_context(self) -> str:
        return self._default_context

    @property
    def revocations_path(self) -> Path | None:
        if self._snapshot_path is None:
            return None
        return self._snapshot_path.with_name(self._snapshot_path.stem + _REVOCATIONS_SUFFIX)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def is_whitelisted(self, identity: int) -> bool:
        return identity in self._authorized

    def authenticate(self, identity: int, supplied_pin: str) -> AuthResult:
        """Check the PIN and open a session on success.

        The whitelist is checked first, before the PIN is touched.  Lockout
        bookkeeping is the caller's job (see ``AuthGuard.authenticate``).
        """
        if identity not in self._authorized:
            return AuthResult(AuthOutcome.UNAUTHORIZED_IDENTITY)

        if not hmac.compare_digest(_pin_digest(str(supplied_pin)), self._pin_digest):
            return AuthResult(AuthOutcome.INVALID_PIN)

        now = self._clock()
        self._sessions[identity] = Session(
            identity=identity,
            authenticated_at=now,
            last_activity_at=now,
            working_context=self._default_context,
            generation=self._generations.get(identity, 0),
        )
        log.info("session_created", identity=identity)
        self.save()
        return AuthResult(AuthOutcome.SUCCESS)

    def is_authenticated(self, identity: int) -> bool:
        return self._get_valid(identity) is not None

    def touch(self, identity: int) -> None:
        """Refresh activity of a valid session; snapshot at most once per interval."""
        session = self._get_valid(identity)
        if session is None:
            return
        now = self._clock()
        self._sessions[identity] = replace(session, last_activity_at=now)
        if self._last_save is None or now - self._last_save > self._snapshot_interval:
            self.save()

    def lock(self, identity: int) -> None:
        session = self._sessions.pop(identity, None)
        if session is not None:
            self._revoke(session)
            log.info("session_locked", identity=identity)
            self._save_revocations()
        self.save()

    def lock_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            self._revoke(session)
        if sessions:
            self._save_revocations()
        log.info("sessions_locked_all", count=len(sessions))
        self.save()

    # ------------------------------------------------------------------
    # Working context
    # ------------------------------------------------------------------

    def get_working_context(self, identity: int) -> str:
        session = self._get_valid(identity)
        return session.working_context if session else self._default_context

    def set_working_context(self, identity: int, value: str) -> bool:
        """Update the session's working context.  False if there is no session."""
        session = self._get_valid(identity)
        if session is None:
            return False
        self._sessions[identity] = replace(session, working_context=value)
        self.save()
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def info(self, identity: int) -> SessionInfo | None:
        session = self._get_valid(identity)
        if session is None:
            return None
        elapsed = self._clock() - session.last_activity_at
        return SessionInfo(
            working_context=session.working_context,
            authenticated_at=session.authenticated_at,
            last_activity_at=session.last_activity_at,
            remaining_seconds=max(0.0, self._timeout - elapsed),
        )

    def authenticated_users(self) -> list[int]:
        now = self._clock()
        return sorted(
            identity
            for identity, session in self._sessions.items()
            if not session.is_expired(now, self._timeout)
        )

    # ------------------------------------------------------------------
    # Snapshot persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write the snapshot.  Failures are logged, never raised."""
        if self._snapshot_path is None or self._read_only:
            return
        data = {
            str(identity): self._encode_entry(session)
            for identity, session in self._sessions.items()
        }
        try:
            _write_private(self._snapshot_path, json.dumps(data))
            self._last_save = self._clock()
        except OSError as exc:
            log.warning("session_snapshot_save_failed", path=str(self._snapshot_path), error=str(exc))

    def restore(self) -> int:
        """Load still-valid sessions from the snapshot.  Returns the count restored."""
        if self._snapshot_path is None or not self._load_revocations():
            return 0
        if not self._snapshot_path.exists():
            return 0
        try:
            raw = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("session_snapshot_load_failed", path=str(self._snapshot_path), error=str(exc))
            return 0
        if not isinstance(raw, dict):
            log.warning("session_snapshot_load_failed", path=str(self._snapshot_path), error="not an object")
            return 0

        now = self._clock()
        restored = 0
        for key, value in raw.items():
            try:
                session = self._decode_entry(int(key), value)
                if session.last_activity_at > now or session.authenticated_at > now:
                    raise ValueError("session timestamp is in the future")
            except (IntegrityError, KeyError, TypeError, ValueError):
                log.warning("session_snapshot_entry_dropped", identity=key)
                continue
            if session.identity not in self._authorized:
                continue
            if session.generation < self._generations.get(session.identity, 0):
                log.warning("session_snapshot_entry_revoked", identity=session.identity)
                continue
            if session.is_expired(now, self._timeout):
                continue
            self._sessions[session.identity] = session
            restored += 1

        if restored:
            log.info("sessions_restored", count=restored)
        return restored

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_valid(self, identity: int) -> Session | None:
        session = self._sessions.get(identity)
        if session is None:
            return None
        if session.is_expired(self._clock(), self._timeout):
            del self._sessions[identity]
            log.info("session_expired", identity=identity)
            self.save()
            return None
        return session

    def _revoke(self, session: Session) -> None:
        current = self._generations.get(session.identity, 0)
        self._generations[session.identity] = max(current, session.generation + 1)

    def _save_revocations(self) -> None:
        path = self.revocations_path
        if path is None or self._read_only:
            return
        counters = {str(identity): gen for identity, gen in self._generations.items()}
        text = (
            self._cipher.encrypt_object(counters)
            if self._cipher is not None
            else json.dumps(counters)
        )
        try:
            _write_private(path, text)
        except OSError as exc:
            log.warning("session_revocations_save_failed", path=str(path), error=str(exc))

    def _load_revocations(self) -> bool:
        """Read the revocation counters.  False if the file exists but cannot be trusted."""
        path = self.revocations_path
        if path is None or not path.exists():
            return True
        try:
            text = path.read_text(encoding="utf-8").strip()
            counters = (
                self._cipher.decrypt_object(text)
                if self._cipher is not None
                else json.loads(text)
            )
            self._generations = {int(key): int(value) for key, value in counters.items()}
        except (OSError, json.JSONDecodeError, IntegrityError, AttributeError, TypeError, ValueError) as exc:
            log.warning("session_revocations_load_failed", path=str(path), error=str(exc))
            return False
        return True

    def _encode_entry(self, session: Session) -> Any:
        if self._cipher is None:
            return session.to_dict()
        return self._cipher.encrypt_object(session.to_dict())

    def _decode_entry(self, identity: int, value: Any) -> Session:
        # An encrypted store never trusts a plaintext entry, and vice versa.
        if self._cipher is not None:
            if not isinstance(value, str):
                raise IntegrityError()
            value = self._cipher.decrypt_object(value)
            if not isinstance(value, dict) or "identity" not in value:
                raise IntegrityError()
        if not isinstance(value, dict):
            raise TypeError("session entry must be an object")
        return Session.from_dict(identity, value)
