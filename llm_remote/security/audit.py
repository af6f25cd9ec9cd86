"""Security layer — Encrypted audit log.

Writes immutable, append-only audit records for:
  - Authentication successes, failures and lockouts
  - Session locks and working-context changes
  - Provider switches, prompts, responses and errors
  - Rate limit refusals

Every record is serialised to JSON, encrypted with the
:class:`CipherEngine` and appended as one base64 token per line.  The
principal is stored only as ``CipherEngine.keyed_hash(identity)``, so the
file cannot be read, or even grouped by user, without the master key.

There is no index: ``query`` walks the file from the end, decrypting line
by line until it has ``limit`` matches.  Lines that fail to decrypt or
parse are skipped.

Usage::

    audit = AuditLog(cipher, Path("~/.llm-remote/audit.log"))
    audit.record(42, AuditEvent.AUTH_SUCCESS)
    await audit.log(42, AuditEvent.PROMPT, provider="openai", prompt=text)
    audit.query(42, limit=15)
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from llm_remote.exceptions import IntegrityError, StorageError
from llm_remote.logging import get_logger
from llm_remote.security.cipher import CipherEngine
from llm_remote.security.models import AuditEntry, AuditVerification

log = get_logger(__name__)

# String values in ``data`` are cut to this many characters.
MAX_FIELD_CHARS = 500


class AuditEvent(str, Enum):
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILED = "auth_failed"
    AUTH_LOCKED_OUT = "auth_locked_out"
    SESSION_LOCKED = "session_locked"
    PROVIDER_CHANGED = "provider_changed"
    PROJECT_CHANGED = "project_changed"
    PROCESS_KILLED = "process_killed"
    WEB_SEARCH = "web_search"
    SCHEDULE_CREATED = "schedule_created"
    SCHEDULE_REMOVED = "schedule_removed"
    PIPELINE = "pipeline"
    MCP_ADD = "mcp_add"
    VOICE_PROMPT = "voice_prompt"
    VISION = "vision"
    VISION_FILE = "vision_file"
    FILE_PROMPT = "file_prompt"
    PROMPT = "prompt"
    RESPONSE = "response"
    ERROR = "error"
    EXCEPTION = "exception"
    RATE_LIMITED = "rate_limited"


def _utc_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _truncate(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: value[:MAX_FIELD_CHARS] if isinstance(value, str) else value
        for key, value in data.items()
    }


class AuditLog:
    """Append-only log of encrypted audit entries."""

    def __init__(
        self,
        cipher: CipherEngine,
        audit_file: Path,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cipher = cipher
        self._file = audit_file.expanduser()
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._file

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def record(
        self,
        identity: int,
        action: AuditEvent | str,
        data: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Encrypt and append one entry.

        Raises:
            StorageError: The log file could not be written.
        """
        now = self._clock()
        entry = AuditEntry(
            timestamp=_utc_iso(now),
            identity_hash=self._cipher.keyed_hash(str(identity)),
            action=action.value if isinstance(action, AuditEvent) else str(action),
            data=_truncate(data) if data else None,
        )
        line = self._cipher.encrypt(json.dumps(entry.to_dict(), default=str)) + "\n"
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._file, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
            with os.fdopen(fd, "a", encoding="ascii") as f:
                f.write(line)
        except OSError as exc:
            log.error("audit_write_failed", path=str(self._file), error=str(exc))
            raise StorageError(
                f"Cannot append to audit log: {exc}",
                context={"path": str(self._file)},
            ) from exc
        log.debug("audit_recorded", action=entry.action)
        return entry

    async def log(
        self,
        identity: int,
        action: AuditEvent | str,
        **data: Any,
    ) -> AuditEntry:
        """Async variant of :meth:`record`.

        The file write runs in a worker thread.  Callers queue on the lock in
        arrival order, so concurrent appends land in the order they were made.
        """
        async with self._lock:
            return await asyncio.to_thread(self.record, identity, action, data or None)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def query(self, identity: int, limit: int = 20) -> list[AuditEntry]:
        """Most recent entries for *identity*, newest first."""
        if limit <= 0 or not self._file.exists():
            return []
        identity_hash = self._cipher.keyed_hash(str(identity))

        results: list[AuditEntry] = []
        for line in reversed(self._read_lines()):
            entry = self._decode(line)
            if entry is None or entry.identity_hash != identity_hash:
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results

    def verify(self) -> AuditVerification:
        """Decrypt every line and count the ones that fail."""
        if not self._file.exists():
            return AuditVerification(total=0, valid=0, corrupted=0)
        lines = self._read_lines()
        valid = sum(1 for line in lines if self._decode(line) is not None)
        return AuditVerification(total=len(lines), valid=valid, corrupted=len(lines) - valid)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _read_lines(self) -> list[str]:
        try:
            text = self._file.read_text(encoding="ascii", errors="replace")
        except OSError as exc:
            raise StorageError(
                f"Cannot read audit log: {exc}",
                context={"path": str(self._file)},
            ) from exc
        return [line for line in text.splitlines() if line.strip()]

    def _decode(self, line: str) -> AuditEntry | None:
        try:
            payload = self._cipher.decrypt_object(line.strip())
            return AuditEntry(
                timestamp=payload["timestamp"],
                identity_hash=payload["identity_hash"],
                action=payload["action"],
                data=payload.get("data"),
            )
        except (IntegrityError, KeyError, TypeError, AttributeError):
            log.debug("audit_line_skipped")
            return None
