"""Unit tests — SecurityManager (manager.py).

Tests cover:
  - from_settings wiring and snapshot encryption choice
  - login outcomes and the audit records they leave
  - logout, rate refusal auditing, require_session, shutdown
"""

from __future__ import annotations

import json

import pytest

from llm_remote.exceptions import (
    InvalidPinError,
    LockedOutError,
    SessionRequiredError,
    UnauthorizedIdentityError,
)
from llm_remote.logging import bind_request_context, current_request_context
from llm_remote.security.manager import SecurityManager
from llm_remote.security.models import AuthOutcome, ChatType, InboundRequest

pytestmark = pytest.mark.unit

PIN = "482913"
AUTHORIZED = 42
STRANGER = 7


@pytest.fixture
def manager(test_settings, cipher, clock) -> SecurityManager:
    return SecurityManager.from_settings(test_settings, cipher=cipher, clock=clock)


def _actions(manager: SecurityManager, identity: int = AUTHORIZED) -> list[str]:
    return [e.action for e in manager.audit.query(identity, limit=100)]


class TestWiring:

    def test_components_share_cipher(self, manager: SecurityManager, cipher) -> None:
        assert manager.cipher is cipher
        assert manager.rate_limiter.limit == 10
        assert manager.sessions.session_timeout == 15 * 60
        assert manager.guard.threshold == 5

    def test_paths_come_from_settings(self, manager: SecurityManager, test_settings) -> None:
        assert manager.audit.path == test_settings.paths.audit_path

    def test_snapshot_is_encrypted_by_default(self, manager: SecurityManager, test_settings) -> None:
        manager.login(AUTHORIZED, PIN)
        data = json.loads(test_settings.paths.sessions_path.read_text())
        assert isinstance(data[str(AUTHORIZED)], str)

    def test_plain_snapshot_when_disabled(self, test_settings, cipher, clock) -> None:
        settings = test_settings.model_copy(
            update={"security": test_settings.security.model_copy(update={"encrypt_session_snapshot": False})}
        )
        manager = SecurityManager.from_settings(settings, cipher=cipher, clock=clock)
        manager.login(AUTHORIZED, PIN)
        data = json.loads(settings.paths.sessions_path.read_text())
        assert data[str(AUTHORIZED)]["working_context"] == "/home/me"


class TestLogin:

    def test_success_is_audited(self, manager: SecurityManager) -> None:
        assert manager.login(AUTHORIZED, PIN).ok
        assert _actions(manager) == ["auth_success"]

    def test_failure_is_audited_with_attempt(self, manager: SecurityManager) -> None:
        manager.login(AUTHORIZED, "wrong")
        entry = manager.audit.query(AUTHORIZED)[0]
        assert entry.action == "auth_failed"
        assert entry.data == {"attempt": 1}

    def test_lockout_is_audited(self, manager: SecurityManager) -> None:
        for _ in range(5):
            result = manager.login(AUTHORIZED, "wrong")
        assert result.outcome is AuthOutcome.LOCKED_OUT
        entry = manager.audit.query(AUTHORIZED)[0]
        assert entry.action == "auth_locked_out"
        assert entry.data == {"attempt": 5, "wait_seconds": 900}

    def test_stranger_is_not_audited(self, manager: SecurityManager) -> None:
        result = manager.login(STRANGER, PIN)
        assert result.outcome is AuthOutcome.UNAUTHORIZED_IDENTITY
        assert not manager.audit.path.exists()

    def test_admit_after_login(self, manager: SecurityManager) -> None:
        manager.login(AUTHORIZED, PIN)
        assert manager.admit(InboundRequest(identity=AUTHORIZED, text="status")).allowed


class TestSessionLifecycle:

    def test_logout(self, manager: SecurityManager) -> None:
        manager.login(AUTHORIZED, PIN)
        manager.logout(AUTHORIZED)
        assert not manager.sessions.is_authenticated(AUTHORIZED)
        assert _actions(manager) == ["session_locked", "auth_success"]

    def test_require_session(self, manager: SecurityManager) -> None:
        with pytest.raises(SessionRequiredError):
            manager.require_session(AUTHORIZED)
        manager.login(AUTHORIZED, PIN)
        manager.require_session(AUTHORIZED)

    def test_shutdown_locks_everything(self, manager: SecurityManager) -> None:
        manager.login(AUTHORIZED, PIN)
        manager.shutdown()
        assert manager.sessions.authenticated_users() == []


class TestRate:

    def test_refusal_is_audited(self, manager: SecurityManager) -> None:
        for _ in range(10):
            assert manager.check_rate(AUTHORIZED).allowed
        decision = manager.check_rate(AUTHORIZED)
        assert not decision.allowed
        entry = manager.audit.query(AUTHORIZED)[0]
        assert entry.action == "rate_limited"
        assert entry.data == {"wait_seconds": decision.wait_seconds}

    def test_admitted_requests_are_not_audited(self, manager: SecurityManager) -> None:
        manager.check_rate(AUTHORIZED)
        assert not manager.audit.path.exists()


class TestLoginOrRaise:

    def test_success_returns(self, manager: SecurityManager) -> None:
        manager.login_or_raise(AUTHORIZED, PIN)
        assert manager.sessions.is_authenticated(AUTHORIZED)

    def test_stranger(self, manager: SecurityManager) -> None:
        with pytest.raises(UnauthorizedIdentityError) as exc_info:
            manager.login_or_raise(STRANGER, PIN)
        assert exc_info.value.identity == STRANGER

    def test_wrong_pin_carries_attempts(self, manager: SecurityManager) -> None:
        manager.login(AUTHORIZED, "wrong")
        with pytest.raises(InvalidPinError) as exc_info:
            manager.login_or_raise(AUTHORIZED, "wrong")
        assert exc_info.value.attempts == 2

    def test_lockout(self, manager: SecurityManager) -> None:
        for _ in range(4):
            manager.login(AUTHORIZED, "wrong")
        with pytest.raises(LockedOutError) as exc_info:
            manager.login_or_raise(AUTHORIZED, "wrong")
        assert exc_info.value.wait_seconds == 900
        assert "15 min" in exc_info.value.message


class TestRequestContext:

    def teardown_method(self) -> None:
        bind_request_context()

    def test_admit_binds_given_request_id(self, manager: SecurityManager) -> None:
        manager.admit(
            InboundRequest(identity=AUTHORIZED, chat_type=ChatType.GROUP, text="/help", request_id="msg-17")
        )
        assert current_request_context() == {"request_id": "msg-17", "chat_type": "group"}

    def test_admit_generates_request_id(self, manager: SecurityManager) -> None:
        manager.admit(InboundRequest(identity=STRANGER, text="hi"))
        first = current_request_context()["request_id"]
        manager.admit(InboundRequest(identity=STRANGER, text="hi"))
        assert current_request_context()["request_id"] != first
        assert current_request_context()["chat_type"] == "private"
