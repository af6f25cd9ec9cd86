"""Shared pytest fixtures for the llm-remote test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from llm_remote.config import Settings, override_settings
from llm_remote.security.cipher import CipherEngine
from llm_remote.security.session import SessionStore

MASTER_PASSPHRASE = "correct-horse-battery-staple-16"
PIN = "482913"
AUTHORIZED = 42
STRANGER = 7
TIMEOUT = 15 * 60.0


class FakeClock:
    """Manually advanced clock, callable like ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def cipher() -> CipherEngine:
    # One key derivation for the whole run.
    return CipherEngine(MASTER_PASSPHRASE)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@pytest.fixture
def make_store(tmp_path: Path, clock: FakeClock):
    def _make(**overrides) -> SessionStore:
        kwargs = dict(
            authorized_users=[AUTHORIZED],
            pin=PIN,
            session_timeout=TIMEOUT,
            default_working_context="/home/me",
            snapshot_path=None,
            cipher=None,
            clock=clock,
        )
        kwargs.update(overrides)
        return SessionStore(**kwargs)

    return _make


@pytest.fixture
def store(make_store) -> SessionStore:
    return make_store()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    settings = Settings(
        auth={"authorized_users": [AUTHORIZED], "pin": PIN, "default_work_dir": "/home/me"},
        crypto={"master_password": MASTER_PASSPHRASE},
        paths={"data_dir": str(tmp_path / "data")},
        logging={"level": "debug", "format": "console"},
    )
    override_settings(settings)
    return settings
