"""LLM Remote — Trust and access core for a chat-driven AI remote control.

Decides whether an inbound chat request may reach an AI backend or the
local shell at all, and keeps a tamper-evident record of what happened.

Architecture layers (bottom to top):
    1. Cipher    — AES-256-GCM + HMAC tokens, keyed hashing
    2. Sessions  — PIN authentication, lazy expiry, snapshot recovery
    3. Guard     — whitelist, group filter, brute-force lockout
    4. Limits    — per-identity sliding-window rate limiter
    5. Audit     — encrypted append-only event log
    6. CLI       — keygen, config check, audit and session inspection
"""

__version__ = "0.1.0"
__author__ = "LLM Remote Contributors"
__license__ = "Apache-2.0"

from llm_remote.security.manager import SecurityManager

__all__ = [
    "__version__",
    "SecurityManager",
]
