"""
Configuration of the support console.

Like the server's settings, ``ConsoleSettings`` reads environment
variables; command line flags given to ``support-console`` take
precedence over them.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env(name: str, default: Optional[str] = None):
    return field(default_factory=lambda: os.getenv(name, default))


def _timeout() -> float:
    raw = os.getenv("SUPPORT_DESK_TIMEOUT", "15")
    try:
        timeout = float(raw)
    except ValueError:
        raise ValueError(f"SUPPORT_DESK_TIMEOUT must be a number of seconds, got {raw!r}")
    if timeout <= 0:
        raise ValueError(f"SUPPORT_DESK_TIMEOUT must be positive, got {raw!r}")
    return timeout


@dataclass
class ConsoleSettings:
    """Console settings loaded from environment variables."""

    base_url: Optional[str] = _env("SUPPORT_DESK_BASE_URL")
    token: Optional[str] = _env("SUPPORT_DESK_TOKEN")
    # "staff" or "customer"; empty means ask the server via /auth/me.
    role: Optional[str] = _env("SUPPORT_DESK_ROLE")
    timeout: float = field(default_factory=_timeout)
    log_level: str = _env("SUPPORT_DESK_LOG_LEVEL", "WARNING")
