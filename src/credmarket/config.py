"""credmarket.config — Runtime settings read from the environment.

Variables:
    CREDMARKET_REVOCATION_POLICY     fail-open (default) | fail-closed
    CREDMARKET_DB_PATH               SQLite file for the credential store (memory if unset)
    CREDMARKET_PROGRAMS_FILE         JSON file with verification programs
    CREDMARKET_LEADERBOARD_URL       remote leaderboard feed (poller disabled if unset)
    CREDMARKET_LEADERBOARD_INTERVAL  poll interval in seconds (default 30)
    CREDMARKET_LEADERBOARD_SIZE      rows returned by the leaderboard (default 10)
    CREDMARKET_UPSTREAM_TIMEOUT      timeout for issuer/leaderboard calls (default 10)
    CREDMARKET_DISCLOSURE_SECRET     HMAC key for disclosure salts
    CREDMARKET_ISSUER_URL            remote issuer service (local issuer if unset)
    CREDMARKET_ISSUER_TOKEN          access token for the issuer service
    CREDMARKET_LOG_LEVEL             logging level (default INFO)
    ALLOWED_ORIGINS                  comma-separated CORS origins (default *)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from .store import RevocationPolicy


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_list(name: str) -> list[str]:
    return [item.strip() for item in os.environ.get(name, "").split(",") if item.strip()]


@dataclass
class Settings:
    revocation_policy: RevocationPolicy = RevocationPolicy.FAIL_OPEN
    db_path: Optional[str] = None
    programs_file: Optional[str] = None
    leaderboard_url: Optional[str] = None
    leaderboard_interval: float = 30.0
    leaderboard_size: int = 10
    upstream_timeout: float = 10.0
    disclosure_secret: Optional[str] = None
    issuer_url: Optional[str] = None
    issuer_token: str = ""
    log_level: str = "INFO"
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            revocation_policy=RevocationPolicy(
                os.environ.get("CREDMARKET_REVOCATION_POLICY", RevocationPolicy.FAIL_OPEN.value)
            ),
            db_path=os.environ.get("CREDMARKET_DB_PATH") or None,
            programs_file=os.environ.get("CREDMARKET_PROGRAMS_FILE") or None,
            leaderboard_url=os.environ.get("CREDMARKET_LEADERBOARD_URL") or None,
            leaderboard_interval=_env_float("CREDMARKET_LEADERBOARD_INTERVAL", 30.0),
            leaderboard_size=int(_env_float("CREDMARKET_LEADERBOARD_SIZE", 10)),
            upstream_timeout=_env_float("CREDMARKET_UPSTREAM_TIMEOUT", 10.0),
            disclosure_secret=os.environ.get("CREDMARKET_DISCLOSURE_SECRET") or None,
            issuer_url=os.environ.get("CREDMARKET_ISSUER_URL") or None,
            issuer_token=os.environ.get("CREDMARKET_ISSUER_TOKEN", ""),
            log_level=os.environ.get("CREDMARKET_LOG_LEVEL", "INFO"),
            allowed_origins=_env_list("ALLOWED_ORIGINS") or ["*"],
        )
