# app/core/config.py
from __future__ import annotations

import json
import logging
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger("swingdesk.config")


def _parse_list(v: Any) -> List[str]:
    """
    Accepts:
      - list: ["BTC","ETH"]
      - csv:  "BTC,ETH"
      - json: '["BTC","ETH"]'
    Returns uppercase, trimmed symbols.
    """
    if v is None:
        return []
    if isinstance(v, list):
        return [str(x).strip().upper() for x in v if str(x).strip()]
    s = str(v).strip()
    if not s:
        return []
    if s.startswith("["):
        try:
            arr = json.loads(s)
            return [str(x).strip().upper() for x in arr if str(x).strip()]
        except ValueError:
            # fall back to csv parse
            pass
    return [p.strip().upper() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    """Runtime configuration loaded from .env / environment variables."""

    # enable_decoding=False prevents pydantic-settings from auto-json-decoding List fields.
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        enable_decoding=False,
    )

    # --- Storage ---
    DB_PATH: str = "data/engine.db"
    AUDIT_JSONL_PATH: str = "logs/engine_audit.jsonl"

    # --- Mode ---
    EXECUTION_MODE: str = "paper"  # paper/live (trades are always paper-tracked)

    # --- Market snapshot ---
    MARKET_SNAPSHOT_PATH: str = "data/full_market.json"
    MARKET_SNAPSHOT_URL: str = ""
    MARKET_REFRESH_URL: str = ""
    SNAPSHOT_STALE_SECONDS: int = 3600
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # --- Regime ---
    REFERENCE_SYMBOLS: List[str] = Field(default_factory=lambda: ["BTC", "ETH"])

    # --- Universe ---
    MAX_RANK: int = 30
    MIN_VOLUME_24H: float = 50_000_000.0

    # --- Funnel ---
    MIN_PROBABILITY_SCORE: int = 70
    MIN_STOP_LOSS_PCT: float = 2.0
    MAX_STOP_LOSS_PCT: float = 5.0
    MIN_RISK_REWARD: float = 2.5
    PREFERRED_MIN_RR: float = 3.0
    PREFERRED_MAX_RR: float = 5.0

    # --- Timing ---
    SCAN_INTERVAL_MINUTES: int = 30
    MONITOR_INTERVAL_MINUTES: int = 15
    ENTRY_TIMEOUT_HOURS: float = 24.0
    COOLDOWN_AFTER_WIN_HOURS: float = 1.0
    COOLDOWN_AFTER_LOSS_HOURS: float = 4.0
    CAPITAL_PROTECTION_HOURS: float = 24.0
    MAX_CONSECUTIVE_LOSSES: int = 3

    # --- Whale intelligence (optional) ---
    WHALE_FEED_URL: str = ""
    WHALE_INTEL_URL: str = ""
    WHALE_API_KEY: str = ""
    WHALE_CONFIDENCE_THRESHOLD: float = 70.0

    # --- Re-ranking collaborator (optional) ---
    RERANK_API_URL: str = ""
    RERANK_API_KEY: str = ""
    RERANK_MODEL: str = "google/gemini-2.5-flash"
    RERANK_TOP_N: int = 5
    RERANK_MAX_ADJUSTMENT: float = 10.0
    RERANK_TIMEOUT_SECONDS: float = 20.0

    # --- Service loop ---
    LOOP_INTERVAL_SECONDS: int = 900

    @field_validator("REFERENCE_SYMBOLS", mode="before")
    @classmethod
    def parse_reference_symbols(cls, v: Any) -> List[str]:
        return _parse_list(v)

    def model_post_init(self, __context: Any) -> None:
        self.EXECUTION_MODE = (self.EXECUTION_MODE or "paper").lower().strip()
        self.MARKET_SNAPSHOT_URL = (self.MARKET_SNAPSHOT_URL or "").strip()
        self.MARKET_REFRESH_URL = (self.MARKET_REFRESH_URL or "").strip()

        if not self.REFERENCE_SYMBOLS:
            self.REFERENCE_SYMBOLS = ["BTC", "ETH"]

    @property
    def whale_enabled(self) -> bool:
        return bool(self.WHALE_FEED_URL.strip() and self.WHALE_INTEL_URL.strip())

    @property
    def rerank_enabled(self) -> bool:
        return bool(self.RERANK_API_URL.strip() and self.RERANK_API_KEY.strip())

    def validate_runtime(self) -> List[str]:
        """
        Fail-fast validation. Returns warnings (non-fatal).
        Raises ValueError for fatal misconfiguration.
        """
        errors: List[str] = []
        warnings: List[str] = []

        if self.EXECUTION_MODE not in {"paper", "live"}:
            errors.append("EXECUTION_MODE must be 'paper' or 'live'.")

        if len(self.REFERENCE_SYMBOLS) != 2:
            errors.append("REFERENCE_SYMBOLS must name exactly two assets.")

        # Universe sanity
        if self.MAX_RANK <= 0:
            errors.append("MAX_RANK must be > 0.")
        if self.MIN_VOLUME_24H < 0:
            errors.append("MIN_VOLUME_24H must be >= 0.")

        # Risk band sanity
        if self.MIN_STOP_LOSS_PCT <= 0:
            errors.append("MIN_STOP_LOSS_PCT must be > 0.")
        if self.MAX_STOP_LOSS_PCT < self.MIN_STOP_LOSS_PCT:
            errors.append("MAX_STOP_LOSS_PCT must be >= MIN_STOP_LOSS_PCT.")
        if self.MIN_RISK_REWARD <= 0:
            errors.append("MIN_RISK_REWARD must be > 0.")
        if self.PREFERRED_MAX_RR < self.MIN_RISK_REWARD:
            errors.append("PREFERRED_MAX_RR must be >= MIN_RISK_REWARD.")
        if not 0 <= self.MIN_PROBABILITY_SCORE <= 100:
            errors.append("MIN_PROBABILITY_SCORE must be within 0..100.")

        # Timing sanity
        if self.SCAN_INTERVAL_MINUTES < 0:
            errors.append("SCAN_INTERVAL_MINUTES must be >= 0.")
        if self.ENTRY_TIMEOUT_HOURS <= 0:
            errors.append("ENTRY_TIMEOUT_HOURS must be > 0.")
        if self.COOLDOWN_AFTER_WIN_HOURS < 0 or self.COOLDOWN_AFTER_LOSS_HOURS < 0:
            errors.append("Cooldown durations must be >= 0.")
        if self.MAX_CONSECUTIVE_LOSSES < 1:
            errors.append("MAX_CONSECUTIVE_LOSSES must be >= 1.")
        if self.HTTP_TIMEOUT_SECONDS <= 0 or self.RERANK_TIMEOUT_SECONDS <= 0:
            errors.append("Collaborator timeouts must be > 0.")

        if self.COOLDOWN_AFTER_WIN_HOURS > self.COOLDOWN_AFTER_LOSS_HOURS:
            warnings.append(
                "COOLDOWN_AFTER_WIN_HOURS is longer than COOLDOWN_AFTER_LOSS_HOURS; check if this is intended."
            )

        if not self.MARKET_SNAPSHOT_URL and not self.MARKET_SNAPSHOT_PATH:
            errors.append("Either MARKET_SNAPSHOT_URL or MARKET_SNAPSHOT_PATH is required.")

        if bool(self.WHALE_FEED_URL) != bool(self.WHALE_INTEL_URL):
            warnings.append(
                "Whale intelligence needs both WHALE_FEED_URL and WHALE_INTEL_URL; it stays disabled."
            )

        if self.RERANK_API_URL and not self.RERANK_API_KEY:
            warnings.append("RERANK_API_URL is set without RERANK_API_KEY; re-ranking stays disabled.")

        if self.EXECUTION_MODE == "live":
            warnings.append(
                "EXECUTION_MODE=live only labels the ledger; trades are still paper-tracked."
            )

        if errors:
            msg = "Config validation failed:\n" + "\n".join([f"- {e}" for e in errors])
            raise ValueError(msg)

        return warnings


# Pydantic v2 + postponed annotations safety
Settings.model_rebuild()
settings = Settings()
