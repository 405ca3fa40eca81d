# config.py
"""
Calculation parameters and environment loading.

Values come from process environment variables, optionally seeded from a
`.env` file in the project root (python-dotenv). Nothing here is global state
for the engine: callers build a ReportConfig and pass it in.
"""

from __future__ import annotations

import os
from datetime import timezone, tzinfo
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

# src/cryptotaxreport/config.py -> parents[2] == project root
PROJECT_ROOT = Path(__file__).resolve().parents[2]
load_dotenv(PROJECT_ROOT / ".env")

UnmatchedPolicy = Literal["ignore", "warn", "raise"]


class ReportConfig(BaseModel):
    """
    Parameters of one tax report run.

    timezone: zone in which a sale's calendar year is determined.
    holding_exemption_days: a lot held strictly longer than this is tax free.
    unmatched_policy: what to do when a sale outruns the available lots
      - "ignore": report only the matched part, silently
      - "warn":   same numbers, plus a report warning and a log record
      - "raise":  abort with UnmatchedDisposal
    carry_prior_disposals: also walk (but do not report) sales dated before the
      requested year, so they consume their lots first.
    round_dp: decimals used by exports for display; the engine never rounds.
    """

    timezone: str = "UTC"
    holding_exemption_days: int = Field(365, ge=0)
    unmatched_policy: UnmatchedPolicy = "warn"
    carry_prior_disposals: bool = False
    round_dp: int = Field(2, ge=0, le=18)

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str) -> str:
        if v.upper() == "UTC":
            return "UTC"
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone: {v!r}") from e
        return v

    def zone(self) -> tzinfo:
        if self.timezone == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_config() -> ReportConfig:
    """Build a ReportConfig from CRYPTO_TAXREPORT_* environment variables."""
    return ReportConfig(
        timezone=os.getenv("CRYPTO_TAXREPORT_TIMEZONE", "UTC"),
        holding_exemption_days=int(os.getenv("CRYPTO_TAXREPORT_HOLDING_DAYS", "365")),
        unmatched_policy=os.getenv("CRYPTO_TAXREPORT_UNMATCHED_POLICY", "warn").strip().lower(),
        carry_prior_disposals=_env_bool("CRYPTO_TAXREPORT_CARRY_PRIOR", False),
        round_dp=int(os.getenv("CRYPTO_TAXREPORT_ROUND_DP", "2")),
    )
