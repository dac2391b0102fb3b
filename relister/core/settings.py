"""Relister settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The field name is the
**lowercase** version of the env-var name (e.g. ``TABLE_NAME`` →
``table_name``).

Every remote function identifier is required; a missing one is a startup
failure.  Use :func:`load_settings` at process entry so that validation
problems surface as :class:`~relister.core.exceptions.ConfigError`.

Typical usage::

    from relister.core.settings import load_settings

    settings = load_settings()
    print(settings.fetcher_functions)     # ["merc-item-1", "merc-item-2"]
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from relister.core.exceptions import ConfigError

__all__ = ["Settings", "load_settings"]

logger = logging.getLogger(__name__)


def _csv_to_list(value: str) -> list[str]:
    """Split a comma-separated string into a list of non-empty, stripped items."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Central worker configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Record store
    # ------------------------------------------------------------------
    table_name: str = Field(
        ...,
        min_length=1,
        description="Identifier of the tracked-item table.",
    )
    database_path: str = Field(
        default="data/relister.db",
        description="Path to the SQLite file backing the record store.",
    )

    # ------------------------------------------------------------------
    # Remote functions
    # ------------------------------------------------------------------
    function_gateway_url: str = Field(
        ...,
        min_length=1,
        description="Base URL of the remote function gateway.",
    )
    function_gateway_token: str = Field(
        default="",
        description="Bearer token sent to the gateway (optional).",
    )
    function_gateway_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Per-call gateway timeout in seconds.",
    )
    fetcher_functions: Annotated[list[str], NoDecode] = Field(
        ...,
        description="Equivalent upstream fetcher functions (comma-separated in env).",
    )
    delist_function: str = Field(..., min_length=1)
    list_function: str = Field(..., min_length=1)
    offer_part_function: str = Field(..., min_length=1)
    eligibility_function: str = Field(..., min_length=1)
    sold_skus_function: str = Field(..., min_length=1)
    next_item_function: str = Field(
        default="",
        description="'Get next item' function; required when WORK_SOURCE=pull.",
    )

    # ------------------------------------------------------------------
    # Work source
    # ------------------------------------------------------------------
    work_source: Literal["queue", "pull"] = Field(
        default="queue",
        description="Where candidate items come from: 'queue' or 'pull'.",
    )
    queue_url: str = Field(
        default="",
        description="Redis URL of the work queue; required when WORK_SOURCE=queue.",
    )
    queue_name: str = Field(
        default="",
        description="Redis list holding queued items; required when WORK_SOURCE=queue.",
    )
    queue_wait_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Bounded wait of one queue poll.",
    )

    # ------------------------------------------------------------------
    # Pacing and remediation
    # ------------------------------------------------------------------
    pacing_min_ms: int = Field(
        default=2000,
        ge=0,
        description="Lower bound of the randomised gap between upstream fetches.",
    )
    pacing_max_ms: int = Field(
        default=3000,
        ge=0,
        description="Upper bound of the randomised gap between upstream fetches.",
    )
    remediation_cooldown_ms: int = Field(
        default=3000,
        ge=0,
        description="Wait after nudging a failing fetcher.",
    )

    # ------------------------------------------------------------------
    # Marketplace
    # ------------------------------------------------------------------
    marketplace_account: str = Field(default="main")
    marketplace_id: str = Field(default="EBAY_US")
    merchant_location_key: str = Field(default="main-warehouse")
    include_inventory_payload: bool = Field(
        default=False,
        description="Send the inventory payload along with the list call.",
    )
    scanned_at_timezone: str = Field(
        default="Asia/Tokyo",
        description="IANA zone used to format scannedAt.",
    )

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------
    heartbeat_path: str = Field(
        default="/tmp/relister_heartbeat",
        description="File rewritten with the epoch time after each iteration.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("fetcher_functions", mode="before")
    @classmethod
    def _parse_csv_fetchers(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_list(v)
        return v

    @field_validator("fetcher_functions")
    @classmethod
    def _require_fetcher(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("fetcher_functions must name at least one function")
        return v

    @field_validator("function_gateway_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("scanned_at_timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"scanned_at_timezone {v!r} is not a known IANA zone") from exc
        return v

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_pacing(self) -> Settings:
        """Ensure min ≤ max for the pacing window."""
        if self.pacing_min_ms > self.pacing_max_ms:
            raise ValueError(
                f"pacing_min_ms ({self.pacing_min_ms}) "
                f"> pacing_max_ms ({self.pacing_max_ms})"
            )
        return self

    @model_validator(mode="after")
    def _validate_work_source(self) -> Settings:
        """Ensure the selected work source has what it needs."""
        if self.work_source == "queue" and not (self.queue_url and self.queue_name):
            raise ValueError("WORK_SOURCE=queue requires QUEUE_URL and QUEUE_NAME")
        if self.work_source == "pull" and not self.next_item_function:
            raise ValueError("WORK_SOURCE=pull requires NEXT_ITEM_FUNCTION")
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def remediation_cooldown_s(self) -> float:
        return self.remediation_cooldown_ms / 1000


def load_settings(**overrides: object) -> Settings:
    """Load :class:`Settings`, converting validation problems to :class:`ConfigError`.

    Args:
        **overrides: Field values that take precedence over the environment.

    Raises:
        ConfigError: If a required variable is missing or a value is invalid.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc
