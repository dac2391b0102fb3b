"""Shared pytest fixtures and configuration for the Relister test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import Any

import pytest
from pydantic_settings import SettingsConfigDict

from relister.core import configure_logging
from relister.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

_RELISTER_ENV_PREFIXES = (
    "TABLE_NAME",
    "DATABASE_",
    "FUNCTION_GATEWAY_",
    "FETCHER_FUNCTIONS",
    "DELIST_FUNCTION",
    "LIST_FUNCTION",
    "OFFER_PART_FUNCTION",
    "ELIGIBILITY_FUNCTION",
    "SOLD_SKUS_FUNCTION",
    "NEXT_ITEM_FUNCTION",
    "WORK_SOURCE",
    "QUEUE_",
    "PACING_",
    "REMEDIATION_",
    "MARKETPLACE_",
    "MERCHANT_",
    "INCLUDE_INVENTORY_PAYLOAD",
    "SCANNED_AT_",
    "HEARTBEAT_",
    "LOG_LEVEL",
    "LOG_FORMAT",
)


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every Relister env var and disable ``.env`` loading for one test."""
    for key in list(os.environ):
        if key.startswith(_RELISTER_ENV_PREFIXES):
            monkeypatch.delenv(key, raising=False)

    # pydantic-settings reads the .env file directly, not via os.environ.
    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

#: Minimal valid configuration for a queue-backed worker.
BASE_SETTINGS: dict[str, Any] = {
    "table_name": "items",
    "function_gateway_url": "http://gateway.test",
    "fetcher_functions": ["fetch-a", "fetch-b", "fetch-c"],
    "delist_function": "ebay-delete",
    "list_function": "ebay-list",
    "offer_part_function": "offer-part",
    "eligibility_function": "is-eligible",
    "sold_skus_function": "sold-skus",
    "work_source": "queue",
    "queue_url": "redis://localhost:6379/0",
    "queue_name": "relister:items",
    "database_path": ":memory:",
    "heartbeat_path": "",
}


@pytest.fixture()
def make_settings(clean_env: None) -> Callable[..., Settings]:
    """Factory building validated settings from :data:`BASE_SETTINGS` plus overrides."""

    def _make(**overrides: Any) -> Settings:
        return Settings(**{**BASE_SETTINGS, **overrides})

    return _make


@pytest.fixture()
def settings(make_settings: Callable[..., Settings]) -> Settings:
    return make_settings()


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@pytest.fixture()
def item_payload() -> dict[str, Any]:
    """A stored tracked item, camelCase keys as the record store keeps them."""
    return {
        "id": "rec-1",
        "orgUrl": "https://jp.mercari.com/item/m123",
        "ebaySku": "SKU-1",
        "isImageChanged": False,
        "isTitleChanged": False,
        "orgImageUrls": ["https://img/1.jpg", "https://img/2.jpg"],
        "orgTitle": "Vintage camera",
        "weightGram": 800,
        "boxSizeCm": [30, 20, 10],
        "ebayCategory": "15230",
        "ebayStoreCategory": "Cameras",
        "scanCount": 4,
    }


@pytest.fixture()
def snapshot_payload() -> dict[str, Any]:
    """A live upstream snapshot matching :func:`item_payload`."""
    return {
        "id": "m123",
        "status": "on_sale",
        "name": "Vintage camera",
        "price": 12000,
        "description": "Works fine.",
        "photos": ["https://img/1.jpg", "https://img/2.jpg"],
        "num_likes": 3,
    }


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    return logging.getLogger("tests")
