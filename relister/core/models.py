"""Relister core domain models.

:class:`TrackedItem` is the persisted record of one item under management,
as read from the record store, the work queue, or the "get next item"
function.  :class:`UpstreamSnapshot` is the live origin-marketplace view of
the same item, built fresh on every reconciliation and never persisted
directly.

Both models accept the camelCase keys used by the record store and the
remote functions (``orgUrl``, ``ebaySku`` ...) via aliases while exposing
snake_case attributes to Python code.

Typical usage::

    from relister.core.models import TrackedItem

    item = TrackedItem.model_validate(payload["item"])
    item.origin_item_id          # "m12345" for ".../item/m12345"
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

from relister.core.exceptions import MalformedInputError

__all__ = [
    "ON_SALE",
    "TrackedItem",
    "SellerRatings",
    "SellerInfo",
    "UpstreamSnapshot",
    "EligibilityResult",
    "SoldSkusResult",
    "ListResult",
    "ReconcileAction",
    "ReconciliationOutcome",
    "format_scanned_at",
]

logger = logging.getLogger(__name__)

#: Upstream status meaning the origin listing is still purchasable.
ON_SALE: str = "on_sale"

_SCANNED_AT_FORMAT = "%Y-%m-%d %H:%M:%S"


# ---------------------------------------------------------------------------
# Tracked item (record store / work source)
# ---------------------------------------------------------------------------


class TrackedItem(BaseModel):
    """Persistent record of one item under management.

    Only the fields the reconciliation loop reads are modelled; unknown keys
    in the stored record are ignored.

    Attributes:
        id: Stable record key.
        origin_url: URL of the item on the origin marketplace.
        marketplace_sku: SKU of the item on the destination marketplace.
        is_image_changed: Sticky flag; once true it stays true.
        is_title_changed: Sticky flag; once true it stays true.
        origin_image_urls: Photos recorded at the last reconciliation, in order.
        origin_title: Title recorded at the last reconciliation.
        weight_grams: Shipping weight.
        box_size_cm: Box length, width, height.
        marketplace_category: Destination category id.
        marketplace_store_category: Destination store category name.
        scanned_at: Formatted time of the last reconciliation.
        scan_count: Number of completed reconciliations.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    origin_url: str = Field(..., alias="orgUrl")
    marketplace_sku: str = Field(..., alias="ebaySku")
    is_image_changed: bool = Field(default=False, alias="isImageChanged")
    is_title_changed: bool = Field(default=False, alias="isTitleChanged")
    origin_image_urls: list[str] = Field(default_factory=list, alias="orgImageUrls")
    origin_title: str = Field(default="", alias="orgTitle")
    weight_grams: float | None = Field(default=None, alias="weightGram")
    box_size_cm: list[float] | None = Field(default=None, alias="boxSizeCm")
    marketplace_category: str = Field(default="", alias="ebayCategory")
    marketplace_store_category: str = Field(default="", alias="ebayStoreCategory")
    scanned_at: str | None = Field(default=None, alias="scannedAt")
    scan_count: int | None = Field(default=None, alias="scanCount")

    # Marketplace listing metadata (extended variant).
    condition: str | None = Field(default=None, alias="ebayCondition")
    condition_description: str | None = Field(default=None, alias="ebayConditionDescription")
    image_urls: list[str] = Field(default_factory=list, alias="ebayImageUrls")
    aspect_params: dict[str, Any] = Field(default_factory=dict, alias="ebayAspectParam")
    title: str | None = Field(default=None, alias="ebayTitle")
    description: str | None = Field(default=None, alias="ebayDescription")

    @property
    def origin_item_id(self) -> str:
        """Origin marketplace id: the last non-empty path segment of the URL.

        Raises:
            MalformedInputError: If the URL has no usable path segment.
        """
        segments = [s for s in urlsplit(self.origin_url).path.split("/") if s]
        if not segments:
            raise MalformedInputError(f"Cannot derive origin id from {self.origin_url!r}")
        return segments[-1]

    @property
    def box_dimensions(self) -> tuple[float, float, float] | None:
        """``(length, width, height)`` or ``None`` when not fully recorded."""
        if not self.box_size_cm or len(self.box_size_cm) != 3:
            return None
        length, width, height = self.box_size_cm
        return length, width, height

    @property
    def next_scan_count(self) -> int:
        return (self.scan_count or 0) + 1


# ---------------------------------------------------------------------------
# Upstream snapshot (origin marketplace)
# ---------------------------------------------------------------------------


class SellerRatings(BaseModel):
    model_config = ConfigDict(extra="allow")

    good: int = 0


class SellerInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | str
    num_sell_items: int = 0
    ratings: SellerRatings = Field(default_factory=SellerRatings)
    num_ratings: int = 0


class UpstreamSnapshot(BaseModel):
    """Live state of the item on the origin marketplace.

    Unknown keys are kept (``extra="allow"``) so the eligibility function
    receives the item exactly as fetched.  Category, condition and shipping
    blocks are passed through as plain mappings; the loop only reads
    ``status``, ``name``, ``price`` and ``photos``.
    """

    model_config = ConfigDict(extra="allow")

    id: str | int
    status: str
    name: str = ""
    price: float | None = None
    description: str = ""
    photos: list[str] = Field(default_factory=list)
    seller: SellerInfo | None = None
    item_category_ntiers: dict[str, Any] | None = None
    parent_categories_ntiers: list[dict[str, Any]] = Field(default_factory=list)
    item_condition: dict[str, Any] | None = None
    shipping_payer: dict[str, Any] | None = None
    shipping_method: dict[str, Any] | None = None
    shipping_from_area: dict[str, Any] | None = None
    shipping_duration: dict[str, Any] | None = None
    item_brand: dict[str, Any] | None = None
    num_likes: int = 0
    num_comments: int = 0
    updated: int | None = None
    created: int | None = None

    @property
    def is_on_sale(self) -> bool:
        return self.status == ON_SALE


# ---------------------------------------------------------------------------
# Remote procedure results
# ---------------------------------------------------------------------------


class EligibilityResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_eligible: bool = Field(..., alias="isEligible")


class SoldSkusResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    skus: list[str]


class ListResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    listing_id: str | None = Field(default=None, alias="listingId")


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class ReconcileAction(StrEnum):
    """Terminal state of one item for one iteration."""

    SOLD = "sold"
    ORIGIN_GONE = "origin_gone"
    FETCH_FAILED = "fetch_failed"
    NEEDS_UPDATE = "needs_update"
    LISTED = "listed"


class ReconciliationOutcome(BaseModel):
    """Decision computed once per iteration and absorbed into the record update."""

    model_config = ConfigDict(frozen=True)

    is_live: bool
    title_changed: bool
    images_changed: bool
    is_eligible: bool
    dimensions_present: bool
    should_list: bool

    @property
    def action(self) -> ReconcileAction:
        if not self.is_live:
            return ReconcileAction.ORIGIN_GONE
        if self.should_list:
            return ReconcileAction.LISTED
        return ReconcileAction.NEEDS_UPDATE


def format_scanned_at(now: datetime, tz: str = "Asia/Tokyo") -> str:
    """Format *now* as ``YYYY-MM-DD HH:MM:SS`` in the zone *tz*.

    Naive datetimes are treated as UTC.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return now.astimezone(ZoneInfo(tz)).strftime(_SCANNED_AT_FORMAT)
