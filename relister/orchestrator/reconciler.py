"""Reconciliation engine: decide and apply one item's listing state.

Given a tracked item and its freshly fetched upstream snapshot, the engine
picks exactly one terminal state and performs that state's side effects.

Decision precedence
-------------------
1. **OriginGone** (``status != "on_sale"``): delist, persist
   ``isOrgLive=false`` / ``isListed=false`` and remove ``isListedGsi``.
   Eligibility is never evaluated.
2. **NeedsUpdate**: title changed, image list changed (order-sensitive),
   eligibility check failed, or box dimensions missing.  Delist and persist
   the refreshed origin fields with ``isListed=false``.
3. **Listed**: persist ``isListed=true`` / ``isListedGsi=1`` *first*, then
   build the offer and call the list function.

The Sold and FetchFailed states are decided by the loop before the engine
is invoked (see :mod:`relister.orchestrator.loop`).

Change flags are sticky: ``isTitleChanged`` and ``isImageChanged`` are the
logical OR of the stored value and the fresh comparison, so this engine
never clears them.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from relister.core import events
from relister.core.models import (
    ReconcileAction,
    ReconciliationOutcome,
    TrackedItem,
    UpstreamSnapshot,
    format_scanned_at,
)
from relister.core.settings import Settings
from relister.gateway.procedures import RemoteProcedures
from relister.storage.record_store import RecordStore

__all__ = [
    "LISTED_INDEX_FIELD",
    "KEY_FIELD",
    "detect_changes",
    "classify",
    "build_update_fields",
    "build_offer_payload",
    "build_inventory_payload",
    "Reconciler",
]

logger = logging.getLogger(__name__)

#: Index marker present (value ``1``) only while the item is listed.
LISTED_INDEX_FIELD: str = "isListedGsi"

#: Key attribute of the tracked-item table.
KEY_FIELD: str = "id"

_LISTING_FORMAT = "FIXED_PRICE"
_LISTING_QUANTITY = 1


# ---------------------------------------------------------------------------
# Pure decision helpers
# ---------------------------------------------------------------------------


def detect_changes(item: TrackedItem, snapshot: UpstreamSnapshot) -> tuple[bool, bool]:
    """Return ``(title_changed, images_changed)`` with sticky carry-forward."""
    title_changed = item.is_title_changed or item.origin_title != snapshot.name
    images_changed = item.is_image_changed or item.origin_image_urls != snapshot.photos
    return title_changed, images_changed


def classify(
    item: TrackedItem,
    snapshot: UpstreamSnapshot,
    is_eligible: bool,
) -> ReconciliationOutcome:
    """Combine the fetched state and the eligibility answer into one outcome.

    For a snapshot that is not on sale, *is_eligible* is ignored.
    """
    if not snapshot.is_on_sale:
        return ReconciliationOutcome(
            is_live=False,
            title_changed=item.is_title_changed,
            images_changed=item.is_image_changed,
            is_eligible=False,
            dimensions_present=item.box_dimensions is not None,
            should_list=False,
        )

    title_changed, images_changed = detect_changes(item, snapshot)
    dimensions_present = item.box_dimensions is not None
    should_list = (
        is_eligible and not title_changed and not images_changed and dimensions_present
    )
    return ReconciliationOutcome(
        is_live=True,
        title_changed=title_changed,
        images_changed=images_changed,
        is_eligible=is_eligible,
        dimensions_present=dimensions_present,
        should_list=should_list,
    )


def build_update_fields(
    item: TrackedItem,
    snapshot: UpstreamSnapshot,
    outcome: ReconciliationOutcome,
    scanned_at: str,
) -> dict[str, Any]:
    """Return the attribute map persisted for *outcome*.

    The listed-index marker is not part of the map when the item is not
    listed; the caller removes it instead.
    """
    fields: dict[str, Any] = {
        "scannedAt": scanned_at,
        "scanCount": item.next_scan_count,
        "isOrgLive": outcome.is_live,
    }
    if outcome.is_live:
        fields.update(
            {
                "orgImageUrls": list(snapshot.photos),
                "orgPrice": snapshot.price,
                "orgTitle": snapshot.name,
                "isTitleChanged": outcome.title_changed,
                "isImageChanged": outcome.images_changed,
            }
        )
    fields["isListed"] = outcome.should_list
    if outcome.should_list:
        fields[LISTED_INDEX_FIELD] = 1
    return fields


def build_offer_payload(
    offer_part: dict[str, Any],
    item: TrackedItem,
    settings: Settings,
) -> dict[str, Any]:
    """Merge the pricing function's offer part with the fixed listing terms."""
    return {
        **offer_part,
        "sku": item.marketplace_sku,
        "marketplaceId": settings.marketplace_id,
        "format": _LISTING_FORMAT,
        "availableQuantity": _LISTING_QUANTITY,
        "categoryId": item.marketplace_category,
        "merchantLocationKey": settings.merchant_location_key,
        "storeCategoryNames": [item.marketplace_store_category],
    }


def build_inventory_payload(item: TrackedItem) -> dict[str, Any]:
    """Inventory record sent with the list call when enabled."""
    payload: dict[str, Any] = {
        "availability": {"shipToLocationAvailability": {"quantity": _LISTING_QUANTITY}},
        "condition": item.condition,
        "product": {
            "title": item.title,
            "description": item.description,
            "imageUrls": list(item.image_urls),
            "aspects": dict(item.aspect_params),
        },
    }
    if item.condition_description:
        payload["conditionDescription"] = item.condition_description
    return payload


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class Reconciler:
    """Apply the reconciliation decision for one fetched item.

    Args:
        procedures: Remote collaborators (delist, eligibility, offer, list).
        store: Record store holding the tracked items.
        settings: Table name, marketplace constants, scannedAt zone.
        now: Clock returning an aware :class:`datetime`; injectable for tests.
    """

    def __init__(
        self,
        procedures: RemoteProcedures,
        store: RecordStore,
        settings: Settings,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._procedures = procedures
        self._store = store
        self._settings = settings
        self._now = now

    async def reconcile(self, item: TrackedItem, snapshot: UpstreamSnapshot) -> ReconcileAction:
        """Decide the item's state and perform its side effects.

        Raises:
            UpstreamError: A delist, eligibility, offer or list call failed.
            StorageError: The record update failed.
        """
        scanned_at = format_scanned_at(self._now(), self._settings.scanned_at_timezone)

        if not snapshot.is_on_sale:
            outcome = classify(item, snapshot, is_eligible=False)
            await self._delist(item, snapshot, outcome, scanned_at)
            logger.info(
                "Origin item is %s; delisted %s.",
                snapshot.status,
                item.marketplace_sku,
                extra={"event": events.ITEM_ORIGIN_GONE, "sku": item.marketplace_sku},
            )
            return outcome.action

        is_eligible = await self._procedures.check_eligibility(snapshot)
        outcome = classify(item, snapshot, is_eligible)
        logger.debug("Reconciliation outcome: %s", outcome)

        if not outcome.should_list:
            await self._delist(item, snapshot, outcome, scanned_at)
            logger.info(
                "Item needs update (eligible=%s title_changed=%s images_changed=%s "
                "dimensions=%s); delisted %s.",
                outcome.is_eligible,
                outcome.title_changed,
                outcome.images_changed,
                outcome.dimensions_present,
                item.marketplace_sku,
                extra={"event": events.ITEM_NEEDS_UPDATE, "sku": item.marketplace_sku},
            )
            return outcome.action

        await self._list(item, snapshot, outcome, scanned_at)
        return outcome.action

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _delist(
        self,
        item: TrackedItem,
        snapshot: UpstreamSnapshot,
        outcome: ReconciliationOutcome,
        scanned_at: str,
    ) -> None:
        await self._procedures.delete_listing(item.marketplace_sku)
        await self._store.update_record(
            self._settings.table_name,
            KEY_FIELD,
            item.id,
            build_update_fields(item, snapshot, outcome, scanned_at),
            field_to_remove=LISTED_INDEX_FIELD,
        )

    async def _list(
        self,
        item: TrackedItem,
        snapshot: UpstreamSnapshot,
        outcome: ReconciliationOutcome,
        scanned_at: str,
    ) -> None:
        await self._store.update_record(
            self._settings.table_name,
            KEY_FIELD,
            item.id,
            build_update_fields(item, snapshot, outcome, scanned_at),
        )

        offer_part = await self._procedures.build_offer_part(snapshot, item)
        offer_payload = build_offer_payload(offer_part, item, self._settings)
        logger.debug("Offer payload: %s", offer_payload)

        inventory_payload = (
            build_inventory_payload(item) if self._settings.include_inventory_payload else None
        )
        result = await self._procedures.list_offer(
            item.marketplace_sku, offer_payload, inventory_payload
        )
        logger.info(
            "Listed %s (listing=%s).",
            item.marketplace_sku,
            result.listing_id,
            extra={"event": events.ITEM_LISTED, "sku": item.marketplace_sku},
        )
