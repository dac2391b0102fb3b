"""Typed wrappers around every remote procedure the worker calls.

Each method builds the request payload the remote function expects, invokes
it through :class:`~relister.gateway.client.FunctionGateway`, and validates
the ``result`` into a model from :mod:`relister.core.models` immediately.
A response that does not match its schema is rejected as
:class:`~relister.core.exceptions.ApplicationFailure`, so nothing untyped
travels past this module.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from relister.core.exceptions import ApplicationFailure, MalformedInputError
from relister.core.models import (
    EligibilityResult,
    ListResult,
    SoldSkusResult,
    TrackedItem,
    UpstreamSnapshot,
)
from relister.core.settings import Settings
from relister.gateway.client import FunctionGateway

__all__ = ["RemoteProcedures"]

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


def _validate(model: type[_M], function_name: str, result: Any) -> _M:
    try:
        return model.model_validate(result)
    except ValidationError as exc:
        raise ApplicationFailure(
            function_name,
            f"Unexpected {model.__name__} response: {exc.error_count()} validation error(s)",
        ) from exc


class RemoteProcedures:
    """The worker's remote collaborators, one method per function.

    Args:
        gateway: Open :class:`FunctionGateway`.
        settings: Supplies the function identifiers and the marketplace
            account name.
    """

    def __init__(self, gateway: FunctionGateway, settings: Settings) -> None:
        self._gateway = gateway
        self._settings = settings

    @property
    def gateway(self) -> FunctionGateway:
        return self._gateway

    # ------------------------------------------------------------------
    # Work retrieval
    # ------------------------------------------------------------------

    async def fetch_sold_skus(self) -> frozenset[str]:
        """Return the SKUs currently sold on the destination marketplace."""
        name = self._settings.sold_skus_function
        result = await self._gateway.invoke(name, {"account": self._settings.marketplace_account})
        return frozenset(_validate(SoldSkusResult, name, result).skus)

    async def get_next_item(self) -> TrackedItem:
        """Ask the server-side cursor for the next item to reconcile.

        Raises:
            MalformedInputError: If the function returned no item.
        """
        name = self._settings.next_item_function
        result = await self._gateway.invoke(name, {})
        if not result:
            raise MalformedInputError(f"{name} returned an empty item")
        try:
            return TrackedItem.model_validate(result)
        except ValidationError as exc:
            raise MalformedInputError(f"{name} returned a malformed item: {exc}") from exc

    # ------------------------------------------------------------------
    # Upstream
    # ------------------------------------------------------------------

    async def fetch_item(self, fetcher: str, origin_item_id: str) -> UpstreamSnapshot:
        """Fetch the live origin-marketplace item through *fetcher*."""
        result = await self._gateway.invoke(fetcher, {"id": origin_item_id})
        return _validate(UpstreamSnapshot, fetcher, result)

    async def check_eligibility(self, snapshot: UpstreamSnapshot) -> bool:
        name = self._settings.eligibility_function
        item = snapshot.model_dump(mode="json", exclude_unset=True)
        result = await self._gateway.invoke(name, {"item": item})
        return _validate(EligibilityResult, name, result).is_eligible

    # ------------------------------------------------------------------
    # Destination marketplace
    # ------------------------------------------------------------------

    async def delete_listing(self, sku: str) -> None:
        await self._gateway.invoke(
            self._settings.delist_function,
            {"account": self._settings.marketplace_account, "sku": sku},
        )

    async def build_offer_part(
        self,
        snapshot: UpstreamSnapshot,
        item: TrackedItem,
    ) -> dict[str, Any]:
        """Ask the pricing function for the price and policy part of the offer.

        Raises:
            MalformedInputError: If the item has no complete box dimensions.
        """
        name = self._settings.offer_part_function
        dimensions = item.box_dimensions
        if dimensions is None:
            raise MalformedInputError(f"Item {item.id} has no box dimensions")
        length, width, height = dimensions
        result = await self._gateway.invoke(
            name,
            {
                "id": snapshot.id,
                "account": self._settings.marketplace_account,
                "orgPrice": snapshot.price,
                "weight": item.weight_grams,
                "box_dimensions": {"length": length, "width": width, "height": height},
            },
        )
        if not isinstance(result, dict):
            raise ApplicationFailure(name, "Offer part is not a JSON object.")
        return result

    async def list_offer(
        self,
        sku: str,
        offer_payload: dict[str, Any],
        inventory_payload: dict[str, Any] | None = None,
    ) -> ListResult:
        name = self._settings.list_function
        payload: dict[str, Any] = {
            "sku": sku,
            "offerPayload": offer_payload,
            "account": self._settings.marketplace_account,
        }
        if inventory_payload is not None:
            payload["inventoryPayload"] = inventory_payload
        result = await self._gateway.invoke(name, payload)
        return _validate(ListResult, name, result or {})
