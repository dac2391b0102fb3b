"""Async client for the remote function gateway.

Wraps :class:`httpx.AsyncClient` with the invocation envelope used by every
remote collaborator of the worker (fetchers, delist, list, offer,
eligibility, sold-SKU lookup, "get next item"):

* **Invoke** — ``POST {base}/invoke`` with
  ``{"FunctionName": name, "Payload": "<payload JSON text>"}``.  The
  response body is the function's own JSON output, either
  ``{"errorMessage": ...}`` or ``{"success": bool, "result": ...}``.
* **Configuration touch** — ``POST {base}/configure`` with
  ``{"FunctionName": name, "Description": "<random marker>"}``.  Any change
  to a function's configuration makes the platform start its next
  invocation from a cold, clean instance.

Invocations are **not** retried here; retry and rotation policy belongs to
the caller (see :mod:`relister.orchestrator.rotation`).  The configuration
touch is retried with :mod:`tenacity` because the platform answers HTTP 409
while a previous update is still being applied.

Typical usage::

    async with FunctionGateway("https://functions.internal") as gateway:
        result = await gateway.invoke("get-ebay-orders", {"account": "main"})
"""

from __future__ import annotations

import json
import logging
import random
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from relister.core.exceptions import ApplicationFailure, TransportFailure

__all__ = ["FunctionGateway"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_INVOKE_PATH: Final[str] = "/invoke"
_CONFIGURE_PATH: Final[str] = "/configure"

_DEFAULT_TIMEOUT: Final[float] = 30.0

#: Total configuration-touch attempts (1 initial + 2 retries).
_TOUCH_MAX_ATTEMPTS: Final[int] = 3

#: Statuses on which a configuration touch is retried.
_TOUCH_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({409, 429, 500, 502, 503, 504})

_MAX_BACKOFF_BASE: Final[float] = 8.0
_MAX_BACKOFF_JITTER: Final[float] = 1.0


class _RetryableTouchError(TransportFailure):
    """Internal: a configuration touch answered with a retryable status.

    Escapes :meth:`FunctionGateway.touch_configuration` only after the retry
    budget is exhausted.
    """


def _touch_wait(retry_state: RetryCallState) -> float:
    """Exponential back-off with jitter: 1 s, 2 s, 4 s … capped."""
    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, _MAX_BACKOFF_JITTER)


class FunctionGateway:
    """Invoke remote functions and touch their configuration.

    Use as an ``async with`` context manager to guarantee the connection
    pool is closed on exit.

    Args:
        base_url: Gateway base URL (no trailing slash needed).
        token: Optional bearer token sent on every request.
        timeout: Per-request timeout in seconds.
        transport: Optional :mod:`httpx` transport, e.g.
            :class:`httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str = "",
        timeout: float = _DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FunctionGateway:
        self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("FunctionGateway HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def invoke(self, function_name: str, payload: dict[str, Any]) -> Any:
        """Invoke *function_name* with *payload* and return its ``result``.

        Args:
            function_name: Identifier of the remote function.
            payload: JSON-serialisable request payload.

        Returns:
            The ``result`` field of the decoded response envelope.

        Raises:
            TransportFailure: The call could not complete.
            ApplicationFailure: The envelope carries ``errorMessage``, its
                ``success`` flag is false or absent, or it is not JSON.
        """
        body = {"FunctionName": function_name, "Payload": json.dumps(payload)}
        response = await self._post(function_name, _INVOKE_PATH, body)

        text = response.text
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ApplicationFailure(
                function_name, "Response is not valid JSON.", raw_response=text
            ) from exc

        if not isinstance(envelope, dict):
            raise ApplicationFailure(
                function_name, "Response is not a JSON object.", raw_response=text
            )
        if envelope.get("errorMessage"):
            raise ApplicationFailure(function_name, text, raw_response=text)
        if not envelope.get("success"):
            raise ApplicationFailure(
                function_name,
                f"Function {function_name} failed.",
                raw_response=text,
            )
        return envelope.get("result")

    async def touch_configuration(self, function_name: str) -> None:
        """Write a random marker into the function's configuration.

        Retried on transport errors and on 409/429/5xx answers.

        Raises:
            TransportFailure: After the retry budget is exhausted.
        """
        body = {"FunctionName": function_name, "Description": f"{random.random()}"}

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Configuration touch of %s: attempt %d/%d failed (%s). Retrying.",
                function_name,
                rs.attempt_number,
                _TOUCH_MAX_ATTEMPTS,
                exc,
            )

        async for attempt in AsyncRetrying(
            wait=_touch_wait,
            stop=stop_after_attempt(_TOUCH_MAX_ATTEMPTS),
            retry=retry_if_exception_type(_RetryableTouchError),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                await self._post(
                    function_name,
                    _CONFIGURE_PATH,
                    body,
                    retryable_status=_TOUCH_RETRYABLE_STATUS,
                )

        logger.debug("Configuration of %s touched (%s).", function_name, body["Description"])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            headers = {"Accept": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
            logger.debug("FunctionGateway session opened (base_url=%r).", self._base_url)
        return self._http

    async def _post(
        self,
        function_name: str,
        path: str,
        body: dict[str, Any],
        *,
        retryable_status: frozenset[int] = frozenset(),
    ) -> httpx.Response:
        """POST *body* to *path*, mapping every failure to :class:`TransportFailure`."""
        client = self._ensure_client()
        try:
            response = await client.post(path, json=body)
        except httpx.TransportError as exc:
            if retryable_status:
                raise _RetryableTouchError(function_name, f"Transport error: {exc}") from exc
            raise TransportFailure(function_name, f"Transport error: {exc}") from exc

        logger.debug("POST %s %s → %d", path, function_name, response.status_code)

        if response.is_success:
            return response
        message = f"HTTP {response.status_code} from gateway: {response.text[:200]}"
        if response.status_code in retryable_status:
            raise _RetryableTouchError(function_name, message)
        raise TransportFailure(function_name, message)
