# Overview: Warehouse provider HTTP client used for PII recovery.

"""
Warehouse provider API client.

Used exclusively for PII recovery: looking up the shipping identity the
warehouse holds for an order when the commerce platform record lacks it.

Endpoints:
- GET /order-info?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD&page=N&page_size=M
- GET /order-info?order_ids=<reference>

Response envelope:
    {"code": 0, "msg": "success", "data": {"list": [...], "page": 1, "total_page": 3}}

Each page is retried with exponential backoff on transient failures
(network errors, timeouts, HTTP 429 and 5xx). Anything else is raised as
ExternalServiceError immediately, as is a body that does not match the
envelope above. Non-object entries in `list` are dropped.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

import httpx

from .errors import ExternalServiceError, TransientExternalError

logger = logging.getLogger(__name__)

ORDER_INFO_PATH = "/order-info"
API_KEY_HEADER = "apikey"


def _is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _records(value: Any) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ExternalServiceError("Warehouse data.list is not a list")
    return [dict(record) for record in value if isinstance(record, Mapping)]


def _total_pages(value: Any) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise ExternalServiceError(f"Warehouse total_page is not an integer: {value!r}")
    try:
        return max(1, int(value))
    except (TypeError, ValueError) as exc:
        raise ExternalServiceError(f"Warehouse total_page is not an integer: {value!r}") from exc


class WarehouseClient:
    """
    Synchronous client for the warehouse provider.

    Callers must aggregate every page for a requested window; get_orders_info
    does that and returns a flat list.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        page_size: int = 100,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not api_key:
            raise ValueError("Warehouse API key is required")
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self.page_size = page_size
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={API_KEY_HEADER: api_key, "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Optional[WarehouseClient]:
        """Build from Flask config; None when live lookups are disabled."""
        api_key = config.get("WAREHOUSE_API_KEY")
        base_url = config.get("WAREHOUSE_API_URL")
        if not api_key or not base_url:
            return None
        return cls(
            base_url,
            api_key,
            timeout=float(config.get("WAREHOUSE_TIMEOUT_SECONDS", 10.0)),
            max_retries=int(config.get("WAREHOUSE_MAX_RETRIES", 3)),
            backoff_seconds=float(config.get("WAREHOUSE_BACKOFF_SECONDS", 0.5)),
            page_size=int(config.get("WAREHOUSE_PAGE_SIZE", 100)),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WarehouseClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # Public API
    # =========================================================================

    def get_orders_info(self, start_date: str, end_date: str) -> list[dict[str, Any]]:
        """
        All warehouse orders in [start_date, end_date], every page aggregated.

        Raises:
            TransientExternalError: A page kept failing after all retries
            ExternalServiceError: Non-retryable provider error
        """
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._get_page({
                "start_date": start_date,
                "end_date": end_date,
                "page": page,
                "page_size": self.page_size,
            })
            records.extend(data["list"])
            total_pages = data["total_page"]
            if page >= total_pages:
                break
            page += 1

        logger.debug("Fetched %d warehouse orders for %s..%s", len(records), start_date, end_date)
        return records

    def find_order(self, reference: str) -> Optional[dict[str, Any]]:
        """Look up a single warehouse order by order name or id."""
        data = self._get_page({"order_ids": reference})
        for record in data["list"]:
            if str(record.get("order_id")) == reference or str(record.get("sys_order_id")) == reference:
                return record
        return None

    # =========================================================================
    # Transport
    # =========================================================================

    def _get_page(self, params: dict[str, Any]) -> dict[str, Any]:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._request(params)
            except TransientExternalError as exc:
                if attempt >= attempts:
                    logger.warning("Warehouse request failed after %d attempts: %s", attempts, exc)
                    raise
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.info("Warehouse request transient failure (attempt %d/%d), retrying in %.2fs: %s",
                            attempt, attempts, delay, exc)
                self._sleep(delay)
        raise TransientExternalError("Warehouse request was not attempted")

    def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.get(ORDER_INFO_PATH, params=params)
        except httpx.TransportError as exc:
            raise TransientExternalError(f"Warehouse transport error: {exc}") from exc

        if _is_transient_status(response.status_code):
            raise TransientExternalError(f"Warehouse HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ExternalServiceError(f"Warehouse HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalServiceError("Warehouse returned a non-JSON body") from exc

        if not isinstance(body, Mapping):
            raise ExternalServiceError(f"Warehouse returned an unexpected body: {type(body).__name__}")
        if body.get("code", 0) != 0:
            raise ExternalServiceError(f"Warehouse error {body.get('code')}: {body.get('msg')}")

        data = body.get("data") or {}
        if isinstance(data, list):
            # Single-page endpoints return the list directly
            data = {"list": data, "page": 1, "total_page": 1}
        if not isinstance(data, Mapping):
            raise ExternalServiceError("Warehouse envelope has no data object")
        return {"list": _records(data.get("list")), "total_page": _total_pages(data.get("total_page"))}
