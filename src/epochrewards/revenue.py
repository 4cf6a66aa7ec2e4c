"""
epochrewards/revenue.py

Affiliate revenue lookup for an epoch window.

The revenue service reports what the treasury earned from swap affiliate
fees between two timestamps, already converted to RUNE base units.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

from .errors import ChainError, ConfigError, SchemaError, TransientError
from .retry import RetryPolicy, retry_sync

logger = logging.getLogger("epochrewards.revenue")

DEFAULT_RETRY = RetryPolicy(interval=1.0, max_attempts=4, backoff=2.0)


@dataclass
class Revenue:
    """Affiliate revenue earned over an epoch."""
    amount: str                                            # total, RUNE base units
    addresses: List[str] = field(default_factory=list)     # affiliate addresses counted
    revenue: Dict[str, str] = field(default_factory=dict)  # base units per denom

    @classmethod
    def from_dict(cls, data: dict) -> "Revenue":
        if not isinstance(data, dict):
            raise SchemaError("revenue response is not an object")
        amount = data.get("amount")
        if not isinstance(amount, str) or not amount.isdigit():
            raise SchemaError(f"revenue amount is not a base-unit integer: {amount!r}")
        return cls(
            amount=amount,
            addresses=list(data.get("addresses") or []),
            revenue=dict(data.get("revenue") or {}),
        )


class RevenueClient:
    """Client for the affiliate revenue endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        retry: RetryPolicy = DEFAULT_RETRY,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ConfigError("UNCHAINED_URL not set, please fill out your environment")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry = retry
        self._session = session or requests.Session()

    def _get_once(self, start_timestamp: int, end_timestamp: int) -> dict:
        url = f"{self.base_url}/api/v1/affiliate/revenue"
        try:
            resp = self._session.get(
                url,
                params={"start": start_timestamp, "end": end_timestamp},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(f"revenue request failed: {e}") from e
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"revenue request: HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code >= 400:
            raise ChainError(f"revenue request: HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise SchemaError("revenue response is not JSON") from e

    def get_revenue(self, start_timestamp: int, end_timestamp: int) -> Revenue:
        """Revenue between two millisecond timestamps."""
        try:
            data = retry_sync(
                lambda: self._get_once(start_timestamp, end_timestamp), self.retry, description="Revenue request",
            )
        except TransientError as e:
            raise ChainError(
                f"Failed to get revenue for period (start: {start_timestamp} - end: {end_timestamp}): {e}"
            ) from e

        revenue = Revenue.from_dict(data)
        logger.info(f"Affiliate addresses: {', '.join(revenue.addresses) or '(none)'}")
        for denom, amount in revenue.revenue.items():
            logger.info(f"Revenue earned in {denom}: {amount}")
        logger.info(f"Total revenue in RUNE base units: {revenue.amount}")
        return revenue
