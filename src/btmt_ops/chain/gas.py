"""EIP-1559 fee data: fetching and the per-iteration refresh cache."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

import httpx
from web3 import Web3
from web3.exceptions import Web3Exception

from btmt_ops.chain.networks import Network

logger = logging.getLogger("btmt_ops.chain.gas")

_GWEI = Decimal(10**9)
# Tip used when the node cannot suggest one.
_FALLBACK_PRIORITY_FEE = Web3.to_wei(1.5, "gwei")


@dataclass(frozen=True)
class FeeData:
    """Fee caps in wei."""

    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def as_tx_params(self) -> dict:
        return {
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }

    def describe(self) -> str:
        max_fee = Web3.from_wei(self.max_fee_per_gas, "gwei")
        tip = Web3.from_wei(self.max_priority_fee_per_gas, "gwei")
        return f"maxFee={max_fee} gwei, maxPriorityFee={tip} gwei"


def _gwei_to_wei(value: float | str) -> int:
    return math.ceil(Decimal(str(value)) * _GWEI)


def fetch_gas_station_fees(
    url: str,
    client: Optional[httpx.Client] = None,
    tier: str = "fast",
) -> FeeData:
    """Query a Polygon gas station (v2 format) and return the *tier* fees.

    The station answers with gwei floats, e.g.
    ``{"fast": {"maxPriorityFee": 31.2, "maxFee": 31.9}, ...}``.
    HTTP errors propagate to the caller.
    """
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=15)
    try:
        resp = client.get(url)
        resp.raise_for_status()
        data = resp.json()
    finally:
        if owns_client:
            client.close()

    try:
        entry = data[tier]
        fees = FeeData(
            max_fee_per_gas=_gwei_to_wei(entry["maxFee"]),
            max_priority_fee_per_gas=_gwei_to_wei(entry["maxPriorityFee"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Unexpected gas station response from {url}: {data!r}") from exc

    logger.debug(f"Gas station {url} ({tier}): {fees.describe()}")
    return fees


def fetch_node_fees(w3: Web3) -> FeeData:
    """Derive fees from the node: ``2 * baseFee + tip``.

    Falls back to the legacy gas price for both caps when the latest
    block carries no base fee.
    """
    latest = w3.eth.get_block("latest")
    base_fee = latest.get("baseFeePerGas")
    if base_fee is None:
        gas_price = w3.eth.gas_price
        return FeeData(max_fee_per_gas=gas_price, max_priority_fee_per_gas=gas_price)

    try:
        tip = w3.eth.max_priority_fee
    except (ValueError, Web3Exception):
        # Nodes without eth_maxPriorityFeePerGas
        tip = _FALLBACK_PRIORITY_FEE
    return FeeData(max_fee_per_gas=base_fee * 2 + tip, max_priority_fee_per_gas=tip)


def make_fee_fetcher(
    network: Network,
    w3: Web3,
    client: Optional[httpx.Client] = None,
) -> Callable[[], FeeData]:
    """Return a zero-argument fetcher appropriate for *network*."""
    if network.gas_station_url:
        url = network.gas_station_url
        return lambda: fetch_gas_station_fees(url, client=client)
    return lambda: fetch_node_fees(w3)


class FeeCache:
    """Holds the last fetched fees and refreshes them every N iterations.

    ``fees_for(i)`` re-fetches when ``i % refresh_every == 0`` (or when
    nothing has been fetched yet) and otherwise reuses the cached value.
    """

    def __init__(self, fetch: Callable[[], FeeData], refresh_every: int = 5) -> None:
        if refresh_every < 1:
            raise ValueError("refresh_every must be at least 1")
        self._fetch = fetch
        self.refresh_every = refresh_every
        self._current: FeeData | None = None
        self.fetch_count = 0

    @property
    def current(self) -> FeeData | None:
        return self._current

    def refresh(self) -> FeeData:
        """Fetch fresh fee data unconditionally."""
        self._current = self._fetch()
        self.fetch_count += 1
        logger.debug(f"Fee data refreshed: {self._current.describe()}")
        return self._current

    def fees_for(self, iteration: int) -> FeeData:
        if self._current is None or iteration % self.refresh_every == 0:
            return self.refresh()
        return self._current
