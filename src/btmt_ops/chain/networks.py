"""Network profiles for the supported deployment targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from btmt_ops.config import Environment


@dataclass(frozen=True)
class Network:
    """An EVM network the toolkit can deploy to."""

    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str
    explorer_url: str
    gas_station_url: Optional[str] = None  # None means ask the node
    poa: bool = False

    def resolve_rpc_url(self, api_key: str = "") -> str:
        """Fill the ``{api_key}`` slot of hosted RPC URLs."""
        return self.rpc_url.format(api_key=api_key)


NETWORKS: dict[Environment, Network] = {
    Environment.DEVELOPMENT: Network(
        name="localhost",
        chain_id=31337,
        rpc_url="http://127.0.0.1:8545",
        native_symbol="ETH",
        explorer_url="",
    ),
    Environment.TESTING: Network(
        name="maticmum",
        chain_id=80001,
        rpc_url="https://polygon-mumbai.g.alchemy.com/v2/{api_key}",
        native_symbol="MATIC",
        explorer_url="https://mumbai.polygonscan.com",
        gas_station_url="https://gasstation-testnet.polygon.technology/v2",
        poa=True,
    ),
    Environment.PRODUCTION: Network(
        name="matic",
        chain_id=137,
        rpc_url="https://polygon-mainnet.g.alchemy.com/v2/{api_key}",
        native_symbol="MATIC",
        explorer_url="https://polygonscan.com",
        gas_station_url="https://gasstation.polygon.technology/v2",
        poa=True,
    ),
}


def get_network(environment: Environment | str) -> Network:
    """Get the network for a profile. Raises ``KeyError`` if not found."""
    if isinstance(environment, str):
        try:
            environment = Environment(environment)
        except ValueError:
            raise KeyError(
                f"Unknown environment '{environment}'. Available: {list_environments()}"
            ) from None
    if environment not in NETWORKS:
        raise KeyError(
            f"Unknown environment '{environment.value}'. Available: {list_environments()}"
        )
    return NETWORKS[environment]


def list_environments() -> list[str]:
    """Return the names of all configured profiles."""
    return [env.value for env in NETWORKS]
