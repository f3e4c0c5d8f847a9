"""Web3 provider: connection, named signers, and contract transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from btmt_ops.chain.artifacts import ContractArtifact
from btmt_ops.chain.gas import FeeData
from btmt_ops.chain.networks import Network
from btmt_ops.config import SIGNER_COUNT, Settings

logger = logging.getLogger("btmt_ops.chain.provider")

DEFAULT_RECEIPT_TIMEOUT = 600


class TransactionFailed(RuntimeError):
    """A mined transaction reverted (receipt status 0)."""

    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        super().__init__(f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash
        self.receipt = receipt


@dataclass(frozen=True)
class SentTransaction:
    """A submitted (not necessarily mined) transaction."""

    hash: str
    nonce: int


# ---------------------------------------------------------------------------
# Signers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Signers:
    """The ten operator accounts, bound to their roles by position."""

    company_liquidity: LocalAccount
    allocations: LocalAccount
    crowdsales: LocalAccount
    company_rewards: LocalAccount
    esg_fund: LocalAccount
    whitelister: LocalAccount
    feeless_admin: LocalAccount
    company_restriction_whitelist: LocalAccount
    allocations_admin: LocalAccount
    crowdsales_client_purchaser: LocalAccount

    @classmethod
    def roles(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_accounts(cls, accounts: list[LocalAccount]) -> Signers:
        if len(accounts) < SIGNER_COUNT:
            raise ValueError(
                f"Need {SIGNER_COUNT} signer accounts, got {len(accounts)}."
            )
        return cls(*accounts[:SIGNER_COUNT])

    @classmethod
    def from_settings(cls, settings: Settings) -> Signers:
        """Load signers from ``PRIVATE_KEYS`` or derive them from ``MNEMONIC``."""
        if settings.private_keys:
            accounts = [Account.from_key(key) for key in settings.private_keys]
        elif settings.mnemonic:
            Account.enable_unaudited_hdwallet_features()
            accounts = [
                Account.from_mnemonic(
                    settings.mnemonic, account_path=f"m/44'/60'/0'/0/{i}"
                )
                for i in range(SIGNER_COUNT)
            ]
        else:
            raise ValueError("Set PRIVATE_KEYS or MNEMONIC to provide signer accounts.")
        return cls.from_accounts(accounts)


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PendingDeployment:
    """A contract creation transaction that has been sent."""

    artifact: ContractArtifact
    sent: SentTransaction


class ContractHandle:
    """A deployed contract bound to a provider."""

    def __init__(self, provider: ChainProvider, artifact: ContractArtifact, address: str) -> None:
        self.provider = provider
        self.artifact = artifact
        self.address = Web3.to_checksum_address(address)
        self._contract = provider.w3.eth.contract(address=self.address, abi=artifact.abi)

    def __repr__(self) -> str:
        return f"<ContractHandle {self.artifact.name} at {self.address}>"

    def _function(self, fn_name: str, *args: Any):
        return getattr(self._contract.functions, fn_name)(*args)

    def call(self, fn_name: str, *args: Any) -> Any:
        """Run a read-only call."""
        return self._function(fn_name, *args).call()

    def transact(
        self, fn_name: str, *args: Any, signer: LocalAccount, fees: FeeData
    ) -> SentTransaction:
        """Sign and send a state-changing call as *signer*."""
        tx = self._function(fn_name, *args).build_transaction(
            self.provider.base_tx(signer, fees)
        )
        return self.provider.sign_and_send(tx, signer)


class ChainProvider:
    """Wraps a :class:`Web3` instance for one network."""

    def __init__(self, w3: Web3, network: Network) -> None:
        self.w3 = w3
        self.network = network

    @classmethod
    def connect(cls, network: Network, settings: Settings) -> ChainProvider:
        """Open an HTTP connection to *network*.

        Injects POA middleware for Polygon chains.
        """
        rpc_url = settings.rpc_url or network.resolve_rpc_url(settings.alchemy_api_key)
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        if network.poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        logger.debug(f"Connected to {network.name} (chain id {network.chain_id})")
        return cls(w3, network)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def base_tx(self, signer: LocalAccount, fees: FeeData) -> dict:
        """Common transaction fields: sender, pending nonce, chain id, fees."""
        return {
            "from": signer.address,
            "nonce": self.w3.eth.get_transaction_count(signer.address, "pending"),
            "chainId": self.network.chain_id,
            **fees.as_tx_params(),
        }

    def sign_and_send(self, tx: dict, signer: LocalAccount) -> SentTransaction:
        signed = signer.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return SentTransaction(hash=Web3.to_hex(tx_hash), nonce=tx["nonce"])

    def wait(self, sent: SentTransaction, timeout: int = DEFAULT_RECEIPT_TIMEOUT) -> Any:
        """Wait for a receipt; raise :class:`TransactionFailed` on revert."""
        receipt = self.w3.eth.wait_for_transaction_receipt(sent.hash, timeout=timeout)
        if receipt["status"] == 0:
            raise TransactionFailed(sent.hash, receipt)
        return receipt

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def deploy(
        self,
        artifact: ContractArtifact,
        *args: Any,
        signer: LocalAccount,
        fees: FeeData,
    ) -> PendingDeployment:
        """Send the creation transaction for *artifact*."""
        if not artifact.deployable:
            raise ValueError(f"Artifact '{artifact.name}' has no bytecode to deploy.")
        factory = self.w3.eth.contract(abi=artifact.abi, bytecode=artifact.bytecode)
        tx = factory.constructor(*args).build_transaction(self.base_tx(signer, fees))
        return PendingDeployment(artifact=artifact, sent=self.sign_and_send(tx, signer))

    def wait_for_deployment(
        self, pending: PendingDeployment, timeout: int = DEFAULT_RECEIPT_TIMEOUT
    ) -> ContractHandle:
        receipt = self.wait(pending.sent, timeout=timeout)
        address: Optional[str] = receipt.get("contractAddress")
        if not address:
            raise TransactionFailed(pending.sent.hash, receipt)
        return ContractHandle(self, pending.artifact, address)

    def attach(self, artifact: ContractArtifact, address: str) -> ContractHandle:
        return ContractHandle(self, artifact, address)
