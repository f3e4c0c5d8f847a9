"""Deployment task: token, allocations and private sale, plus permission wiring.

The 17 steps run strictly in order and each one is mined before the next is
sent.  Nothing is retried or rolled back: a failure stops the run and the
steps already mined stay on-chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from web3 import Web3

from btmt_ops.chain.artifacts import ALLOCATIONS, PRIVATE_SALE, TOKEN, load_artifact
from btmt_ops.chain.gas import FeeData
from btmt_ops.chain.provider import (
    ChainProvider,
    ContractHandle,
    PendingDeployment,
    SentTransaction,
    Signers,
)
from btmt_ops.config import DeployParams

logger = logging.getLogger("btmt_ops.tasks.deploy")


@dataclass(frozen=True)
class StepRecord:
    number: int
    description: str
    tx_hash: str
    nonce: int


@dataclass
class DeploymentResult:
    token_address: str = ""
    allocations_address: str = ""
    private_sale_address: str = ""
    steps: list[StepRecord] = field(default_factory=list)

    def env_lines(self) -> list[str]:
        """``KEY=value`` lines for pasting into an ``.env_*`` file."""
        return [
            f"TOKEN_CONTRACT_ADDRESS={self.token_address}",
            f"ALLOCATIONS_CONTRACT_ADDRESS={self.allocations_address}",
            f"WHITELISTED_CONTRACT_ADDRESS={self.private_sale_address}",
        ]


def _tokens(amount: int) -> int:
    return Web3.to_wei(amount, "ether")


class Deployer:
    """Runs the deployment choreography against a :class:`ChainProvider`."""

    def __init__(
        self,
        provider: ChainProvider,
        signers: Signers,
        params: DeployParams,
        fetch_fees: Callable[[], FeeData],
        artifacts_dir: Path,
        announce: Callable[[str], None] | None = None,
    ) -> None:
        self.provider = provider
        self.signers = signers
        self.params = params
        self._fetch_fees = fetch_fees
        self.artifacts_dir = Path(artifacts_dir)
        self._announce = announce or logger.info
        self.result = DeploymentResult()
        self.fees: FeeData | None = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refresh_fees(self) -> FeeData:
        self.fees = self._fetch_fees()
        logger.debug(f"Using fees {self.fees.describe()}")
        return self.fees

    def _record(self, description: str, sent: SentTransaction) -> None:
        number = len(self.result.steps) + 1
        logger.info(
            f"{number}) {description} transaction hash {sent.hash} with nonce {sent.nonce}"
        )
        self.result.steps.append(StepRecord(number, description, sent.hash, sent.nonce))

    def _step(self, description: str, sent: SentTransaction) -> None:
        self._record(description, sent)
        self.provider.wait(sent)

    def _deployed(self, description: str, pending: PendingDeployment) -> ContractHandle:
        self._record(description, pending.sent)
        return self.provider.wait_for_deployment(pending)

    def token_constructor_args(self) -> dict:
        p, s = self.params, self.signers
        return {
            "initialSupply": p.initial_supply,
            "finalSupply": p.final_supply,
            "allocationsWalletTokens": p.allocations_wallet_tokens,
            "crowdsalesWalletTokens": p.crowdsales_wallet_tokens,
            "maxCompanyWalletTransfer": p.max_company_wallet_transfer,
            "companyRate": p.company_rate,
            "esgFundRate": p.esg_fund_rate,
            "burnRate": p.burn_rate,
            "allocationsWallet": s.allocations.address,
            "crowdsalesWallet": s.crowdsales.address,
            "companyRewardsWallet": s.company_rewards.address,
            "esgFundWallet": s.esg_fund.address,
            "feelessAdminWallet": s.feeless_admin.address,
            "companyRestrictionWhitelistWallet": s.company_restriction_whitelist.address,
        }

    def private_sale_constructor_args(self, token_address: str) -> dict:
        p, s = self.params, self.signers
        return {
            "rate": p.whitelisted_rate,
            "wallet": s.crowdsales.address,
            "purchaser": s.crowdsales_client_purchaser.address,
            "token": token_address,
            "whitelister": s.whitelister.address,
            "openingTime": p.private_sale_opening_time,
            "closingTime": p.private_sale_closing_time,
            "investorTariff": _tokens(p.investor_tariff),
            "investorCap": _tokens(p.investor_cap),
            "cliff": p.private_sale_cliff,
            "vestingDuration": p.private_sale_vesting_duration,
        }

    # ------------------------------------------------------------------
    # Choreography
    # ------------------------------------------------------------------

    def run(self) -> DeploymentResult:
        p, s = self.params, self.signers
        token_artifact = load_artifact(self.artifacts_dir, TOKEN)
        allocations_artifact = load_artifact(self.artifacts_dir, ALLOCATIONS)
        sale_artifact = load_artifact(self.artifacts_dir, PRIVATE_SALE)

        fees = self._refresh_fees()
        token = self._deployed(
            "Token deployment",
            self.provider.deploy(
                token_artifact, self.token_constructor_args(),
                signer=s.company_liquidity, fees=fees,
            ),
        )
        self.result.token_address = token.address
        self._announce(f"TOKEN_CONTRACT_ADDRESS={token.address}")

        total_supply = token.call("totalSupply")
        allocations_cap = total_supply // 3

        fees = self._refresh_fees()
        allocations = self._deployed(
            "Allocations contract deployment",
            self.provider.deploy(
                allocations_artifact,
                s.allocations.address,
                s.allocations_admin.address,
                token.address,
                p.allocations_cliff,
                p.allocations_vesting_duration,
                signer=s.company_liquidity,
                fees=fees,
            ),
        )
        self.result.allocations_address = allocations.address
        self._announce(f"ALLOCATIONS_CONTRACT_ADDRESS={allocations.address}")

        allocations_tokens = _tokens(p.allocations_wallet_tokens)
        fees = self._refresh_fees()
        self._step(
            "Make allocations contract feeless",
            token.transact("addFeeless", allocations.address, signer=s.feeless_admin, fees=fees),
        )
        self._step(
            "Make allocations wallet feeless",
            token.transact(
                "addFeeless", s.allocations.address, signer=s.feeless_admin, fees=fees
            ),
        )
        self._step(
            "Make allocations wallet an unrestricted receiver for company liquidity",
            token.transact(
                "addUnrestrictedReceiver",
                s.company_liquidity.address,
                s.allocations.address,
                allocations_tokens,
                signer=s.company_restriction_whitelist,
                fees=fees,
            ),
        )
        self._step(
            "Do the unrestricted transfer from liquidity to allocations wallet",
            token.transact(
                "transfer", s.allocations.address, allocations_tokens,
                signer=s.company_liquidity, fees=fees,
            ),
        )
        self._step(
            "Make allocations contract an unrestricted receiver for allocations wallet",
            token.transact(
                "addUnrestrictedReceiver",
                s.allocations.address,
                allocations.address,
                allocations_tokens,
                signer=s.company_restriction_whitelist,
                fees=fees,
            ),
        )
        self._step(
            "Make allocations contract a feeless admin",
            token.transact(
                "addFeelessAdmin", allocations.address, signer=s.feeless_admin, fees=fees
            ),
        )
        self._step(
            "Give allowance to the allocations contract from the allocations wallet",
            token.transact(
                "approve", allocations.address, allocations_cap,
                signer=s.allocations, fees=fees,
            ),
        )

        total_sales_supply = total_supply // 3
        private_sale_cap = total_sales_supply * 4 // 10

        fees = self._refresh_fees()
        sale = self._deployed(
            "Private sale deployment",
            self.provider.deploy(
                sale_artifact, self.private_sale_constructor_args(token.address),
                signer=s.company_liquidity, fees=fees,
            ),
        )
        self.result.private_sale_address = sale.address
        self._announce(f"WHITELISTED_CONTRACT_ADDRESS={sale.address}")

        crowdsales_tokens = _tokens(p.crowdsales_wallet_tokens)
        fees = self._refresh_fees()
        self._step(
            "Make private sale contract feeless",
            token.transact("addFeeless", sale.address, signer=s.feeless_admin, fees=fees),
        )
        self._step(
            "Make crowdsales wallet feeless",
            token.transact("addFeeless", s.crowdsales.address, signer=s.feeless_admin, fees=fees),
        )
        self._step(
            "Make crowdsales wallet an unrestricted receiver for company liquidity",
            token.transact(
                "addUnrestrictedReceiver",
                s.company_liquidity.address,
                s.crowdsales.address,
                crowdsales_tokens,
                signer=s.company_restriction_whitelist,
                fees=fees,
            ),
        )
        self._step(
            "Do the unrestricted transfer from liquidity to crowdsales wallet",
            token.transact(
                "transfer", s.crowdsales.address, crowdsales_tokens,
                signer=s.company_liquidity, fees=fees,
            ),
        )
        self._step(
            "Make private sale contract an unrestricted receiver for crowdsales wallet",
            token.transact(
                "addUnrestrictedReceiver",
                s.crowdsales.address,
                sale.address,
                private_sale_cap,
                signer=s.company_restriction_whitelist,
                fees=fees,
            ),
        )
        self._step(
            "Make private sale contract a feeless admin",
            token.transact("addFeelessAdmin", sale.address, signer=s.feeless_admin, fees=fees),
        )
        self._step(
            "Give allowance to the private sale contract from the crowdsales wallet",
            token.transact(
                "approve", sale.address, private_sale_cap, signer=s.crowdsales, fees=fees
            ),
        )

        return self.result
