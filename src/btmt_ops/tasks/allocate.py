"""Allocation task: fund freshly generated wallets through the allocations contract."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

from btmt_ops.chain.gas import FeeCache
from btmt_ops.chain.provider import ContractHandle, SentTransaction, TransactionFailed
from btmt_ops.ledger import AllocationLedger, AllocationRecord, ledger_for_cohort

logger = logging.getLogger("btmt_ops.tasks.allocate")

FEE_REFRESH_EVERY = 5


@dataclass(frozen=True)
class Cohort:
    """A group of wallets with tiered allocation amounts.

    ``tiers`` is a list of ``(upper_bound, amount)`` pairs: wallet index
    ``i`` gets the amount of the first tier with ``i < upper_bound``, or
    ``default_amount`` when no tier matches.
    """

    name: str
    size: int
    tiers: tuple[tuple[int, int], ...]
    default_amount: int

    def amount_for(self, index: int) -> int:
        for upper, amount in self.tiers:
            if index < upper:
                return amount
        return self.default_amount

    def total(self) -> int:
        return sum(self.amount_for(i) for i in range(self.size))


TEAM = Cohort(
    name="team",
    size=1070,
    tiers=((10, 1_000_000), (20, 500_000), (70, 100_000)),
    default_amount=10_000,
)
SALES = Cohort(
    name="sales",
    size=565,
    tiers=((5, 1_000_000), (15, 500_000), (65, 100_000)),
    default_amount=10_000,
)
COHORTS: dict[str, Cohort] = {TEAM.name: TEAM, SALES.name: SALES}


def get_cohorts(selection: str = "all") -> list[Cohort]:
    """Resolve ``team``, ``sales`` or ``all`` (team first, then sales)."""
    if selection == "all":
        return [TEAM, SALES]
    if selection not in COHORTS:
        raise KeyError(f"Unknown cohort '{selection}'. Available: {['all', *COHORTS]}")
    return [COHORTS[selection]]


def random_delay(rng=random) -> float:
    """Seconds to pause between iterations: 1ms to 1001ms."""
    return (1 + rng.random() * 1000) / 1000


@dataclass
class AllocationSummary:
    cohort: str
    allocated: int = 0
    total_amount: int = 0
    skipped: int = 0
    records: list[AllocationRecord] = field(default_factory=list)


class Allocator:
    """Runs the allocation loop for one or more cohorts.

    Each iteration generates a wallet, submits ``allocate``, records the
    submitted transaction in the cohort's ledger, waits for it to be mined,
    and sleeps a random delay.  Any failure propagates and stops the run;
    the ledger keeps every row written so far.
    """

    def __init__(
        self,
        allocations: ContractHandle,
        admin: LocalAccount,
        fee_cache: FeeCache,
        ledger_dir: Path,
        *,
        sleep: Optional[Callable[[float], None]] = None,
        delay: Callable[[], float] = random_delay,
        create_wallet: Callable[[], LocalAccount] = Account.create,
    ) -> None:
        self.allocations = allocations
        self.admin = admin
        self.fee_cache = fee_cache
        self.ledger_dir = Path(ledger_dir)
        self._sleep = sleep or time.sleep
        self._delay = delay
        self._create_wallet = create_wallet

    def run(
        self,
        cohorts: list[Cohort],
        limit: Optional[int] = None,
        resume: bool = False,
    ) -> list[AllocationSummary]:
        # Fees are fetched once before any cohort, then every Nth iteration.
        self.fee_cache.refresh()
        return [self.run_cohort(c, limit=limit, resume=resume) for c in cohorts]

    def run_cohort(
        self, cohort: Cohort, limit: Optional[int] = None, resume: bool = False
    ) -> AllocationSummary:
        ledger = ledger_for_cohort(self.ledger_dir, cohort.name)
        ledger.ensure()

        count = cohort.size if limit is None else min(limit, cohort.size)
        start = self._resume_index(ledger) if resume else 0
        summary = AllocationSummary(cohort=cohort.name, skipped=min(start, count))
        if start:
            logger.info(f"Resuming {cohort.name} at wallet #{start + 1} ({ledger.path})")

        for i in range(start, count):
            record = self._allocate_one(cohort, i, ledger)
            summary.allocated += 1
            summary.total_amount += record.amount
            summary.records.append(record)
        return summary

    def _resume_index(self, ledger: AllocationLedger) -> int:
        """Index of the next wallet to fund when resuming from *ledger*.

        The last row may belong to the transaction that halted the previous
        run.  Its receipt is checked first; a reverted row is removed so that
        wallet index is funded again.
        """
        records = ledger.records()
        if not records:
            return 0
        last = records[-1]
        try:
            self.allocations.provider.wait(SentTransaction(hash=last.tx_hash, nonce=last.nonce))
        except TransactionFailed:
            ledger.remove_last()
            logger.warning(
                f"Allocation to {last.address} in {ledger.path.name} reverted "
                f"(tx {last.tx_hash}); retrying wallet #{len(records)}"
            )
            return len(records) - 1
        return len(records)

    def _allocate_one(
        self, cohort: Cohort, index: int, ledger: AllocationLedger
    ) -> AllocationRecord:
        wallet = self._create_wallet()
        amount = cohort.amount_for(index)
        fees = self.fee_cache.fees_for(index)

        sent = self.allocations.transact(
            "allocate",
            wallet.address,
            Web3.to_wei(amount, "ether"),
            0,
            signer=self.admin,
            fees=fees,
        )
        logger.info(
            f"Iteration #{index + 1}. Allocated to {wallet.address} amount {amount} "
            f"for {cohort.name}. Tx hash {sent.hash} with nonce {sent.nonce}."
        )

        record = AllocationRecord(
            private_key=Web3.to_hex(wallet.key),
            address=wallet.address,
            amount=amount,
            tx_hash=sent.hash,
            nonce=sent.nonce,
        )
        ledger.append(record)

        self.allocations.provider.wait(sent)
        self._sleep(self._delay())
        return record
