"""Read-only audit comparing allocation ledgers with on-chain vesting balances."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from web3 import Web3
from web3.exceptions import ContractLogicError

from btmt_ops.chain.provider import ContractHandle
from btmt_ops.ledger import AllocationLedger

logger = logging.getLogger("btmt_ops.tasks.audit")


@dataclass(frozen=True)
class Mismatch:
    address: str
    expected: int  # wei
    actual: int    # wei
    vesting_wallet: str


@dataclass
class AuditReport:
    ledger: str
    rows: int = 0
    expected_total: int = 0
    onchain_total: int = 0
    mismatches: list[Mismatch] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches and self.expected_total == self.onchain_total


def audit_ledger(
    ledger: AllocationLedger,
    allocations: ContractHandle,
    token: ContractHandle,
) -> AuditReport:
    """Check every ledger row against its vesting wallet's token balance.

    Withdrawn tokens leave the vesting wallet, so a beneficiary who has
    released anything after the cliff shows up as a mismatch.  Run the
    audit before withdrawals start.

    A beneficiary allocated more than once holds the sum of its rows in a
    single vesting wallet, so expectations are aggregated per address.
    """
    report = AuditReport(ledger=str(ledger.path))
    expected: dict[str, int] = {}
    for record in ledger.records():
        report.rows += 1
        address = Web3.to_checksum_address(record.address)
        expected[address] = expected.get(address, 0) + Web3.to_wei(record.amount, "ether")

    for address, amount in expected.items():
        try:
            vesting_wallet = allocations.call("vestingWallet", address)
        except ContractLogicError as exc:
            # "No vesting wallet": the allocation was never mined
            logger.warning(f"No vesting wallet for {address}: {exc}")
            vesting_wallet, balance = "", 0
        else:
            balance = token.call("balanceOf", vesting_wallet)
        report.expected_total += amount
        report.onchain_total += balance
        if balance != amount:
            logger.warning(
                f"Balance mismatch for {address}: expected {amount}, found {balance}"
            )
            report.mismatches.append(Mismatch(address, amount, balance, vesting_wallet))

    logger.info(
        f"Audited {report.rows} rows of {ledger.path}: "
        f"{len(report.mismatches)} mismatches"
    )
    return report
