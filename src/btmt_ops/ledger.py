"""CSV ledger of submitted allocation transactions.

One row per submitted ``allocate`` transaction, holding the generated
wallet's private key in plaintext.  Keep these files out of version control.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import tempfile
from dataclasses import astuple, dataclass
from pathlib import Path

logger = logging.getLogger("btmt_ops.ledger")

HEADER = ("PRIVATE_KEY", "ADDRESS", "AMOUNT", "TX_HASH", "NONCE")

TEAM_LEDGER = "teamAllocationsWallets.csv"
SALES_LEDGER = "salesAllocationsWallets.csv"


@dataclass(frozen=True)
class AllocationRecord:
    """A ledger row. ``amount`` is in whole tokens."""

    private_key: str
    address: str
    amount: int
    tx_hash: str
    nonce: int

    @classmethod
    def from_row(cls, row: dict[str, str]) -> AllocationRecord:
        return cls(
            private_key=row["PRIVATE_KEY"],
            address=row["ADDRESS"],
            amount=int(row["AMOUNT"]),
            tx_hash=row["TX_HASH"],
            nonce=int(row["NONCE"]),
        )

    def to_line(self) -> str:
        buf = io.StringIO()
        csv.writer(buf, lineterminator="").writerow(astuple(self))
        return buf.getvalue()


class AllocationLedger:
    """Read-then-rewrite CSV file with a fixed header."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __repr__(self) -> str:
        return f"<AllocationLedger {self.path}>"

    def ensure(self) -> None:
        """Create the file with just the header if it does not exist."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(",".join(HEADER), encoding="utf-8")
        logger.info(f"Created ledger {self.path}")

    def append(self, record: AllocationRecord) -> None:
        """Add *record* by rewriting the whole file.

        The new content goes to a temporary sibling first and then replaces
        the ledger, so earlier rows survive a crash mid-write.
        """
        self.ensure()
        content = self.path.read_text(encoding="utf-8")
        self._write(f"{content}\n{record.to_line()}")

    def remove_last(self) -> AllocationRecord:
        """Drop the final row and return it."""
        records = self.records()
        if not records:
            raise ValueError(f"{self.path} has no rows to remove")
        lines = [",".join(HEADER), *(r.to_line() for r in records[:-1])]
        self._write("\n".join(lines))
        return records[-1]

    def _write(self, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def records(self) -> list[AllocationRecord]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8", newline="") as fh:
            reader = csv.DictReader(fh)
            if reader.fieldnames is None or tuple(reader.fieldnames) != HEADER:
                raise ValueError(
                    f"{self.path} does not have the ledger header {','.join(HEADER)}"
                )
            return [AllocationRecord.from_row(row) for row in reader if any(row.values())]

    def __len__(self) -> int:
        return len(self.records())

    def total_amount(self) -> int:
        return sum(r.amount for r in self.records())


def ledger_for_cohort(ledger_dir: Path, cohort: str) -> AllocationLedger:
    """Return the ledger file used for *cohort* (``team`` or ``sales``)."""
    names = {"team": TEAM_LEDGER, "sales": SALES_LEDGER}
    if cohort not in names:
        raise KeyError(f"Unknown cohort '{cohort}'. Available: {list(names)}")
    return AllocationLedger(Path(ledger_dir) / names[cohort])
