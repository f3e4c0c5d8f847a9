"""Loading of compiled contract artifacts produced by hardhat."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

TOKEN = "BITMarketsToken"
ALLOCATIONS = "BITMarketsTokenAllocations"
PRIVATE_SALE = "BITMarketsTokenPrivateSale"


@dataclass(frozen=True)
class ContractArtifact:
    """ABI and creation bytecode of one compiled contract."""

    name: str
    abi: list[dict]
    bytecode: str = ""

    @property
    def deployable(self) -> bool:
        return self.bytecode not in ("", "0x")


def artifact_path(artifacts_dir: Path, name: str) -> Path:
    """Return hardhat's ``contracts/<Name>.sol/<Name>.json`` path."""
    return Path(artifacts_dir) / "contracts" / f"{name}.sol" / f"{name}.json"


def load_artifact(artifacts_dir: Path, name: str) -> ContractArtifact:
    """Read a compiled contract artifact.

    Raises
    ------
    FileNotFoundError
        If the artifact JSON does not exist (contracts not compiled).
    ValueError
        If the file has no ``abi`` entry.
    """
    path = artifact_path(artifacts_dir, name)
    if not path.exists():
        raise FileNotFoundError(
            f"No artifact for '{name}' at {path}. Compile the contracts first."
        )
    data = json.loads(path.read_text(encoding="utf-8"))
    if "abi" not in data:
        raise ValueError(f"Artifact {path} has no 'abi' entry.")
    return ContractArtifact(
        name=data.get("contractName", name),
        abi=data["abi"],
        bytecode=data.get("bytecode", ""),
    )
