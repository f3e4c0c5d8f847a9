"""Shared fixtures: in-process chain doubles, signers and compiled artifacts."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from eth_account import Account

from btmt_ops.chain.artifacts import ALLOCATIONS, PRIVATE_SALE, TOKEN, ContractArtifact
from btmt_ops.chain.gas import FeeData
from btmt_ops.chain.networks import NETWORKS
from btmt_ops.chain.provider import PendingDeployment, SentTransaction, Signers
from btmt_ops.config import Environment


class FakeContract:
    """Records transactions and answers calls from a lookup table."""

    def __init__(self, provider: FakeProvider, artifact: ContractArtifact, address: str) -> None:
        self.provider = provider
        self.artifact = artifact
        self.address = address
        self.responses: dict[str, object] = {}

    def call(self, fn_name, *args):
        response = self.responses[fn_name]
        if callable(response):
            return response(*args)
        return response

    def transact(self, fn_name, *args, signer, fees):
        return self.provider.record(self.artifact.name, fn_name, args, signer, fees)


class FakeProvider:
    """Stands in for :class:`btmt_ops.chain.provider.ChainProvider`."""

    def __init__(self, environment: Environment = Environment.DEVELOPMENT) -> None:
        self.network = NETWORKS[environment]
        self.w3 = None
        self.sent: list[dict] = []
        self.events: list[tuple] = []
        self.contracts: dict[str, FakeContract] = {}
        self.fail_on_wait: set[str] = set()
        self._next_address = 0x1000

    def record(self, target, fn_name, args, signer, fees) -> SentTransaction:
        nonce = len(self.sent)
        sent = SentTransaction(hash=f"0x{nonce + 1:064x}", nonce=nonce)
        self.sent.append({
            "target": target,
            "fn": fn_name,
            "args": args,
            "signer": signer.address,
            "fees": fees,
            "hash": sent.hash,
        })
        self.events.append(("send", sent.hash))
        return sent

    def wait(self, sent: SentTransaction):
        self.events.append(("wait", sent.hash))
        if sent.hash in self.fail_on_wait:
            from btmt_ops.chain.provider import TransactionFailed

            raise TransactionFailed(sent.hash)
        return {"status": 1, "transactionHash": sent.hash}

    def deploy(self, artifact, *args, signer, fees):
        sent = self.record(artifact.name, "constructor", args, signer, fees)
        return PendingDeployment(artifact=artifact, sent=sent)

    def wait_for_deployment(self, pending):
        self.wait(pending.sent)
        self._next_address += 1
        contract = FakeContract(self, pending.artifact, f"0x{self._next_address:040x}")
        self.contracts[pending.artifact.name] = contract
        if pending.artifact.name == TOKEN:
            contract.responses["totalSupply"] = 300_000_000 * 10**18
        return contract

    def attach(self, artifact, address):
        contract = self.contracts.get(artifact.name)
        if contract is None:
            contract = FakeContract(self, artifact, address)
            self.contracts[artifact.name] = contract
        return contract


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def signers() -> Signers:
    return Signers.from_accounts(
        [Account.from_key(f"0x{i + 1:064x}") for i in range(10)]
    )


@pytest.fixture
def fees() -> FeeData:
    return FeeData(max_fee_per_gas=60 * 10**9, max_priority_fee_per_gas=30 * 10**9)


class CountingFetcher:
    """Fee fetcher returning increasing fees so refreshes are observable."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> FeeData:
        self.calls += 1
        return FeeData(
            max_fee_per_gas=self.calls * 10**9 * 2,
            max_priority_fee_per_gas=self.calls * 10**9,
        )


@pytest.fixture
def fee_fetcher() -> CountingFetcher:
    return CountingFetcher()


def write_artifact(artifacts_dir: Path, name: str, abi=None, bytecode: str = "0x6080") -> Path:
    path = artifacts_dir / "contracts" / f"{name}.sol" / f"{name}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"contractName": name, "abi": abi or [], "bytecode": bytecode}),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def artifacts_dir(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    for name in (TOKEN, ALLOCATIONS, PRIVATE_SALE):
        write_artifact(root, name)
    return root
