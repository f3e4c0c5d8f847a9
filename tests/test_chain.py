"""Tests for network profiles, artifact loading and the provider plumbing."""

from types import SimpleNamespace

import pytest
from eth_account import Account
from web3 import Web3

from btmt_ops.chain.artifacts import TOKEN, ContractArtifact, artifact_path, load_artifact
from btmt_ops.chain.gas import FeeData
from btmt_ops.chain.networks import get_network, list_environments
from btmt_ops.chain.provider import (
    ChainProvider,
    SentTransaction,
    Signers,
    TransactionFailed,
)
from btmt_ops.config import Environment, Settings

from conftest import write_artifact

# Well-known development mnemonic shared by hardhat and anvil.
DEV_MNEMONIC = "test test test test test test test test test test test junk"


# ---------------------------------------------------------------------------
# Networks
# ---------------------------------------------------------------------------


def test_network_profiles():
    assert get_network(Environment.DEVELOPMENT).chain_id == 31337
    assert get_network("testing").chain_id == 80001
    prod = get_network(Environment.PRODUCTION)
    assert prod.chain_id == 137
    assert prod.poa is True
    assert prod.gas_station_url.startswith("https://gasstation.polygon.technology")
    assert get_network(Environment.DEVELOPMENT).gas_station_url is None


def test_unknown_network():
    with pytest.raises(KeyError, match="Unknown environment"):
        get_network("mainnet")
    assert list_environments() == ["development", "testing", "production"]


def test_rpc_url_takes_api_key():
    url = get_network(Environment.TESTING).resolve_rpc_url("secret")
    assert url == "https://polygon-mumbai.g.alchemy.com/v2/secret"
    assert get_network(Environment.DEVELOPMENT).resolve_rpc_url("x") == "http://127.0.0.1:8545"


# ---------------------------------------------------------------------------
# Artifacts
# ---------------------------------------------------------------------------


def test_load_artifact(tmp_path):
    abi = [{"type": "function", "name": "totalSupply", "inputs": [], "outputs": []}]
    write_artifact(tmp_path, TOKEN, abi=abi, bytecode="0x6080")
    artifact = load_artifact(tmp_path, TOKEN)
    assert artifact.name == TOKEN
    assert artifact.abi == abi
    assert artifact.deployable


def test_missing_artifact_names_path(tmp_path):
    with pytest.raises(FileNotFoundError) as excinfo:
        load_artifact(tmp_path, TOKEN)
    assert str(artifact_path(tmp_path, TOKEN)) in str(excinfo.value)


def test_artifact_without_abi(tmp_path):
    path = artifact_path(tmp_path, TOKEN)
    path.parent.mkdir(parents=True)
    path.write_text('{"bytecode": "0x00"}', encoding="utf-8")
    with pytest.raises(ValueError, match="abi"):
        load_artifact(tmp_path, TOKEN)


def test_interface_only_artifact_cannot_be_deployed(tmp_path, signers, fees):
    write_artifact(tmp_path, TOKEN, bytecode="0x")
    artifact = load_artifact(tmp_path, TOKEN)
    assert not artifact.deployable
    provider = ChainProvider(SimpleNamespace(), get_network(Environment.DEVELOPMENT))
    with pytest.raises(ValueError, match="no bytecode"):
        provider.deploy(artifact, signer=signers.company_liquidity, fees=fees)


# ---------------------------------------------------------------------------
# Signers
# ---------------------------------------------------------------------------


def test_signer_roles_follow_account_order(signers):
    roles = Signers.roles()
    assert roles[0] == "company_liquidity"
    assert roles[8] == "allocations_admin"
    assert len(roles) == 10
    assert signers.allocations_admin.address == Account.from_key(f"0x{9:064x}").address


def test_too_few_signers():
    with pytest.raises(ValueError, match="Need 10"):
        Signers.from_accounts([Account.create() for _ in range(3)])


def test_signers_from_private_keys():
    keys = ",".join(f"0x{i + 1:064x}" for i in range(10))
    signers = Signers.from_settings(Settings.from_env({"PRIVATE_KEYS": keys}))
    assert signers.company_liquidity.address == Account.from_key(f"0x{1:064x}").address


def test_signers_from_mnemonic():
    signers = Signers.from_settings(Settings(mnemonic=DEV_MNEMONIC))
    assert signers.company_liquidity.address == "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
    assert signers.allocations.address == "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


def test_signers_require_a_source():
    with pytest.raises(ValueError, match="PRIVATE_KEYS or MNEMONIC"):
        Signers.from_settings(Settings())


# ---------------------------------------------------------------------------
# Provider plumbing
# ---------------------------------------------------------------------------


class _FakeEth:
    def __init__(self, status=1):
        self.status = status
        self.raw = []
        self.nonce_queries = []

    def get_transaction_count(self, address, block_identifier):
        self.nonce_queries.append((address, block_identifier))
        return 7

    def send_raw_transaction(self, raw):
        self.raw.append(raw)
        return b"\xab" * 32

    def wait_for_transaction_receipt(self, tx_hash, timeout):
        return {"status": self.status, "transactionHash": tx_hash, "contractAddress": None}


def _provider(status=1):
    eth = _FakeEth(status)
    return ChainProvider(SimpleNamespace(eth=eth), get_network(Environment.DEVELOPMENT)), eth


def test_base_tx_uses_pending_nonce_and_fees(signers):
    provider, eth = _provider()
    tx = provider.base_tx(signers.feeless_admin, FeeData(20, 10))
    assert tx == {
        "from": signers.feeless_admin.address,
        "nonce": 7,
        "chainId": 31337,
        "maxFeePerGas": 20,
        "maxPriorityFeePerGas": 10,
    }
    assert eth.nonce_queries == [(signers.feeless_admin.address, "pending")]


def test_sign_and_send_returns_hex_hash(signers, fees):
    provider, eth = _provider()
    tx = provider.base_tx(signers.company_liquidity, fees)
    tx.update({"to": signers.allocations.address, "value": 0, "gas": 21000})
    sent = provider.sign_and_send(tx, signers.company_liquidity)
    assert sent == SentTransaction(hash="0x" + "ab" * 32, nonce=7)
    assert len(eth.raw) == 1


def test_reverted_receipt_raises():
    provider, _ = _provider(status=0)
    with pytest.raises(TransactionFailed) as excinfo:
        provider.wait(SentTransaction(hash="0x01", nonce=0))
    assert excinfo.value.tx_hash == "0x01"


def test_deployment_without_address_raises(tmp_path):
    from btmt_ops.chain.provider import PendingDeployment

    provider, _ = _provider()
    write_artifact(tmp_path, TOKEN)
    pending = PendingDeployment(load_artifact(tmp_path, TOKEN), SentTransaction("0x02", 1))
    with pytest.raises(TransactionFailed):
        provider.wait_for_deployment(pending)


# ---------------------------------------------------------------------------
# Contract encoding through web3
# ---------------------------------------------------------------------------

_ENCODING_ABI = [
    {
        "type": "constructor",
        "stateMutability": "nonpayable",
        "inputs": [
            {
                "name": "params",
                "type": "tuple",
                "internalType": "struct Params",
                "components": [
                    {"name": "rate", "type": "uint256"},
                    {"name": "wallet", "type": "address"},
                ],
            }
        ],
    },
    {
        "type": "function",
        "name": "allocate",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "beneficiary", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "cliff", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "totalSupply",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]
_BYTECODE = "0x6080604052"
_GAS_ESTIMATE = 90_000


class _RecordingSigner:
    """Signs with a real account and keeps the transaction dicts it saw."""

    def __init__(self, account):
        self.account = account
        self.address = account.address
        self.signed = []

    def sign_transaction(self, tx):
        self.signed.append(dict(tx))
        return self.account.sign_transaction(tx)


@pytest.fixture
def web3_provider():
    """A real Web3 whose RPC-bound ``eth`` calls are answered in-process."""
    w3 = Web3(Web3.HTTPProvider("http://127.0.0.1:8545"))
    w3.eth.nonce_queries = []
    w3.eth.raw = []

    def get_transaction_count(address, block_identifier=None):
        w3.eth.nonce_queries.append((address, block_identifier))
        return 7

    def send_raw_transaction(raw):
        w3.eth.raw.append(bytes(raw))
        return Web3.keccak(raw)

    w3.eth.get_transaction_count = get_transaction_count
    w3.eth.estimate_gas = lambda tx, *args, **kwargs: _GAS_ESTIMATE
    w3.eth.send_raw_transaction = send_raw_transaction
    w3.eth.call = lambda tx, *args, **kwargs: w3.codec.encode(["uint256"], [300])
    return ChainProvider(w3, get_network(Environment.DEVELOPMENT))


@pytest.fixture
def encoding_artifact():
    return ContractArtifact(name="Encoding", abi=_ENCODING_ABI, bytecode=_BYTECODE)


def _assert_signed_fields(tx, fees):
    assert tx["nonce"] == 7
    assert tx["chainId"] == 31337
    assert tx["gas"] == _GAS_ESTIMATE
    assert tx["maxFeePerGas"] == fees.max_fee_per_gas
    assert tx["maxPriorityFeePerGas"] == fees.max_priority_fee_per_gas


def test_deploy_encodes_struct_constructor(web3_provider, encoding_artifact, signers, fees):
    signer = _RecordingSigner(signers.company_liquidity)
    wallet = signers.crowdsales.address

    pending = web3_provider.deploy(
        encoding_artifact, {"rate": 20, "wallet": wallet}, signer=signer, fees=fees
    )

    [tx] = signer.signed
    _assert_signed_fields(tx, fees)
    assert "to" not in tx
    expected = Web3.to_bytes(hexstr=_BYTECODE) + web3_provider.w3.codec.encode(
        ["(uint256,address)"], [(20, wallet)]
    )
    assert Web3.to_bytes(hexstr=tx["data"]) == expected

    [raw] = web3_provider.w3.eth.raw
    assert Account.recover_transaction(raw) == signer.address
    assert pending.sent == SentTransaction(hash=Web3.to_hex(Web3.keccak(raw)), nonce=7)
    assert web3_provider.w3.eth.nonce_queries == [(signer.address, "pending")]


def test_transact_encodes_allocate_call(web3_provider, encoding_artifact, signers, fees):
    signer = _RecordingSigner(signers.allocations_admin)
    handle = web3_provider.attach(
        encoding_artifact, "0x00000000000000000000000000000000000a110c"
    )
    beneficiary = Account.create().address

    sent = handle.transact(
        "allocate", beneficiary, 1_000_000 * 10**18, 0, signer=signer, fees=fees
    )

    [tx] = signer.signed
    _assert_signed_fields(tx, fees)
    assert tx["to"] == handle.address
    data = Web3.to_bytes(hexstr=tx["data"])
    assert data[:4] == Web3.keccak(text="allocate(address,uint256,uint256)")[:4]
    assert data[4:] == web3_provider.w3.codec.encode(
        ["address", "uint256", "uint256"], [beneficiary, 1_000_000 * 10**18, 0]
    )
    assert sent.nonce == 7
    [raw] = web3_provider.w3.eth.raw
    assert Account.recover_transaction(raw) == signer.address


def test_call_decodes_return_value(web3_provider, encoding_artifact):
    handle = web3_provider.attach(
        encoding_artifact, "0x00000000000000000000000000000000000a110c"
    )
    assert handle.call("totalSupply") == 300
