from __future__ import annotations

import io
import logging
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import keyring
import keyring.backend
import pytest
from eth_account import Account
from hexbytes import HexBytes
from rich.console import Console
from web3 import Web3

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from safestage.core import AppContext, EnvStore, ForensicLedger, SecretStore  # noqa: E402

WALLET_KEY = "0x" + "11" * 32
ACCEPT_OWNERSHIP = "0x79ba5097"


class MemoryKeyring(keyring.backend.KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self._data.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self._data[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        self._data.pop((service, username), None)


class FakeCall:
    """Stand-in for a bound web3 contract function."""

    def __init__(self, result: Any = None, *, error: Optional[Exception] = None, on_transact=None) -> None:
        self.result = result
        self.error = error
        self.on_transact = on_transact

    def call(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.result

    def transact(self, params: Dict[str, Any]) -> Any:
        if self.error is not None:
            raise self.error
        return self.on_transact(params)


class FakeSafe:
    def __init__(self, address: str, nonce: Any) -> None:
        self.address = address
        self.nonce = nonce
        self.nonce_reads = 0
        self.hash_requests: List[tuple] = []
        self.functions = SimpleNamespace(nonce=self._nonce, getTransactionHash=self._transaction_hash)

    def _nonce(self) -> FakeCall:
        self.nonce_reads += 1
        if isinstance(self.nonce, Exception):
            return FakeCall(error=self.nonce)
        return FakeCall(self.nonce)

    def _transaction_hash(self, *args: Any) -> FakeCall:
        self.hash_requests.append(args)
        return FakeCall(Web3.keccak(text=repr(args)))


class FakeMultisig:
    def __init__(self, address: str, *, count: int, ids: List[int], transactions: Dict[int, tuple]) -> None:
        self.address = address
        self.count = count
        self.ids = ids
        self.transactions = transactions
        self.reads = 0
        self.id_requests: List[tuple] = []
        self.submitted: List[Dict[str, Any]] = []
        self.submit_error: Optional[Exception] = None
        self.functions = SimpleNamespace(
            getTransactionCount=self._count,
            getTransactionIds=self._ids,
            transactions=self._transaction,
            submitTransaction=self._submit,
        )

    def _count(self, pending: bool, executed: bool) -> FakeCall:
        self.reads += 1
        return FakeCall(self.count)

    def _ids(self, start: int, end: int, pending: bool, executed: bool) -> FakeCall:
        self.reads += 1
        self.id_requests.append((start, end, pending, executed))
        return FakeCall(list(self.ids))

    def _transaction(self, tx_id: int) -> FakeCall:
        self.reads += 1
        return FakeCall(self.transactions[tx_id])

    def _submit(self, destination: str, value: int, data: str) -> FakeCall:
        def record(params: Dict[str, Any]) -> HexBytes:
            self.submitted.append({"destination": destination, "value": value, "data": data, "params": params})
            return HexBytes(b"\x02" * 32)

        return FakeCall(error=self.submit_error, on_transact=record)


class FakeOwned:
    def __init__(self, address: str, nominated: str) -> None:
        self.address = address
        self.functions = SimpleNamespace(nominatedOwner=lambda: FakeCall(nominated))

    def encode_abi(self, name: str, args: Optional[list] = None) -> str:
        assert name == "acceptOwnership"
        return ACCEPT_OWNERSHIP


class FakeEth:
    def __init__(self) -> None:
        self.contracts: Dict[str, Any] = {}
        self.sent: List[Dict[str, Any]] = []
        self.receipt_status = 1
        self.send_error: Optional[Exception] = None

    def contract(self, address: str, abi: Any) -> Any:
        return self.contracts[address]

    def send_transaction(self, params: Dict[str, Any]) -> HexBytes:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(dict(params))
        return HexBytes(b"\x03" * 32)

    def wait_for_transaction_receipt(self, tx_hash: Any, timeout: Optional[float] = None) -> Dict[str, Any]:
        return {
            "transactionHash": HexBytes(tx_hash),
            "blockNumber": 101,
            "gasUsed": 21_000,
            "status": self.receipt_status,
        }


class FakeWeb3:
    def __init__(self) -> None:
        self.eth = FakeEth()

    def register(self, contract: Any) -> Any:
        self.eth.contracts[contract.address] = contract
        return contract


class FakeServiceClient:
    def __init__(self, pending: Optional[list] = None) -> None:
        self.pending = list(pending or [])
        self.proposals: List[Dict[str, Any]] = []
        self.list_calls = 0
        self.reject_nonces: set = set()

    def list_transactions(self, safe_address: str) -> list:
        self.list_calls += 1
        return list(self.pending)

    def propose_transaction(self, safe_address: str, **kwargs: Any) -> Dict[str, Any]:
        from safestage.errors import SubmissionRejected

        if kwargs["nonce"] in self.reject_nonces:
            raise SubmissionRejected("rejected", reason="nonce already used")
        self.proposals.append({"safe": safe_address, **kwargs})
        return kwargs


@pytest.fixture()
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("SAFESTAGE_STATE_DIR", str(tmp_path))
    monkeypatch.delenv("AUDIT_HMAC_KEY", raising=False)
    keyring.set_keyring(MemoryKeyring())
    return tmp_path


@pytest.fixture()
def context(isolated_home: Path) -> AppContext:
    ledger = ForensicLedger()
    env_store = EnvStore(isolated_home / ".env")
    secrets = SecretStore(ledger, env_store)
    return AppContext(ledger=ledger, env_store=env_store, secrets=secrets, logger=logging.getLogger("safestage.tests"))


@pytest.fixture()
def out() -> Console:
    return Console(file=io.StringIO(), width=160, color_system=None)


@pytest.fixture()
def wallet():
    return Account.from_key(WALLET_KEY)


@pytest.fixture()
def addrs() -> SimpleNamespace:
    return SimpleNamespace(
        safe=Web3.to_checksum_address("0x" + "aa" * 20),
        multisig=Web3.to_checksum_address("0x" + "bb" * 20),
        target=Web3.to_checksum_address("0x" + "cc" * 20),
        other=Web3.to_checksum_address("0x" + "dd" * 20),
        novel=Web3.to_checksum_address("0x" + "ee" * 20),
    )


@pytest.fixture()
def web3() -> FakeWeb3:
    return FakeWeb3()


@pytest.fixture()
def safe_contract(web3: FakeWeb3, addrs: SimpleNamespace) -> FakeSafe:
    return web3.register(FakeSafe(addrs.safe, 3))


@pytest.fixture()
def multisig_contract(web3: FakeWeb3, addrs: SimpleNamespace) -> FakeMultisig:
    return web3.register(
        FakeMultisig(
            addrs.multisig,
            count=5,
            ids=[1, 3],
            transactions={
                1: (addrs.target, 0, bytes.fromhex("79ba5097"), False),
                3: (addrs.other, 0, bytes.fromhex("1234"), False),
            },
        )
    )


@pytest.fixture()
def service() -> FakeServiceClient:
    return FakeServiceClient()


@pytest.fixture()
def owned(web3: FakeWeb3):
    def factory(address: str, nominated: str) -> FakeOwned:
        return web3.register(FakeOwned(address, nominated))

    return factory
