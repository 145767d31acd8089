"""Binding for the legacy on-chain MultiSigWallet."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .abi import MULTISIG_ABI
from .errors import BackendUnreachable
from .models import PendingTransaction, normalise_hex

_READ_ERRORS = (Web3Exception, ValueError, requests.RequestException)


class LegacyMultisig:
    """Read pending proposals from, and submit new ones to, a MultiSigWallet."""

    def __init__(self, contract: Any) -> None:
        self.contract = contract

    @classmethod
    def at(cls, web3: Web3, address: str) -> "LegacyMultisig":
        checksum = Web3.to_checksum_address(address)
        return cls(web3.eth.contract(address=checksum, abi=MULTISIG_ABI))

    @property
    def address(self) -> str:
        return self.contract.address

    def transaction_count(self) -> int:
        """Number of proposals that are still pending on chain."""
        try:
            return int(self.contract.functions.getTransactionCount(True, False).call())
        except _READ_ERRORS as exc:
            raise BackendUnreachable(f"cannot read transaction count from {self.address}: {exc}") from exc

    def transaction_ids(self, start: int, end: int, *, pending: bool = True, executed: bool = False) -> List[int]:
        if end <= start:
            return []
        try:
            ids = self.contract.functions.getTransactionIds(start, end, pending, executed).call()
        except _READ_ERRORS as exc:
            raise BackendUnreachable(f"cannot list transaction ids from {self.address}: {exc}") from exc
        return [int(tx_id) for tx_id in ids]

    def transaction(self, tx_id: int) -> PendingTransaction:
        try:
            destination, value, data, executed = self.contract.functions.transactions(tx_id).call()
        except _READ_ERRORS as exc:
            raise BackendUnreachable(f"cannot read transaction {tx_id} from {self.address}: {exc}") from exc
        return PendingTransaction(
            to=destination,
            data=normalise_hex(data),
            identifier=tx_id,
            value=int(value),
            executed=bool(executed),
        )

    def pending_transactions(self) -> List[PendingTransaction]:
        # TODO: keep a low-water mark of executed ids instead of rescanning from 0
        count = self.transaction_count()
        ids = self.transaction_ids(0, count, pending=True, executed=False)
        return [self.transaction(tx_id) for tx_id in ids]

    def find_pending(
        self,
        to: str,
        data: Union[str, bytes],
        pending: Optional[Sequence[PendingTransaction]] = None,
    ) -> Optional[PendingTransaction]:
        """Return the pending proposal calling ``to`` with ``data``, if any."""

        if pending is None:
            pending = self.pending_transactions()
        for entry in pending:
            if not entry.executed and entry.matches(to, data):
                return entry
        return None

    def submit_transaction(self, to: str, data: str, tx_params: Dict[str, Any], *, value: int = 0) -> Any:
        """Send ``submitTransaction`` and return the transaction hash."""
        call = self.contract.functions.submitTransaction(Web3.to_checksum_address(to), value, normalise_hex(data))
        return call.transact(tx_params)


__all__ = ["LegacyMultisig"]
