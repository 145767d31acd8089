"""Transaction records passed between the signer backends."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from hexbytes import HexBytes


def normalise_hex(value: Union[str, bytes, None]) -> str:
    """Return ``value`` as lowercase 0x-prefixed hex ("0x" for empty data)."""

    if value is None:
        return "0x"
    return "0x" + bytes(HexBytes(value)).hex()


def normalise_address(address: Optional[str]) -> str:
    return (address or "").lower()


@dataclass
class PendingTransaction:
    """A staged-but-unexecuted proposal as reported by a backend.

    ``identifier`` is the Safe nonce for Safe proposals and the transaction
    index for legacy multisig proposals.
    """

    to: str
    data: str
    identifier: int
    value: int = 0
    executed: bool = False
    safe_tx_hash: Optional[str] = None

    def matches(self, to: str, data: Union[str, bytes]) -> bool:
        return normalise_address(self.to) == normalise_address(to) and normalise_hex(self.data) == normalise_hex(data)


@dataclass
class CandidateTransaction:
    """A contract call the caller wants staged or executed."""

    to: str
    data: str
    value: int = 0
    gas_price: Union[str, int, Decimal] = "1"
    gas_limit: Optional[int] = None
    label: Optional[str] = None


@dataclass
class StagedAck:
    """Acknowledgement that a proposal reached the Safe transaction service."""

    safe: str
    nonce: int
    safe_tx_hash: str
    signature: str
    sender: str


__all__ = [
    "CandidateTransaction",
    "PendingTransaction",
    "StagedAck",
    "normalise_address",
    "normalise_hex",
]
