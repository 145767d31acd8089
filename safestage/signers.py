"""Signer backends: Safe (service coordinated), legacy multisig and a plain wallet.

Every public entry point resolves the handle to exactly one
:class:`SignerKind` and runs that backend's protocol; anything else raises
:class:`~safestage.errors.UnsupportedSignerKind`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

import requests
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from rich.console import Console
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from . import ui
from .abi import SAFE_ABI, ZERO_ADDRESS
from .core import AppContext, get_context
from .errors import (
    BackendUnreachable,
    InvalidGasPrice,
    SignatureFailure,
    SubmissionRejected,
    UnsupportedSignerKind,
)
from .models import CandidateTransaction, PendingTransaction, StagedAck, normalise_hex
from .multisig import LegacyMultisig
from .safe_api import SafeServiceClient

logger = logging.getLogger("safestage.signers")

RECEIPT_TIMEOUT = 300


class SignerKind(str, Enum):
    SAFE = "SAFE"
    LEGACY = "LEGACY"
    EOA = "EOA"

    @classmethod
    def parse(cls, value: Union["SignerKind", str]) -> "SignerKind":
        if isinstance(value, SignerKind):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            # "EAO" is the spelling older deploy scripts used
            key = {"EAO": "EOA", "DIRECT": "EOA", "WALLET": "EOA"}.get(key, key)
            if key in cls.__members__:
                return cls[key]
        raise UnsupportedSignerKind(f"unsupported signer kind: {value!r}")


@dataclass
class SafeHandle:
    """Safe contract plus the nonce state for one session.

    ``current_nonce`` is read from chain once; ``last_nonce`` is the nonce of
    the most recent proposal this session staged.
    """

    contract: Any
    current_nonce: int
    last_nonce: Optional[int] = None

    kind: ClassVar[SignerKind] = SignerKind.SAFE

    @property
    def address(self) -> str:
        return self.contract.address

    @property
    def tracked_nonce(self) -> int:
        if self.last_nonce is None:
            return self.current_nonce
        return max(self.current_nonce, self.last_nonce)

    def next_nonce(self) -> int:
        return self.tracked_nonce + 1


@dataclass
class LegacyHandle:
    multisig: LegacyMultisig

    kind: ClassVar[SignerKind] = SignerKind.LEGACY

    @property
    def address(self) -> str:
        return self.multisig.address


@dataclass
class DirectHandle:
    kind: ClassVar[SignerKind] = SignerKind.EOA

    @property
    def address(self) -> None:
        return None


BackendHandle = Union[SafeHandle, LegacyHandle, DirectHandle]
_HANDLE_TYPES = {SignerKind.SAFE: SafeHandle, SignerKind.LEGACY: LegacyHandle, SignerKind.EOA: DirectHandle}


def kind_of(handle: Any) -> SignerKind:
    """Return the signer kind for ``handle``; reject anything unrecognised."""

    for kind, handle_type in _HANDLE_TYPES.items():
        if type(handle) is handle_type:
            return kind
    raise UnsupportedSignerKind(f"unsupported backend handle: {type(handle).__name__}")


# -- handle builder -------------------------------------------------------


def _read_safe_nonce(contract: Any) -> int:
    try:
        nonce = contract.functions.nonce().call()
    except (Web3Exception, ValueError, requests.RequestException) as exc:
        raise BackendUnreachable(f"cannot read nonce from Safe {contract.address}: {exc}") from exc
    if not nonce:
        raise BackendUnreachable(f"Safe {contract.address} returned an unusable nonce ({nonce!r})")
    return int(nonce)


def build_handle(
    kind: Union[SignerKind, str],
    *,
    web3: Optional[Web3] = None,
    address: Optional[str] = None,
    context: Optional[AppContext] = None,
    out: Optional[Console] = None,
) -> BackendHandle:
    """Construct the session handle for ``kind``.

    ``address`` is the new owner: the Safe proxy for SAFE, the MultiSigWallet
    for LEGACY. EOA needs neither ``web3`` nor ``address``.
    """

    kind = SignerKind.parse(kind)
    context = context or get_context()
    if kind is SignerKind.EOA:
        handle: BackendHandle = DirectHandle()
    else:
        if not address:
            raise ValueError(f"{kind.value} signer requires the multisig address")
        if web3 is None:
            raise ValueError(f"{kind.value} signer requires a web3 connection")
        checksum = Web3.to_checksum_address(address)
        if kind is SignerKind.SAFE:
            contract = web3.eth.contract(address=checksum, abi=SAFE_ABI)
            try:
                nonce = _read_safe_nonce(contract)
            except BackendUnreachable as exc:
                context.ledger.log(
                    "handle_build",
                    params={"kind": kind.value, "address": checksum},
                    ok=False,
                    severity="ERROR",
                    result={"error": str(exc)},
                )
                raise
            handle = SafeHandle(contract=contract, current_nonce=nonce)
            ui.notice(f"Using Protocol DAO Safe contract at {handle.address}", out=out)
        else:
            handle = LegacyHandle(multisig=LegacyMultisig.at(web3, checksum))
    context.ledger.log(
        "handle_build",
        params={"kind": kind.value, "address": handle.address},
        result={"nonce": getattr(handle, "current_nonce", None)},
    )
    return handle


# -- pending lister -------------------------------------------------------


def list_pending(
    handle: BackendHandle,
    *,
    network: str,
    client: Optional[SafeServiceClient] = None,
    context: Optional[AppContext] = None,
) -> List[PendingTransaction]:
    """Fetch the proposals currently waiting on the active backend."""

    kind = kind_of(handle)
    if kind is SignerKind.EOA:
        return []
    if kind is SignerKind.SAFE:
        client = client or SafeServiceClient(network)
        pending = client.list_transactions(handle.address)
    else:
        pending = handle.multisig.pending_transactions()
    (context or get_context()).ledger.log(
        "pending_list",
        params={"kind": kind.value, "address": handle.address, "network": network},
        result={"count": len(pending)},
    )
    return pending


# -- duplicate detector ---------------------------------------------------


def is_duplicate(
    handle: BackendHandle,
    pending: Optional[Sequence[PendingTransaction]],
    *,
    to: str,
    data: Union[str, bytes],
) -> bool:
    """Return ``True`` when an equivalent proposal is already staged.

    Safe proposals whose nonce is below the on-chain nonce are stale and do
    not count. The legacy multisig matches on destination and data alone and
    looks up its own pending set when ``pending`` is ``None``.
    """

    kind = kind_of(handle)
    if kind is SignerKind.EOA:
        return False
    if kind is SignerKind.SAFE:
        return any(
            not entry.executed and entry.identifier >= handle.current_nonce and entry.matches(to, data)
            for entry in pending or ()
        )
    return handle.multisig.find_pending(to, data, pending) is not None


# -- submitter ------------------------------------------------------------


def to_wei_gas_price(gas_price: Union[str, int, Decimal]) -> int:
    try:
        return int(Web3.to_wei(Decimal(str(gas_price)), "gwei"))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidGasPrice(f"invalid gas price {gas_price!r}") from exc


def sign_safe_hash(wallet: LocalAccount, safe_tx_hash: Union[str, bytes]) -> str:
    """Sign the raw Safe transaction hash (no message prefix)."""

    try:
        signed = wallet.unsafe_sign_hash(HexBytes(safe_tx_hash))
    except Exception as exc:
        raise SignatureFailure(f"could not sign Safe transaction hash: {exc}") from exc
    return normalise_hex(signed.signature)


def _stage_safe(
    handle: SafeHandle,
    candidate: CandidateTransaction,
    *,
    network: str,
    wallet: LocalAccount,
    client: Optional[SafeServiceClient],
    context: AppContext,
) -> StagedAck:
    nonce = handle.next_nonce()
    to = Web3.to_checksum_address(candidate.to)
    data = normalise_hex(candidate.data)
    try:
        raw_hash = handle.contract.functions.getTransactionHash(
            to,
            int(candidate.value),
            data,
            0,
            0,
            0,
            0,
            ZERO_ADDRESS,
            ZERO_ADDRESS,
            nonce,
        ).call()
    except (Web3Exception, ValueError, requests.RequestException) as exc:
        raise BackendUnreachable(f"cannot compute Safe transaction hash: {exc}") from exc
    safe_tx_hash = normalise_hex(raw_hash)
    signature = sign_safe_hash(wallet, safe_tx_hash)

    client = client or SafeServiceClient(network)
    client.propose_transaction(
        handle.address,
        to=to,
        data=data,
        nonce=nonce,
        safe_tx_hash=safe_tx_hash,
        sender=wallet.address,
        signature=signature,
        value=int(candidate.value),
    )
    handle.last_nonce = nonce
    context.ledger.log(
        "safe_stage",
        params={"safe": handle.address, "to": to, "network": network},
        result={"nonce": nonce, "safe_tx_hash": safe_tx_hash},
    )
    logger.info("Staged %s on Safe %s with nonce %d", to, handle.address, nonce)
    return StagedAck(
        safe=handle.address,
        nonce=nonce,
        safe_tx_hash=safe_tx_hash,
        signature=signature,
        sender=wallet.address,
    )


def _tx_params(candidate: CandidateTransaction, wallet: LocalAccount) -> Dict[str, Any]:
    params: Dict[str, Any] = {"from": wallet.address, "gasPrice": to_wei_gas_price(candidate.gas_price)}
    if candidate.gas_limit:
        params["gas"] = int(candidate.gas_limit)
    return params


def _confirm(
    web3: Web3,
    tx_hash: Any,
    *,
    action: str,
    params: Dict[str, Any],
    context: AppContext,
    out: Optional[Console],
) -> Any:
    try:
        receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
    except TimeExhausted as exc:
        raise BackendUnreachable(f"no receipt for {normalise_hex(tx_hash)}: {exc}") from exc
    ok = receipt.get("status") == 1
    ui.log_tx(receipt, out=out)
    context.ledger.log(
        action,
        params=params,
        ok=ok,
        severity="INFO" if ok else "ERROR",
        result={
            "hash": normalise_hex(receipt.get("transactionHash")),
            "block": receipt.get("blockNumber"),
            "gas_used": receipt.get("gasUsed"),
        },
    )
    if not ok:
        raise SubmissionRejected(f"transaction {normalise_hex(tx_hash)} reverted", reason="status 0")
    return receipt


def _send(call: Any, description: str) -> Any:
    try:
        return call()
    except requests.RequestException as exc:
        raise BackendUnreachable(f"{description} failed: {exc}") from exc
    except (Web3Exception, ValueError) as exc:
        raise SubmissionRejected(f"{description} rejected: {exc}", reason=str(exc)) from exc


def _submit_legacy(
    handle: LegacyHandle,
    candidate: CandidateTransaction,
    *,
    wallet: LocalAccount,
    web3: Web3,
    context: AppContext,
    out: Optional[Console],
) -> Any:
    params = _tx_params(candidate, wallet)
    tx_hash = _send(
        lambda: handle.multisig.submit_transaction(candidate.to, candidate.data, params, value=int(candidate.value)),
        "multisig submitTransaction",
    )
    return _confirm(
        web3,
        tx_hash,
        action="multisig_submit",
        params={"multisig": handle.address, "to": candidate.to},
        context=context,
        out=out,
    )


def _send_direct(
    candidate: CandidateTransaction,
    *,
    wallet: LocalAccount,
    web3: Web3,
    context: AppContext,
    out: Optional[Console],
) -> Any:
    params = _tx_params(candidate, wallet)
    params["to"] = Web3.to_checksum_address(candidate.to)
    params["data"] = normalise_hex(candidate.data)
    if candidate.value:
        params["value"] = int(candidate.value)
    tx_hash = _send(lambda: web3.eth.send_transaction(params), "direct transaction")
    return _confirm(
        web3,
        tx_hash,
        action="direct_send",
        params={"from": wallet.address, "to": params["to"], "gas_limit": params.get("gas")},
        context=context,
        out=out,
    )


def submit(
    handle: BackendHandle,
    candidate: CandidateTransaction,
    *,
    network: str,
    wallet: LocalAccount,
    web3: Optional[Web3] = None,
    client: Optional[SafeServiceClient] = None,
    use_fork: bool = False,
    context: Optional[AppContext] = None,
    out: Optional[Console] = None,
) -> Union[StagedAck, Any]:
    """Stage or execute ``candidate`` through the handle's backend.

    Returns a :class:`StagedAck` for Safe proposals and the mined receipt for
    everything sent on chain. With ``use_fork`` a Safe handle skips the
    service and sends directly from ``wallet``.
    """

    kind = kind_of(handle)
    context = context or get_context()
    if kind is SignerKind.SAFE and not use_fork:
        return _stage_safe(handle, candidate, network=network, wallet=wallet, client=client, context=context)
    if web3 is None:
        raise ValueError("on-chain submission requires a web3 connection")
    if kind is SignerKind.LEGACY:
        return _submit_legacy(handle, candidate, wallet=wallet, web3=web3, context=context, out=out)
    return _send_direct(candidate, wallet=wallet, web3=web3, context=context, out=out)


__all__ = [
    "BackendHandle",
    "DirectHandle",
    "LegacyHandle",
    "SafeHandle",
    "SignerKind",
    "build_handle",
    "is_duplicate",
    "kind_of",
    "list_pending",
    "sign_safe_hash",
    "submit",
    "to_wei_gas_price",
]
