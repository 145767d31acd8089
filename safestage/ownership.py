"""Batch workflow that stages ``acceptOwnership()`` for nominated contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Union

import requests
from eth_account.signers.local import LocalAccount
from rich.console import Console
from web3 import Web3
from web3.exceptions import Web3Exception

from . import ui
from .abi import OWNED_ABI
from .core import AppContext, get_context
from .errors import SafeStageError
from .models import CandidateTransaction, StagedAck, normalise_address
from .safe_api import SafeServiceClient
from .signers import BackendHandle, is_duplicate, kind_of, list_pending, submit


@dataclass
class StageResult:
    """Outcome for one contract in a batch."""

    label: str
    status: str
    detail: Optional[str] = None
    outcome: Union[StagedAck, Any, None] = None


class OwnershipStager:
    """Walk a list of contracts and stage ownership acceptance for each."""

    def __init__(
        self,
        handle: BackendHandle,
        *,
        wallet: LocalAccount,
        network: str,
        web3: Optional[Web3] = None,
        client: Optional[SafeServiceClient] = None,
        use_fork: bool = False,
        gas_price: str = "1",
        gas_limit: Optional[int] = None,
        context: Optional[AppContext] = None,
        out: Optional[Console] = None,
    ) -> None:
        self.handle = handle
        self.wallet = wallet
        self.network = network
        self.web3 = web3
        self.client = client
        self.use_fork = use_fork
        self.gas_price = gas_price
        self.gas_limit = gas_limit
        self.context = context or get_context()
        self.out = out

    # -- candidates -------------------------------------------------------
    def build_candidates(self, addresses: Iterable[str], new_owner: str) -> List[Union[CandidateTransaction, StageResult]]:
        """Encode ``acceptOwnership()`` for every contract nominating ``new_owner``.

        Contracts that do not nominate ``new_owner`` come back as a
        ``not-nominated`` :class:`StageResult` instead of a candidate.
        """

        if self.web3 is None:
            raise ValueError("reading nominations requires a web3 connection")
        entries: List[Union[CandidateTransaction, StageResult]] = []
        for address in addresses:
            checksum = Web3.to_checksum_address(address)
            contract = self.web3.eth.contract(address=checksum, abi=OWNED_ABI)
            try:
                nominated = contract.functions.nominatedOwner().call()
            except (Web3Exception, ValueError, requests.RequestException) as exc:
                entries.append(StageResult(label=checksum, status="failed", detail=f"cannot read nominatedOwner: {exc}"))
                continue
            if normalise_address(nominated) != normalise_address(new_owner):
                entries.append(StageResult(label=checksum, status="not-nominated", detail=f"nominated {nominated}"))
                continue
            entries.append(
                CandidateTransaction(
                    to=checksum,
                    data=contract.encode_abi("acceptOwnership"),
                    gas_price=self.gas_price,
                    gas_limit=self.gas_limit,
                    label=checksum,
                )
            )
        return entries

    # -- execution --------------------------------------------------------
    def stage(self, candidate: CandidateTransaction) -> StageResult:
        label = candidate.label or candidate.to
        try:
            pending = list_pending(self.handle, network=self.network, client=self.client, context=self.context)
            if is_duplicate(self.handle, pending, to=candidate.to, data=candidate.data):
                ui.notice(f"Skipping {label}: equivalent transaction already pending", style="grey50", out=self.out)
                return StageResult(label=label, status="pending", detail="already staged")
            outcome = submit(
                self.handle,
                candidate,
                network=self.network,
                wallet=self.wallet,
                web3=self.web3,
                client=self.client,
                use_fork=self.use_fork,
                context=self.context,
                out=self.out,
            )
        except SafeStageError as exc:
            self.context.ledger.log(
                "ownership_stage",
                params={"contract": label, "kind": kind_of(self.handle).value},
                ok=False,
                severity="ERROR",
                result={"error": str(exc)},
            )
            ui.notice(f"Failed to stage {label}: {exc}", style="red", out=self.out)
            return StageResult(label=label, status="failed", detail=str(exc))
        if isinstance(outcome, StagedAck):
            return StageResult(label=label, status="staged", detail=f"nonce {outcome.nonce}", outcome=outcome)
        return StageResult(label=label, status="executed", detail="confirmed", outcome=outcome)

    def run(self, entries: Iterable[Union[CandidateTransaction, StageResult]]) -> List[StageResult]:
        results: List[StageResult] = []
        for entry in entries:
            if isinstance(entry, StageResult):
                results.append(entry)
                continue
            results.append(self.stage(entry))
        ui.summary_table(results, out=self.out)
        return results


__all__ = ["OwnershipStager", "StageResult"]
