"""Client for the Safe Transaction Service coordination API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from web3 import Web3

from .abi import ZERO_ADDRESS
from .errors import BackendUnreachable, SubmissionRejected
from .models import PendingTransaction, normalise_hex

logger = logging.getLogger("safestage.safe_api")

SAFE_SERVICE_URLS: Dict[str, str] = {
    "mainnet": "https://safe-transaction-mainnet.safe.global",
    "sepolia": "https://safe-transaction-sepolia.safe.global",
    "optimism": "https://safe-transaction-optimism.safe.global",
    "arbitrum": "https://safe-transaction-arbitrum.safe.global",
    "base": "https://safe-transaction-base.safe.global",
    "polygon": "https://safe-transaction-polygon.safe.global",
    "gnosis": "https://safe-transaction-gnosis-chain.safe.global",
}
DEFAULT_TIMEOUT = 20
PAGE_SIZE = 100
ORIGIN = "safestage"


def get_safe_service_url(network: str, override: Optional[str] = None) -> str:
    if override:
        return override.rstrip("/")
    try:
        return SAFE_SERVICE_URLS[network.lower()]
    except KeyError as exc:
        raise BackendUnreachable(f"no Safe transaction service known for network {network!r}") from exc


def _parse_entry(entry: Dict[str, Any]) -> PendingTransaction:
    return PendingTransaction(
        to=entry.get("to") or "",
        data=normalise_hex(entry.get("data")),
        identifier=int(entry.get("nonce", 0)),
        value=int(entry.get("value") or 0),
        executed=bool(entry.get("isExecuted", False)),
        safe_tx_hash=entry.get("safeTxHash"),
    )


class SafeServiceClient:
    """Thin wrapper over ``/api/v1/safes/<safe>/multisig-transactions/``."""

    def __init__(
        self,
        network: str,
        *,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.network = network
        self.base_url = get_safe_service_url(network, base_url)
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def _endpoint(self, safe_address: str) -> str:
        checksum = Web3.to_checksum_address(safe_address)
        return f"{self.base_url}/api/v1/safes/{checksum}/multisig-transactions/"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise BackendUnreachable(f"Safe service request failed: {exc}") from exc
        if response.status_code >= 500:
            raise BackendUnreachable(f"Safe service error {response.status_code}: {response.text}")
        return response

    def list_transactions(self, safe_address: str) -> List[PendingTransaction]:
        """Return every not-yet-executed proposal for ``safe_address``."""

        url: Optional[str] = self._endpoint(safe_address)
        params: Optional[Dict[str, Any]] = {"executed": "false", "limit": PAGE_SIZE}
        pending: List[PendingTransaction] = []
        while url:
            response = self._request("GET", url, params=params)
            if not response.ok:
                raise BackendUnreachable(f"Safe service refused listing ({response.status_code}): {response.text}")
            try:
                payload = response.json()
                pending.extend(_parse_entry(entry) for entry in payload.get("results", []))
            except (ValueError, TypeError, AttributeError) as exc:
                raise BackendUnreachable(f"Safe service returned an unreadable listing: {exc}") from exc
            # ``next`` already carries the query string
            url = payload.get("next")
            params = None
        logger.debug("Safe %s has %d pending proposals", safe_address, len(pending))
        return pending

    def propose_transaction(
        self,
        safe_address: str,
        *,
        to: str,
        data: str,
        nonce: int,
        safe_tx_hash: str,
        sender: str,
        signature: str,
        value: int = 0,
    ) -> Dict[str, Any]:
        body = {
            "to": Web3.to_checksum_address(to),
            "value": str(value),
            "data": normalise_hex(data),
            "operation": 0,
            "safeTxGas": "0",
            "baseGas": "0",
            "gasPrice": "0",
            "gasToken": ZERO_ADDRESS,
            "refundReceiver": ZERO_ADDRESS,
            "nonce": nonce,
            "contractTransactionHash": safe_tx_hash,
            "sender": Web3.to_checksum_address(sender),
            "signature": signature,
            "origin": ORIGIN,
        }
        response = self._request("POST", self._endpoint(safe_address), json=body)
        if not response.ok:
            raise SubmissionRejected(
                f"Safe service rejected proposal nonce={nonce} ({response.status_code})",
                reason=response.text,
            )
        return body


__all__ = ["SAFE_SERVICE_URLS", "SafeServiceClient", "get_safe_service_url"]
