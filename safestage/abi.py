"""Minimal ABI fragments for the contracts safestage talks to."""

from __future__ import annotations

from typing import Any, Dict, List

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _fn(name: str, inputs: List[tuple], outputs: List[str], mutability: str = "view") -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": arg, "type": typ} for arg, typ in inputs],
        "outputs": [{"name": "", "type": typ} for typ in outputs],
        "stateMutability": mutability,
    }


SAFE_ABI: List[Dict[str, Any]] = [
    _fn("nonce", [], ["uint256"]),
    _fn(
        "getTransactionHash",
        [
            ("to", "address"),
            ("value", "uint256"),
            ("data", "bytes"),
            ("operation", "uint8"),
            ("safeTxGas", "uint256"),
            ("baseGas", "uint256"),
            ("gasPrice", "uint256"),
            ("gasToken", "address"),
            ("refundReceiver", "address"),
            ("_nonce", "uint256"),
        ],
        ["bytes32"],
    ),
]

# Gnosis MultiSigWallet (pre-Safe) with on-chain proposal tracking.
MULTISIG_ABI: List[Dict[str, Any]] = [
    _fn("getTransactionCount", [("pending", "bool"), ("executed", "bool")], ["uint256"]),
    _fn(
        "getTransactionIds",
        [("from", "uint256"), ("to", "uint256"), ("pending", "bool"), ("executed", "bool")],
        ["uint256[]"],
    ),
    {
        "type": "function",
        "name": "transactions",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [
            {"name": "destination", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "data", "type": "bytes"},
            {"name": "executed", "type": "bool"},
        ],
        "stateMutability": "view",
    },
    _fn(
        "submitTransaction",
        [("destination", "address"), ("value", "uint256"), ("data", "bytes")],
        ["uint256"],
        mutability="nonpayable",
    ),
]

OWNED_ABI: List[Dict[str, Any]] = [
    _fn("nominatedOwner", [], ["address"]),
    _fn("acceptOwnership", [], [], mutability="nonpayable"),
]


__all__ = ["MULTISIG_ABI", "OWNED_ABI", "SAFE_ABI", "ZERO_ADDRESS"]
