"""Command line entry point for safestage."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from eth_account import Account

from . import __version__, ui
from .core import PRIVATE_KEY_KEY, SAFE_SERVICE_URL_KEY, AppContext, initialise_context
from .errors import SafeStageError
from .ownership import OwnershipStager
from .safe_api import SafeServiceClient
from .signers import SignerKind, build_handle, list_pending

EXIT_OK = 0
EXIT_SETUP_FAILED = 1
EXIT_PARTIAL = 2


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--signer-kind", required=True, help="safe, legacy or eoa")
    parser.add_argument("--network", default="mainnet", help="Network name (selects the Safe service)")
    parser.add_argument("--new-owner", help="Safe or multisig address taking ownership")
    parser.add_argument("--provider-url", help="JSON-RPC endpoint (defaults to PROVIDER_URL)")
    parser.add_argument("--private-key", help="Signer key (defaults to PRIVATE_KEY from keyring/.env)")
    parser.add_argument("--safe-service-url", help="Override the Safe transaction service base URL")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="safestage", description="Stage ownership transfers through a multisig")
    parser.add_argument("--version", action="version", version=f"safestage {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    accept = subparsers.add_parser("accept-ownership", help="Stage acceptOwnership() on nominated contracts")
    _add_connection_args(accept)
    accept.add_argument("--contract", action="append", dest="contracts", required=True, help="Owned contract address")
    accept.add_argument("--gas-price", default="1", help="Gas price in gwei")
    accept.add_argument("--gas-limit", type=int, default=None)
    accept.add_argument("--use-fork", action="store_true", help="Send directly, bypassing the Safe service")

    pending = subparsers.add_parser("pending", help="List proposals waiting on the multisig")
    _add_connection_args(pending)
    return parser


def _session(args: argparse.Namespace, context: AppContext):
    kind = SignerKind.parse(args.signer_kind)
    key = args.private_key or context.secrets.require(PRIVATE_KEY_KEY, prompt_text="Enter signer private key: ")
    wallet = Account.from_key(key)
    web3 = context.connect_web3(args.provider_url, wallet=wallet)
    client = None
    if kind is SignerKind.SAFE:
        override = args.safe_service_url or context.secrets.get(SAFE_SERVICE_URL_KEY, sensitive=False, default="")
        client = SafeServiceClient(args.network, base_url=override or None)
    handle = build_handle(kind, web3=web3, address=args.new_owner, context=context)
    return kind, wallet, web3, client, handle


def _handle_accept(args: argparse.Namespace, context: AppContext) -> int:
    try:
        _, wallet, web3, client, handle = _session(args, context)
    except (SafeStageError, ValueError, RuntimeError) as exc:
        ui.notice(f"Cannot access signer backend: {exc}. Exiting.", style="grey50")
        return EXIT_SETUP_FAILED
    # EOA signers accept ownership for their own address
    new_owner = args.new_owner or wallet.address
    stager = OwnershipStager(
        handle,
        wallet=wallet,
        network=args.network,
        web3=web3,
        client=client,
        use_fork=args.use_fork,
        gas_price=args.gas_price,
        gas_limit=args.gas_limit,
        context=context,
    )
    results = stager.run(stager.build_candidates(args.contracts, new_owner))
    if any(result.status == "failed" for result in results):
        return EXIT_PARTIAL
    return EXIT_OK


def _handle_pending(args: argparse.Namespace, context: AppContext) -> int:
    try:
        _, _, _, client, handle = _session(args, context)
        pending = list_pending(handle, network=args.network, client=client, context=context)
    except (SafeStageError, ValueError, RuntimeError) as exc:
        ui.notice(f"Cannot access signer backend: {exc}. Exiting.", style="grey50")
        return EXIT_SETUP_FAILED
    ui.pending_table(handle.address or "wallet", pending)
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return EXIT_SETUP_FAILED
    context = initialise_context()
    handlers = {
        "accept-ownership": _handle_accept,
        "pending": _handle_pending,
    }
    return handlers[args.command](args, context)


__all__ = ["main"]
