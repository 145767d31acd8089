from __future__ import annotations

from pathlib import Path

import pytest
from eth_account import Account

from safestage import cli
from safestage.core import AppContext

WALLET_KEY = "0x" + "11" * 32


@pytest.fixture()
def cli_env(isolated_home: Path, monkeypatch: pytest.MonkeyPatch, web3):
    monkeypatch.chdir(isolated_home)
    monkeypatch.setattr(AppContext, "connect_web3", lambda self, provider_url=None, wallet=None: web3)
    return web3


def test_no_command_prints_help(capsys) -> None:
    assert cli.main([]) == cli.EXIT_SETUP_FAILED
    assert "accept-ownership" in capsys.readouterr().out


def test_unknown_signer_kind_is_setup_failure(cli_env, addrs) -> None:
    code = cli.main(["accept-ownership", "--signer-kind", "gnosis", "--contract", addrs.target, "--private-key", WALLET_KEY])
    assert code == cli.EXIT_SETUP_FAILED


def test_unreachable_safe_is_setup_failure(cli_env, safe_contract, addrs) -> None:
    safe_contract.nonce = 0
    code = cli.main(
        [
            "accept-ownership",
            "--signer-kind",
            "safe",
            "--new-owner",
            addrs.safe,
            "--contract",
            addrs.target,
            "--private-key",
            WALLET_KEY,
            "--safe-service-url",
            "https://safe.example",
        ]
    )
    assert code == cli.EXIT_SETUP_FAILED


def test_pending_for_direct_signer(cli_env) -> None:
    assert cli.main(["pending", "--signer-kind", "eoa", "--private-key", WALLET_KEY]) == cli.EXIT_OK


def test_accept_ownership_through_safe(cli_env, safe_contract, owned, service, addrs, monkeypatch) -> None:
    owned(addrs.target, addrs.safe)
    owned(addrs.other, addrs.safe)
    service.reject_nonces = {5}
    monkeypatch.setattr(cli, "SafeServiceClient", lambda network, base_url=None: service)

    code = cli.main(
        [
            "accept-ownership",
            "--signer-kind",
            "safe",
            "--network",
            "sepolia",
            "--new-owner",
            addrs.safe,
            "--contract",
            addrs.target,
            "--contract",
            addrs.other,
            "--private-key",
            WALLET_KEY,
        ]
    )

    assert code == cli.EXIT_PARTIAL
    assert [proposal["nonce"] for proposal in service.proposals] == [4]
    assert service.proposals[0]["to"] == addrs.target


def test_unreadable_gas_price_reports_partial_failure(cli_env, owned, addrs) -> None:
    wallet_address = Account.from_key(WALLET_KEY).address
    owned(addrs.target, wallet_address)
    code = cli.main(
        ["accept-ownership", "--signer-kind", "eoa", "--contract", addrs.target, "--gas-price", "fast", "--private-key", WALLET_KEY]
    )
    assert code == cli.EXIT_PARTIAL
    assert cli_env.eth.sent == []
