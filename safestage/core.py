"""Session primitives: forensic ledger, config stores and the web3 connection."""

from __future__ import annotations

import getpass
import hashlib
import hmac
import json
import logging
import os
import stat
import sys
import time
from collections import deque
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Any, Dict, Optional

import keyring
from keyring.errors import KeyringError
from dotenv import dotenv_values
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.middleware import SignAndSendRawMiddlewareBuilder

from .errors import BackendUnreachable

STATE_DIR_ENV = "SAFESTAGE_STATE_DIR"
SERVICE_ENV_VAR = "SAFESTAGE_KEYRING_SERVICE"
HMAC_KEY_ENV = "AUDIT_HMAC_KEY"
DEFAULT_SERVICE = "safestage"
PROVIDER_URL_KEY = "PROVIDER_URL"
PRIVATE_KEY_KEY = "PRIVATE_KEY"
SAFE_SERVICE_URL_KEY = "SAFE_SERVICE_URL"
ENV_PATH_DEFAULT = Path(".env")


def state_dir() -> Path:
    """Return the directory used for persistent state.

    Defaults to ``~/.safestage``; ``SAFESTAGE_STATE_DIR`` overrides it.
    """

    override = os.environ.get(STATE_DIR_ENV)
    if override:
        return Path(override).expanduser().resolve()
    return Path.home() / ".safestage"


def log_dir() -> Path:
    return state_dir() / "logs"


def _private_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(exist_ok=True)
    try:
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    except OSError:  # pragma: no cover - filesystems without POSIX modes
        pass


def _canonical(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


class ForensicLedger:
    """Append-only JSONL record of every backend decision.

    Each line carries the ``hash`` of its predecessor in ``prev``, so a
    removed or edited line breaks the chain. When an HMAC key is found in
    the keyring or in ``AUDIT_HMAC_KEY`` the record is also authenticated.
    """

    def __init__(self, path: Optional[Path] = None, hmac_key_env: str = HMAC_KEY_ENV) -> None:
        self.path = path or log_dir() / "safestage_audit.jsonl"
        self.hmac_key_env = hmac_key_env
        _private_file(self.path)

    def head(self) -> str:
        """Hash of the newest record, or ``""`` for an empty ledger."""

        try:
            with self.path.open("r", encoding="utf-8") as handle:
                tail = deque((line for line in handle if line.strip()), maxlen=1)
            return str(json.loads(tail[0]).get("hash", "")) if tail else ""
        except (OSError, ValueError):
            return ""

    def _hmac_key(self) -> Optional[bytes]:
        try:
            secret = keyring.get_password(os.getenv(SERVICE_ENV_VAR, DEFAULT_SERVICE), self.hmac_key_env)
        except KeyringError:
            secret = None
        secret = secret or os.getenv(self.hmac_key_env)
        return secret.encode("utf-8") if secret else None

    def log(
        self,
        action: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        result: Optional[Dict[str, Any]] = None,
        ok: bool = True,
        severity: str = "INFO",
    ) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "prev": self.head(),
            "ts": time.time(),
            "action": action,
            "params": params or {},
            "result": result or {},
            "ok": bool(ok),
            "severity": severity.upper(),
        }
        entry["hash"] = hashlib.sha256(_canonical(entry)).hexdigest()
        key = self._hmac_key()
        if key:
            entry["hmac"] = hmac.new(key, _canonical(entry), hashlib.sha256).hexdigest()
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=str) + "\n")
        return entry


class EnvStore:
    """Read-only view of a ``.env`` file, falling back to the process environment."""

    def __init__(self, path: Path = ENV_PATH_DEFAULT) -> None:
        self.path = path

    @cached_property
    def values(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        return {key: value for key, value in dotenv_values(self.path).items() if value is not None}

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key) or os.environ.get(key)


def mask(value: str) -> str:
    """Keep the first and last two characters of a secret for the ledger."""

    if len(value) <= 4:
        return "****"
    return f"{value[:2]}***{value[-2:]}"


class SecretStore:
    """Keyring-first resolution of keys, provider URLs and service overrides."""

    def __init__(
        self,
        ledger: ForensicLedger,
        env_store: EnvStore,
        *,
        service_name: Optional[str] = None,
        backend: Optional[Any] = None,
    ) -> None:
        self.ledger = ledger
        self.env_store = env_store
        self.service_name = service_name or os.getenv(SERVICE_ENV_VAR, DEFAULT_SERVICE)
        self.backend = backend if backend is not None else keyring

    def _from_keyring(self, key: str) -> Optional[str]:
        try:
            return self.backend.get_password(self.service_name, key)
        except KeyringError:
            return None

    def get(
        self,
        key: str,
        *,
        prompt_text: Optional[str] = None,
        sensitive: bool = True,
        default: Optional[str] = None,
    ) -> Optional[str]:
        value = self._from_keyring(key)
        source = "keyring"
        if not value:
            value = self.env_store.get(key)
            source = "env"
        if not value and prompt_text:
            prompt = getpass.getpass if sensitive else input
            value = prompt(prompt_text).strip() or None
            source = "prompt"
        if value:
            self.ledger.log(
                "secret_get",
                params={"key": key, "source": source},
                result={"preview": mask(value) if sensitive else value},
            )
            return value
        if default is not None:
            return default
        self.ledger.log("secret_missing", params={"key": key}, ok=False, severity="WARNING")
        return None

    def require(self, key: str, *, prompt_text: Optional[str] = None, sensitive: bool = True) -> str:
        value = self.get(key, prompt_text=prompt_text, sensitive=sensitive)
        if value is None:
            raise RuntimeError(f"missing required secret {key}")
        return value


@dataclass
class AppContext:
    """Container exposing the session's ledger, config stores and logger."""

    ledger: ForensicLedger
    env_store: EnvStore
    secrets: SecretStore
    logger: logging.Logger

    def connect_web3(self, provider_url: Optional[str] = None, *, wallet: Optional[LocalAccount] = None) -> Web3:
        """Connect to ``provider_url`` and let ``wallet`` sign outgoing transactions."""

        rpc = provider_url or self.secrets.get(PROVIDER_URL_KEY, sensitive=False)
        if not rpc:
            raise BackendUnreachable("no provider URL configured")
        w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": 30}))
        if wallet is not None:
            w3.middleware_onion.inject(SignAndSendRawMiddlewareBuilder.build(wallet), layer=0)
            w3.eth.default_account = wallet.address
        try:
            connected = w3.is_connected()
        except Exception as exc:
            connected = False
            self.ledger.log("web3_connect", params={"rpc": rpc}, ok=False, severity="ERROR", result={"error": str(exc)})
        if not connected:
            raise BackendUnreachable(f"unable to reach provider at {rpc}")
        self.ledger.log("web3_connect", params={"rpc": rpc}, result={"signer": getattr(wallet, "address", None)})
        return w3


_CONTEXT: Optional[AppContext] = None


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("safestage")
    if logger.handlers:
        return logger
    log_dir().mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
    for handler in (
        logging.FileHandler(log_dir() / "safestage.log", encoding="utf-8"),
        logging.StreamHandler(sys.stdout),
    ):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


def initialise_context(service_name: Optional[str] = None, *, env_path: Path = ENV_PATH_DEFAULT) -> AppContext:
    global _CONTEXT
    ledger = ForensicLedger()
    env_store = EnvStore(env_path)
    secrets = SecretStore(ledger, env_store, service_name=service_name)
    logger = _configure_logger()
    _CONTEXT = AppContext(ledger=ledger, env_store=env_store, secrets=secrets, logger=logger)
    return _CONTEXT


def get_context() -> AppContext:
    if _CONTEXT is None:
        return initialise_context()
    return _CONTEXT


__all__ = [
    "AppContext",
    "EnvStore",
    "ForensicLedger",
    "SecretStore",
    "get_context",
    "initialise_context",
    "state_dir",
]
