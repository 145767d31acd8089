"""Exception taxonomy shared by every signer backend."""

from __future__ import annotations

from typing import Optional


class SafeStageError(RuntimeError):
    """Base class for staging failures surfaced to the caller."""


class BackendUnreachable(SafeStageError):
    """Required state could not be read from the Safe, multisig or service."""


class SignatureFailure(SafeStageError):
    """Signing the Safe transaction hash failed."""


class SubmissionRejected(SafeStageError):
    """The chain or the transaction service refused the transaction."""

    def __init__(self, message: str, *, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason or message


class UnsupportedSignerKind(SafeStageError, ValueError):
    """Raised for any signer kind outside SAFE / LEGACY / EOA."""


class InvalidGasPrice(SafeStageError, ValueError):
    """A gas price that cannot be read as a gwei amount."""


__all__ = [
    "BackendUnreachable",
    "InvalidGasPrice",
    "SafeStageError",
    "SignatureFailure",
    "SubmissionRejected",
    "UnsupportedSignerKind",
]
