"""safestage: stage ownership transfers through Safe, legacy multisig or a plain wallet."""

__version__ = "0.3.0"

__all__ = ["__version__"]
