"""Contract helpers for the dbtop CLI."""

from .error import (
    BadInputError,
    CollectorError,
    ConnectionFailedError,
    ConnectionLostError,
    EnvelopeError,
    ErrorEnvelope,
    Exit,
    IOErrorEnvelope,
    PolicyError,
    die,
    guard_cli,
)

__all__ = [
    "Exit",
    "ErrorEnvelope",
    "EnvelopeError",
    "BadInputError",
    "PolicyError",
    "IOErrorEnvelope",
    "ConnectionFailedError",
    "CollectorError",
    "ConnectionLostError",
    "guard_cli",
    "die",
]
