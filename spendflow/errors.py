"""Error taxonomy shared by the store, provider and operation layers."""

from enum import Enum


class ErrorKind(Enum):
    """Machine-distinguishable failure category."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PROVIDER = "provider"
    STORE = "store"
    CONFIG = "config"


class SpendflowError(Exception):
    """Base class for errors surfaced to operation callers."""

    kind = ErrorKind.STORE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(SpendflowError):
    """Input is malformed or violates a constraint. Never retried."""

    kind = ErrorKind.VALIDATION


class NotFoundError(SpendflowError):
    """A referenced transaction or item does not exist."""

    kind = ErrorKind.NOT_FOUND


class StoreError(SpendflowError):
    """The ledger store rejected or failed an operation."""

    kind = ErrorKind.STORE


class ConfigError(SpendflowError):
    """Configuration is missing or invalid."""

    kind = ErrorKind.CONFIG
