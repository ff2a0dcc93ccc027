"""Exceptions raised by the clone reconciler."""

from .models import TokenRejection


class CloneError(Exception):
    """Base class for clone reconciliation failures."""

    pass


class ConsistencyError(CloneError):
    """Cluster state breaks a clone invariant and needs outside intervention."""

    pass


class InvalidCloneRequestError(CloneError):
    """The clone request annotation cannot be parsed."""

    pass


class CloneValidationError(CloneError):
    """Source and target claims may not be cloned."""

    pass


class TokenValidationError(CloneValidationError):
    """The clone token was rejected."""

    def __init__(self, reason: TokenRejection, message: str):
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason
