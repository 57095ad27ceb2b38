"""
Typed errors raised by the inventory core and the web layer.

Every error carries the HTTP status the API answers with, so the app
factory can translate any of them into the JSON envelope in one place.
"""


class InventoryError(Exception):
    """Base class for all inventory errors."""

    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__doc__)
        self.message = message or self.__doc__


class InvalidRequest(InventoryError):
    """Request parameters are invalid."""

    status_code = 400


class AuthenticationError(InventoryError):
    """Missing, malformed or expired credentials."""

    status_code = 401


class PermissionDenied(InventoryError):
    """Administrator role required."""

    status_code = 403


class NotFound(InventoryError):
    """Referenced record does not exist."""

    status_code = 404


class Conflict(InventoryError):
    """Request conflicts with existing data."""

    status_code = 409


class InsufficientStock(Conflict):
    """Stock-out quantity exceeds current stock."""

    def __init__(self, available, requested):
        super().__init__(
            f'Insufficient stock: current stock {available}, requested {requested}'
        )
        self.available = available
        self.requested = requested


class StorageFailure(InventoryError):
    """The transaction could not be committed; nothing was changed."""

    status_code = 500


class LedgerImmutable(InventoryError):
    """Ledger entries are append-only."""

    status_code = 500
