# Overview: Exception taxonomy shared by the storage tiers, services and routes.

from __future__ import annotations


class StocklineError(Exception):
    """Base class for errors raised by this package."""


class RemoteServiceError(StocklineError):
    """The remote database rejected or failed an operation."""


class UnknownTableError(RemoteServiceError):
    """An operation named a table the remote service does not expose."""


class LocalStoreError(StocklineError):
    """The local cache store failed an operation."""


class RecordNotFoundError(LocalStoreError):
    """Raised when updating a record that does not exist locally."""

    def __init__(self, collection: str, entity_id):
        super().__init__(f"{collection}/{entity_id} not found in local cache")
        self.collection = collection
        self.entity_id = entity_id


class TenantAccessError(StocklineError):
    """Raised when a record is missing or belongs to another tenant."""


class PlanLimitError(StocklineError):
    """Raised when a subscription plan limit would be exceeded."""

    def __init__(self, message: str, *, limit: str, allowed: int, tier: str):
        super().__init__(message)
        self.limit = limit
        self.allowed = allowed
        self.tier = tier
