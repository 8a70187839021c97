"""Exception taxonomy for the rebalancing agent."""

from __future__ import annotations


class TreasuryError(Exception):
    """Base error for the agent."""


class ConfigurationError(TreasuryError):
    """A required setting is missing or invalid."""


class KeyStoreLockedError(ConfigurationError):
    """The custodial key store was used without a master key."""


class DataSourceError(TreasuryError):
    """A yield or price feed could not be read."""


class InsufficientFundsError(TreasuryError):
    """A balance is below the amount an action needs."""

    def __init__(self, *, required: int, available: int, where: str) -> None:
        super().__init__(f"Insufficient funds on {where}: need {required}, have {available}")
        self.required = required
        self.available = available
        self.where = where


class ProtocolCallError(TreasuryError):
    """A chain, bridge or pool call failed."""

    def __init__(self, operation: str, cause: BaseException | None = None) -> None:
        message = operation if cause is None else f"{operation}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.cause = cause


class PositionConflictError(TreasuryError):
    """A depositor already holds an active position in the venue family."""
