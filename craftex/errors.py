"""Error taxonomy for CraftEx.

Every error here is recoverable by the caller and is meant to be shown to
the user. ``StorageUnavailable`` means the operation did not happen and is
safe to retry.
"""


class TradingError(Exception):
    """Base class for all CraftEx errors."""


class InsufficientBalance(TradingError):
    """Margin required exceeds the owner's available balance."""

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance. Required: {required:,.2f}, Available: {available:,.2f}"
        )


class InvalidAmount(TradingError):
    """Size, leverage or price outside the allowed bounds."""


class OwnerNotFound(TradingError):
    """No account exists for the given owner ID."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Account not found: {owner_id}")


class PositionNotFound(TradingError):
    """No position exists for the given position ID."""

    def __init__(self, position_id: str):
        self.position_id = position_id
        super().__init__(f"Position not found: {position_id}")


class AlreadyClosed(TradingError):
    """The position has already been settled."""

    def __init__(self, position_id: str):
        self.position_id = position_id
        super().__init__(f"Position already closed: {position_id}")


class StorageUnavailable(TradingError):
    """The backing store could not be reached; nothing was written."""


class AccountExists(TradingError):
    """An account with the same ID or username is already registered."""


class ConfigError(TradingError):
    """The config file holds out-of-range trading settings."""
