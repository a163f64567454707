"""
Exchange error taxonomy.

Every error aborts the current call; inside a router call or multicall the
whole transaction is rolled back. A swap that stops early at its price limit
is not an error.
"""


class ExchangeError(Exception):
    """Base exception for exchange operations."""


class InvalidKey(ExchangeError):
    """Malformed or duplicate pool key, or an unknown pool address."""


class InvalidPath(InvalidKey):
    """Encoded swap path that does not describe at least one hop."""


class Expired(ExchangeError):
    """Deadline has passed."""

    def __init__(self, message: str = "Transaction too old"):
        super().__init__(message)


class OutOfRange(ExchangeError):
    """Active tick outside the caller's bounds."""

    def __init__(self, message: str = "activeTick not in range"):
        super().__init__(message)


class InsufficientLiquidity(ExchangeError):
    """Removal exceeds bin holdings, or a pool cannot deliver a required output."""


class SlippageExceeded(ExchangeError):
    """Realized amount violates a caller-supplied bound."""


class InsufficientOutput(SlippageExceeded):
    """Liquidity change moved less than the caller's minimum."""


class Unauthorized(ExchangeError):
    """Caller is neither owner nor approved for a position."""


class PositionNotFound(ExchangeError):
    """Position token id was never minted."""
