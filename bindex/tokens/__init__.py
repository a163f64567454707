"""
Ledger primitives consumed by the exchange.
"""

from .erc20 import (
    ApprovalEvent,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    LedgerToken,
    TokenError,
    TransferEvent,
    MAX_UINT256,
)
from .weth import WrappedNativeToken

__all__ = [
    "ApprovalEvent",
    "InsufficientAllowanceError",
    "InsufficientBalanceError",
    "LedgerToken",
    "TokenError",
    "TransferEvent",
    "WrappedNativeToken",
    "MAX_UINT256",
]
