"""
Wrapped native currency.

Deposits lock native value in the token contract and mint the same amount;
withdrawals burn and release it. Backing is always exactly 1:1.
"""

from eth_utils import to_checksum_address

from ..logger import get_logger
from .erc20 import LedgerToken

logger = get_logger(__name__)


class WrappedNativeToken(LedgerToken):
    """Native-currency wrapper exposing the ledger interface."""

    def __init__(self, chain, name: str = "Wrapped Ether", symbol: str = "WETH"):
        super().__init__(chain, name, symbol, 18)

    def deposit(self, sender: str, amount: int) -> None:
        """Wrap ``amount`` of the sender's native balance."""
        sender = to_checksum_address(sender)
        self.chain.transfer_native(sender, self.address, amount)
        self.mint(sender, amount)
        logger.debug("Wrapped amount=%d for %s", amount, sender)

    def withdraw(self, sender: str, amount: int) -> None:
        """Unwrap ``amount`` back to the sender's native balance."""
        sender = to_checksum_address(sender)
        self.burn(sender, amount)
        self.chain.transfer_native(self.address, sender, amount)
        logger.debug("Unwrapped amount=%d for %s", amount, sender)

    @property
    def backing(self) -> int:
        return self.chain.native_balance_of(self.address)
