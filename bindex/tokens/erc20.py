"""
Ledger Token

ERC-20 style fungible token used as the ledger primitive by the exchange:
  - transfer, approve, transfer_from, balance_of, allowance
  - Owner-less minting for test and bootstrap balances
  - Transfer / Approval events

Amounts are integers in base units (18 decimals by default).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from eth_utils import to_checksum_address

from ..constants import ZERO_ADDRESS
from ..eventlog import EventLog
from ..logger import get_logger

logger = get_logger(__name__)

MAX_UINT256 = 2 ** 256 - 1


# ══════════════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════

class TokenError(Exception):
    """Base exception for ledger token operations."""


class InsufficientBalanceError(TokenError):
    """Raised when sender balance is too low."""


class InsufficientAllowanceError(TokenError):
    """Raised when spender allowance is too low."""


# ══════════════════════════════════════════════════════════════════════
#  EVENTS
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TransferEvent:
    """Emitted on every successful transfer, mint and burn."""
    token_symbol: str
    sender: str
    recipient: str
    amount: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Transfer",
            "token": self.token_symbol,
            "from": self.sender,
            "to": self.recipient,
            "amount": str(self.amount),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class ApprovalEvent:
    """Emitted on every successful approve."""
    token_symbol: str
    owner: str
    spender: str
    amount: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Approval",
            "token": self.token_symbol,
            "owner": self.owner,
            "spender": self.spender,
            "amount": str(self.amount),
            "timestamp": self.timestamp,
        }


# ══════════════════════════════════════════════════════════════════════
#  TOKEN
# ══════════════════════════════════════════════════════════════════════

class LedgerToken:
    """
    Fungible token ledger.

    The token registers itself with the chain so its balances take part in
    transaction rollback.
    """

    def __init__(self, chain, name: str, symbol: str, decimals: int = 18):
        if not symbol:
            raise ValueError("Token symbol is required")
        self.chain = chain
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.address: str = chain.create_contract_address()
        self.total_supply: int = 0
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._events = EventLog()
        chain.register_token(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.symbol} @ {self.address})"

    # -- Views ----------------------------------------------------------------

    def balance_of(self, address: str) -> int:
        return self._balances.get(to_checksum_address(address), 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get(
            (to_checksum_address(owner), to_checksum_address(spender)), 0
        )

    @property
    def events(self) -> List[Any]:
        return list(self._events)

    # -- Mutations ------------------------------------------------------------

    def mint(self, to: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        to = to_checksum_address(to)
        self._balances[to] = self._balances.get(to, 0) + amount
        self.total_supply += amount
        self._events.append(TransferEvent(self.symbol, ZERO_ADDRESS, to, amount, self.chain.timestamp))

    def burn(self, holder: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        holder = to_checksum_address(holder)
        self._debit(holder, amount)
        self.total_supply -= amount
        self._events.append(TransferEvent(self.symbol, holder, ZERO_ADDRESS, amount, self.chain.timestamp))

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """Move ``amount`` from ``sender`` to ``recipient``."""
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        sender = to_checksum_address(sender)
        recipient = to_checksum_address(recipient)
        self._debit(sender, amount)
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        self._events.append(TransferEvent(self.symbol, sender, recipient, amount, self.chain.timestamp))
        logger.debug("%s transfer %s -> %s amount=%d", self.symbol, sender, recipient, amount)
        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        owner = to_checksum_address(owner)
        spender = to_checksum_address(spender)
        self._allowances[(owner, spender)] = amount
        self._events.append(ApprovalEvent(self.symbol, owner, spender, amount, self.chain.timestamp))
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        """
        Move ``amount`` from ``owner`` to ``recipient`` on behalf of ``spender``.

        An allowance of ``MAX_UINT256`` is never decremented.
        """
        spender = to_checksum_address(spender)
        owner = to_checksum_address(owner)
        if spender != owner:
            allowed = self.allowance(owner, spender)
            if allowed < amount:
                raise InsufficientAllowanceError(
                    f"{self.symbol}: allowance {allowed} < {amount} for {spender}"
                )
            if allowed != MAX_UINT256:
                self._allowances[(owner, spender)] = allowed - amount
        return self.transfer(owner, recipient, amount)

    def _debit(self, holder: str, amount: int) -> None:
        balance = self._balances.get(holder, 0)
        if balance < amount:
            raise InsufficientBalanceError(
                f"{self.symbol}: balance {balance} < {amount} for {holder}"
            )
        self._balances[holder] = balance - amount
