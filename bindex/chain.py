"""
Bindex Execution Environment

In-memory stand-in for the chain the exchange runs on:
  - Block clock (timestamp used for deadlines and the TWAP oracle)
  - Native-currency balances
  - Deterministic account / contract addresses (CREATE-style)
  - Token registry by address
  - All-or-nothing transaction scope with snapshot / restore

Every stateful component registers itself with ``track()``; ``atomic()``
snapshots all tracked objects before running a call and restores them if the
call raises, which is how a failed router call or multicall leaves no trace.
"""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

from eth_utils import to_checksum_address

from .crypto import generate_account_address, generate_contract_address
from .eventlog import EventLog
from .tokens.erc20 import InsufficientBalanceError

logger = logging.getLogger(__name__)

DEPLOYER_LABEL = "bindex.deployer"


class Chain:
    """Single-threaded execution environment shared by every component."""

    def __init__(self, timestamp: int = 1_700_000_000) -> None:
        self.timestamp: int = int(timestamp)
        self.deployer: str = generate_account_address(DEPLOYER_LABEL)
        self._native: Dict[str, int] = {}
        self._nonces: Dict[str, int] = {}
        self._tokens: Dict[str, Any] = {}
        self._tracked: List[Any] = [self]
        self._depth: int = 0

    # -- Clock ----------------------------------------------------------------

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Time cannot move backwards")
        self.timestamp += int(seconds)
        return self.timestamp

    def set_timestamp(self, timestamp: int) -> None:
        if timestamp < self.timestamp:
            raise ValueError("Timestamp must be monotonically increasing")
        self.timestamp = int(timestamp)

    # -- Accounts -------------------------------------------------------------

    @staticmethod
    def create_account(label: str) -> str:
        """Deterministic externally-owned address for ``label``."""
        return generate_account_address(label)

    def create_contract_address(self, deployer: str = "") -> str:
        """Next CREATE address for ``deployer`` (defaults to the chain deployer)."""
        deployer = to_checksum_address(deployer or self.deployer)
        nonce = self._nonces.get(deployer, 0)
        self._nonces[deployer] = nonce + 1
        return generate_contract_address(deployer, nonce)

    # -- Native currency ------------------------------------------------------

    def fund(self, address: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        address = to_checksum_address(address)
        self._native[address] = self._native.get(address, 0) + amount

    def native_balance_of(self, address: str) -> int:
        return self._native.get(to_checksum_address(address), 0)

    def transfer_native(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        sender = to_checksum_address(sender)
        recipient = to_checksum_address(recipient)
        balance = self._native.get(sender, 0)
        if balance < amount:
            raise InsufficientBalanceError(
                f"Insufficient native balance: {balance} < {amount}"
            )
        self._native[sender] = balance - amount
        self._native[recipient] = self._native.get(recipient, 0) + amount

    # -- Token registry -------------------------------------------------------

    def register_token(self, token: Any) -> None:
        self._tokens[token.address] = token
        self.track(token)

    @property
    def tokens(self) -> List[Any]:
        return list(self._tokens.values())

    def token(self, address: str) -> Any:
        address = to_checksum_address(address)
        if address not in self._tokens:
            raise KeyError(f"Unknown token {address}")
        return self._tokens[address]

    # -- Transactions ---------------------------------------------------------

    def track(self, obj: Any) -> None:
        """Include ``obj`` in transaction snapshots."""
        if not any(o is obj for o in self._tracked):
            self._tracked.append(obj)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def take_snapshot(self) -> Dict[str, Any]:
        """
        Capture the state of every tracked object.

        ``EventLog`` attributes are shared with the snapshot and only their
        lengths are recorded, so a snapshot costs the same however many
        events have been emitted.
        """
        objects = list(self._tracked)
        # Tracked objects are shared, not copied, wherever they are referenced
        memo: Dict[int, Any] = {id(o): o for o in objects}
        logs: List[Tuple[EventLog, int]] = []
        for obj in objects:
            for value in vars(obj).values():
                if isinstance(value, EventLog) and id(value) not in memo:
                    memo[id(value)] = value
                    logs.append((value, len(value)))
        state = {id(o): copy.deepcopy(vars(o), memo) for o in objects}
        return {"objects": objects, "state": state, "logs": logs}

    def _restore_snapshot(self, snapshot: Dict[str, Any]) -> None:
        """Restore every object captured by ``take_snapshot``."""
        for obj in snapshot["objects"]:
            saved = snapshot["state"][id(obj)]
            obj.__dict__.clear()
            obj.__dict__.update(saved)
        for log, length in snapshot["logs"]:
            log.truncate(length)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run the enclosed block as one transaction.

        Nested scopes join the outermost one; only the outermost scope
        snapshots and restores.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshot = self.take_snapshot()
        self._depth = 1
        try:
            yield
        except Exception:
            self._restore_snapshot(snapshot)
            logger.debug("Transaction reverted at timestamp %s", self.timestamp)
            raise
        finally:
            self._depth = 0

    @contextmanager
    def simulate(self) -> Iterator[None]:
        """Run the enclosed block and always roll it back."""
        snapshot = self.take_snapshot()
        depth = self._depth
        try:
            yield
        finally:
            self._restore_snapshot(snapshot)
            self._depth = depth
