"""
Position Registry

Ownership and delegated approval for liquidity position ids. Pools keep the
LP balances; this registry only answers who may act on a position.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Set, Tuple

from eth_utils import to_checksum_address

from ..constants import ZERO_ADDRESS
from ..eventlog import EventLog
from .errors import PositionNotFound, Unauthorized
from .events import PositionApprovalEvent, PositionTransferEvent

logger = logging.getLogger(__name__)


class PositionRegistry:
    """Non-fungible ownership table keyed by sequential token id."""

    def __init__(self, chain) -> None:
        self.chain = chain
        self.address: str = chain.create_contract_address()
        self._owners: Dict[int, str] = {}
        self._approved: Dict[int, str] = {}
        self._operators: Set[Tuple[str, str]] = set()
        self._next_id: int = 1
        self.events = EventLog()
        chain.track(self)

    # -- Views --------------------------------------------------------------

    def owner_of(self, token_id: int) -> str:
        try:
            return self._owners[token_id]
        except KeyError:
            raise PositionNotFound(f"Position {token_id} does not exist") from None

    def exists(self, token_id: int) -> bool:
        return token_id in self._owners

    def get_approved(self, token_id: int) -> str:
        self.owner_of(token_id)
        return self._approved.get(token_id, ZERO_ADDRESS)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return (to_checksum_address(owner), to_checksum_address(operator)) in self._operators

    def is_approved_or_owner(self, spender: str, token_id: int) -> bool:
        owner = self.owner_of(token_id)
        spender = to_checksum_address(spender)
        return (
            spender == owner
            or self._approved.get(token_id) == spender
            or (owner, spender) in self._operators
        )

    def tokens_of(self, owner: str) -> List[int]:
        owner = to_checksum_address(owner)
        return sorted(tid for tid, o in self._owners.items() if o == owner)

    # -- Mutations ------------------------------------------------------------

    def mint(self, to: str) -> int:
        to = to_checksum_address(to)
        if to == ZERO_ADDRESS:
            raise ValueError("Cannot mint to the zero address")
        token_id = self._next_id
        self._next_id += 1
        self._owners[token_id] = to
        self.events.append(PositionTransferEvent(ZERO_ADDRESS, to, token_id))
        logger.debug("Position %d minted to %s", token_id, to)
        return token_id

    def approve(self, sender: str, spender: str, token_id: int) -> None:
        """Approve ``spender`` for ``token_id``; the zero address clears the approval."""
        owner = self.owner_of(token_id)
        sender = to_checksum_address(sender)
        if sender != owner and (owner, sender) not in self._operators:
            raise Unauthorized(f"{sender} may not approve position {token_id}")
        spender = to_checksum_address(spender)
        if spender == ZERO_ADDRESS:
            self._approved.pop(token_id, None)
        else:
            self._approved[token_id] = spender
        self.events.append(PositionApprovalEvent(owner, spender, token_id))

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        key = (to_checksum_address(owner), to_checksum_address(operator))
        if key[0] == key[1]:
            raise ValueError("Cannot approve self as operator")
        if approved:
            self._operators.add(key)
        else:
            self._operators.discard(key)

    def transfer_from(self, sender: str, owner: str, to: str, token_id: int) -> None:
        """Move ``token_id`` to ``to``; clears the single-token approval."""
        if not self.is_approved_or_owner(sender, token_id):
            raise Unauthorized(f"{sender} is not owner or approved for position {token_id}")
        owner = to_checksum_address(owner)
        if self.owner_of(token_id) != owner:
            raise Unauthorized(f"{owner} does not own position {token_id}")
        to = to_checksum_address(to)
        if to == ZERO_ADDRESS:
            raise ValueError("Cannot transfer to the zero address")
        self._approved.pop(token_id, None)
        self._owners[token_id] = to
        self.events.append(PositionTransferEvent(owner, to, token_id))
