"""
Exchange events.

Immutable records appended to the emitting component's ``events`` list.
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class PoolCreatedEvent:
    pool: str
    fee: int
    tick_spacing: int
    lookback: int
    active_tick: int
    token_a: str
    token_b: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "PoolCreated",
            "pool": self.pool,
            "fee": str(self.fee),
            "tickSpacing": self.tick_spacing,
            "lookback": self.lookback,
            "activeTick": self.active_tick,
            "tokenA": self.token_a,
            "tokenB": self.token_b,
        }


@dataclass(frozen=True)
class AddLiquidityEvent:
    sender: str
    token_id: int
    bin_id: int
    tick: int
    kind: int
    amount_a: int
    amount_b: int
    lp_minted: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "AddLiquidity",
            "sender": self.sender,
            "tokenId": self.token_id,
            "binId": self.bin_id,
            "tick": self.tick,
            "kind": self.kind,
            "amountA": str(self.amount_a),
            "amountB": str(self.amount_b),
            "lpMinted": str(self.lp_minted),
        }


@dataclass(frozen=True)
class RemoveLiquidityEvent:
    sender: str
    recipient: str
    token_id: int
    bin_id: int
    amount_a: int
    amount_b: int
    lp_burned: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "RemoveLiquidity",
            "sender": self.sender,
            "recipient": self.recipient,
            "tokenId": self.token_id,
            "binId": self.bin_id,
            "amountA": str(self.amount_a),
            "amountB": str(self.amount_b),
            "lpBurned": str(self.lp_burned),
        }


@dataclass(frozen=True)
class SwapEvent:
    sender: str
    recipient: str
    token_a_in: bool
    exact_output: bool
    amount_in: int
    amount_out: int
    active_tick: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Swap",
            "sender": self.sender,
            "recipient": self.recipient,
            "tokenAIn": self.token_a_in,
            "exactOutput": self.exact_output,
            "amountIn": str(self.amount_in),
            "amountOut": str(self.amount_out),
            "activeTick": self.active_tick,
        }


@dataclass(frozen=True)
class MigrateBinsUpStackEvent:
    bin_id: int
    from_tick: int
    to_tick: int
    merged_into: int  # 0 when the bin moved without merging

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "MigrateBinsUpStack",
            "binId": self.bin_id,
            "fromTick": self.from_tick,
            "toTick": self.to_tick,
            "mergedInto": self.merged_into,
        }


@dataclass(frozen=True)
class PositionTransferEvent:
    sender: str
    recipient: str
    token_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Transfer",
            "from": self.sender,
            "to": self.recipient,
            "tokenId": self.token_id,
        }


@dataclass(frozen=True)
class PositionApprovalEvent:
    owner: str
    approved: str
    token_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "Approval",
            "owner": self.owner,
            "approved": self.approved,
            "tokenId": self.token_id,
        }
