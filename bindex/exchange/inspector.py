"""
Pool Inspector

Read-only views over factory pools for off-chain consumers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .binmath import sqrt_lower, sqrt_upper, to_fixed


@dataclass(frozen=True)
class PoolPrice:
    sqrt_price: int  # 18-decimal fixed point


@dataclass(frozen=True)
class BinView:
    bin_id: int
    tick: int
    kind: int
    reserve_a: int
    reserve_b: int
    total_supply: int
    sqrt_lower: int
    sqrt_upper: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "binId": self.bin_id,
            "tick": self.tick,
            "kind": self.kind,
            "reserveA": str(self.reserve_a),
            "reserveB": str(self.reserve_b),
            "totalSupply": str(self.total_supply),
            "sqrtLowerPrice": str(self.sqrt_lower),
            "sqrtUpperPrice": str(self.sqrt_upper),
        }


class PoolInspector:
    """Price, bin and TWAP views for pools created by ``factory``."""

    def __init__(self, factory) -> None:
        self.factory = factory

    def get_price(self, pool: str) -> PoolPrice:
        return PoolPrice(sqrt_price=to_fixed(self.factory.get_pool(pool).sqrt_price))

    def get_active_bins(
        self,
        pool: str,
        start_tick: Optional[int] = None,
        end_tick: Optional[int] = None,
    ) -> List[BinView]:
        """
        Live (non-empty, unmerged) bins between ``start_tick`` and ``end_tick``
        inclusive, ordered by tick then kind. Open bounds cover the whole pool.
        """
        pool_ = self.factory.get_pool(pool)
        views = []
        for bin_ in pool_.bins.values():
            if bin_.is_empty or bin_.merge_id:
                continue
            if start_tick is not None and bin_.tick < start_tick:
                continue
            if end_tick is not None and bin_.tick > end_tick:
                continue
            views.append(BinView(
                bin_id=bin_.bin_id,
                tick=bin_.tick,
                kind=bin_.kind,
                reserve_a=bin_.reserve_a,
                reserve_b=bin_.reserve_b,
                total_supply=bin_.total_supply,
                sqrt_lower=to_fixed(sqrt_lower(bin_.tick, pool_.tick_spacing)),
                sqrt_upper=to_fixed(sqrt_upper(bin_.tick, pool_.tick_spacing)),
            ))
        views.sort(key=lambda v: (v.tick, v.kind))
        return views

    def get_twa(self, pool: str) -> int:
        """Lookback TWAP (token A per token B) as an 18-decimal fixed-point integer."""
        return to_fixed(self.factory.get_pool(pool).get_twa())
