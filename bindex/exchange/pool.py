"""
Bindex Bin Pool  (discretized concentrated liquidity)

One trading pair's liquidity engine:
  - Liquidity lives in bins; each bin covers one tick of width
    ``1.0001 ** tick_spacing`` in price and is addressed by ``(tick, kind)``
  - Bins are stored in an arena (``bin_id → Bin``) and never deleted;
    migration moves or merges them
  - Swaps walk the active tick outward one bin at a time, honoring an
    optional sqrt-price limit (a limit stop is a partial fill, not an error)
  - Fees are charged on the input leg and stay in the bin reserves
  - A lookback-windowed TWAP oracle is updated once per swap

Security features:
  - Reentrancy lock on every mutation
  - Each mutation runs inside a chain transaction (rollback on failure)
  - Payment callbacks are verified against the pool's token balances
  - Removals require the caller to be owner or approved for the position
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from eth_utils import to_canonical_address, to_checksum_address

from ..constants import (
    BIN_KIND_STATIC,
    BIN_KINDS,
    MOBILE_UP_KINDS,
    ONE,
    ORACLE_MAX_OBSERVATIONS,
)
from ..eventlog import EventLog
from .binmath import (
    ZERO,
    ceil_div,
    ceil_int,
    floor_int,
    from_fixed,
    liquidity_for_reserves,
    sqrt_lower,
    sqrt_price_for_reserves,
    sqrt_upper,
    tick_for_sqrt_price,
)
from .errors import (
    ExchangeError,
    InsufficientLiquidity,
    InsufficientOutput,
    OutOfRange,
    Unauthorized,
)
from .events import (
    AddLiquidityEvent,
    MigrateBinsUpStackEvent,
    RemoveLiquidityEvent,
    SwapEvent,
)
from .oracle import TWAPOracle

logger = logging.getLogger(__name__)

# callback(amount_a, amount_b) for liquidity, callback(amount_in, amount_out) for swaps
PaymentCallback = Callable[[int, int], None]


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PoolKey:
    """
    Identity of a pool.

    ``fee`` is an 18-decimal fixed-point ratio. The key is canonical when
    ``int(token_a) < int(token_b)``.
    """
    fee: int
    tick_spacing: int
    lookback: int
    token_a: str
    token_b: str

    def canonical(self) -> "PoolKey":
        a = to_checksum_address(self.token_a)
        b = to_checksum_address(self.token_b)
        if int(a, 16) > int(b, 16):
            a, b = b, a
        return PoolKey(self.fee, self.tick_spacing, self.lookback, a, b)

    def encode(self) -> bytes:
        key = self.canonical()
        return (
            key.fee.to_bytes(32, "big")
            + key.tick_spacing.to_bytes(32, "big")
            + key.lookback.to_bytes(32, "big")
            + to_canonical_address(key.token_a)
            + to_canonical_address(key.token_b)
        )

    @property
    def fee_rate(self) -> Decimal:
        return Decimal(self.fee) / Decimal(ONE)


@dataclass
class Bin:
    """A discrete liquidity container."""
    bin_id: int
    tick: int
    kind: int
    reserve_a: int = 0
    reserve_b: int = 0
    total_supply: int = 0
    merge_id: int = 0

    @property
    def is_empty(self) -> bool:
        return self.total_supply == 0


@dataclass
class LiquidityChange:
    """
    One bin's liquidity change.

    Positive deltas add, negative deltas remove. With ``is_delta`` the bin
    tick is ``active_tick + pos``, otherwise ``pos`` is the tick itself.
    """
    kind: int = BIN_KIND_STATIC
    is_delta: bool = True
    pos: int = 0
    delta_a: int = 0
    delta_b: int = 0

    @property
    def is_addition(self) -> bool:
        return self.delta_a > 0 or self.delta_b > 0

    @property
    def is_removal(self) -> bool:
        return self.delta_a < 0 or self.delta_b < 0


@dataclass
class SwapPlan:
    """Result of walking the bins for a swap, before any state change."""
    amount_in: int
    amount_out: int
    end_tick: int
    end_sqrt_price: Decimal
    steps: List[Tuple[int, int, int]] = field(default_factory=list)  # (tick, in, out)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class Pool:
    """
    Bin-based concentrated-liquidity pool.

    Implements:
      - Liquidity changes (add / remove) with min-amount protection
      - Active-tick-limited liquidity changes
      - Exact-input and exact-output swaps with sqrt-price limits
      - Read-only swap quotes
      - Bin migration toward the active tick
    """

    def __init__(
        self,
        address: str,
        key: PoolKey,
        chain,
        position,
        active_tick: int = 0,
        max_observations: int = ORACLE_MAX_OBSERVATIONS,
    ):
        self.address = address
        self.key = key.canonical()
        self.chain = chain
        self.position = position
        self.active_tick: int = active_tick
        self.sqrt_price: Decimal = sqrt_lower(active_tick, self.key.tick_spacing)
        self.bins: Dict[int, Bin] = {}
        self._bin_index: Dict[Tuple[int, int], int] = {}
        self._balances: Dict[Tuple[int, int], int] = {}  # (token_id, bin_id) → LP
        self._next_bin_id: int = 1
        self.oracle = TWAPOracle(self.key.lookback, max_observations)
        self.oracle.record(self.price, chain.timestamp)
        self.events = EventLog()
        self._locked: bool = False
        chain.track(self)

    def __repr__(self) -> str:
        return f"Pool({self.address} tick={self.active_tick})"

    # -- Key accessors --------------------------------------------------------

    @property
    def fee(self) -> int:
        return self.key.fee

    @property
    def tick_spacing(self) -> int:
        return self.key.tick_spacing

    @property
    def lookback(self) -> int:
        return self.key.lookback

    @property
    def token_a(self) -> str:
        return self.key.token_a

    @property
    def token_b(self) -> str:
        return self.key.token_b

    @property
    def price(self) -> Decimal:
        """Spot price, token A per token B."""
        return self.sqrt_price * self.sqrt_price

    # -- Reentrancy guard ---------------------------------------------------

    def _acquire_lock(self) -> None:
        if self._locked:
            raise ExchangeError("Reentrancy detected: pool is locked")
        self._locked = True

    def _release_lock(self) -> None:
        self._locked = False

    # -- Views --------------------------------------------------------------

    def get_bin(self, bin_id: int) -> Optional[Bin]:
        return self.bins.get(bin_id)

    def bins_at(self, tick: int) -> List[Bin]:
        return [
            self.bins[bin_id]
            for (t, _kind), bin_id in sorted(self._bin_index.items())
            if t == tick
        ]

    def balance_of(self, token_id: int, bin_id: int) -> int:
        return self._balances.get((token_id, bin_id), 0)

    def resolve_bin(self, bin_id: int, max_depth: int = 0) -> int:
        """Follow merges from ``bin_id`` for at most ``max_depth`` hops."""
        if bin_id not in self.bins:
            raise InsufficientLiquidity(f"Unknown bin {bin_id}")
        depth = 0
        while self.bins[bin_id].merge_id and depth < max_depth:
            bin_id = self.bins[bin_id].merge_id
            depth += 1
        return bin_id

    def get_twa(self) -> Decimal:
        """Time-weighted average price over the lookback window."""
        return self.oracle.twap(self.price, self.chain.timestamp)

    def reserves(self) -> Tuple[int, int]:
        total_a = sum(b.reserve_a for b in self.bins.values())
        total_b = sum(b.reserve_b for b in self.bins.values())
        return total_a, total_b

    def _tick_reserves(self, tick: int) -> Tuple[int, int]:
        reserve_a = reserve_b = 0
        for b in self.bins_at(tick):
            reserve_a += b.reserve_a
            reserve_b += b.reserve_b
        return reserve_a, reserve_b

    def _token(self, is_a: bool):
        return self.chain.token(self.token_a if is_a else self.token_b)

    # -- Liquidity ----------------------------------------------------------

    def apply_liquidity_change(
        self,
        caller: str,
        token_id: int,
        changes: Sequence[LiquidityChange],
        amount_a_min: int = 0,
        amount_b_min: int = 0,
        callback: Optional[PaymentCallback] = None,
        recipient: Optional[str] = None,
    ) -> Tuple[int, int, List[int]]:
        """
        Apply an ordered list of liquidity changes for position ``token_id``.

        Additions pull tokens through ``callback(amount_a, amount_b)``;
        removals pay ``recipient`` (defaults to ``caller``).

        Returns:
            (amount_a, amount_b, bin_ids) moved in total

        Raises:
            Unauthorized: removal by a caller not approved for the position
            InsufficientLiquidity: removal beyond a bin's reserves or the
                position's LP balance
            InsufficientOutput: total moved is below either minimum
        """
        self._acquire_lock()
        try:
            with self.chain.atomic():
                return self._apply_liquidity_change(
                    caller, token_id, changes, amount_a_min, amount_b_min, callback, recipient,
                )
        finally:
            self._release_lock()

    def apply_liquidity_change_with_tick_limits(
        self,
        caller: str,
        token_id: int,
        changes: Sequence[LiquidityChange],
        amount_a_min: int,
        amount_b_min: int,
        min_active_tick: int,
        max_active_tick: int,
        callback: Optional[PaymentCallback] = None,
        recipient: Optional[str] = None,
    ) -> Tuple[int, int, List[int]]:
        """Same as ``apply_liquidity_change`` but only while the active tick is in range."""
        if not min_active_tick <= self.active_tick <= max_active_tick:
            raise OutOfRange()
        return self.apply_liquidity_change(
            caller, token_id, changes, amount_a_min, amount_b_min, callback, recipient,
        )

    def _apply_liquidity_change(self, caller, token_id, changes, amount_a_min, amount_b_min, callback, recipient):
        if not changes:
            raise ValueError("At least one liquidity change is required")
        for change in changes:
            if change.kind not in BIN_KINDS:
                raise ValueError(f"Unknown bin kind {change.kind}")
            if change.is_addition and change.is_removal:
                raise ValueError("A liquidity change cannot both add and remove")
        adding = any(c.is_addition for c in changes)
        removing = any(c.is_removal for c in changes)
        if adding and removing:
            raise ValueError("Cannot add and remove liquidity in the same call")

        caller = to_checksum_address(caller)
        self.position.owner_of(token_id)

        if removing:
            if not self.position.is_approved_or_owner(caller, token_id):
                raise Unauthorized(f"{caller} is not owner or approved for position {token_id}")
            recipient = to_checksum_address(recipient or caller)
            amount_a, amount_b, bin_ids = self._remove_liquidity(caller, recipient, token_id, changes)
            if amount_a < amount_a_min or amount_b < amount_b_min:
                raise InsufficientOutput("Too little removed")
            if amount_a:
                self._token(True).transfer(self.address, recipient, amount_a)
            if amount_b:
                self._token(False).transfer(self.address, recipient, amount_b)
            return amount_a, amount_b, bin_ids

        amount_a, amount_b, bin_ids = self._add_liquidity(caller, token_id, changes)
        if amount_a < amount_a_min or amount_b < amount_b_min:
            raise InsufficientOutput("Too little added")
        self._collect(amount_a, amount_b, callback)
        return amount_a, amount_b, bin_ids

    def _add_liquidity(self, caller, token_id, changes):
        total_a = total_b = 0
        bin_ids: List[int] = []
        for change in changes:
            tick = self.active_tick + change.pos if change.is_delta else change.pos
            existing = self._bin_index.get((tick, change.kind))
            bin_ = self.bins[existing] if existing is not None else None
            amount_a, amount_b, minted, new_sqrt_price = self._deposit_amounts(
                bin_, tick, max(change.delta_a, 0), max(change.delta_b, 0),
            )
            if minted == 0:
                continue
            if bin_ is None:
                bin_ = self._create_bin(tick, change.kind)
            bin_.reserve_a += amount_a
            bin_.reserve_b += amount_b
            bin_.total_supply += minted
            key = (token_id, bin_.bin_id)
            self._balances[key] = self._balances.get(key, 0) + minted
            if new_sqrt_price is not None:
                self.sqrt_price = new_sqrt_price
            total_a += amount_a
            total_b += amount_b
            bin_ids.append(bin_.bin_id)
            self.events.append(AddLiquidityEvent(
                caller, token_id, bin_.bin_id, tick, change.kind, amount_a, amount_b, minted,
            ))
        logger.debug(
            "Pool %s add position=%d amount_a=%d amount_b=%d", self.address, token_id, total_a, total_b,
        )
        return total_a, total_b, bin_ids

    def _deposit_amounts(self, bin_, tick, desired_a, desired_b):
        """
        Amounts taken and LP minted for a deposit into one bin.

        Returns (amount_a, amount_b, lp_minted, new_sqrt_price_or_None).
        """
        if bin_ is not None and not bin_.is_empty:
            a, b, minted = self._proportional(
                bin_.reserve_a, bin_.reserve_b, bin_.total_supply, desired_a, desired_b,
            )
            return a, b, minted, None
        if tick > self.active_tick:
            return 0, desired_b, desired_b, None
        if tick < self.active_tick:
            return desired_a, 0, desired_a, None

        agg_a, agg_b = self._tick_reserves(tick)
        if agg_a or agg_b:
            # New bin beside live ones: match their ratio so the price holds
            a, b, _ = self._proportional(agg_a, agg_b, (agg_a + agg_b) * ONE, desired_a, desired_b)
            return a, b, max(a, b), None

        new_sqrt_price = sqrt_price_for_reserves(
            desired_a, desired_b,
            sqrt_lower(tick, self.tick_spacing), sqrt_upper(tick, self.tick_spacing),
        )
        return desired_a, desired_b, max(desired_a, desired_b), new_sqrt_price

    @staticmethod
    def _proportional(reserve_a, reserve_b, supply, desired_a, desired_b):
        """Largest deposit within the desired amounts that keeps the reserve ratio."""
        if reserve_a == 0 and reserve_b == 0:
            return 0, 0, 0
        if reserve_a > 0 and reserve_b > 0:
            minted = min(desired_a * supply // reserve_a, desired_b * supply // reserve_b)
        elif reserve_a > 0:
            minted = desired_a * supply // reserve_a
        else:
            minted = desired_b * supply // reserve_b
        amount_a = ceil_div(minted * reserve_a, supply)
        amount_b = ceil_div(minted * reserve_b, supply)
        return amount_a, amount_b, minted

    def _remove_liquidity(self, caller, recipient, token_id, changes):
        total_a = total_b = 0
        bin_ids: List[int] = []
        for change in changes:
            tick = self.active_tick + change.pos if change.is_delta else change.pos
            bin_id = self._bin_index.get((tick, change.kind))
            if bin_id is None:
                raise InsufficientLiquidity(f"No kind {change.kind} bin at tick {tick}")
            bin_ = self.bins[bin_id]
            want_a = -min(change.delta_a, 0)
            want_b = -min(change.delta_b, 0)
            if want_a > bin_.reserve_a or want_b > bin_.reserve_b:
                raise InsufficientLiquidity(
                    f"Bin {bin_id} holds {bin_.reserve_a}/{bin_.reserve_b}, "
                    f"{want_a}/{want_b} requested"
                )
            supply = bin_.total_supply
            burned = max(
                ceil_div(want_a * supply, bin_.reserve_a) if want_a else 0,
                ceil_div(want_b * supply, bin_.reserve_b) if want_b else 0,
            )
            if burned == 0:
                continue
            key = (token_id, bin_id)
            held = self._balances.get(key, 0)
            if burned > held:
                raise InsufficientLiquidity(
                    f"Position {token_id} holds {held} LP in bin {bin_id}, {burned} required"
                )
            out_a = bin_.reserve_a * burned // supply
            out_b = bin_.reserve_b * burned // supply
            bin_.reserve_a -= out_a
            bin_.reserve_b -= out_b
            bin_.total_supply -= burned
            self._balances[key] = held - burned
            total_a += out_a
            total_b += out_b
            bin_ids.append(bin_id)
            self.events.append(RemoveLiquidityEvent(
                caller, recipient, token_id, bin_id, out_a, out_b, burned,
            ))
        logger.debug(
            "Pool %s remove position=%d amount_a=%d amount_b=%d", self.address, token_id, total_a, total_b,
        )
        return total_a, total_b, bin_ids

    def _create_bin(self, tick: int, kind: int) -> Bin:
        bin_ = Bin(bin_id=self._next_bin_id, tick=tick, kind=kind)
        self._next_bin_id += 1
        self.bins[bin_.bin_id] = bin_
        self._bin_index[(tick, kind)] = bin_.bin_id
        return bin_

    def _collect(self, amount_a: int, amount_b: int, callback: Optional[PaymentCallback]) -> None:
        """Pull payment through ``callback`` and verify it arrived."""
        if amount_a == 0 and amount_b == 0:
            return
        if callback is None:
            raise ValueError("A payment callback is required to add liquidity")
        token_a, token_b = self._token(True), self._token(False)
        before_a = token_a.balance_of(self.address)
        before_b = token_b.balance_of(self.address)
        callback(amount_a, amount_b)
        if token_a.balance_of(self.address) < before_a + amount_a:
            raise ExchangeError(f"Pool {self.address} was not paid {amount_a} of token A")
        if token_b.balance_of(self.address) < before_b + amount_b:
            raise ExchangeError(f"Pool {self.address} was not paid {amount_b} of token B")

    # -- Swap ---------------------------------------------------------------

    def swap(
        self,
        recipient: str,
        amount: int,
        token_a_in: bool,
        exact_output: bool = False,
        sqrt_price_limit: int = 0,
        callback: Optional[PaymentCallback] = None,
        sender: Optional[str] = None,
    ) -> Tuple[int, int]:
        """
        Execute a swap on this pool.

        Args:
            recipient: receives the output token
            amount: exact input, or exact output when ``exact_output``
            token_a_in: True when selling token A (price moves up)
            exact_output: interpret ``amount`` as the output
            sqrt_price_limit: 18-decimal sqrt price; 0 means unconstrained
            callback: ``callback(amount_in, amount_out)`` must pay the input

        Returns:
            (amount_in, amount_out). Both are smaller than requested when the
            price limit or the available liquidity stops the swap early.
        """
        if amount <= 0:
            raise ValueError("Swap amount must be positive")
        if sqrt_price_limit < 0:
            raise ValueError("sqrt price limit must be non-negative")

        self._acquire_lock()
        try:
            with self.chain.atomic():
                return self._execute_swap(
                    to_checksum_address(recipient), amount, token_a_in, exact_output,
                    sqrt_price_limit, callback, sender,
                )
        finally:
            self._release_lock()

    def quote_swap(
        self,
        amount: int,
        token_a_in: bool,
        exact_output: bool = False,
        sqrt_price_limit: int = 0,
    ) -> SwapPlan:
        """Compute a swap WITHOUT executing it."""
        if amount <= 0:
            raise ValueError("Swap amount must be positive")
        return self._compute_swap(amount, token_a_in, exact_output, sqrt_price_limit)

    def _execute_swap(self, recipient, amount, token_a_in, exact_output, sqrt_price_limit, callback, sender):
        """Core swap logic, called under reentrancy lock."""
        plan = self._compute_swap(amount, token_a_in, exact_output, sqrt_price_limit)
        self.oracle.record(self.price, self.chain.timestamp)

        for tick, step_in, step_out in plan.steps:
            self._apply_step(tick, token_a_in, step_in, step_out)
        self.active_tick = plan.end_tick
        self.sqrt_price = plan.end_sqrt_price

        token_in = self._token(token_a_in)
        token_out = self._token(not token_a_in)
        if plan.amount_out:
            token_out.transfer(self.address, recipient, plan.amount_out)
        if plan.amount_in:
            if callback is None:
                raise ValueError("A payment callback is required to swap")
            before = token_in.balance_of(self.address)
            callback(plan.amount_in, plan.amount_out)
            if token_in.balance_of(self.address) < before + plan.amount_in:
                raise ExchangeError(f"Pool {self.address} was not paid {plan.amount_in} for swap")

        self.events.append(SwapEvent(
            to_checksum_address(sender or recipient), recipient, token_a_in, exact_output,
            plan.amount_in, plan.amount_out, self.active_tick,
        ))
        logger.debug(
            "Pool %s swap in=%d out=%d tick=%d", self.address, plan.amount_in, plan.amount_out, self.active_tick,
        )
        return plan.amount_in, plan.amount_out

    def _compute_swap(self, amount: int, token_a_in: bool, exact_output: bool, sqrt_price_limit: int) -> SwapPlan:
        """Walk the bins from the active tick; no state is modified."""
        spacing = self.tick_spacing
        one_minus_fee = 1 - self.key.fee_rate
        tick = self.active_tick
        sqrt_price = self.sqrt_price
        limit = from_fixed(sqrt_price_limit) if sqrt_price_limit else None

        # A limit the price has already passed leaves nothing to fill
        if limit is not None and (
            (token_a_in and limit <= sqrt_price) or (not token_a_in and limit >= sqrt_price)
        ):
            return SwapPlan(0, 0, tick, sqrt_price)

        remaining = amount
        total_in = total_out = 0
        steps: List[Tuple[int, int, int]] = []

        while remaining > 0:
            lower = sqrt_lower(tick, spacing)
            upper = sqrt_upper(tick, spacing)
            reserve_a, reserve_b = self._tick_reserves(tick)
            out_reserve = reserve_b if token_a_in else reserve_a

            target = upper if token_a_in else lower
            if limit is not None:
                target = min(target, limit) if token_a_in else max(target, limit)

            liquidity = ZERO
            if out_reserve:
                liquidity = liquidity_for_reserves(reserve_a, reserve_b, sqrt_price, lower, upper)

            if liquidity > 0 and target != sqrt_price:
                step_in, step_out, sqrt_price = self._swap_step(
                    liquidity, sqrt_price, target, remaining, token_a_in, exact_output, one_minus_fee,
                )
                step_out = min(step_out, out_reserve)
                if step_in or step_out:
                    steps.append((tick, step_in, step_out))
                    total_in += step_in
                    total_out += step_out
                    remaining -= step_out if exact_output else step_in
                if remaining <= 0 or sqrt_price != target:
                    break
            else:
                sqrt_price = target

            if limit is not None and sqrt_price == limit:
                break

            # Bin edge reached: continue in the next tick holding the output token
            next_tick = self._next_tick(tick, token_a_in)
            if next_tick is None:
                break
            if limit is not None:
                start = sqrt_lower(next_tick, spacing) if token_a_in else sqrt_upper(next_tick, spacing)
                if (token_a_in and limit <= start) or (not token_a_in and limit >= start):
                    # Limit lies in the empty gap before the next bin
                    sqrt_price = limit
                    tick = min(max(tick_for_sqrt_price(limit, spacing), min(tick, next_tick)), max(tick, next_tick))
                    break
            tick = next_tick
            sqrt_price = sqrt_lower(tick, spacing) if token_a_in else sqrt_upper(tick, spacing)

        return SwapPlan(total_in, total_out, tick, sqrt_price, steps)

    @staticmethod
    def _swap_step(liquidity, sqrt_price, target, remaining, token_a_in, exact_output, one_minus_fee):
        """
        One move along a bin's curve from ``sqrt_price`` toward ``target``.

        Returns (gross_in, out, new_sqrt_price) with integer amounts; input
        rounds up and output rounds down.
        """
        if token_a_in:
            max_in = liquidity * (target - sqrt_price)
            max_out = liquidity * (1 / sqrt_price - 1 / target)
        else:
            max_in = liquidity * (1 / target - 1 / sqrt_price)
            max_out = liquidity * (sqrt_price - target)

        if exact_output:
            if remaining >= max_out:
                net_in, out, new_sqrt_price = max_in, floor_int(max_out), target
            else:
                out = remaining
                if token_a_in:
                    new_sqrt_price = min(1 / (1 / sqrt_price - remaining / liquidity), target)
                    net_in = liquidity * (new_sqrt_price - sqrt_price)
                else:
                    new_sqrt_price = max(sqrt_price - remaining / liquidity, target)
                    net_in = liquidity * (1 / new_sqrt_price - 1 / sqrt_price)
            return ceil_int(net_in / one_minus_fee), out, new_sqrt_price

        available = remaining * one_minus_fee
        if available >= max_in:
            return min(ceil_int(max_in / one_minus_fee), remaining), floor_int(max_out), target
        if token_a_in:
            new_sqrt_price = min(sqrt_price + available / liquidity, target)
            out = liquidity * (1 / sqrt_price - 1 / new_sqrt_price)
        else:
            new_sqrt_price = max(1 / (1 / sqrt_price + available / liquidity), target)
            out = liquidity * (sqrt_price - new_sqrt_price)
        return remaining, floor_int(out), new_sqrt_price

    def _next_tick(self, tick: int, upward: bool) -> Optional[int]:
        """Nearest tick beyond ``tick`` whose bins hold the token being bought."""
        candidates = [
            t for (t, _kind), bin_id in self._bin_index.items()
            if (t > tick if upward else t < tick)
            and (self.bins[bin_id].reserve_b if upward else self.bins[bin_id].reserve_a) > 0
        ]
        if not candidates:
            return None
        return min(candidates) if upward else max(candidates)

    def _apply_step(self, tick: int, token_a_in: bool, amount_in: int, amount_out: int) -> None:
        """Spread one tick's swap deltas across its bins pro rata to the output reserve."""
        in_attr, out_attr = ("reserve_a", "reserve_b") if token_a_in else ("reserve_b", "reserve_a")
        bins = sorted(
            (b for b in self.bins_at(tick) if getattr(b, out_attr) > 0),
            key=lambda b: getattr(b, out_attr),
            reverse=True,
        )
        total = sum(getattr(b, out_attr) for b in bins)
        if total == 0 or amount_out > total:
            raise InsufficientLiquidity(f"Tick {tick} cannot deliver {amount_out}")

        outs = [getattr(b, out_attr) * amount_out // total for b in bins]
        leftover = amount_out - sum(outs)
        for i, b in enumerate(bins):
            if not leftover:
                break
            take = min(getattr(b, out_attr) - outs[i], leftover)
            outs[i] += take
            leftover -= take

        ins = [getattr(b, out_attr) * amount_in // total for b in bins]
        ins[0] += amount_in - sum(ins)

        for b, step_in, step_out in zip(bins, ins, outs):
            setattr(b, in_attr, getattr(b, in_attr) + step_in)
            setattr(b, out_attr, getattr(b, out_attr) - step_out)

    # -- Migration ----------------------------------------------------------

    def migrate_bins_up_stack(self, bin_ids: Sequence[int], min_active_tick: int) -> List[MigrateBinsUpStackEvent]:
        """
        Move stranded right-moving bins up to just below the active tick.

        A bin of kind right or both sitting more than one tick below the
        active tick is moved to ``active_tick - 1``; if that slot already
        holds a bin of the same kind the two are merged.

        Raises:
            OutOfRange: if the active tick is below ``min_active_tick``
        """
        if self.active_tick < min_active_tick:
            raise OutOfRange()
        self._acquire_lock()
        try:
            with self.chain.atomic():
                return self._migrate(bin_ids)
        finally:
            self._release_lock()

    def _migrate(self, bin_ids: Sequence[int]) -> List[MigrateBinsUpStackEvent]:
        target_tick = self.active_tick - 1
        records: List[MigrateBinsUpStackEvent] = []
        for bin_id in bin_ids:
            bin_ = self.bins.get(bin_id)
            if (
                bin_ is None
                or bin_.merge_id
                or bin_.is_empty
                or bin_.kind not in MOBILE_UP_KINDS
                or bin_.tick >= target_tick
            ):
                continue

            from_tick = bin_.tick
            del self._bin_index[(from_tick, bin_.kind)]
            occupant = self._bin_index.get((target_tick, bin_.kind))
            if occupant is None:
                bin_.tick = target_tick
                self._bin_index[(target_tick, bin_.kind)] = bin_id
                merged_into = 0
            else:
                self._merge_bin(bin_, self.bins[occupant])
                merged_into = occupant

            record = MigrateBinsUpStackEvent(bin_id, from_tick, target_tick, merged_into)
            records.append(record)
            self.events.append(record)
            logger.info(
                "Pool %s MigrateBinsUpStack bin=%d tick %d -> %d merged_into=%d",
                self.address, bin_id, from_tick, target_tick, merged_into,
            )
        return records

    def _merge_bin(self, source: Bin, target: Bin) -> None:
        """Fold ``source`` into ``target``; source LP holders receive target LP."""
        mid_price = sqrt_lower(target.tick, self.tick_spacing) * sqrt_upper(target.tick, self.tick_spacing)
        source_value = Decimal(source.reserve_a) + Decimal(source.reserve_b) * mid_price
        target_value = Decimal(target.reserve_a) + Decimal(target.reserve_b) * mid_price
        if target.is_empty or target_value == 0:
            minted = source.total_supply
        else:
            minted = floor_int(Decimal(target.total_supply) * source_value / target_value)

        credited = 0
        for (token_id, bin_id), lp in list(self._balances.items()):
            if bin_id != source.bin_id:
                continue
            converted = lp * minted // source.total_supply
            key = (token_id, target.bin_id)
            self._balances[key] = self._balances.get(key, 0) + converted
            del self._balances[(token_id, bin_id)]
            credited += converted

        target.reserve_a += source.reserve_a
        target.reserve_b += source.reserve_b
        target.total_supply += credited
        source.reserve_a = source.reserve_b = source.total_supply = 0
        source.tick = target.tick
        source.merge_id = target.bin_id
