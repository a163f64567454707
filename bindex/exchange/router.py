"""
Bindex Router

Stateless orchestration over the factory, pools, position registry and
the native-currency wrapper:
  - Pool resolution / creation plus liquidity add and remove
  - Single-hop and path-based multi-hop swaps (exact input and exact output)
  - Native currency wrapped on the way in, unwrapped on request
  - Multicall batches with unwrap / sweep / refund settlement

Security features:
  - Every entry point is one atomic transaction (multicall: the whole batch)
  - Deadline checked before any state change
  - Min / max bounds on every realized amount
  - Exact-output paths are planned with read-only quotes before any token moves
  - Removal requires the caller to be owner or approved for the position
  - Residual router balances after a top-level call are logged
"""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_utils import to_checksum_address

from ..constants import ZERO_ADDRESS
from ..logger import get_logger
from .errors import (
    Expired,
    InsufficientLiquidity,
    InsufficientOutput,
    InvalidKey,
    SlippageExceeded,
    Unauthorized,
)
from .path import decode_path
from .pool import LiquidityChange, Pool, PoolKey

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Parameters / results
# ---------------------------------------------------------------------------

@dataclass
class ExactInputSingleParams:
    token_in: str
    token_out: str
    pool: str
    recipient: str
    deadline: int
    amount_in: int
    amount_out_minimum: int = 0
    sqrt_price_limit: int = 0


@dataclass
class ExactOutputSingleParams:
    token_in: str
    token_out: str
    pool: str
    recipient: str
    deadline: int
    amount_out: int
    amount_in_maximum: int
    sqrt_price_limit: int = 0


@dataclass
class ExactInputParams:
    path: str
    recipient: str
    deadline: int
    amount_in: int
    amount_out_minimum: int = 0


@dataclass
class ExactOutputParams:
    path: str  # written output-first
    recipient: str
    deadline: int
    amount_out: int
    amount_in_maximum: int


@dataclass
class RemoveLiquidityParams:
    bin_id: int
    amount: int  # LP units
    max_depth: int = 0  # merge hops to follow from bin_id


@dataclass
class AddLiquidityResult:
    pool: str
    token_id: int
    amount_a: int
    amount_b: int
    bin_ids: List[int]


@dataclass
class RouterCall:
    """An encoded self-call for ``Router.multicall``."""
    method: str
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CallContext:
    sender: str
    value: int


MULTICALL_METHODS = frozenset({
    "get_or_create_pool_and_add_liquidity",
    "add_liquidity_to_pool",
    "add_liquidity_w_tick_limits",
    "remove_liquidity",
    "exact_input_single",
    "exact_output_single",
    "exact_input",
    "exact_output",
    "unwrap_weth9",
    "sweep_token",
    "refund_eth",
    "migrate_bins_up_stack",
})


def external(method):
    """
    Make ``method`` a router entry point.

    At top level the call runs in one chain transaction, attached native
    ``value`` is moved to the router first, and the caller becomes the call
    context. Calls made from inside that context (multicall) join it.
    """
    @functools.wraps(method)
    def wrapper(self, sender, *args, value: int = 0, **kwargs):
        if value < 0:
            raise ValueError("Attached value must be non-negative")
        if self._context is not None:
            if value:
                raise ValueError("Value is attached to the batch, not to calls inside it")
            return method(self, self._context.sender, *args, **kwargs)

        sender = to_checksum_address(sender)
        with self.chain.atomic():
            self._context = CallContext(sender, value)
            try:
                if value:
                    self.chain.transfer_native(sender, self.address, value)
                result = method(self, sender, *args, **kwargs)
            finally:
                self._context = None
        self._check_residue(method.__name__)
        return result
    return wrapper


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class Router:
    """Entry point for liquidity providers and traders."""

    def __init__(self, chain, factory, position, weth9) -> None:
        self.chain = chain
        self.factory = factory
        self.position = position
        self.weth9 = weth9
        self.address: str = chain.create_contract_address()
        self._context: Optional[CallContext] = None

    # -- Helpers --------------------------------------------------------------

    def _check_deadline(self, deadline: int) -> None:
        if self.chain.timestamp > deadline:
            raise Expired()

    def _recipient(self, recipient: str) -> str:
        """Zero-address recipient keeps the proceeds in the router."""
        recipient = to_checksum_address(recipient)
        return self.address if recipient == ZERO_ADDRESS else recipient

    def _pay(self, token_address: str, payer: str, recipient: str, amount: int) -> None:
        """Move ``amount`` of a token to ``recipient``, wrapping held native value when possible."""
        if amount == 0:
            return
        token = self.chain.token(token_address)
        if token.address == self.weth9.address and self.chain.native_balance_of(self.address) >= amount:
            self.weth9.deposit(self.address, amount)
            self.weth9.transfer(self.address, recipient, amount)
        elif payer == self.address:
            token.transfer(self.address, recipient, amount)
        else:
            token.transfer_from(self.address, payer, recipient, amount)

    def _refund_native(self, recipient: str) -> None:
        balance = self.chain.native_balance_of(self.address)
        if balance:
            self.chain.transfer_native(self.address, recipient, balance)

    def _check_residue(self, name: str) -> None:
        if self.chain.native_balance_of(self.address):
            logger.warning(
                "Router holds native amount=%d after %s",
                self.chain.native_balance_of(self.address), name,
            )
        for token in self.chain.tokens:
            held = token.balance_of(self.address)
            if held:
                logger.warning("Router holds %s amount=%d after %s", token.symbol, held, name)

    def _pool_for(self, address: str, token_in: str, token_out: str) -> Tuple[Pool, bool]:
        """Resolve a pool and the swap direction for ``token_in → token_out``."""
        pool = self.factory.get_pool(address)
        token_in = to_checksum_address(token_in)
        token_out = to_checksum_address(token_out)
        if {token_in, token_out} != {pool.token_a, pool.token_b}:
            raise InvalidKey(f"Pool {pool.address} does not trade {token_in} for {token_out}")
        return pool, token_in == pool.token_a

    def _swap(
        self,
        pool: Pool,
        token_a_in: bool,
        recipient: str,
        amount: int,
        exact_output: bool,
        sqrt_price_limit: int,
        payer: str,
    ) -> Tuple[int, int]:
        token_in = pool.token_a if token_a_in else pool.token_b

        def pay(amount_in: int, amount_out: int) -> None:
            self._pay(token_in, payer, pool.address, amount_in)

        return pool.swap(
            recipient, amount, token_a_in,
            exact_output=exact_output,
            sqrt_price_limit=sqrt_price_limit,
            callback=pay,
            sender=payer,
        )

    # -- Liquidity ------------------------------------------------------------

    def _add_liquidity(
        self,
        sender: str,
        pool: Pool,
        token_id: int,
        changes: Sequence[LiquidityChange],
        amount_a_min: int,
        amount_b_min: int,
        tick_limits: Optional[Tuple[int, int]] = None,
    ) -> AddLiquidityResult:
        if token_id == 0:
            token_id = self.position.mint(sender)

        def pay(amount_a: int, amount_b: int) -> None:
            self._pay(pool.token_a, sender, pool.address, amount_a)
            self._pay(pool.token_b, sender, pool.address, amount_b)

        if tick_limits is None:
            amount_a, amount_b, bin_ids = pool.apply_liquidity_change(
                self.address, token_id, changes, amount_a_min, amount_b_min, callback=pay,
            )
        else:
            amount_a, amount_b, bin_ids = pool.apply_liquidity_change_with_tick_limits(
                self.address, token_id, changes, amount_a_min, amount_b_min,
                tick_limits[0], tick_limits[1], callback=pay,
            )
        self._refund_native(sender)
        return AddLiquidityResult(pool.address, token_id, amount_a, amount_b, bin_ids)

    @external
    def get_or_create_pool_and_add_liquidity(
        self,
        sender: str,
        key: PoolKey,
        active_tick_hint: int,
        changes: Sequence[LiquidityChange],
        amount_a_min: int,
        amount_b_min: int,
        deadline: int,
        token_id: int = 0,
    ) -> AddLiquidityResult:
        """
        Create the pool for ``key`` if needed (at ``active_tick_hint``) and add liquidity.

        ``token_id`` 0 mints a new position to the sender. Deltas refer to
        the canonical pool's token A / token B.
        """
        self._check_deadline(deadline)
        pool = self.factory.get_pool(self.factory.get_or_create(key, active_tick_hint))
        return self._add_liquidity(sender, pool, token_id, changes, amount_a_min, amount_b_min)

    @external
    def add_liquidity_to_pool(
        self,
        sender: str,
        pool: str,
        token_id: int,
        changes: Sequence[LiquidityChange],
        amount_a_min: int,
        amount_b_min: int,
        deadline: int,
    ) -> AddLiquidityResult:
        self._check_deadline(deadline)
        return self._add_liquidity(
            sender, self.factory.get_pool(pool), token_id, changes, amount_a_min, amount_b_min,
        )

    @external
    def add_liquidity_w_tick_limits(
        self,
        sender: str,
        pool: str,
        token_id: int,
        changes: Sequence[LiquidityChange],
        amount_a_min: int,
        amount_b_min: int,
        min_active_tick: int,
        max_active_tick: int,
        deadline: int,
    ) -> AddLiquidityResult:
        """Add liquidity only while the pool's active tick is within the bounds."""
        self._check_deadline(deadline)
        return self._add_liquidity(
            sender, self.factory.get_pool(pool), token_id, changes, amount_a_min, amount_b_min,
            tick_limits=(min_active_tick, max_active_tick),
        )

    @external
    def remove_liquidity(
        self,
        sender: str,
        pool: str,
        recipient: str,
        token_id: int,
        entries: Sequence[RemoveLiquidityParams],
        amount_a_min: int,
        amount_b_min: int,
        deadline: int,
    ) -> Tuple[int, int, List[int]]:
        """
        Redeem LP units of position ``token_id``.

        Both the sender and the router must be owner or approved for the
        position. A zero-address recipient leaves the tokens in the router
        for a later ``unwrap_weth9`` / ``sweep_token`` in the same batch.
        """
        self._check_deadline(deadline)
        pool_ = self.factory.get_pool(pool)
        if not self.position.is_approved_or_owner(sender, token_id):
            raise Unauthorized(f"{sender} is not owner or approved for position {token_id}")

        changes: List[LiquidityChange] = []
        for entry in entries:
            if entry.amount <= 0:
                raise ValueError("Removal amount must be positive")
            bin_id = pool_.resolve_bin(entry.bin_id, entry.max_depth)
            bin_ = pool_.get_bin(bin_id)
            if bin_.merge_id:
                raise InsufficientLiquidity(f"Bin {entry.bin_id} was merged beyond max_depth")
            if entry.amount > bin_.total_supply:
                raise InsufficientLiquidity(
                    f"Bin {bin_id} has {bin_.total_supply} LP, {entry.amount} requested"
                )
            delta_a = bin_.reserve_a * entry.amount // bin_.total_supply
            delta_b = bin_.reserve_b * entry.amount // bin_.total_supply
            if delta_a or delta_b:
                changes.append(LiquidityChange(
                    kind=bin_.kind, is_delta=False, pos=bin_.tick, delta_a=-delta_a, delta_b=-delta_b,
                ))

        if not changes:
            if amount_a_min > 0 or amount_b_min > 0:
                raise InsufficientOutput("Too little removed")
            return 0, 0, []
        return pool_.apply_liquidity_change(
            self.address, token_id, changes, amount_a_min, amount_b_min,
            recipient=self._recipient(recipient),
        )

    @external
    def migrate_bins_up_stack(
        self,
        sender: str,
        pool: str,
        bin_ids: Sequence[int],
        min_active_tick: int,
        deadline: int,
    ):
        self._check_deadline(deadline)
        return self.factory.get_pool(pool).migrate_bins_up_stack(bin_ids, min_active_tick)

    # -- Swaps ----------------------------------------------------------------

    @external
    def exact_input_single(self, sender: str, params: ExactInputSingleParams) -> int:
        """Swap exactly ``amount_in``; returns the output received."""
        self._check_deadline(params.deadline)
        pool, token_a_in = self._pool_for(params.pool, params.token_in, params.token_out)
        _, amount_out = self._swap(
            pool, token_a_in, self._recipient(params.recipient),
            params.amount_in, False, params.sqrt_price_limit, sender,
        )
        if amount_out < params.amount_out_minimum:
            raise SlippageExceeded("Too little received")
        return amount_out

    @external
    def exact_output_single(self, sender: str, params: ExactOutputSingleParams) -> int:
        """Receive exactly ``amount_out``; returns the input paid."""
        self._check_deadline(params.deadline)
        pool, token_a_in = self._pool_for(params.pool, params.token_in, params.token_out)

        quote = pool.quote_swap(params.amount_out, token_a_in, True, params.sqrt_price_limit)
        if quote.amount_in > params.amount_in_maximum:
            raise SlippageExceeded("Too much requested")

        amount_in, amount_out = self._swap(
            pool, token_a_in, self._recipient(params.recipient),
            params.amount_out, True, params.sqrt_price_limit, sender,
        )
        if params.sqrt_price_limit == 0 and amount_out < params.amount_out:
            raise InsufficientLiquidity(
                f"Pool {pool.address} delivered {amount_out} of {params.amount_out}"
            )
        if amount_in > params.amount_in_maximum:
            raise SlippageExceeded("Too much requested")
        return amount_in

    @external
    def exact_input(self, sender: str, params: ExactInputParams) -> int:
        """Swap along ``path``, feeding each hop's output into the next."""
        self._check_deadline(params.deadline)
        hops = decode_path(params.path)
        recipient = self._recipient(params.recipient)

        amount = params.amount_in
        payer = sender
        for i, hop in enumerate(hops):
            is_last = i == len(hops) - 1
            pool, token_a_in = self._pool_for(hop.pool, hop.token_in, hop.token_out)
            if amount == 0:
                raise InsufficientLiquidity(f"Hop {i} received nothing to swap")
            _, amount = self._swap(
                pool, token_a_in, recipient if is_last else self.address,
                amount, False, 0, payer,
            )
            payer = self.address

        if amount < params.amount_out_minimum:
            raise SlippageExceeded("Too little received")
        return amount

    @external
    def exact_output(self, sender: str, params: ExactOutputParams) -> int:
        """
        Receive exactly ``amount_out`` at the end of ``path``.

        Each hop's required input is quoted backward from the output before
        any token moves; the hops then execute forward with intermediate
        amounts held by the router. Returns the input taken from the sender.
        """
        self._check_deadline(params.deadline)
        hops = decode_path(params.path, exact_output=True)
        resolved = [self._pool_for(hop.pool, hop.token_in, hop.token_out) for hop in hops]

        # amounts[i] is the input of hop i; amounts[-1] is the final output
        amounts = [0] * len(hops) + [params.amount_out]
        for i in reversed(range(len(hops))):
            pool, token_a_in = resolved[i]
            quote = pool.quote_swap(amounts[i + 1], token_a_in, exact_output=True)
            if quote.amount_out < amounts[i + 1]:
                raise InsufficientLiquidity(
                    f"Pool {pool.address} cannot deliver {amounts[i + 1]} (max {quote.amount_out})"
                )
            amounts[i] = quote.amount_in

        if amounts[0] > params.amount_in_maximum:
            raise SlippageExceeded("Too much requested")

        recipient = self._recipient(params.recipient)
        payer = sender
        for i, (pool, token_a_in) in enumerate(resolved):
            is_last = i == len(hops) - 1
            _, amount_out = self._swap(
                pool, token_a_in, recipient if is_last else self.address,
                amounts[i + 1], True, 0, payer,
            )
            if amount_out < amounts[i + 1]:
                raise InsufficientLiquidity(f"Hop {i} delivered {amount_out} of {amounts[i + 1]}")
            payer = self.address
        return amounts[0]

    # -- Batching and settlement ----------------------------------------------

    @staticmethod
    def encode_call(method: str, *args, **kwargs) -> RouterCall:
        """Encode a router call for ``multicall`` (the sender is supplied by the batch)."""
        if method not in MULTICALL_METHODS:
            raise ValueError(f"Router method {method!r} cannot be batched")
        return RouterCall(method, tuple(args), dict(kwargs))

    @external
    def multicall(self, sender: str, calls: Sequence[RouterCall]) -> List[Any]:
        """Run ``calls`` in order as one transaction; any failure reverts the batch."""
        results = []
        for call in calls:
            if call.method not in MULTICALL_METHODS:
                raise ValueError(f"Router method {call.method!r} cannot be batched")
            results.append(getattr(self, call.method)(sender, *call.args, **call.kwargs))
        return results

    @external
    def unwrap_weth9(self, sender: str, amount_minimum: int, recipient: str) -> int:
        """Unwrap the router's whole wrapped balance and send the native value to ``recipient``."""
        recipient = to_checksum_address(recipient)
        if recipient == ZERO_ADDRESS:
            raise ValueError("Unwrap recipient cannot be the zero address")
        balance = self.weth9.balance_of(self.address)
        if balance < amount_minimum:
            raise SlippageExceeded(f"Insufficient {self.weth9.symbol}: {balance} < {amount_minimum}")
        if balance:
            self.weth9.withdraw(self.address, balance)
            self.chain.transfer_native(self.address, recipient, balance)
        return balance

    @external
    def sweep_token(self, sender: str, token: str, amount_minimum: int, recipient: str) -> int:
        """Send the router's whole balance of ``token`` to ``recipient``."""
        recipient = to_checksum_address(recipient)
        if recipient == ZERO_ADDRESS:
            raise ValueError("Sweep recipient cannot be the zero address")
        token_ = self.chain.token(token)
        balance = token_.balance_of(self.address)
        if balance < amount_minimum:
            raise SlippageExceeded(f"Insufficient {token_.symbol}: {balance} < {amount_minimum}")
        if balance:
            token_.transfer(self.address, recipient, balance)
        return balance

    @external
    def refund_eth(self, sender: str) -> int:
        """Return any native value still held by the router to the caller."""
        balance = self.chain.native_balance_of(self.address)
        self._refund_native(sender)
        return balance

    # -- Simulation -----------------------------------------------------------

    def call_static(self, method: str, sender: str, *args, **kwargs) -> Any:
        """Run an entry point and roll back every effect, returning its result."""
        if self._context is not None:
            raise ValueError("call_static cannot run inside another router call")
        if method not in MULTICALL_METHODS and method != "multicall":
            raise ValueError(f"Unknown router method {method!r}")
        with self.chain.simulate():
            return getattr(self, method)(sender, *args, **kwargs)
