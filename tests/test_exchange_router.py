"""
Test suite for the Bindex router

Covers:
  - Pool creation and liquidity add / remove through the router
  - Single-hop exact input / exact output swaps with bounds and limits
  - Multi-hop paths (forward and reversed exact-output paths)
  - Native currency wrapping, multicall batches, unwrap / sweep / refund
  - Deadlines, authorization and whole-call rollback
"""

import pytest

from bindex.constants import BIN_KIND_RIGHT, ONE, ZERO_ADDRESS
from bindex.exchange import (
    ExactInputParams,
    ExactInputSingleParams,
    ExactOutputParams,
    ExactOutputSingleParams,
    Expired,
    InsufficientLiquidity,
    InvalidKey,
    InvalidPath,
    LiquidityChange,
    OutOfRange,
    PoolKey,
    RemoveLiquidityParams,
    SlippageExceeded,
    Unauthorized,
    encode_path,
)
from bindex.exchange.binmath import to_fixed

from conftest import FEE_1BP, LOOKBACK, TICK_SPACING, sort_tokens


def _create_pool(env, x, y, fee=FEE_1BP, amount=500 * ONE, user=None, value=0):
    key = PoolKey(fee, TICK_SPACING, LOOKBACK, x.address, y.address)
    result = env.router.get_or_create_pool_and_add_liquidity(
        user or env.alice, key, 0,
        [LiquidityChange(delta_a=amount, delta_b=amount)],
        0, 0, env.deadline, value=value,
    )
    return env.factory.get_pool(result.pool), result


def _pair(env, fee=FEE_1BP):
    x = env.make_token("X")
    y = env.make_token("Y")
    a, b = sort_tokens(x, y)
    pool, result = _create_pool(env, a, b, fee)
    return pool, a, b, result


def _sell(env, pool, token_in, token_out, amount, **kwargs):
    return ExactInputSingleParams(
        token_in=token_in.address,
        token_out=token_out.address,
        pool=pool.address,
        recipient=env.bob,
        deadline=env.deadline,
        amount_in=amount,
        **kwargs,
    )


def _buy(env, pool, token_in, token_out, amount, maximum=10 ** 6 * ONE, **kwargs):
    return ExactOutputSingleParams(
        token_in=token_in.address,
        token_out=token_out.address,
        pool=pool.address,
        recipient=env.bob,
        deadline=env.deadline,
        amount_out=amount,
        amount_in_maximum=maximum,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------

class TestRouterLiquidity:

    def test_create_pool_and_add(self, env):
        pool, a, b, result = _pair(env)
        assert env.factory.pool_count == 1
        assert result.token_id == 1
        assert env.position.owner_of(1) == env.alice
        assert (result.amount_a, result.amount_b) == (500 * ONE, 500 * ONE)
        assert pool.balance_of(1, result.bin_ids[0]) == 500 * ONE

    def test_get_or_create_reuses_pool(self, env):
        pool, a, b, _ = _pair(env)
        again, result = _create_pool(env, b, a, amount=ONE, user=env.bob)
        assert again is pool
        assert env.factory.pool_count == 1
        assert env.position.owner_of(result.token_id) == env.bob

    def test_add_twice_then_remove(self, env):
        pool, a, b, result = _pair(env)
        env.router.add_liquidity_to_pool(
            env.alice, pool.address, result.token_id,
            [LiquidityChange(delta_a=500 * ONE, delta_b=500 * ONE)], 0, 0, env.deadline,
        )
        env.position.approve(env.alice, env.router.address, result.token_id)
        before_a = a.balance_of(env.alice)
        amount_a, amount_b, bin_ids = env.router.remove_liquidity(
            env.alice, pool.address, env.alice, result.token_id,
            [RemoveLiquidityParams(result.bin_ids[0], 500 * ONE)], 0, 0, env.deadline,
        )
        assert (amount_a, amount_b) == (500 * ONE, 500 * ONE)
        assert bin_ids == result.bin_ids
        assert a.balance_of(env.alice) == before_a + 500 * ONE
        assert pool.balance_of(result.token_id, bin_ids[0]) == 500 * ONE

    def test_remove_requires_router_approval(self, env):
        pool, a, b, result = _pair(env)
        with pytest.raises(Unauthorized):
            env.router.remove_liquidity(
                env.alice, pool.address, env.alice, result.token_id,
                [RemoveLiquidityParams(result.bin_ids[0], ONE)], 0, 0, env.deadline,
            )

    def test_remove_by_stranger(self, env):
        pool, a, b, result = _pair(env)
        env.position.approve(env.alice, env.router.address, result.token_id)
        with pytest.raises(Unauthorized):
            env.router.remove_liquidity(
                env.bob, pool.address, env.bob, result.token_id,
                [RemoveLiquidityParams(result.bin_ids[0], ONE)], 0, 0, env.deadline,
            )

    def test_remove_more_than_supply(self, env):
        pool, a, b, result = _pair(env)
        env.position.approve(env.alice, env.router.address, result.token_id)
        with pytest.raises(InsufficientLiquidity):
            env.router.remove_liquidity(
                env.alice, pool.address, env.alice, result.token_id,
                [RemoveLiquidityParams(result.bin_ids[0], 501 * ONE)], 0, 0, env.deadline,
            )

    def test_remove_minimums(self, env):
        pool, a, b, result = _pair(env)
        env.position.approve(env.alice, env.router.address, result.token_id)
        with pytest.raises(SlippageExceeded):
            env.router.remove_liquidity(
                env.alice, pool.address, env.alice, result.token_id,
                [RemoveLiquidityParams(result.bin_ids[0], 100 * ONE)], 600 * ONE, 0, env.deadline,
            )
        assert pool.balance_of(result.token_id, result.bin_ids[0]) == 500 * ONE

    def test_expired_deadline(self, env):
        x = env.make_token("X")
        y = env.make_token("Y")
        key = PoolKey(FEE_1BP, TICK_SPACING, LOOKBACK, x.address, y.address)
        with pytest.raises(Expired, match="Transaction too old"):
            env.router.get_or_create_pool_and_add_liquidity(
                env.alice, key, 0, [LiquidityChange(delta_a=ONE, delta_b=ONE)],
                0, 0, env.chain.timestamp - 1,
            )
        assert env.factory.pool_count == 0

    def test_failed_add_reverts_pool_creation(self, env):
        x = env.make_token("X")
        y = env.make_token("Y")
        key = PoolKey(FEE_1BP, TICK_SPACING, LOOKBACK, x.address, y.address)
        with pytest.raises(SlippageExceeded):
            env.router.get_or_create_pool_and_add_liquidity(
                env.alice, key, 0, [LiquidityChange(delta_a=ONE, delta_b=ONE)],
                2 * ONE, 0, env.deadline,
            )
        assert env.factory.pool_count == 0
        assert not env.position.exists(1)

    def test_tick_limits(self, env):
        pool, a, b, result = _pair(env)
        changes = [LiquidityChange(delta_a=ONE, delta_b=ONE)]
        with pytest.raises(OutOfRange, match="activeTick not in range"):
            env.router.add_liquidity_w_tick_limits(
                env.alice, pool.address, result.token_id, changes, 0, 0, 5, 11, env.deadline,
            )
        added = env.router.add_liquidity_w_tick_limits(
            env.alice, pool.address, result.token_id, changes, 0, 0, -1, 1, env.deadline,
        )
        assert added.amount_a == ONE

    def test_add_with_native_value_refunds_excess(self, env):
        other = env.make_token("B")
        before = env.chain.native_balance_of(env.alice)
        pool, result = _create_pool(env, env.weth, other, fee=5 * 10 ** 16, amount=2 * ONE, value=3 * ONE)
        assert env.chain.native_balance_of(env.alice) == before - 2 * ONE
        assert env.weth.balance_of(pool.address) == 2 * ONE
        assert env.weth.backing == 2 * ONE
        assert env.chain.native_balance_of(env.router.address) == 0

    def test_migrate_skips_unknown_and_static_bins(self, env):
        pool, a, b, result = _pair(env)
        assert result.bin_ids == [1]
        records = env.router.migrate_bins_up_stack(env.alice, pool.address, [0, 1, 3], 0, env.deadline)
        assert records == []
        assert pool.bins_at(0)[0].reserve_a == 500 * ONE

    def test_remove_follows_merge(self, env):
        x = env.make_token("X")
        y = env.make_token("Y")
        key = PoolKey(FEE_1BP, TICK_SPACING, LOOKBACK, x.address, y.address)
        right = [LiquidityChange(kind=BIN_KIND_RIGHT, is_delta=False, pos=-1, delta_a=10 * ONE)]
        bob_add = env.router.get_or_create_pool_and_add_liquidity(
            env.bob, key, 0, right, 0, 0, env.deadline,
        )
        right[0].pos = -3
        alice_add = env.router.get_or_create_pool_and_add_liquidity(
            env.alice, key, 0, right, 0, 0, env.deadline,
        )
        source_id = alice_add.bin_ids[0]
        env.router.migrate_bins_up_stack(env.alice, alice_add.pool, [source_id], 0, env.deadline)
        env.position.approve(env.alice, env.router.address, alice_add.token_id)

        with pytest.raises(InsufficientLiquidity):
            env.router.remove_liquidity(
                env.alice, alice_add.pool, env.alice, alice_add.token_id,
                [RemoveLiquidityParams(source_id, 10 * ONE)], 0, 0, env.deadline,
            )
        amount_a, amount_b, bin_ids = env.router.remove_liquidity(
            env.alice, alice_add.pool, env.alice, alice_add.token_id,
            [RemoveLiquidityParams(source_id, 10 * ONE, max_depth=1)], 0, 0, env.deadline,
        )
        assert (amount_a, amount_b) == (10 * ONE, 0)
        assert bin_ids == bob_add.bin_ids


# ---------------------------------------------------------------------------
# Single-hop swaps
# ---------------------------------------------------------------------------

class TestRouterSwaps:

    def test_exact_input_single(self, env):
        pool, a, b, _ = _pair(env)
        before_a = a.balance_of(pool.address)
        before_b = b.balance_of(pool.address)
        amount_out = env.router.exact_input_single(env.bob, _sell(env, pool, a, b, 10 * ONE))
        assert a.balance_of(pool.address) - before_a == 10 * ONE
        assert before_b - b.balance_of(pool.address) == amount_out
        assert amount_out > 4 * ONE
        assert 95 * ONE // 10 < amount_out < 96 * ONE // 10

    def test_too_little_received_reverts(self, env):
        pool, a, b, _ = _pair(env)
        price = pool.sqrt_price
        with pytest.raises(SlippageExceeded, match="Too little received"):
            env.router.exact_input_single(
                env.bob, _sell(env, pool, a, b, 10 * ONE, amount_out_minimum=10 * ONE),
            )
        assert pool.sqrt_price == price
        assert a.balance_of(env.bob) == 1_000_000 * ONE

    def test_exact_output_single(self, env):
        pool, a, b, _ = _pair(env)
        before_b = b.balance_of(pool.address)
        amount_in = env.router.exact_output_single(env.bob, _buy(env, pool, a, b, 10 * ONE))
        assert before_b - b.balance_of(pool.address) == 10 * ONE
        assert b.balance_of(env.bob) == 1_000_000 * ONE + 10 * ONE
        assert a.balance_of(env.bob) == 1_000_000 * ONE - amount_in

    def test_too_much_requested_reverts(self, env):
        pool, a, b, _ = _pair(env)
        with pytest.raises(SlippageExceeded, match="Too much requested"):
            env.router.exact_output_single(env.bob, _buy(env, pool, a, b, 10 * ONE, maximum=10 * ONE))

    def test_exact_output_beyond_liquidity(self, env):
        pool, a, b, _ = _pair(env)
        with pytest.raises(InsufficientLiquidity):
            env.router.exact_output_single(env.bob, _buy(env, pool, a, b, 10_000 * ONE))

    def test_price_limit_stops_early(self, env):
        pool, a, b, _ = _pair(env)
        limit = to_fixed(pool.sqrt_price) - 10 ** 15
        amount_out = env.router.exact_input_single(
            env.bob, _sell(env, pool, b, a, 1000 * ONE, sqrt_price_limit=limit),
        )
        assert amount_out > 0
        assert env.inspector.get_price(pool.address).sqrt_price == limit
        assert b.balance_of(env.bob) > 1_000_000 * ONE - 1000 * ONE

    def test_cheaper_pool_and_binding_limit(self, env):
        x = env.make_token("X")
        y = env.make_token("Y")
        a, b = sort_tokens(x, y)
        cheap, _ = _create_pool(env, a, b, fee=FEE_1BP)
        dear, _ = _create_pool(env, a, b, fee=2 * FEE_1BP)
        cheap_out = env.router.exact_input_single(env.bob, _sell(env, cheap, a, b, 10 * ONE))
        dear_out = env.router.exact_input_single(env.bob, _sell(env, dear, a, b, 10 * ONE))
        assert cheap_out > dear_out

        plan = cheap.quote_swap(10 * ONE, True)
        limit = (to_fixed(cheap.sqrt_price) + to_fixed(plan.end_sqrt_price)) // 2
        before = a.balance_of(env.bob)
        limited_out = env.router.exact_input_single(
            env.bob, _sell(env, cheap, a, b, 10 * ONE, sqrt_price_limit=limit),
        )
        assert 0 < before - a.balance_of(env.bob) < plan.amount_in
        assert 0 < limited_out < plan.amount_out

    def test_half_fee_pool(self, env):
        pool, a, b, _ = _pair(env, fee=ONE // 2)
        amount_out = env.router.exact_input_single(env.bob, _sell(env, pool, a, b, 10 * ONE))
        assert 47 * ONE // 10 < amount_out < 48 * ONE // 10

    def test_tokens_must_match_pool(self, env):
        pool, a, b, _ = _pair(env)
        stranger = env.make_token("Z")
        with pytest.raises(InvalidKey):
            env.router.exact_input_single(env.bob, _sell(env, pool, stranger, b, ONE))

    def test_expired_swap(self, env):
        pool, a, b, _ = _pair(env)
        params = _sell(env, pool, a, b, ONE)
        env.chain.advance(601)
        with pytest.raises(Expired):
            env.router.exact_input_single(env.bob, params)

    def test_call_static_leaves_no_trace(self, env):
        pool, a, b, _ = _pair(env)
        price = pool.sqrt_price
        quoted = env.router.call_static("exact_input_single", env.bob, _sell(env, pool, a, b, 10 * ONE))
        assert pool.sqrt_price == price
        assert a.balance_of(env.bob) == 1_000_000 * ONE
        assert env.router.exact_input_single(env.bob, _sell(env, pool, a, b, 10 * ONE)) == quoted


# ---------------------------------------------------------------------------
# Multi-hop
# ---------------------------------------------------------------------------

class TestRouterPaths:

    def _route(self, env):
        x = env.make_token("X")
        y = env.make_token("Y")
        z = env.make_token("Z")
        p1, _ = _create_pool(env, x, y)
        p2, _ = _create_pool(env, y, z)
        return x, y, z, p1, p2

    def test_exact_input_matches_chained_singles(self, env):
        x, y, z, p1, p2 = self._route(env)
        mid = env.router.call_static("exact_input_single", env.bob, _sell(env, p1, x, y, 10 * ONE))
        expected = env.router.call_static("exact_input_single", env.bob, _sell(env, p2, y, z, mid))

        path = encode_path([x.address, p1.address, y.address, p2.address, z.address])
        amount_out = env.router.exact_input(
            env.bob, ExactInputParams(path, env.bob, env.deadline, 10 * ONE),
        )
        assert amount_out == expected
        assert z.balance_of(env.bob) == 1_000_000 * ONE + expected
        assert y.balance_of(env.router.address) == 0

    def test_exact_output_reversed_path(self, env):
        x, y, z, p1, p2 = self._route(env)
        mid = env.router.call_static("exact_output_single", env.bob, _buy(env, p2, y, z, 10 * ONE))
        expected = env.router.call_static("exact_output_single", env.bob, _buy(env, p1, x, y, mid))

        path = encode_path([z.address, p2.address, y.address, p1.address, x.address])
        amount_in = env.router.exact_output(
            env.bob, ExactOutputParams(path, env.bob, env.deadline, 10 * ONE, 10 ** 6 * ONE),
        )
        assert amount_in == expected
        assert z.balance_of(env.bob) == 1_000_000 * ONE + 10 * ONE
        assert x.balance_of(env.bob) == 1_000_000 * ONE - expected
        assert y.balance_of(env.router.address) == 0

    def test_exact_output_path_maximum(self, env):
        x, y, z, p1, p2 = self._route(env)
        path = encode_path([z.address, p2.address, y.address, p1.address, x.address])
        with pytest.raises(SlippageExceeded):
            env.router.exact_output(
                env.bob, ExactOutputParams(path, env.bob, env.deadline, 10 * ONE, 10 * ONE),
            )
        assert z.balance_of(env.bob) == 1_000_000 * ONE

    def test_exact_input_minimum(self, env):
        x, y, z, p1, p2 = self._route(env)
        path = encode_path([x.address, p1.address, y.address, p2.address, z.address])
        with pytest.raises(SlippageExceeded):
            env.router.exact_input(
                env.bob, ExactInputParams(path, env.bob, env.deadline, 10 * ONE, 10 * ONE),
            )
        assert x.balance_of(env.bob) == 1_000_000 * ONE

    def test_malformed_path(self, env):
        with pytest.raises(InvalidPath):
            env.router.exact_input(
                env.bob, ExactInputParams("0x1234", env.bob, env.deadline, ONE),
            )


# ---------------------------------------------------------------------------
# Native currency and multicall
# ---------------------------------------------------------------------------

class TestRouterNative:

    def _weth_pool(self, env):
        other = env.make_token("B")
        pool, result = _create_pool(env, env.weth, other, fee=5 * 10 ** 16, amount=2 * ONE, value=2 * ONE)
        return pool, other, result

    def test_exact_input_single_with_value(self, env):
        pool, other, _ = self._weth_pool(env)
        before = env.chain.native_balance_of(env.bob)
        amount_out = env.router.exact_input_single(
            env.bob, _sell(env, pool, env.weth, other, ONE // 10), value=ONE // 10,
        )
        assert amount_out > 0
        assert env.chain.native_balance_of(env.bob) == before - ONE // 10
        assert env.weth.balance_of(env.bob) == 0
        assert env.chain.native_balance_of(env.router.address) == 0

    def test_exact_output_then_refund(self, env):
        pool, other, _ = self._weth_pool(env)
        before = env.chain.native_balance_of(env.bob)
        results = env.router.multicall(env.bob, [
            env.router.encode_call("exact_output_single", _buy(env, pool, env.weth, other, ONE // 10, maximum=ONE)),
            env.router.encode_call("refund_eth"),
        ], value=ONE)
        amount_in = results[0]
        assert 0 < amount_in < ONE
        assert results[1] == ONE - amount_in
        assert env.chain.native_balance_of(env.bob) == before - amount_in
        assert other.balance_of(env.bob) == 1_000_000 * ONE + ONE // 10
        assert env.chain.native_balance_of(env.router.address) == 0

    def test_remove_unwrap_and_sweep(self, env):
        pool, other, result = self._weth_pool(env)
        env.position.approve(env.alice, env.router.address, result.token_id)
        native_before = env.chain.native_balance_of(env.alice)
        other_before = other.balance_of(env.alice)

        removed, unwrapped, swept = env.router.multicall(env.alice, [
            env.router.encode_call(
                "remove_liquidity", pool.address, ZERO_ADDRESS, result.token_id,
                [RemoveLiquidityParams(result.bin_ids[0], 2 * ONE)], 0, 0, env.deadline,
            ),
            env.router.encode_call("unwrap_weth9", 0, env.alice),
            env.router.encode_call("sweep_token", other.address, 0, env.alice),
        ])
        amount_a, amount_b, _ = removed
        weth_out, other_out = (amount_a, amount_b) if pool.token_a == env.weth.address else (amount_b, amount_a)
        assert unwrapped == weth_out == 2 * ONE
        assert swept == other_out == 2 * ONE
        assert env.chain.native_balance_of(env.alice) == native_before + weth_out
        assert other.balance_of(env.alice) == other_before + other_out
        assert env.weth.balance_of(env.router.address) == 0
        assert other.balance_of(env.router.address) == 0

    def test_failed_call_reverts_whole_batch(self, env):
        pool, a, b, _ = _pair(env)
        price = pool.sqrt_price
        with pytest.raises(SlippageExceeded):
            env.router.multicall(env.bob, [
                env.router.encode_call("exact_input_single", _sell(env, pool, a, b, ONE)),
                env.router.encode_call("exact_input_single", _sell(env, pool, a, b, ONE, amount_out_minimum=ONE)),
            ])
        assert pool.sqrt_price == price
        assert a.balance_of(env.bob) == 1_000_000 * ONE
        assert b.balance_of(env.bob) == 1_000_000 * ONE

    def test_batch_rejects_unknown_method(self, env):
        with pytest.raises(ValueError):
            env.router.encode_call("call_static")

    def test_unwrap_minimum(self, env):
        with pytest.raises(SlippageExceeded):
            env.router.unwrap_weth9(env.bob, 1, env.bob)

    def test_sweep_minimum(self, env):
        token = env.make_token("T")
        with pytest.raises(SlippageExceeded):
            env.router.sweep_token(env.bob, token.address, 1, env.bob)

    def test_refund_without_balance(self, env):
        assert env.router.refund_eth(env.bob) == 0
