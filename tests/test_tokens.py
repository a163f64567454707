"""
Test suite for the ledger primitives and the execution environment

Covers:
  - Ledger token transfers, allowances, mint / burn
  - Wrapped native currency
  - Chain clock, native balances and transaction rollback
"""

import pytest

from bindex.chain import Chain
from bindex.constants import ONE, ZERO_ADDRESS
from bindex.tokens import (
    MAX_UINT256,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    LedgerToken,
    WrappedNativeToken,
)

ALICE = Chain.create_account("alice")
BOB = Chain.create_account("bob")


def _token(chain=None):
    chain = chain or Chain()
    token = LedgerToken(chain, "Test Token", "TST")
    token.mint(ALICE, 100 * ONE)
    return chain, token


class TestLedgerToken:

    def test_mint_and_transfer(self):
        _, token = _token()
        token.transfer(ALICE, BOB, 40 * ONE)
        assert token.balance_of(ALICE) == 60 * ONE
        assert token.balance_of(BOB) == 40 * ONE
        assert token.total_supply == 100 * ONE
        assert token.events[-1].to_dict()["amount"] == str(40 * ONE)

    def test_transfer_beyond_balance(self):
        _, token = _token()
        with pytest.raises(InsufficientBalanceError):
            token.transfer(BOB, ALICE, 1)

    def test_lowercase_addresses_share_balances(self):
        _, token = _token()
        assert token.balance_of(ALICE.lower()) == 100 * ONE

    def test_allowance_is_spent(self):
        _, token = _token()
        token.approve(ALICE, BOB, 10 * ONE)
        token.transfer_from(BOB, ALICE, BOB, 4 * ONE)
        assert token.allowance(ALICE, BOB) == 6 * ONE
        with pytest.raises(InsufficientAllowanceError):
            token.transfer_from(BOB, ALICE, BOB, 7 * ONE)

    def test_unlimited_allowance_is_not_spent(self):
        _, token = _token()
        token.approve(ALICE, BOB, MAX_UINT256)
        token.transfer_from(BOB, ALICE, BOB, 4 * ONE)
        assert token.allowance(ALICE, BOB) == MAX_UINT256

    def test_burn(self):
        _, token = _token()
        token.burn(ALICE, 30 * ONE)
        assert token.total_supply == 70 * ONE
        assert token.events[-1].recipient == ZERO_ADDRESS

    def test_burn_rejects_negative_amount(self):
        _, token = _token()
        with pytest.raises(ValueError):
            token.burn(ALICE, -ONE)
        assert token.balance_of(ALICE) == 100 * ONE
        assert token.total_supply == 100 * ONE

    def test_events_use_chain_clock(self):
        chain, token = _token(Chain(timestamp=5000))
        chain.advance(25)
        token.transfer(ALICE, BOB, ONE)
        token.approve(ALICE, BOB, ONE)
        assert [e.timestamp for e in token.events] == [5000, 5025, 5025]
        assert token.events[-1].to_dict()["timestamp"] == 5025

    def test_registered_with_chain(self):
        chain, token = _token()
        assert chain.token(token.address.lower()) is token
        assert token in chain.tokens
        with pytest.raises(KeyError):
            chain.token(ALICE)


class TestWrappedNativeToken:

    def test_deposit_and_withdraw(self):
        chain = Chain()
        weth = WrappedNativeToken(chain)
        chain.fund(ALICE, 5 * ONE)
        weth.deposit(ALICE, 3 * ONE)
        assert weth.balance_of(ALICE) == 3 * ONE
        assert weth.backing == 3 * ONE
        assert chain.native_balance_of(ALICE) == 2 * ONE
        weth.withdraw(ALICE, ONE)
        assert weth.backing == weth.total_supply == 2 * ONE
        assert chain.native_balance_of(ALICE) == 3 * ONE

    def test_deposit_beyond_native_balance(self):
        chain = Chain()
        weth = WrappedNativeToken(chain)
        with pytest.raises(InsufficientBalanceError):
            weth.deposit(ALICE, ONE)

    def test_withdraw_beyond_balance(self):
        chain = Chain()
        weth = WrappedNativeToken(chain)
        chain.fund(ALICE, ONE)
        weth.deposit(ALICE, ONE)
        with pytest.raises(InsufficientBalanceError):
            weth.withdraw(ALICE, 2 * ONE)


class TestChain:

    def test_clock(self):
        chain = Chain(timestamp=1000)
        assert chain.advance(10) == 1010
        chain.set_timestamp(2000)
        assert chain.timestamp == 2000
        with pytest.raises(ValueError):
            chain.set_timestamp(1999)
        with pytest.raises(ValueError):
            chain.advance(-1)

    def test_native_transfer(self):
        chain = Chain()
        chain.fund(ALICE, ONE)
        chain.transfer_native(ALICE, BOB, ONE // 4)
        assert chain.native_balance_of(BOB) == ONE // 4
        with pytest.raises(InsufficientBalanceError):
            chain.transfer_native(BOB, ALICE, ONE)

    def test_atomic_rolls_back_on_error(self):
        chain, token = _token()
        with pytest.raises(RuntimeError):
            with chain.atomic():
                token.transfer(ALICE, BOB, ONE)
                chain.fund(BOB, ONE)
                raise RuntimeError("boom")
        assert token.balance_of(BOB) == 0
        assert chain.native_balance_of(BOB) == 0
        assert not chain.in_transaction

    def test_atomic_commits(self):
        chain, token = _token()
        with chain.atomic():
            token.transfer(ALICE, BOB, ONE)
        assert token.balance_of(BOB) == ONE

    def test_nested_scope_joins_outer(self):
        chain, token = _token()
        with pytest.raises(RuntimeError):
            with chain.atomic():
                with chain.atomic():
                    token.transfer(ALICE, BOB, ONE)
                assert chain.in_transaction
                raise RuntimeError("outer fails")
        assert token.balance_of(BOB) == 0

    def test_objects_created_inside_are_forgotten(self):
        chain = Chain()
        with pytest.raises(RuntimeError):
            with chain.atomic():
                LedgerToken(chain, "Ghost", "GST")
                raise RuntimeError("boom")
        assert chain.tokens == []

    def test_simulate_always_rolls_back(self):
        chain, token = _token()
        with chain.simulate():
            token.transfer(ALICE, BOB, ONE)
            assert token.balance_of(BOB) == ONE
        assert token.balance_of(BOB) == 0

    def test_shared_references_survive_rollback(self):
        chain, token = _token()
        with pytest.raises(RuntimeError):
            with chain.atomic():
                token.transfer(ALICE, BOB, ONE)
                raise RuntimeError("boom")
        assert token.chain is chain
        assert chain.token(token.address) is token

    def test_snapshot_shares_event_logs(self):
        chain, token = _token()
        for _ in range(50):
            token.transfer(ALICE, BOB, 1)
        snapshot = chain.take_snapshot()
        assert snapshot["state"][id(token)]["_events"] is token._events
        assert (token._events, 51) in snapshot["logs"]

    def test_rollback_truncates_event_logs(self):
        chain, token = _token()
        token.transfer(ALICE, BOB, 1)
        with chain.simulate():
            token.transfer(ALICE, BOB, 2)
            token.approve(ALICE, BOB, 3)
            assert len(token.events) == 4
        assert [e.amount for e in token.events] == [100 * ONE, 1]
