"""
Shared deployment for the exchange test suite.
"""

from dataclasses import dataclass

import pytest

from bindex.chain import Chain
from bindex.constants import ONE
from bindex.exchange import Factory, PoolInspector, PositionRegistry, Router
from bindex.tokens import MAX_UINT256, LedgerToken, WrappedNativeToken

FEE_1BP = 10 ** 14  # 0.01%
TICK_SPACING = 953
LOOKBACK = 3600


@dataclass
class Deployment:
    chain: Chain
    position: PositionRegistry
    factory: Factory
    weth: WrappedNativeToken
    router: Router
    inspector: PoolInspector
    alice: str
    bob: str

    @property
    def deadline(self) -> int:
        return self.chain.timestamp + 600

    def make_token(self, symbol: str, supply: int = 1_000_000 * ONE) -> LedgerToken:
        token = LedgerToken(self.chain, symbol, symbol)
        for user in (self.alice, self.bob):
            token.mint(user, supply)
            token.approve(user, self.router.address, MAX_UINT256)
        return token


def sort_tokens(x, y):
    """Order two tokens by address as an unsigned integer (pool A, pool B)."""
    if int(x.address, 16) < int(y.address, 16):
        return x, y
    return y, x


@pytest.fixture
def env() -> Deployment:
    chain = Chain()
    position = PositionRegistry(chain)
    factory = Factory(chain, position)
    weth = WrappedNativeToken(chain)
    router = Router(chain, factory, position, weth)
    alice = Chain.create_account("alice")
    bob = Chain.create_account("bob")
    for user in (alice, bob):
        chain.fund(user, 1_000 * ONE)
        weth.approve(user, router.address, MAX_UINT256)
    return Deployment(chain, position, factory, weth, router, PoolInspector(factory), alice, bob)
