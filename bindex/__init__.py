"""
Bindex Package

Bin-based concentrated-liquidity exchange on an in-memory ledger.

Core imports are lazily loaded. For direct module access, import from
submodules:

    from bindex.chain import Chain
    from bindex.exchange import Factory, PositionRegistry, Router
    from bindex.tokens import LedgerToken, WrappedNativeToken
"""

__version__ = "0.1.0"


# Lazy imports so ``import bindex`` does not configure logging or load the exchange
def __getattr__(name):
    """Lazy module loading."""
    if name == 'Chain':
        from .chain import Chain
        return Chain
    elif name == 'Factory':
        from .exchange import Factory
        return Factory
    elif name == 'Router':
        from .exchange import Router
        return Router
    elif name == 'PoolInspector':
        from .exchange import PoolInspector
        return PoolInspector
    elif name == 'PositionRegistry':
        from .exchange import PositionRegistry
        return PositionRegistry
    raise AttributeError(f"module 'bindex' has no attribute {name!r}")

__all__ = ['Chain', 'Factory', 'Router', 'PoolInspector', 'PositionRegistry']
