"""
Bindex Exchange

Bin-based concentrated-liquidity exchange.

Components:
  - Pool (bins, swap walk, sqrt-price limits, TWAP oracle, bin migration)
  - Factory (deterministic pool registry)
  - Position Registry (position ownership and approvals)
  - Router (liquidity, single / multi-hop swaps, multicall, native wrapping)
  - Pool Inspector (read-only price / bin / TWAP views)
"""

from .errors import (
    ExchangeError,
    Expired,
    InsufficientLiquidity,
    InsufficientOutput,
    InvalidKey,
    InvalidPath,
    OutOfRange,
    PositionNotFound,
    SlippageExceeded,
    Unauthorized,
)
from .events import (
    AddLiquidityEvent,
    MigrateBinsUpStackEvent,
    PoolCreatedEvent,
    PositionApprovalEvent,
    PositionTransferEvent,
    RemoveLiquidityEvent,
    SwapEvent,
)
from .oracle import (
    Observation,
    TWAPOracle,
)
from .pool import (
    Bin,
    LiquidityChange,
    Pool,
    PoolKey,
    SwapPlan,
)
from .position import PositionRegistry
from .factory import Factory
from .path import Hop, decode_path, encode_path, hop_count
from .router import (
    AddLiquidityResult,
    ExactInputParams,
    ExactInputSingleParams,
    ExactOutputParams,
    ExactOutputSingleParams,
    RemoveLiquidityParams,
    Router,
    RouterCall,
)
from .inspector import BinView, PoolInspector, PoolPrice

__all__ = [
    # Errors
    "ExchangeError",
    "Expired",
    "InsufficientLiquidity",
    "InsufficientOutput",
    "InvalidKey",
    "InvalidPath",
    "OutOfRange",
    "PositionNotFound",
    "SlippageExceeded",
    "Unauthorized",
    # Events
    "AddLiquidityEvent",
    "MigrateBinsUpStackEvent",
    "PoolCreatedEvent",
    "PositionApprovalEvent",
    "PositionTransferEvent",
    "RemoveLiquidityEvent",
    "SwapEvent",
    # Oracle
    "Observation",
    "TWAPOracle",
    # Pool
    "Bin",
    "LiquidityChange",
    "Pool",
    "PoolKey",
    "SwapPlan",
    # Registry / factory
    "PositionRegistry",
    "Factory",
    # Path
    "Hop",
    "decode_path",
    "encode_path",
    "hop_count",
    # Router
    "AddLiquidityResult",
    "ExactInputParams",
    "ExactInputSingleParams",
    "ExactOutputParams",
    "ExactOutputSingleParams",
    "RemoveLiquidityParams",
    "Router",
    "RouterCall",
    # Inspector
    "BinView",
    "PoolInspector",
    "PoolPrice",
]
