"""
Bindex Pool Factory

Deterministic registry from pool key to pool:
  - Canonical token ordering (by address as an unsigned integer)
  - One pool per key; the swapped-token twin of a key resolves to the same pool
  - CREATE2-style pool addresses (keccak of the encoded key as salt)
  - Fee / tick-spacing / lookback bounds from ``bindex.config``
"""

from __future__ import annotations

from typing import Dict, List, Optional

from eth_utils import keccak, to_checksum_address

from ..config import ExchangeConfig
from ..constants import ZERO_ADDRESS
from ..eventlog import EventLog
from ..logger import get_logger
from ..crypto import generate_contract_address_create2
from .errors import InvalidKey
from .events import PoolCreatedEvent
from .pool import Pool, PoolKey

logger = get_logger(__name__)

POOL_INIT_CODE = b"bindex.pool.v1"


class Factory:
    """
    Creates and indexes pools.

    Handles:
      - Key validation against the configured bounds
      - Idempotent get-or-create and strict create
      - Order-insensitive lookup
    """

    def __init__(self, chain, position, config: Optional[ExchangeConfig] = None) -> None:
        self.chain = chain
        self.position = position
        self.config = config or ExchangeConfig()
        self.config.factory.validate()
        self.address: str = chain.create_contract_address()
        self._pools: Dict[str, Pool] = {}
        self._by_key: Dict[PoolKey, str] = {}
        self.events = EventLog()
        chain.track(self)

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    # -- Validation -----------------------------------------------------------

    def _validate(self, key: PoolKey) -> PoolKey:
        bounds = self.config.factory
        try:
            key = key.canonical()
        except (ValueError, TypeError) as e:
            raise InvalidKey(f"Malformed token address: {e}") from None
        if key.token_a == key.token_b:
            raise InvalidKey("Pool tokens must differ")
        if ZERO_ADDRESS in (key.token_a, key.token_b):
            raise InvalidKey("Pool token cannot be the zero address")
        if not 0 < key.fee <= bounds.max_fee:
            raise InvalidKey(f"Fee {key.fee} outside (0, {bounds.max_fee}]")
        if not bounds.min_tick_spacing <= key.tick_spacing <= bounds.max_tick_spacing:
            raise InvalidKey(
                f"Tick spacing {key.tick_spacing} outside "
                f"[{bounds.min_tick_spacing}, {bounds.max_tick_spacing}]"
            )
        if not bounds.min_lookback <= key.lookback <= bounds.max_lookback:
            raise InvalidKey(
                f"Lookback {key.lookback} outside [{bounds.min_lookback}, {bounds.max_lookback}]"
            )
        return key

    def pool_address_for(self, key: PoolKey) -> str:
        """Deterministic address of the pool for ``key`` (whether or not it exists)."""
        return generate_contract_address_create2(
            self.address, keccak(key.canonical().encode()), POOL_INIT_CODE,
        )

    # -- Creation -------------------------------------------------------------

    def create(self, key: PoolKey, active_tick: int = 0) -> str:
        """
        Create a new pool.

        Raises:
            InvalidKey: on an out-of-bounds key or if the pool already exists
        """
        key = self._validate(key)
        if key in self._by_key:
            raise InvalidKey(f"Pool already exists for {key.token_a}/{key.token_b} fee={key.fee}")

        address = self.pool_address_for(key)
        pool = Pool(
            address, key, self.chain, self.position,
            active_tick=active_tick,
            max_observations=self.config.oracle.max_observations,
        )
        self._pools[address] = pool
        self._by_key[key] = address
        self.events.append(PoolCreatedEvent(
            address, key.fee, key.tick_spacing, key.lookback, active_tick, key.token_a, key.token_b,
        ))
        logger.info(
            "PoolCreated %s: %s/%s fee=%d spacing=%d lookback=%d tick=%d",
            address, key.token_a, key.token_b, key.fee, key.tick_spacing, key.lookback, active_tick,
        )
        return address

    def get_or_create(self, key: PoolKey, active_tick: int = 0) -> str:
        """Address of the pool for ``key``, creating it on first use."""
        key = self._validate(key)
        existing = self._by_key.get(key)
        if existing is not None:
            return existing
        return self.create(key, active_tick)

    # -- Queries --------------------------------------------------------------

    def lookup(self, fee: int, tick_spacing: int, lookback: int, token_a: str, token_b: str) -> str:
        """Pool address for the key, or ZERO_ADDRESS when absent."""
        try:
            key = PoolKey(fee, tick_spacing, lookback, token_a, token_b).canonical()
        except (ValueError, TypeError):
            return ZERO_ADDRESS
        return self._by_key.get(key, ZERO_ADDRESS)

    def get_pool(self, address: str) -> Pool:
        try:
            address = to_checksum_address(address)
        except (ValueError, TypeError):
            raise InvalidKey(f"Malformed pool address {address!r}") from None
        pool = self._pools.get(address)
        if pool is None:
            raise InvalidKey(f"Unknown pool {address}")
        return pool

    def is_factory_pool(self, address: str) -> bool:
        try:
            return to_checksum_address(address) in self._pools
        except (ValueError, TypeError):
            return False

    def get_all_pools(self) -> List[Pool]:
        return list(self._pools.values())
