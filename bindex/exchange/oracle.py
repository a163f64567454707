"""
Bindex TWAP Oracle

Lookback-windowed time-weighted average price oracle owned by each pool:
  - Geometric mean TWAP:  exp( Σ(ln(P_i) * Δt_i) / ΣΔt_i )
  - Updated once per swap with the pre-swap price
  - Accumulator-based, so any window inside the lookback is an O(log n) read
  - Samples older than the lookback are discarded (one anchor is kept)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from ..constants import ORACLE_MAX_OBSERVATIONS

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class Observation:
    """A single price observation recorded at a point in time."""
    timestamp: int
    price: Decimal
    log_price_cumulative: Decimal = ZERO  # Σ(ln(price) × dt)


# ---------------------------------------------------------------------------
# TWAP Oracle
# ---------------------------------------------------------------------------

class TWAPOracle:
    """
    Time-weighted average price oracle for a pool.

    An observation taken at ``t`` carries the price that held since the
    previous observation, so the accumulator grows by ``ln(price) * dt``.
    """

    def __init__(self, lookback: int, max_observations: int = ORACLE_MAX_OBSERVATIONS):
        if lookback <= 0:
            raise ValueError("Lookback must be positive")
        self.lookback = lookback
        self.max_observations = max_observations
        self._observations: List[Observation] = []

    @property
    def observation_count(self) -> int:
        return len(self._observations)

    @property
    def latest_price(self) -> Optional[Decimal]:
        if not self._observations:
            return None
        return self._observations[-1].price

    # -- Recording ----------------------------------------------------------

    def record(self, price: Decimal, timestamp: int) -> Observation:
        """
        Record a price observation.

        A second observation at the same timestamp is dropped: the price it
        carries held for zero seconds.
        """
        if price <= 0:
            raise ValueError("Price must be positive")

        if self._observations:
            prev = self._observations[-1]
            dt = timestamp - prev.timestamp
            if dt < 0:
                raise ValueError("Timestamp must be monotonically increasing")
            if dt == 0:
                return prev
            cumulative = prev.log_price_cumulative + price.ln() * dt
        else:
            cumulative = ZERO

        obs = Observation(timestamp=timestamp, price=price, log_price_cumulative=cumulative)
        self._observations.append(obs)
        self._trim(timestamp)
        return obs

    def _trim(self, now: int) -> None:
        """Drop samples older than the lookback, keeping one anchor at or before the window start."""
        cutoff = now - self.lookback
        keep_from = 0
        for i, obs in enumerate(self._observations):
            if obs.timestamp <= cutoff:
                keep_from = i
            else:
                break
        if keep_from:
            del self._observations[:keep_from]
        if len(self._observations) > self.max_observations:
            self._observations = self._observations[-self.max_observations:]

    # -- TWAP computation ---------------------------------------------------

    def twap(self, current_price: Decimal, now: int, window: Optional[int] = None) -> Decimal:
        """
        Geometric-mean price over the last ``window`` seconds (default: lookback).

        ``current_price`` is the price that has held since the latest
        observation. With no history the current price is returned.
        """
        window = self.lookback if window is None else min(window, self.lookback)
        if not self._observations:
            return current_price

        last = self._observations[-1]
        end_cumulative = last.log_price_cumulative + current_price.ln() * (now - last.timestamp)

        start_time = max(now - window, self._observations[0].timestamp)
        if now <= start_time:
            return current_price
        start_cumulative = self._cumulative_at(start_time, current_price)

        avg_log = (end_cumulative - start_cumulative) / (now - start_time)
        return avg_log.exp()

    # -- Helpers ------------------------------------------------------------

    def _cumulative_at(self, target_time: int, current_price: Decimal) -> Decimal:
        """Accumulator value interpolated at ``target_time``."""
        idx = self._find_index_at(target_time)
        obs = self._observations[idx]
        if idx + 1 < len(self._observations):
            next_price = self._observations[idx + 1].price
        else:
            next_price = current_price
        return obs.log_price_cumulative + next_price.ln() * (target_time - obs.timestamp)

    def _find_index_at(self, target_time: int) -> int:
        """Binary search for the observation at or just before target_time."""
        lo, hi = 0, len(self._observations) - 1
        if target_time <= self._observations[0].timestamp:
            return 0
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._observations[mid].timestamp <= target_time:
                lo = mid
            else:
                hi = mid - 1
        return lo

    def get_observations(self, count: int = 50) -> List[Observation]:
        """Return the most recent observations."""
        return self._observations[-count:]
