"""
Bindex TOML Configuration Loader

Loads the exchange configuration file with environment variable overrides.
Every section is a dataclass with ``from_dict`` and ``apply_env``.

Environment variable mapping:
    [factory] max_fee           → BINDEX_MAX_FEE
    [factory] max_tick_spacing  → BINDEX_MAX_TICK_SPACING
    [factory] min_lookback      → BINDEX_MIN_LOOKBACK
    [factory] max_lookback      → BINDEX_MAX_LOOKBACK
    [oracle] max_observations   → BINDEX_ORACLE_MAX_OBSERVATIONS
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..constants import (
    MAX_FEE,
    MAX_LOOKBACK,
    MAX_TICK_SPACING,
    MIN_LOOKBACK,
    MIN_TICK_SPACING,
    ONE,
    ORACLE_MAX_OBSERVATIONS,
)

logger = logging.getLogger(__name__)


@dataclass
class FactoryConfig:
    """[factory] section: bounds on pool keys."""
    max_fee: int = MAX_FEE
    min_tick_spacing: int = MIN_TICK_SPACING
    max_tick_spacing: int = MAX_TICK_SPACING
    min_lookback: int = MIN_LOOKBACK
    max_lookback: int = MAX_LOOKBACK

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FactoryConfig":
        return cls(
            max_fee=int(data.get("max_fee", MAX_FEE)),
            min_tick_spacing=int(data.get("min_tick_spacing", MIN_TICK_SPACING)),
            max_tick_spacing=int(data.get("max_tick_spacing", MAX_TICK_SPACING)),
            min_lookback=int(data.get("min_lookback", MIN_LOOKBACK)),
            max_lookback=int(data.get("max_lookback", MAX_LOOKBACK)),
        )

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("BINDEX_MAX_FEE"):
            self.max_fee = int(v)
        if v := os.environ.get("BINDEX_MAX_TICK_SPACING"):
            self.max_tick_spacing = int(v)
        if v := os.environ.get("BINDEX_MIN_LOOKBACK"):
            self.min_lookback = int(v)
        if v := os.environ.get("BINDEX_MAX_LOOKBACK"):
            self.max_lookback = int(v)

    def validate(self) -> None:
        if not 0 < self.max_fee < ONE:
            raise ValueError("max_fee must be positive and below 100%")
        if not 0 < self.min_tick_spacing <= self.max_tick_spacing:
            raise ValueError("tick spacing bounds are inverted or non-positive")
        if not 0 < self.min_lookback <= self.max_lookback:
            raise ValueError("lookback bounds are inverted or non-positive")


@dataclass
class OracleConfig:
    """[oracle] section."""
    max_observations: int = ORACLE_MAX_OBSERVATIONS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OracleConfig":
        return cls(
            max_observations=int(data.get("max_observations", ORACLE_MAX_OBSERVATIONS)),
        )

    def apply_env(self) -> None:
        if v := os.environ.get("BINDEX_ORACLE_MAX_OBSERVATIONS"):
            self.max_observations = int(v)


@dataclass
class ExchangeConfig:
    """Top-level configuration object."""
    factory: FactoryConfig = field(default_factory=FactoryConfig)
    oracle: OracleConfig = field(default_factory=OracleConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangeConfig":
        return cls(
            factory=FactoryConfig.from_dict(data.get("factory", {})),
            oracle=OracleConfig.from_dict(data.get("oracle", {})),
        )

    def apply_env(self) -> None:
        self.factory.apply_env()
        self.oracle.apply_env()


def load_config(path: Optional[Union[str, Path]] = None, apply_env: bool = True) -> ExchangeConfig:
    """
    Load configuration from a TOML file, then apply environment overrides.

    A missing path yields the built-in defaults.

    Raises:
        FileNotFoundError: if ``path`` is given but does not exist
        ValueError: if the resulting bounds are inconsistent
    """
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "rb") as f:
            data = tomllib.load(f)
        logger.info("Loaded exchange config from %s", path)

    config = ExchangeConfig.from_dict(data)
    if apply_env:
        config.apply_env()
    config.factory.validate()
    return config
