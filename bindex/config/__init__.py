"""
Bindex configuration package.
"""

from .loader import ExchangeConfig, FactoryConfig, OracleConfig, load_config

__all__ = ["ExchangeConfig", "FactoryConfig", "OracleConfig", "load_config"]
