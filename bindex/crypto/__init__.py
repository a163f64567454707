"""
Address derivation helpers.
"""

from .contract import (
    generate_account_address,
    generate_contract_address,
    generate_contract_address_create2,
)

__all__ = [
    "generate_account_address",
    "generate_contract_address",
    "generate_contract_address_create2",
]
