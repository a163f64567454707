"""
Contract Address Generation

Ethereum-compatible address computation for accounts, tokens and pools.
"""

from eth_utils import keccak, to_canonical_address, to_checksum_address
import rlp


def generate_account_address(label: str) -> str:
    """
    Derive a deterministic externally-owned account address from a label.

    Address = keccak256(label)[-20:]
    """
    return to_checksum_address(keccak(text=label)[-20:])


def generate_contract_address(sender: str, nonce: int) -> str:
    """
    Generate contract address using CREATE opcode logic.

    Address = keccak256(rlp([sender, nonce]))[-20:]

    Args:
        sender: Deployer address (0x-prefixed hex)
        nonce: Deployer nonce

    Returns:
        Contract address (checksum format)
    """
    rlp_encoded = rlp.encode([to_canonical_address(sender), nonce])
    return to_checksum_address(keccak(rlp_encoded)[-20:])


def generate_contract_address_create2(
    sender: str,
    salt: bytes,
    bytecode: bytes
) -> str:
    """
    Generate contract address using CREATE2 opcode logic.

    Address = keccak256(0xff + sender + salt + keccak256(bytecode))[-20:]

    Args:
        sender: Deployer address
        salt: 32-byte salt (shorter salts are left-padded)
        bytecode: Contract initialization code

    Returns:
        Contract address (checksum format)
    """
    if len(salt) > 32:
        raise ValueError("CREATE2 salt must be at most 32 bytes")
    salt = salt.rjust(32, b'\x00')

    data = b'\xff' + to_canonical_address(sender) + salt + keccak(bytecode)
    return to_checksum_address(keccak(data)[-20:])
