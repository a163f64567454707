"""
Swap path encoding.

A path is the raw concatenation of 20-byte addresses
``token ‖ pool ‖ token ‖ pool ‖ … ‖ token`` with no separators or length
prefix. Exact-output paths are written output-first and consumed in reverse.
"""

from dataclasses import dataclass
from typing import List, Sequence, Union

from eth_utils import decode_hex, encode_hex, to_canonical_address, to_checksum_address

from ..constants import ADDRESS_SIZE
from .errors import InvalidPath


@dataclass(frozen=True)
class Hop:
    token_in: str
    token_out: str
    pool: str


def encode_path(addresses: Sequence[str]) -> str:
    """Lowercase 0x-hex encoding of ``addresses``."""
    if len(addresses) < 3 or len(addresses) % 2 == 0:
        raise InvalidPath("A path alternates token and pool addresses and has at least one hop")
    try:
        raw = b"".join(to_canonical_address(a) for a in addresses)
    except (ValueError, TypeError) as e:
        raise InvalidPath(f"Malformed address in path: {e}") from None
    return encode_hex(raw).lower()


def _split(path: Union[str, bytes]) -> List[str]:
    if isinstance(path, str):
        try:
            raw = decode_hex(path)
        except (ValueError, TypeError) as e:
            raise InvalidPath(f"Path is not valid hex: {e}") from None
    else:
        raw = bytes(path)
    count, rest = divmod(len(raw), ADDRESS_SIZE)
    if rest or count < 3 or count % 2 == 0:
        raise InvalidPath(f"Path of {len(raw)} bytes does not encode whole hops")
    return [
        to_checksum_address(raw[i * ADDRESS_SIZE:(i + 1) * ADDRESS_SIZE])
        for i in range(count)
    ]


def decode_path(path: Union[str, bytes], exact_output: bool = False) -> List[Hop]:
    """
    Decode ``path`` into hops in execution order.

    For exact output the path is read from its end, so the first returned
    hop takes the caller's input and the last one produces the final output.
    """
    addresses = _split(path)
    if exact_output:
        addresses.reverse()
    return [
        Hop(token_in=addresses[i], token_out=addresses[i + 2], pool=addresses[i + 1])
        for i in range(0, len(addresses) - 1, 2)
    ]


def hop_count(path: Union[str, bytes]) -> int:
    return len(_split(path)) // 2
