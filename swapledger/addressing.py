"""Deterministic escrow addresses.

An escrow address is a CREATE2-style derivation over the factory address, the
hash of the ABI-encoded immutables (the salt) and a per-role template
identifier. It depends on nothing but its inputs, so a relayer can rebuild it
from the immutables alone.
"""

from __future__ import annotations

from enum import Enum

from web3 import Web3

from swapledger.immutables import Immutables, keccak, normalize_address

TEMPLATE_VERSION = b"swapledger.escrow.v1"


class Role(str, Enum):
    SOURCE = "src"
    DESTINATION = "dst"


_TEMPLATE_NAMES = {
    Role.SOURCE: b"EscrowSrc",
    Role.DESTINATION: b"EscrowDst",
}


def template_hash(role: Role) -> bytes:
    return keccak(TEMPLATE_VERSION + b":" + _TEMPLATE_NAMES[Role(role)])


def create2_address(deployer: str, salt: bytes, init_code_hash: bytes) -> str:
    deployer_bytes = bytes.fromhex(normalize_address(deployer)[2:])
    digest = keccak(b"\xff" + deployer_bytes + salt + init_code_hash)
    return Web3.to_checksum_address("0x" + digest[12:].hex())


def address_of(factory_address: str, immutables: Immutables, role: Role) -> str:
    return create2_address(factory_address, immutables.hash(), template_hash(role))
