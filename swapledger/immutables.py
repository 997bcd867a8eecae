from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from eth_abi import encode as abi_encode
from web3 import Web3

from swapledger import timelocks as tl

NATIVE_ASSET = "0x0000000000000000000000000000000000000000"

IMMUTABLES_ABI = [
    "bytes32",  # order_hash
    "bytes32",  # hashlock
    "address",  # maker
    "address",  # taker
    "address",  # token
    "uint256",  # amount
    "uint256",  # safety_deposit
    "uint256",  # timelocks
]

_UINT256_MAX = (1 << 256) - 1


def keccak(data: bytes) -> bytes:
    return bytes(Web3.keccak(primitive=data))


def hashlock_of(secret: bytes) -> bytes:
    """Hashlock committed to by ``secret``: one keccak-256 of its raw bytes."""
    return keccak(bytes(secret))


def to_bytes32(value: str | bytes) -> bytes:
    if isinstance(value, str):
        text = value[2:] if value.startswith(("0x", "0X")) else value
        try:
            value = bytes.fromhex(text)
        except ValueError as exc:
            raise ValueError(f"not a hex string: {value!r}") from exc
    if len(value) != 32:
        raise ValueError(f"expected 32 bytes, got {len(value)}")
    return bytes(value)


def normalize_address(value: str) -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"invalid address: {value!r}")
    return Web3.to_checksum_address(value)


def _check_uint(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _UINT256_MAX:
        raise ValueError(f"{name} must be a uint256, got {value!r}")
    return value


@dataclass(frozen=True)
class Immutables:
    """Canonical parameters of one escrow instance.

    Field order is the wire order: the ABI encoding of these eight words is
    what the instance address is derived from.
    """

    order_hash: bytes
    hashlock: bytes
    maker: str
    taker: str
    token: str
    amount: int
    safety_deposit: int
    timelocks: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "order_hash", to_bytes32(self.order_hash))
        object.__setattr__(self, "hashlock", to_bytes32(self.hashlock))
        object.__setattr__(self, "maker", normalize_address(self.maker))
        object.__setattr__(self, "taker", normalize_address(self.taker))
        object.__setattr__(self, "token", normalize_address(self.token))
        _check_uint("amount", self.amount)
        _check_uint("safety_deposit", self.safety_deposit)
        _check_uint("timelocks", self.timelocks)

    @property
    def is_native(self) -> bool:
        return self.token == NATIVE_ASSET

    @property
    def created_at(self) -> int:
        return tl.creation_time(self.timelocks)

    def encode(self) -> bytes:
        return abi_encode(
            IMMUTABLES_ABI,
            [
                self.order_hash,
                self.hashlock,
                self.maker,
                self.taker,
                self.token,
                self.amount,
                self.safety_deposit,
                self.timelocks,
            ],
        )

    def hash(self) -> bytes:
        return keccak(self.encode())

    def with_timelocks(self, timelocks: int) -> Immutables:
        return dataclasses.replace(self, timelocks=timelocks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_hash": "0x" + self.order_hash.hex(),
            "hashlock": "0x" + self.hashlock.hex(),
            "maker": self.maker,
            "taker": self.taker,
            "token": self.token,
            "amount": self.amount,
            "safety_deposit": self.safety_deposit,
            "timelocks": tl.to_hex(self.timelocks),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Immutables:
        timelocks = data["timelocks"]
        if isinstance(timelocks, str):
            timelocks = tl.from_hex(timelocks)
        return cls(
            order_hash=data["order_hash"],
            hashlock=data["hashlock"],
            maker=data["maker"],
            taker=data["taker"],
            token=data["token"],
            amount=int(data["amount"]),
            safety_deposit=int(data["safety_deposit"]),
            timelocks=timelocks,
        )
