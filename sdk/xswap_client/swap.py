"""Helpers a maker or relayer needs before talking to either ledger."""

from __future__ import annotations

import secrets
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

from xswap_client.types import SwapRecord

STAGE_NAMES = [
    "src_withdrawal",
    "src_public_withdrawal",
    "src_cancellation",
    "src_public_cancellation",
    "dst_withdrawal",
    "dst_public_withdrawal",
    "dst_cancellation",
]

ORDER_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "receiver", "type": "address"},
        {"name": "makerAsset", "type": "address"},
        {"name": "takerAsset", "type": "address"},
        {"name": "makingAmount", "type": "uint256"},
        {"name": "takingAmount", "type": "uint256"},
        {"name": "makerTraits", "type": "uint256"},
    ],
}


def generate_secret() -> bytes:
    return secrets.token_bytes(32)


def hashlock_of(secret: bytes) -> str:
    return "0x" + bytes(Web3.keccak(primitive=secret)).hex()


def new_swap() -> SwapRecord:
    """Start a swap: a fresh secret and the hashlock to put in the order extension."""
    secret = generate_secret()
    return SwapRecord(secret="0x" + secret.hex(), hashlock=hashlock_of(secret))


def pack_timelocks(offsets: dict[str, int]) -> int:
    """Pack stage offsets (seconds after creation) into a timelocks word."""
    word = 0
    for index, name in enumerate(STAGE_NAMES):
        value = offsets[name]
        if not 0 <= value < 1 << 32:
            raise ValueError(f"{name} offset must fit in 32 bits, got {value}")
        word |= value << (32 * index)
    return word


def order_typed_data(order: dict[str, Any], *, chain_id: int, verifying_contract: str) -> dict[str, Any]:
    return {
        "types": ORDER_TYPES,
        "primaryType": "Order",
        "domain": {
            "name": "1inch Limit Order Protocol",
            "version": "4",
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(verifying_contract),
        },
        "message": {
            "salt": order["salt"],
            "maker": Web3.to_checksum_address(order["maker"]),
            "receiver": Web3.to_checksum_address(order.get("receiver") or "0x" + "00" * 20),
            "makerAsset": Web3.to_checksum_address(order["maker_asset"]),
            "takerAsset": Web3.to_checksum_address(order["taker_asset"]),
            "makingAmount": order["making_amount"],
            "takingAmount": order["taking_amount"],
            "makerTraits": order.get("maker_traits", 0),
        },
    }


def sign_order(order: dict[str, Any], private_key: str | bytes, *, chain_id: int, verifying_contract: str) -> str:
    """Sign ``order`` (the JSON shape accepted by ``/orders/fill``) as its maker."""
    signable = encode_typed_data(
        full_message=order_typed_data(order, chain_id=chain_id, verifying_contract=verifying_contract)
    )
    signed = Account.sign_message(signable, private_key=private_key)
    return "0x" + bytes(signed.signature).hex()
