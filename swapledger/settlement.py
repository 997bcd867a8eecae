"""Order settlement boundary.

The settlement bridge fills a maker-signed order and, in the same atomic
operation, has the factory create the source escrow that receives the maker's
asset. Matching and pricing happen elsewhere; this module only checks the
signature, derives the escrow parameters and moves the funds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from sqlalchemy.orm import Session

from swapledger import ledger
from swapledger.errors import InvalidOrder, InvalidSignature, OrderAlreadyFilled
from swapledger.factory import DstImmutablesComplement, EscrowFactory
from swapledger.immutables import NATIVE_ASSET, Immutables, keccak, normalize_address, to_bytes32
from swapledger.models import EscrowRecord, FilledOrder

logger = logging.getLogger(__name__)

DOMAIN_NAME = "1inch Limit Order Protocol"
DOMAIN_VERSION = "4"

ORDER_FIELDS = [
    {"name": "salt", "type": "uint256"},
    {"name": "maker", "type": "address"},
    {"name": "receiver", "type": "address"},
    {"name": "makerAsset", "type": "address"},
    {"name": "takerAsset", "type": "address"},
    {"name": "makingAmount", "type": "uint256"},
    {"name": "takingAmount", "type": "uint256"},
    {"name": "makerTraits", "type": "uint256"},
]

DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]


@dataclass(frozen=True)
class Order:
    salt: int
    maker: str
    receiver: str
    maker_asset: str
    taker_asset: str
    making_amount: int
    taking_amount: int
    maker_traits: int = 0

    def typed_data(self, chain_id: int, verifying_contract: str) -> dict[str, Any]:
        return {
            "types": {"EIP712Domain": DOMAIN_FIELDS, "Order": ORDER_FIELDS},
            "primaryType": "Order",
            "domain": {
                "name": DOMAIN_NAME,
                "version": DOMAIN_VERSION,
                "chainId": chain_id,
                "verifyingContract": normalize_address(verifying_contract),
            },
            "message": {
                "salt": self.salt,
                "maker": normalize_address(self.maker),
                "receiver": normalize_address(self.receiver),
                "makerAsset": normalize_address(self.maker_asset),
                "takerAsset": normalize_address(self.taker_asset),
                "makingAmount": self.making_amount,
                "takingAmount": self.taking_amount,
                "makerTraits": self.maker_traits,
            },
        }

    def hash(self, chain_id: int, verifying_contract: str) -> bytes:
        """EIP-712 digest of the order; doubles as the swap's order hash."""
        signable = encode_typed_data(full_message=self.typed_data(chain_id, verifying_contract))
        return keccak(b"\x19" + signable.version + signable.header + signable.body)


@dataclass(frozen=True)
class EscrowExtension:
    """Resolver-supplied data the signed order does not carry."""

    hashlock: bytes
    dst_chain_id: int
    dst_token: str
    src_safety_deposit: int
    dst_safety_deposit: int
    timelocks: int


@dataclass(frozen=True)
class Fill:
    order_hash: bytes
    escrow: EscrowRecord
    immutables: Immutables
    complement: DstImmutablesComplement


class OrderSettlementBridge:
    def __init__(self, factory: EscrowFactory, *, verifying_contract: str) -> None:
        self.factory = factory
        self.chain_id = factory.chain_id
        self.verifying_contract = normalize_address(verifying_contract)

    def order_hash(self, order: Order) -> bytes:
        return order.hash(self.chain_id, self.verifying_contract)

    def _check_signature(self, order: Order, signature: str | bytes) -> None:
        signable = encode_typed_data(full_message=order.typed_data(self.chain_id, self.verifying_contract))
        try:
            signer = Account.recover_message(signable, signature=signature)
        except Exception as exc:
            raise InvalidSignature(f"Malformed order signature: {exc}") from exc
        if signer != normalize_address(order.maker):
            raise InvalidSignature(f"Order is signed by {signer}, not the maker {order.maker}")

    def fill(
        self,
        session: Session,
        order: Order,
        signature: str | bytes,
        fill_amount: int,
        extension: EscrowExtension,
        *,
        taker: str,
        value: int,
        now: int,
    ) -> Fill:
        """Fill ``order`` for ``fill_amount`` and lock the maker's asset in a source escrow.

        ``value`` is the native amount the taker attaches; it pays the source
        safety deposit.
        """
        taker = normalize_address(taker)
        maker = normalize_address(order.maker)
        if order.making_amount <= 0 or order.taking_amount <= 0:
            raise InvalidOrder("Order amounts must be positive")
        if not 0 < fill_amount <= order.making_amount:
            raise InvalidOrder(f"Fill amount must be in (0, {order.making_amount}], got {fill_amount}")
        if value < 0:
            raise InvalidOrder("Attached value must not be negative")

        self._check_signature(order, signature)

        order_hash = self.order_hash(order)
        order_hash_hex = "0x" + order_hash.hex()
        if session.get(FilledOrder, order_hash_hex) is not None:
            raise OrderAlreadyFilled(f"Order {order_hash_hex} was already filled")

        taking_amount = -(-fill_amount * order.taking_amount // order.making_amount)
        receiver = normalize_address(order.receiver)
        complement = DstImmutablesComplement(
            maker=maker if receiver == NATIVE_ASSET else receiver,
            amount=taking_amount,
            token=normalize_address(extension.dst_token),
            safety_deposit=extension.dst_safety_deposit,
            chain_id=extension.dst_chain_id,
        )
        immutables = Immutables(
            order_hash=order_hash,
            hashlock=to_bytes32(extension.hashlock),
            maker=maker,
            taker=taker,
            token=order.maker_asset,
            amount=fill_amount,
            safety_deposit=extension.src_safety_deposit,
            timelocks=extension.timelocks,
        )

        def fund(escrow_address: str) -> None:
            ledger.transfer(
                session,
                maker,
                escrow_address,
                immutables.token,
                fill_amount,
                tx_type="order_fill",
                escrow_address=escrow_address,
                description=f"Order {order_hash_hex}",
            )
            ledger.transfer(
                session,
                taker,
                escrow_address,
                NATIVE_ASSET,
                value,
                tx_type="escrow_funding",
                escrow_address=escrow_address,
            )

        record, immutables = self.factory.create_source(session, immutables, complement, now=now, fund=fund)
        session.add(
            FilledOrder(
                order_hash=order_hash_hex,
                maker=maker,
                taker=taker,
                making_amount=fill_amount,
                taking_amount=taking_amount,
                escrow_address=record.address,
            )
        )
        session.flush()
        logger.info("Order %s filled by %s for %d", order_hash_hex, taker, fill_amount)
        return Fill(order_hash=order_hash, escrow=record, immutables=immutables, complement=complement)
