from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _uuid() -> str:
    return str(uuid.uuid4())


class Uint256(TypeDecorator):
    """Token amount stored as decimal text so the full uint256 range survives."""

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value: int | None, dialect) -> str | None:
        if value is None:
            return None
        value = int(value)
        if value < 0:
            raise ValueError(f"Amount must not be negative, got {value}")
        return str(value)

    def process_result_value(self, value: str | None, dialect) -> int | None:
        return None if value is None else int(value)


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    key_id: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    api_key_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Balance(Base):
    __tablename__ = "balances"

    owner: Mapped[str] = mapped_column(String(42), primary_key=True)
    asset: Mapped[str] = mapped_column(String(42), primary_key=True)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class EscrowRecord(Base):
    __tablename__ = "escrows"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    role: Mapped[str] = mapped_column(String(3), nullable=False, index=True)
    order_hash: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    hashlock: Mapped[str] = mapped_column(String(66), nullable=False, index=True)
    maker: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    taker: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    token: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False)
    safety_deposit: Mapped[int] = mapped_column(Uint256, nullable=False)
    timelocks: Mapped[str] = mapped_column(String(66), nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Transfer(Base):
    __tablename__ = "transfers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    escrow_address: Mapped[str | None] = mapped_column(String(42), nullable=True, index=True)
    from_owner: Mapped[str | None] = mapped_column(String(42), nullable=True, index=True)
    to_owner: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    asset: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(Uint256, nullable=False)
    tx_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class EscrowEvent(Base):
    __tablename__ = "escrow_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    escrow_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    event: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    hashlock: Mapped[str | None] = mapped_column(String(66), nullable=True, index=True)
    secret: Mapped[str | None] = mapped_column(String(66), nullable=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    ledger_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("ix_escrow_events_address_event", "escrow_address", "event"),)


class FilledOrder(Base):
    __tablename__ = "filled_orders"

    order_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    maker: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    taker: Mapped[str] = mapped_column(String(42), nullable=False)
    making_amount: Mapped[int] = mapped_column(Uint256, nullable=False)
    taking_amount: Mapped[int] = mapped_column(Uint256, nullable=False)
    escrow_address: Mapped[str] = mapped_column(String(42), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebhookConfig(Base):
    __tablename__ = "webhook_configs"

    account_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    secret: Mapped[str] = mapped_column(String(255), nullable=False)
    events: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response_body: Mapped[str] = mapped_column(Text, nullable=False)
    status_code: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
