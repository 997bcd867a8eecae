from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from swapledger import timelocks as tl
from swapledger.immutables import Immutables
from swapledger.settlement import EscrowExtension, Order

HEX32 = r"^0x[0-9a-fA-F]{64}$"
ADDRESS = r"^0x[0-9a-fA-F]{40}$"


# --- Error ---


class ErrorDetail(BaseModel):
    code: str
    message: str
    request_id: str = ""


class ErrorResponse(BaseModel):
    error: ErrorDetail


# --- Health ---


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "swapledger"
    chain_id: int
    factory_address: str
    settlement_address: str
    access_token: str


# --- Accounts ---


class RegisterRequest(BaseModel):
    address: str = Field(..., pattern=ADDRESS)
    label: str = ""


class RegisterResponse(BaseModel):
    message: str = "Account registered. Save your API key - it will not be shown again."
    address: str
    label: str
    api_key: str


class AccountResponse(BaseModel):
    address: str
    label: str
    status: str
    balances: dict[str, int] = {}
    created_at: datetime | None = None


# --- Ledger ---


class DepositRequest(BaseModel):
    asset: str = Field(..., pattern=ADDRESS)
    amount: int = Field(..., gt=0)


class TransferRequest(BaseModel):
    recipient: str = Field(..., pattern=ADDRESS)
    asset: str = Field(..., pattern=ADDRESS)
    amount: int = Field(..., gt=0)


class BalanceResponse(BaseModel):
    owner: str
    asset: str
    balance: int


class BalancesResponse(BaseModel):
    owner: str
    balances: dict[str, int]


# --- Escrows ---


class ImmutablesModel(BaseModel):
    order_hash: str = Field(..., pattern=HEX32)
    hashlock: str = Field(..., pattern=HEX32)
    maker: str = Field(..., pattern=ADDRESS)
    taker: str = Field(..., pattern=ADDRESS)
    token: str = Field(..., pattern=ADDRESS)
    amount: int = Field(..., gt=0)
    safety_deposit: int = Field(..., ge=0)
    timelocks: int | str

    def to_immutables(self) -> Immutables:
        return Immutables.from_dict(self.model_dump())


class TimelockOffsets(BaseModel):
    src_withdrawal: int = Field(..., ge=0)
    src_public_withdrawal: int = Field(..., ge=0)
    src_cancellation: int = Field(..., ge=0)
    src_public_cancellation: int = Field(..., ge=0)
    dst_withdrawal: int = Field(..., ge=0)
    dst_public_withdrawal: int = Field(..., ge=0)
    dst_cancellation: int = Field(..., ge=0)

    def pack(self) -> int:
        return tl.pack([getattr(self, stage.name.lower()) for stage in tl.Stage])


class AddressRequest(BaseModel):
    immutables: ImmutablesModel
    role: Literal["src", "dst"]


class AddressResponse(BaseModel):
    address: str
    role: str


class CreateDstRequest(BaseModel):
    immutables: ImmutablesModel
    src_cancellation_timestamp: int = Field(..., ge=0)
    value: int = Field(..., ge=0)


class EscrowResponse(BaseModel):
    address: str
    role: str
    immutables: dict[str, Any]
    phase: str
    schedule: dict[str, int]
    rescue_start: int
    balances: dict[str, int]
    created_at: int


class WithdrawRequest(BaseModel):
    secret: str = Field(..., pattern=HEX32)
    immutables: ImmutablesModel
    target: str | None = Field(default=None, pattern=ADDRESS)


class CancelRequest(BaseModel):
    immutables: ImmutablesModel


class RescueRequest(BaseModel):
    token: str = Field(..., pattern=ADDRESS)
    amount: int = Field(..., ge=0)
    immutables: ImmutablesModel


class ReceiptResponse(BaseModel):
    escrow_address: str
    action: str
    caller: str
    recipient: str
    token: str
    amount: int
    safety_deposit: int
    secret: str | None = None


class EventItem(BaseModel):
    id: int
    event: str
    hashlock: str | None = None
    secret: str | None = None
    data: dict[str, Any]
    ledger_time: int


class EventsResponse(BaseModel):
    escrow_address: str
    events: list[EventItem]


class SecretResponse(BaseModel):
    hashlock: str
    secret: str
    escrow_address: str
    revealed_at: int


# --- Orders ---


class OrderModel(BaseModel):
    salt: int = Field(..., ge=0)
    maker: str = Field(..., pattern=ADDRESS)
    receiver: str = Field(default="0x" + "00" * 20, pattern=ADDRESS)
    maker_asset: str = Field(..., pattern=ADDRESS)
    taker_asset: str = Field(..., pattern=ADDRESS)
    making_amount: int = Field(..., gt=0)
    taking_amount: int = Field(..., gt=0)
    maker_traits: int = Field(default=0, ge=0)

    def to_order(self) -> Order:
        return Order(**self.model_dump())


class ExtensionModel(BaseModel):
    hashlock: str = Field(..., pattern=HEX32)
    dst_chain_id: int = Field(..., ge=0)
    dst_token: str = Field(..., pattern=ADDRESS)
    src_safety_deposit: int = Field(..., ge=0)
    dst_safety_deposit: int = Field(..., ge=0)
    timelocks: TimelockOffsets

    def to_extension(self) -> EscrowExtension:
        return EscrowExtension(
            hashlock=bytes.fromhex(self.hashlock[2:]),
            dst_chain_id=self.dst_chain_id,
            dst_token=self.dst_token,
            src_safety_deposit=self.src_safety_deposit,
            dst_safety_deposit=self.dst_safety_deposit,
            timelocks=self.timelocks.pack(),
        )


class FillRequest(BaseModel):
    order: OrderModel
    signature: str = Field(..., pattern=r"^0x[0-9a-fA-F]{130}$")
    fill_amount: int = Field(..., gt=0)
    extension: ExtensionModel
    value: int = Field(default=0, ge=0)


class FillResponse(BaseModel):
    order_hash: str
    escrow: EscrowResponse
    dst_complement: dict[str, Any]


# --- Webhooks ---


class WebhookSetRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    events: list[str] | None = None


class WebhookResponse(BaseModel):
    webhook_url: str
    secret: str | None = None
    events: list[str]
    active: bool


class WebhookDeleteResponse(BaseModel):
    status: str
