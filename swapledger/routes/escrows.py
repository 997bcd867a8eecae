from __future__ import annotations

import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from swapledger import ledger
from swapledger import timelocks as tl
from swapledger.addressing import Role
from swapledger.auth import authenticate_account
from swapledger.config import factory, get_session
from swapledger.errors import ImmutablesMismatchError
from swapledger.escrow import Escrow, Receipt
from swapledger.immutables import Immutables, normalize_address, to_bytes32
from swapledger.models import EscrowEvent, EscrowRecord
from swapledger.schemas import (
    AddressRequest,
    AddressResponse,
    CancelRequest,
    CreateDstRequest,
    EscrowResponse,
    EventItem,
    EventsResponse,
    ReceiptResponse,
    RescueRequest,
    SecretResponse,
    WithdrawRequest,
)
from swapledger.webhooks import fire_webhook_event

router = APIRouter()


def _now() -> int:
    return int(time.time())


def immutables_of(record: EscrowRecord) -> Immutables:
    return Immutables(
        order_hash=record.order_hash,
        hashlock=record.hashlock,
        maker=record.maker,
        taker=record.taker,
        token=record.token,
        amount=int(record.amount),
        safety_deposit=int(record.safety_deposit),
        timelocks=tl.from_hex(record.timelocks),
    )


def escrow_view(session: Session, record: EscrowRecord, now: int) -> EscrowResponse:
    immutables = immutables_of(record)
    escrow = factory.escrow(Role(record.role))
    return EscrowResponse(
        address=record.address,
        role=record.role,
        immutables=immutables.to_dict(),
        phase=escrow.phase(immutables, now).value,
        schedule=tl.schedule(immutables.timelocks),
        rescue_start=tl.rescue_start(immutables.timelocks, escrow.rescue_delay),
        balances=ledger.holdings(session, record.address),
        created_at=int(record.created_at),
    )


def _receipt(receipt: Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        escrow_address=receipt.escrow_address,
        action=receipt.action,
        caller=receipt.caller,
        recipient=receipt.recipient,
        token=receipt.token,
        amount=receipt.amount,
        safety_deposit=receipt.safety_deposit,
        secret="0x" + receipt.secret.hex() if receipt.secret is not None else None,
    )


def _registered(session: Session, address: str) -> tuple[EscrowRecord, Escrow]:
    """Resolve the role-bound escrow logic for an instance address."""
    try:
        address = normalize_address(address)
    except ValueError as exc:
        raise ImmutablesMismatchError(str(exc)) from exc
    record = session.get(EscrowRecord, address)
    if record is None:
        raise ImmutablesMismatchError(f"No escrow was created at {address}")
    return record, factory.escrow(Role(record.role))


# --- Factory ---


@router.post("/factory/address", response_model=AddressResponse, tags=["Factory"])
def address_of(req: AddressRequest) -> AddressResponse:
    address = factory.address_of(req.immutables.to_immutables(), Role(req.role))
    return AddressResponse(address=address, role=req.role)


@router.post("/factory/dst", status_code=201, response_model=EscrowResponse, tags=["Factory"])
def create_destination(
    req: CreateDstRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> EscrowResponse:
    now = _now()
    immutables = req.immutables.to_immutables()
    with session.begin():
        record, _stamped = factory.create_destination(
            session,
            immutables,
            req.src_cancellation_timestamp,
            caller=current["address"],
            value=req.value,
            now=now,
        )
        view = escrow_view(session, record, now)
    fire_webhook_event(record, "escrow.created")
    return view


# --- Escrow reads ---


@router.get("/escrows/{address}", response_model=EscrowResponse, tags=["Escrows"])
def get_escrow(address: str, session: Session = Depends(get_session)) -> EscrowResponse:
    with session.begin():
        try:
            record, _escrow = _registered(session, address)
        except ImmutablesMismatchError:
            raise HTTPException(status_code=404, detail="Escrow not found") from None
        return escrow_view(session, record, _now())


@router.get("/escrows/{address}/events", response_model=EventsResponse, tags=["Escrows"])
def get_events(address: str, session: Session = Depends(get_session)) -> EventsResponse:
    with session.begin():
        try:
            record, _escrow = _registered(session, address)
        except ImmutablesMismatchError:
            raise HTTPException(status_code=404, detail="Escrow not found") from None
        rows = (
            session.execute(
                select(EscrowEvent)
                .where(EscrowEvent.escrow_address == record.address)
                .order_by(EscrowEvent.id)
            )
            .scalars()
            .all()
        )
    return EventsResponse(
        escrow_address=record.address,
        events=[
            EventItem(
                id=row.id,
                event=row.event,
                hashlock=row.hashlock,
                secret=row.secret,
                data=row.data or {},
                ledger_time=int(row.ledger_time),
            )
            for row in rows
        ],
    )


@router.get("/secrets/{hashlock}", response_model=SecretResponse, tags=["Escrows"])
def get_secret(hashlock: str, session: Session = Depends(get_session)) -> SecretResponse:
    hashlock = "0x" + to_bytes32(hashlock).hex()
    with session.begin():
        row = session.execute(
            select(EscrowEvent)
            .where(EscrowEvent.hashlock == hashlock, EscrowEvent.secret.isnot(None))
            .order_by(EscrowEvent.id)
            .limit(1)
        ).scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="Secret has not been revealed")
    return SecretResponse(
        hashlock=hashlock,
        secret=row.secret,
        escrow_address=row.escrow_address,
        revealed_at=int(row.ledger_time),
    )


# --- Escrow actions ---


@router.post("/escrows/{address}/withdraw", response_model=ReceiptResponse, tags=["Escrows"])
def withdraw(
    address: str,
    req: WithdrawRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> ReceiptResponse:
    immutables = req.immutables.to_immutables()
    secret = to_bytes32(req.secret)
    with session.begin():
        record, escrow = _registered(session, address)
        if req.target is not None:
            receipt = escrow.withdraw_to(
                session, record.address, secret, req.target, immutables, caller=current["address"], now=_now()
            )
        else:
            receipt = escrow.withdraw(session, record.address, secret, immutables, caller=current["address"], now=_now())
    fire_webhook_event(record, "escrow.withdrawn", {"secret": req.secret, "recipient": receipt.recipient})
    return _receipt(receipt)


@router.post("/escrows/{address}/public-withdraw", response_model=ReceiptResponse, tags=["Escrows"])
def public_withdraw(
    address: str,
    req: WithdrawRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> ReceiptResponse:
    if req.target is not None:
        raise HTTPException(status_code=422, detail="Public withdrawal always pays the intended recipient")
    immutables = req.immutables.to_immutables()
    with session.begin():
        record, escrow = _registered(session, address)
        receipt = escrow.public_withdraw(
            session, record.address, to_bytes32(req.secret), immutables, caller=current["address"], now=_now()
        )
    fire_webhook_event(record, "escrow.withdrawn", {"secret": req.secret, "recipient": receipt.recipient})
    return _receipt(receipt)


@router.post("/escrows/{address}/cancel", response_model=ReceiptResponse, tags=["Escrows"])
def cancel(
    address: str,
    req: CancelRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> ReceiptResponse:
    immutables = req.immutables.to_immutables()
    with session.begin():
        record, escrow = _registered(session, address)
        receipt = escrow.cancel(session, record.address, immutables, caller=current["address"], now=_now())
    fire_webhook_event(record, "escrow.cancelled", {"recipient": receipt.recipient})
    return _receipt(receipt)


@router.post("/escrows/{address}/public-cancel", response_model=ReceiptResponse, tags=["Escrows"])
def public_cancel(
    address: str,
    req: CancelRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> ReceiptResponse:
    immutables = req.immutables.to_immutables()
    with session.begin():
        record, escrow = _registered(session, address)
        receipt = escrow.public_cancel(session, record.address, immutables, caller=current["address"], now=_now())
    fire_webhook_event(record, "escrow.cancelled", {"recipient": receipt.recipient})
    return _receipt(receipt)


@router.post("/escrows/{address}/rescue", response_model=ReceiptResponse, tags=["Escrows"])
def rescue(
    address: str,
    req: RescueRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> ReceiptResponse:
    immutables = req.immutables.to_immutables()
    with session.begin():
        record, escrow = _registered(session, address)
        receipt = escrow.rescue(
            session, record.address, req.token, req.amount, immutables, caller=current["address"], now=_now()
        )
    fire_webhook_event(record, "escrow.rescued", {"token": receipt.token, "amount": receipt.amount})
    return _receipt(receipt)
