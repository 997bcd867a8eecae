from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from swapledger import ledger
from swapledger.auth import authenticate_account
from swapledger.config import get_session, settings
from swapledger.immutables import normalize_address
from swapledger.schemas import BalanceResponse, BalancesResponse, DepositRequest, TransferRequest

router = APIRouter()


@router.post("/ledger/deposit", response_model=BalanceResponse, tags=["Ledger"])
def deposit(
    req: DepositRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> BalanceResponse:
    if not settings.allow_deposits:
        raise HTTPException(status_code=403, detail="Deposits are disabled on this ledger")
    asset = normalize_address(req.asset)
    with session.begin():
        balance = ledger.credit(session, current["address"], asset, req.amount, description="Deposit via API")
    return BalanceResponse(owner=current["address"], asset=asset, balance=balance)


@router.post("/ledger/transfer", response_model=BalanceResponse, tags=["Ledger"])
def transfer(
    req: TransferRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> BalanceResponse:
    asset = normalize_address(req.asset)
    with session.begin():
        ledger.transfer(
            session,
            current["address"],
            normalize_address(req.recipient),
            asset,
            req.amount,
            tx_type="transfer",
        )
        balance = ledger.balance_of(session, current["address"], asset)
    return BalanceResponse(owner=current["address"], asset=asset, balance=balance)


@router.get("/ledger/balances/{owner}", response_model=BalancesResponse, tags=["Ledger"])
def balances(owner: str, session: Session = Depends(get_session)) -> BalancesResponse:
    owner = normalize_address(owner)
    with session.begin():
        held = ledger.holdings(session, owner)
    return BalancesResponse(owner=owner, balances=held)
