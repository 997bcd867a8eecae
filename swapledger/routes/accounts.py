from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from swapledger import ledger
from swapledger.auth import authenticate_account, generate_api_key
from swapledger.config import get_session
from swapledger.immutables import normalize_address
from swapledger.models import Account
from swapledger.schemas import AccountResponse, RegisterRequest, RegisterResponse

router = APIRouter()


@router.post("/accounts/register", status_code=201, response_model=RegisterResponse, tags=["Accounts"])
def register(req: RegisterRequest, session: Session = Depends(get_session)) -> RegisterResponse:
    address = normalize_address(req.address)
    api_key, key_id, api_key_hash = generate_api_key()

    with session.begin():
        if session.get(Account, address) is not None:
            raise HTTPException(status_code=409, detail="An account with this address already exists")
        session.add(Account(address=address, label=req.label, key_id=key_id, api_key_hash=api_key_hash))

    return RegisterResponse(address=address, label=req.label, api_key=api_key)


@router.get("/accounts/me", response_model=AccountResponse, tags=["Accounts"])
def me(
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> AccountResponse:
    with session.begin():
        acct = session.get(Account, current["address"])
        if acct is None:
            raise HTTPException(status_code=404, detail="Account not found")
        return AccountResponse(
            address=acct.address,
            label=acct.label,
            status=acct.status,
            balances=ledger.holdings(session, acct.address),
            created_at=acct.created_at,
        )
