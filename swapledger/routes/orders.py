from __future__ import annotations

import time
from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from swapledger.auth import authenticate_account
from swapledger.config import bridge, get_session
from swapledger.routes.escrows import escrow_view
from swapledger.schemas import FillRequest, FillResponse
from swapledger.webhooks import fire_webhook_event

router = APIRouter()


def _now() -> int:
    return int(time.time())


@router.post("/orders/fill", status_code=201, response_model=FillResponse, tags=["Orders"])
def fill_order(
    req: FillRequest,
    current: dict = Depends(authenticate_account),
    session: Session = Depends(get_session),
) -> FillResponse:
    """Fill a maker-signed order as the resolver, locking the maker's asset in a source escrow."""
    now = _now()
    with session.begin():
        fill = bridge.fill(
            session,
            req.order.to_order(),
            req.signature,
            req.fill_amount,
            req.extension.to_extension(),
            taker=current["address"],
            value=req.value,
            now=now,
        )
        view = escrow_view(session, fill.escrow, now)
    fire_webhook_event(fill.escrow, "escrow.created", {"dst_complement": asdict(fill.complement)})
    return FillResponse(
        order_hash="0x" + fill.order_hash.hex(),
        escrow=view,
        dst_complement=asdict(fill.complement),
    )
