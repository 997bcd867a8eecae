from __future__ import annotations

import hashlib
import hmac
import secrets
import time

import bcrypt
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from swapledger.config import get_session, settings
from swapledger.models import Account

API_KEY_PREFIX = "xsw_"
KEY_ID_LENGTH = len(API_KEY_PREFIX) + 8


def generate_api_key() -> tuple[str, str, str]:
    """Return a fresh API key, its lookup id and its bcrypt hash.

    The id is the key's first characters; it is stored in clear so a request
    costs one bcrypt check instead of one per account.
    """
    api_key = f"{API_KEY_PREFIX}{secrets.token_hex(20)}"
    api_key_hash = bcrypt.hashpw(
        api_key.encode("utf-8"),
        bcrypt.gensalt(rounds=settings.api_key_salt_rounds),
    ).decode("utf-8")
    return api_key, api_key[:KEY_ID_LENGTH], api_key_hash


def _bearer_key(authorization: str | None) -> str:
    scheme, _, api_key = (authorization or "").partition(" ")
    if scheme != "Bearer" or not api_key.strip():
        raise HTTPException(
            status_code=401,
            detail=f"Missing or invalid Authorization header. Use: Bearer {API_KEY_PREFIX}<your_api_key>",
        )
    api_key = api_key.strip()
    if not api_key.startswith(API_KEY_PREFIX) or len(api_key) <= KEY_ID_LENGTH:
        raise HTTPException(status_code=401, detail="Invalid API key format")
    return api_key


def request_signature(api_key: str, timestamp: str, method: str, path: str, body: bytes) -> str:
    message = f"{timestamp}{method.upper()}{path}".encode("utf-8") + body
    return hmac.new(api_key.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _signature_is_fresh(timestamp: str) -> bool:
    try:
        return abs(int(time.time()) - int(timestamp)) <= settings.signature_max_age_seconds
    except ValueError:
        return False


async def authenticate_account(
    request: Request,
    authorization: str | None = Header(default=None),
    x_swap_signature: str | None = Header(default=None),
    x_swap_timestamp: str | None = Header(default=None),
    session: Session = Depends(get_session),
) -> dict:
    """Resolve the calling ledger identity from its bearer key.

    When the X-Swap-Signature/X-Swap-Timestamp pair is present (or required by
    configuration) it must be an HMAC of timestamp, method, path and body
    keyed by the API key.
    """
    api_key = _bearer_key(authorization)

    if x_swap_signature is None or x_swap_timestamp is None:
        if settings.require_signatures:
            raise HTTPException(
                status_code=401,
                detail="Request signature required. Provide X-Swap-Signature and X-Swap-Timestamp headers.",
            )
    else:
        expected = request_signature(
            api_key, x_swap_timestamp, request.method, request.url.path, await request.body()
        )
        if not _signature_is_fresh(x_swap_timestamp) or not hmac.compare_digest(expected, x_swap_signature):
            raise HTTPException(status_code=401, detail="Invalid request signature")

    with session.begin():
        acct = session.execute(
            select(Account).where(Account.key_id == api_key[:KEY_ID_LENGTH], Account.status == "active")
        ).scalar_one_or_none()
        if acct is None or not bcrypt.checkpw(api_key.encode("utf-8"), acct.api_key_hash.encode("utf-8")):
            raise HTTPException(status_code=401, detail="Invalid API key")
        return {"address": acct.address, "label": acct.label, "status": acct.status}
