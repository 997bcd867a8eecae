from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from datetime import datetime, timezone
from threading import Thread
from time import sleep
from typing import Any

import httpx
from sqlalchemy import select

from swapledger.config import SessionLocal, settings
from swapledger.models import EscrowRecord, WebhookConfig

logger = logging.getLogger(__name__)

ALL_EVENTS = [
    "escrow.created",
    "escrow.withdrawn",
    "escrow.cancelled",
    "escrow.rescued",
    "escrow.cancellable",
]

RETRY_BACKOFF = [5, 25, 125]


def _sign_payload(secret: str, body: bytes) -> str:
    sig = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={sig}"


def _deliver(url: str, secret: str, event: str, payload: dict) -> bool:
    body = json.dumps(payload).encode("utf-8")
    signature = _sign_payload(secret, body)
    delivery_id = f"evt_{uuid.uuid4().hex[:12]}"
    headers = {
        "Content-Type": "application/json",
        "X-Swap-Signature": signature,
        "X-Swap-Event": event,
        "X-Swap-Delivery": delivery_id,
    }

    retries = settings.webhook_max_retries
    for attempt in range(1 + retries):
        try:
            resp = httpx.post(url, content=body, headers=headers, timeout=settings.webhook_timeout_seconds)
            if 200 <= resp.status_code < 300:
                return True
            logger.warning("Webhook delivery to %s returned %s (attempt %d)", url, resp.status_code, attempt + 1)
        except httpx.HTTPError:
            logger.warning("Webhook delivery to %s failed (attempt %d)", url, attempt + 1, exc_info=True)
        if attempt < retries:
            backoff = RETRY_BACKOFF[attempt] if attempt < len(RETRY_BACKOFF) else RETRY_BACKOFF[-1]
            sleep(backoff)
    return False


def _dispatch(url: str, secret: str, event: str, payload: dict) -> None:
    thread = Thread(target=_deliver, args=(url, secret, event, payload), daemon=True)
    thread.start()


def build_escrow_payload(escrow: EscrowRecord, event: str, extra: dict[str, Any] | None = None) -> dict:
    data: dict[str, Any] = {
        "escrow_address": escrow.address,
        "role": escrow.role,
        "order_hash": escrow.order_hash,
        "hashlock": escrow.hashlock,
        "maker": escrow.maker,
        "taker": escrow.taker,
        "token": escrow.token,
        "amount": int(escrow.amount),
        "safety_deposit": int(escrow.safety_deposit),
        "created_at": int(escrow.created_at),
    }
    if extra:
        data.update(extra)
    return {
        "event": event,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def fire_webhook_event(escrow: EscrowRecord, event: str, extra: dict[str, Any] | None = None) -> int:
    """Notify maker and taker of ``event`` if they have webhooks configured.

    Returns the number of deliveries started.
    """
    db = SessionLocal()
    try:
        with db.begin():
            configs = (
                db.execute(
                    select(WebhookConfig).where(
                        WebhookConfig.account_address.in_([escrow.maker, escrow.taker]),
                        WebhookConfig.active.is_(True),
                    )
                )
                .scalars()
                .all()
            )
    finally:
        db.close()

    payload = build_escrow_payload(escrow, event, extra)
    started = 0
    for cfg in configs:
        if cfg.events and event not in cfg.events:
            continue
        _dispatch(cfg.url, cfg.secret, event, payload)
        started += 1
    return started
