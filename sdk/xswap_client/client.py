from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx


def _join(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")


def _hex(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


def sign_request(api_key: str, method: str, path: str, body: bytes | None = None) -> dict[str, str]:
    """Produce X-Swap-Signature and X-Swap-Timestamp headers for request signing."""
    timestamp = str(int(time.time()))
    message = f"{timestamp}{method.upper()}{path}".encode("utf-8") + (body or b"")
    sig = hmac.new(api_key.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return {"X-Swap-Signature": sig, "X-Swap-Timestamp": timestamp}


@dataclass
class SwapLedgerClient:
    """Synchronous client for one swap ledger's REST API.

    A cross-ledger swap needs two clients, one per ledger. ``http_client`` may
    be any ``httpx.Client`` (a FastAPI ``TestClient`` included); it is used as
    is and never closed by this class.
    """

    base_url: str
    api_key: str | None = None
    timeout_s: float = 10.0
    default_headers: dict[str, str] = field(default_factory=dict)
    sign_requests: bool = False
    http_client: httpx.Client | None = None

    def _headers(
        self,
        *,
        idempotency_key: str | None = None,
        method: str = "GET",
        path: str = "/",
        body: bytes | None = None,
    ) -> dict[str, str]:
        h: dict[str, str] = {**self.default_headers}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        h["X-Request-Id"] = f"req_{uuid.uuid4().hex[:12]}"
        if idempotency_key:
            h["Idempotency-Key"] = idempotency_key
        if self.sign_requests and self.api_key:
            h.update(sign_request(self.api_key, method, path, body))
        return h

    def _send(
        self,
        method: str,
        url: str,
        *,
        payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        headers = self._headers(idempotency_key=idempotency_key, method=method, path=urlparse(url).path, body=body)
        if body is not None:
            headers["Content-Type"] = "application/json"
        if self.http_client is not None:
            r = self.http_client.request(method, url, content=body, params=params, headers=headers)
        else:
            with httpx.Client(timeout=self.timeout_s) as c:
                r = c.request(method, url, content=body, params=params, headers=headers)
        r.raise_for_status()
        return r.json()

    def _post(self, url: str, payload: dict[str, Any], *, idempotency_key: str | None = None) -> dict[str, Any]:
        return self._send("POST", url, payload=payload, idempotency_key=idempotency_key)

    def _get(self, url: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._send("GET", url, params=params)

    def _put(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        return self._send("PUT", url, payload=payload)

    def _delete(self, url: str) -> dict[str, Any]:
        return self._send("DELETE", url)

    def health(self) -> dict[str, Any]:
        return self._get(_join(self.base_url, "/health"))

    # --- Accounts ---

    def register_account(self, *, address: str, label: str = "") -> dict[str, Any]:
        """Register a ledger identity. Stores the returned API key on the client."""
        url = _join(self.base_url, "/v1/accounts/register")
        resp = self._post(url, {"address": address, "label": label})
        self.api_key = resp["api_key"]
        return resp

    def me(self) -> dict[str, Any]:
        return self._get(_join(self.base_url, "/v1/accounts/me"))

    # --- Webhooks ---

    def set_webhook(self, *, url: str, events: list[str] | None = None) -> dict[str, Any]:
        """Register or update webhook URL."""
        endpoint = _join(self.base_url, "/v1/accounts/webhook")
        payload: dict[str, Any] = {"url": url}
        if events is not None:
            payload["events"] = events
        return self._put(endpoint, payload)

    def delete_webhook(self) -> dict[str, Any]:
        """Remove webhook configuration."""
        return self._delete(_join(self.base_url, "/v1/accounts/webhook"))

    # --- Ledger ---

    def deposit(self, *, asset: str, amount: int) -> dict[str, Any]:
        return self._post(_join(self.base_url, "/v1/ledger/deposit"), {"asset": asset, "amount": amount})

    def transfer(self, *, recipient: str, asset: str, amount: int) -> dict[str, Any]:
        url = _join(self.base_url, "/v1/ledger/transfer")
        return self._post(url, {"recipient": recipient, "asset": asset, "amount": amount})

    def balances(self, *, owner: str) -> dict[str, Any]:
        return self._get(_join(self.base_url, f"/v1/ledger/balances/{owner}"))

    # --- Factory & orders ---

    def escrow_address(self, *, immutables: dict[str, Any], role: str) -> str:
        url = _join(self.base_url, "/v1/factory/address")
        return self._post(url, {"immutables": immutables, "role": role})["address"]

    def create_dst_escrow(
        self,
        *,
        immutables: dict[str, Any],
        src_cancellation_timestamp: int,
        value: int,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        url = _join(self.base_url, "/v1/factory/dst")
        payload = {
            "immutables": immutables,
            "src_cancellation_timestamp": src_cancellation_timestamp,
            "value": value,
        }
        return self._post(url, payload, idempotency_key=idempotency_key)

    def fill_order(
        self,
        *,
        order: dict[str, Any],
        signature: str,
        fill_amount: int,
        extension: dict[str, Any],
        value: int = 0,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        url = _join(self.base_url, "/v1/orders/fill")
        payload = {
            "order": order,
            "signature": signature,
            "fill_amount": fill_amount,
            "extension": extension,
            "value": value,
        }
        return self._post(url, payload, idempotency_key=idempotency_key)

    # --- Escrows ---

    def get_escrow(self, *, address: str) -> dict[str, Any]:
        return self._get(_join(self.base_url, f"/v1/escrows/{address}"))

    def get_events(self, *, address: str) -> dict[str, Any]:
        return self._get(_join(self.base_url, f"/v1/escrows/{address}/events"))

    def get_secret(self, *, hashlock: str | bytes) -> dict[str, Any]:
        return self._get(_join(self.base_url, f"/v1/secrets/{_hex(hashlock)}"))

    def withdraw(
        self,
        *,
        address: str,
        secret: str | bytes,
        immutables: dict[str, Any],
        target: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/escrows/{address}/withdraw")
        payload: dict[str, Any] = {"secret": _hex(secret), "immutables": immutables}
        if target is not None:
            payload["target"] = target
        return self._post(url, payload, idempotency_key=idempotency_key)

    def public_withdraw(self, *, address: str, secret: str | bytes, immutables: dict[str, Any]) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/escrows/{address}/public-withdraw")
        return self._post(url, {"secret": _hex(secret), "immutables": immutables})

    def cancel(self, *, address: str, immutables: dict[str, Any], idempotency_key: str | None = None) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/escrows/{address}/cancel")
        return self._post(url, {"immutables": immutables}, idempotency_key=idempotency_key)

    def public_cancel(self, *, address: str, immutables: dict[str, Any]) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/escrows/{address}/public-cancel")
        return self._post(url, {"immutables": immutables})

    def rescue(self, *, address: str, token: str, amount: int, immutables: dict[str, Any]) -> dict[str, Any]:
        url = _join(self.base_url, f"/v1/escrows/{address}/rescue")
        return self._post(url, {"token": token, "amount": amount, "immutables": immutables})
