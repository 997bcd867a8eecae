from __future__ import annotations

import hashlib
import hmac
import json
import sys
from pathlib import Path

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from web3 import Web3

# Allow running `pytest` from repo root without installing sdk/ first.
sdk_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(sdk_root))

from xswap_client import (  # noqa: E402
    SwapLedgerClient,
    SwapRecord,
    hashlock_of,
    new_swap,
    pack_timelocks,
    sign_order,
)
from xswap_client.client import sign_request  # noqa: E402
from xswap_client.swap import order_typed_data  # noqa: E402

MAKER_KEY = "0x" + "11" * 32
SETTLEMENT = "0x" + "5e" * 20


def _order(maker: str) -> dict:
    return {
        "salt": 9,
        "maker": maker,
        "maker_asset": "0x" + "aa" * 20,
        "taker_asset": "0x" + "bb" * 20,
        "making_amount": 1000,
        "taking_amount": 500,
    }


def test_new_swap_pairs_a_secret_with_its_hashlock():
    swap = new_swap()
    secret = bytes.fromhex(swap.secret[2:])
    assert len(secret) == 32
    assert swap.hashlock == "0x" + bytes(Web3.keccak(secret)).hex()
    assert new_swap().secret != swap.secret


def test_hashlock_of_known_value():
    assert hashlock_of(b"") == "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"


def test_pack_timelocks_places_stages_in_32_bit_slots():
    word = pack_timelocks(
        {
            "src_withdrawal": 1,
            "src_public_withdrawal": 2,
            "src_cancellation": 3,
            "src_public_cancellation": 4,
            "dst_withdrawal": 5,
            "dst_public_withdrawal": 6,
            "dst_cancellation": 7,
        }
    )
    assert [(word >> (32 * i)) & 0xFFFFFFFF for i in range(8)] == [1, 2, 3, 4, 5, 6, 7, 0]


def test_pack_timelocks_rejects_oversized_offsets():
    offsets = dict.fromkeys(
        [
            "src_withdrawal",
            "src_public_withdrawal",
            "src_cancellation",
            "src_public_cancellation",
            "dst_withdrawal",
            "dst_public_withdrawal",
            "dst_cancellation",
        ],
        0,
    )
    offsets["dst_cancellation"] = 1 << 32
    with pytest.raises(ValueError):
        pack_timelocks(offsets)


def test_sign_order_recovers_to_the_maker():
    maker = Account.from_key(MAKER_KEY)
    order = _order(maker.address.lower())
    signature = sign_order(order, MAKER_KEY, chain_id=1, verifying_contract=SETTLEMENT)

    signable = encode_typed_data(full_message=order_typed_data(order, chain_id=1, verifying_contract=SETTLEMENT))
    assert Account.recover_message(signable, signature=signature) == maker.address

    other_chain = encode_typed_data(full_message=order_typed_data(order, chain_id=56, verifying_contract=SETTLEMENT))
    assert Account.recover_message(other_chain, signature=signature) != maker.address


def test_swap_record_survives_a_restart(tmp_path: Path):
    record = new_swap()
    record.order_hash = "0x" + "01" * 32
    record.src_escrow = "0x" + "02" * 20
    record.src_created_at = 1_700_000_000
    path = tmp_path / "swap.json"
    record.save(path)

    loaded = SwapRecord.load(path)
    assert loaded == record
    assert json.loads(path.read_text())["dst_escrow"] is None


def test_sign_request_is_hmac_over_timestamp_method_path_body():
    headers = sign_request("xsw_key", "post", "/v1/orders/fill", b"{}")
    message = f"{headers['X-Swap-Timestamp']}POST/v1/orders/fill".encode() + b"{}"
    assert headers["X-Swap-Signature"] == hmac.new(b"xsw_key", message, hashlib.sha256).hexdigest()


def test_client_sends_authenticated_json_requests():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/v1/accounts/register":
            return httpx.Response(201, json={"api_key": "xsw_abc", "address": "0x" + "11" * 20, "label": ""})
        return httpx.Response(200, json={"escrow_address": "0x" + "22" * 20, "action": "withdraw"})

    http = httpx.Client(transport=httpx.MockTransport(handler))
    client = SwapLedgerClient(base_url="http://ledger.test/", http_client=http, sign_requests=True)
    client.register_account(address="0x" + "11" * 20, label="maker")
    assert client.api_key == "xsw_abc"

    client.withdraw(
        address="0x" + "22" * 20,
        secret=b"\x01" * 32,
        immutables={"amount": 1},
        idempotency_key="w-1",
    )
    request = seen[-1]
    assert str(request.url) == f"http://ledger.test/v1/escrows/0x{'22' * 20}/withdraw"
    assert request.headers["Authorization"] == "Bearer xsw_abc"
    assert request.headers["Idempotency-Key"] == "w-1"
    assert "X-Swap-Signature" in request.headers
    assert json.loads(request.content)["secret"] == "0x" + "01" * 32


def test_client_raises_on_error_status():
    http = httpx.Client(
        transport=httpx.MockTransport(
            lambda request: httpx.Response(409, json={"error": {"code": "INVALID_TIME", "message": "", "request_id": ""}})
        )
    )
    client = SwapLedgerClient(base_url="http://ledger.test", api_key="xsw_abc", http_client=http)
    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        client.cancel(address="0x" + "22" * 20, immutables={})
    assert exc_info.value.response.json()["error"]["code"] == "INVALID_TIME"
