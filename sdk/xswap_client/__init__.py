"""Python SDK for a swap ledger.

This package is intentionally small:
- HTTP client for one ledger (accounts, factory, orders, escrow actions).
- Secret, hashlock and timelock helpers for makers and relayers.
- EIP-712 order signing.
"""

from __future__ import annotations

__all__ = [
    "SwapLedgerClient",
    "SwapRecord",
    "generate_secret",
    "hashlock_of",
    "new_swap",
    "pack_timelocks",
    "sign_order",
    "sign_request",
]

from xswap_client.client import SwapLedgerClient, sign_request
from xswap_client.swap import generate_secret, hashlock_of, new_swap, pack_timelocks, sign_order
from xswap_client.types import SwapRecord
