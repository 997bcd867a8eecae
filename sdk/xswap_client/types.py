from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, TypedDict


class ImmutablesDict(TypedDict):
    order_hash: str
    hashlock: str
    maker: str
    taker: str
    token: str
    amount: int
    safety_deposit: int
    timelocks: str


class EscrowResponse(TypedDict, total=False):
    address: str
    role: str
    immutables: ImmutablesDict
    phase: str
    schedule: dict[str, int]
    rescue_start: int
    balances: dict[str, int]
    created_at: int


class FillResponse(TypedDict, total=False):
    order_hash: str
    escrow: EscrowResponse
    dst_complement: dict[str, Any]


class ReceiptResponse(TypedDict, total=False):
    escrow_address: str
    action: str
    caller: str
    recipient: str
    token: str
    amount: int
    safety_deposit: int
    secret: str | None


@dataclass
class SwapRecord:
    """Relayer-side bookkeeping for one swap in flight.

    Nothing on either ledger trusts this record; losing it only means the
    relayer has to rebuild the immutables from the escrow events.
    """

    secret: str
    hashlock: str
    order_hash: str | None = None
    src_escrow: str | None = None
    dst_escrow: str | None = None
    src_created_at: int | None = None
    dst_created_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SwapRecord:
        return cls(**{key: data.get(key) for key in cls.__dataclass_fields__})

    def save(self, path: str | Path) -> None:
        Path(path).write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: str | Path) -> SwapRecord:
        return cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))
