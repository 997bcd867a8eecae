from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from swapledger.errors import InsufficientBalance, TransferFailure
from swapledger.immutables import NATIVE_ASSET, normalize_address
from swapledger.models import Balance, Transfer


def _lock(stmt):
    return stmt.with_for_update()


def _balance_row(session: Session, owner: str, asset: str) -> Balance | None:
    return session.execute(
        _lock(select(Balance).where(Balance.owner == owner, Balance.asset == asset))
    ).scalar_one_or_none()


def balance_of(session: Session, owner: str, asset: str) -> int:
    owner, asset = normalize_address(owner), normalize_address(asset)
    row = session.execute(
        select(Balance.amount).where(Balance.owner == owner, Balance.asset == asset)
    ).scalar_one_or_none()
    return int(row or 0)


def holdings(session: Session, owner: str) -> dict[str, int]:
    owner = normalize_address(owner)
    rows = session.execute(select(Balance).where(Balance.owner == owner)).scalars().all()
    return {row.asset: int(row.amount) for row in rows if row.amount}


def credit(
    session: Session,
    owner: str,
    asset: str,
    amount: int,
    *,
    tx_type: str = "deposit",
    description: str | None = None,
) -> int:
    """Mint ``amount`` of ``asset`` to ``owner``. Returns the new balance."""
    owner, asset = normalize_address(owner), normalize_address(asset)
    if amount <= 0:
        raise TransferFailure("Deposit amount must be positive")
    row = _balance_row(session, owner, asset)
    if row is None:
        row = Balance(owner=owner, asset=asset, amount=0)
    row.amount = int(row.amount) + amount
    session.add(row)
    session.add(
        Transfer(
            from_owner=None,
            to_owner=owner,
            asset=asset,
            amount=amount,
            tx_type=tx_type,
            description=description,
        )
    )
    session.flush()
    return int(row.amount)


def transfer(
    session: Session,
    sender: str,
    recipient: str,
    asset: str,
    amount: int,
    *,
    tx_type: str,
    escrow_address: str | None = None,
    description: str | None = None,
) -> None:
    """Move ``amount`` of ``asset`` between two owners.

    Raises :class:`TransferFailure` (or :class:`InsufficientBalance`) and leaves
    both balances untouched when the move cannot be made.
    """
    sender, recipient, asset = normalize_address(sender), normalize_address(recipient), normalize_address(asset)
    if amount < 0:
        raise TransferFailure(f"Transfer amount must not be negative, got {amount}")
    if recipient == NATIVE_ASSET:
        raise TransferFailure("Cannot transfer to the zero address")
    if amount == 0:
        return

    src = _balance_row(session, sender, asset)
    available = int(src.amount) if src is not None else 0
    if src is None or available < amount:
        raise InsufficientBalance(
            f"{sender} holds {available} of {asset}, cannot transfer {amount}"
        )

    if recipient == sender:
        dst = src
    else:
        dst = _balance_row(session, recipient, asset)
        if dst is None:
            dst = Balance(owner=recipient, asset=asset, amount=0)

    src.amount = available - amount
    dst.amount = int(dst.amount) + amount
    session.add(src)
    session.add(dst)
    session.add(
        Transfer(
            escrow_address=escrow_address,
            from_owner=sender,
            to_owner=recipient,
            asset=asset,
            amount=amount,
            tx_type=tx_type,
            description=description,
        )
    )
    session.flush()
