"""Escrow state machine shared by both legs of a swap.

An escrow instance keeps no state of its own besides the balances held at its
address. Which action is allowed is derived from the current ledger time and
the timelock ladder baked into the immutables, and every call must present the
exact immutables the instance address was derived from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from swapledger import ledger
from swapledger import timelocks as tl
from swapledger.addressing import Role, address_of
from swapledger.errors import (
    AuthorizationError,
    ImmutablesMismatchError,
    SecretMismatchError,
    TimingError,
    UnsupportedOperation,
)
from swapledger.immutables import NATIVE_ASSET, Immutables, hashlock_of, normalize_address
from swapledger.models import EscrowEvent, EscrowRecord
from swapledger.timelocks import Stage

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    FINALITY = "finality"
    PRIVATE_WITHDRAWAL = "private_withdrawal"
    PUBLIC_WITHDRAWAL = "public_withdrawal"
    CANCELLATION = "cancellation"
    PUBLIC_CANCELLATION = "public_cancellation"


@dataclass(frozen=True)
class _Ladder:
    withdrawal: Stage
    public_withdrawal: Stage
    cancellation: Stage
    public_cancellation: Stage | None


_LADDERS = {
    Role.SOURCE: _Ladder(
        withdrawal=Stage.SRC_WITHDRAWAL,
        public_withdrawal=Stage.SRC_PUBLIC_WITHDRAWAL,
        cancellation=Stage.SRC_CANCELLATION,
        public_cancellation=Stage.SRC_PUBLIC_CANCELLATION,
    ),
    Role.DESTINATION: _Ladder(
        withdrawal=Stage.DST_WITHDRAWAL,
        public_withdrawal=Stage.DST_PUBLIC_WITHDRAWAL,
        cancellation=Stage.DST_CANCELLATION,
        public_cancellation=None,
    ),
}


@dataclass(frozen=True)
class Receipt:
    """Outcome of a terminal or rescue action."""

    escrow_address: str
    action: str
    caller: str
    recipient: str
    token: str
    amount: int
    safety_deposit: int
    secret: bytes | None = None


def record_event(
    session: Session,
    escrow_address: str,
    event: str,
    now: int,
    *,
    hashlock: bytes | None = None,
    secret: bytes | None = None,
    data: dict | None = None,
) -> EscrowEvent:
    row = EscrowEvent(
        escrow_address=escrow_address,
        event=event,
        hashlock="0x" + hashlock.hex() if hashlock is not None else None,
        secret="0x" + secret.hex() if secret is not None else None,
        data=data or {},
        ledger_time=now,
    )
    session.add(row)
    return row


class Escrow:
    """Role-parameterized escrow logic.

    ``Escrow(Role.SOURCE, ...)`` holds the maker's asset until the taker shows
    the secret; ``Escrow(Role.DESTINATION, ...)`` holds the taker's asset until
    the maker is paid.
    """

    def __init__(self, role: Role, *, factory_address: str, access_token: str, rescue_delay: int) -> None:
        self.role = Role(role)
        self.factory_address = normalize_address(factory_address)
        self.access_token = normalize_address(access_token)
        self.rescue_delay = rescue_delay
        self.ladder = _LADDERS[self.role]

    # --- Views ---

    def address_of(self, immutables: Immutables) -> str:
        return address_of(self.factory_address, immutables, self.role)

    def phase(self, immutables: Immutables, now: int) -> Phase:
        word = immutables.timelocks
        if self.ladder.public_cancellation is not None and now >= tl.stage_time(word, self.ladder.public_cancellation):
            return Phase.PUBLIC_CANCELLATION
        if now >= tl.stage_time(word, self.ladder.cancellation):
            return Phase.CANCELLATION
        if now >= tl.stage_time(word, self.ladder.public_withdrawal):
            return Phase.PUBLIC_WITHDRAWAL
        if now >= tl.stage_time(word, self.ladder.withdrawal):
            return Phase.PRIVATE_WITHDRAWAL
        return Phase.FINALITY

    def withdrawal_recipient(self, immutables: Immutables) -> str:
        return immutables.taker if self.role is Role.SOURCE else immutables.maker

    def refund_recipient(self, immutables: Immutables) -> str:
        return immutables.maker if self.role is Role.SOURCE else immutables.taker

    # --- Guards ---

    def _load(self, session: Session, address: str, immutables: Immutables) -> EscrowRecord:
        try:
            target = normalize_address(address)
        except ValueError as exc:
            raise ImmutablesMismatchError(str(exc)) from exc
        expected = self.address_of(immutables)
        if expected != target:
            raise ImmutablesMismatchError(
                f"Immutables address {self.role.value} escrow {expected}, not {target}"
            )
        record = session.get(EscrowRecord, target)
        if record is None or record.role != self.role.value:
            raise ImmutablesMismatchError(f"No {self.role.value} escrow was created at {target}")
        return record

    def _only_taker(self, immutables: Immutables, caller: str) -> None:
        if caller != immutables.taker:
            raise AuthorizationError(f"Only the taker {immutables.taker} may call this, not {caller}")

    def _only_access_token_holder(self, session: Session, caller: str) -> None:
        if ledger.balance_of(session, caller, self.access_token) <= 0:
            raise AuthorizationError(f"{caller} does not hold the access token")

    def _only_after(self, immutables: Immutables, stage: Stage, now: int) -> None:
        start = tl.stage_time(immutables.timelocks, stage)
        if now < start:
            raise TimingError(f"{stage.name} starts at {start}, now is {now}")

    def _only_before(self, immutables: Immutables, stage: Stage, now: int) -> None:
        stop = tl.stage_time(immutables.timelocks, stage)
        if now >= stop:
            raise TimingError(f"Window closed at {stop} ({stage.name}), now is {now}")

    def _only_valid_secret(self, secret: bytes, immutables: Immutables) -> None:
        if hashlock_of(secret) != immutables.hashlock:
            raise SecretMismatchError("Secret does not match the hashlock")

    def _only_source(self, operation: str) -> None:
        if self.role is not Role.SOURCE:
            raise UnsupportedOperation(f"{operation} is only available on source escrows")

    # --- Transfers ---

    def _pay_out(
        self,
        session: Session,
        address: str,
        immutables: Immutables,
        *,
        recipient: str,
        caller: str,
        tx_type: str,
    ) -> None:
        ledger.transfer(
            session,
            address,
            recipient,
            immutables.token,
            immutables.amount,
            tx_type=tx_type,
            escrow_address=address,
        )
        ledger.transfer(
            session,
            address,
            caller,
            NATIVE_ASSET,
            immutables.safety_deposit,
            tx_type="safety_deposit",
            escrow_address=address,
        )

    def _withdraw_to(
        self,
        session: Session,
        address: str,
        secret: bytes,
        recipient: str,
        immutables: Immutables,
        *,
        caller: str,
        now: int,
    ) -> Receipt:
        self._only_valid_secret(secret, immutables)
        self._pay_out(session, address, immutables, recipient=recipient, caller=caller, tx_type="escrow_withdrawal")
        record_event(
            session,
            address,
            "EscrowWithdrawal",
            now,
            hashlock=immutables.hashlock,
            secret=secret,
            data={"role": self.role.value, "recipient": recipient, "caller": caller},
        )
        logger.info("%s escrow %s withdrawn to %s by %s", self.role.value, address, recipient, caller)
        return Receipt(
            escrow_address=address,
            action="withdraw",
            caller=caller,
            recipient=recipient,
            token=immutables.token,
            amount=immutables.amount,
            safety_deposit=immutables.safety_deposit,
            secret=secret,
        )

    def _cancel(self, session: Session, address: str, immutables: Immutables, *, caller: str, now: int) -> Receipt:
        recipient = self.refund_recipient(immutables)
        self._pay_out(session, address, immutables, recipient=recipient, caller=caller, tx_type="escrow_cancel")
        record_event(
            session,
            address,
            "EscrowCancelled",
            now,
            hashlock=immutables.hashlock,
            data={"role": self.role.value, "recipient": recipient, "caller": caller},
        )
        logger.info("%s escrow %s cancelled, funds returned to %s", self.role.value, address, recipient)
        return Receipt(
            escrow_address=address,
            action="cancel",
            caller=caller,
            recipient=recipient,
            token=immutables.token,
            amount=immutables.amount,
            safety_deposit=immutables.safety_deposit,
        )

    # --- Operations ---

    def withdraw(
        self,
        session: Session,
        address: str,
        secret: bytes,
        immutables: Immutables,
        *,
        caller: str,
        now: int,
    ) -> Receipt:
        caller = normalize_address(caller)
        address = self._load(session, address, immutables).address
        self._only_taker(immutables, caller)
        self._only_after(immutables, self.ladder.withdrawal, now)
        self._only_before(immutables, self.ladder.cancellation, now)
        return self._withdraw_to(
            session, address, secret, self.withdrawal_recipient(immutables), immutables, caller=caller, now=now
        )

    def withdraw_to(
        self,
        session: Session,
        address: str,
        secret: bytes,
        target: str,
        immutables: Immutables,
        *,
        caller: str,
        now: int,
    ) -> Receipt:
        self._only_source("withdraw_to")
        caller = normalize_address(caller)
        address = self._load(session, address, immutables).address
        self._only_taker(immutables, caller)
        self._only_after(immutables, self.ladder.withdrawal, now)
        self._only_before(immutables, self.ladder.cancellation, now)
        return self._withdraw_to(session, address, secret, normalize_address(target), immutables, caller=caller, now=now)

    def public_withdraw(
        self,
        session: Session,
        address: str,
        secret: bytes,
        immutables: Immutables,
        *,
        caller: str,
        now: int,
    ) -> Receipt:
        caller = normalize_address(caller)
        address = self._load(session, address, immutables).address
        self._only_access_token_holder(session, caller)
        self._only_after(immutables, self.ladder.public_withdrawal, now)
        self._only_before(immutables, self.ladder.cancellation, now)
        return self._withdraw_to(
            session, address, secret, self.withdrawal_recipient(immutables), immutables, caller=caller, now=now
        )

    def cancel(self, session: Session, address: str, immutables: Immutables, *, caller: str, now: int) -> Receipt:
        caller = normalize_address(caller)
        address = self._load(session, address, immutables).address
        self._only_taker(immutables, caller)
        self._only_after(immutables, self.ladder.cancellation, now)
        return self._cancel(session, address, immutables, caller=caller, now=now)

    def public_cancel(self, session: Session, address: str, immutables: Immutables, *, caller: str, now: int) -> Receipt:
        caller = normalize_address(caller)
        self._only_source("public_cancel")
        address = self._load(session, address, immutables).address
        self._only_access_token_holder(session, caller)
        self._only_after(immutables, self.ladder.public_cancellation, now)
        return self._cancel(session, address, immutables, caller=caller, now=now)

    def rescue(
        self,
        session: Session,
        address: str,
        token: str,
        amount: int,
        immutables: Immutables,
        *,
        caller: str,
        now: int,
    ) -> Receipt:
        """Recover funds sent to the instance by mistake, long after creation."""
        caller = normalize_address(caller)
        address = self._load(session, address, immutables).address
        self._only_taker(immutables, caller)
        start = tl.rescue_start(immutables.timelocks, self.rescue_delay)
        if now < start:
            raise TimingError(f"Rescue opens at {start}, now is {now}")
        token = normalize_address(token)
        ledger.transfer(session, address, caller, token, amount, tx_type="escrow_rescue", escrow_address=address)
        record_event(session, address, "FundsRescued", now, data={"token": token, "amount": amount, "caller": caller})
        logger.info("Rescued %d of %s from %s escrow %s", amount, token, self.role.value, address)
        return Receipt(
            escrow_address=address,
            action="rescue",
            caller=caller,
            recipient=caller,
            token=token,
            amount=amount,
            safety_deposit=0,
        )
