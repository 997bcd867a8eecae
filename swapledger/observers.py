from __future__ import annotations

import logging
import time

from sqlalchemy import select
from sqlalchemy.orm import Session

from swapledger import timelocks as tl
from swapledger.addressing import Role
from swapledger.escrow import record_event
from swapledger.models import EscrowEvent, EscrowRecord
from swapledger.timelocks import Stage

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = ("EscrowWithdrawal", "EscrowCancelled")
WINDOW_OPENED_EVENT = "CancellationWindowOpened"

_CANCELLATION_STAGE = {
    Role.SOURCE.value: Stage.SRC_CANCELLATION,
    Role.DESTINATION.value: Stage.DST_CANCELLATION,
}


def _now() -> int:
    return int(time.time())


class CancellationObserver:
    """Watches escrow deadlines and announces instances that became cancellable.

    It never moves funds; cancelling stays with the taker or an access-token
    holder.
    """

    def open_escrows(self, session: Session) -> list[EscrowRecord]:
        """Escrows with no terminal action and no cancellation notice yet."""
        settled = select(EscrowEvent.escrow_address).where(
            EscrowEvent.event.in_(TERMINAL_EVENTS + (WINDOW_OPENED_EVENT,))
        )
        return list(
            session.execute(
                select(EscrowRecord)
                .where(EscrowRecord.address.not_in(settled))
                .order_by(EscrowRecord.created_at)
            )
            .scalars()
            .all()
        )

    def mark_cancellable(self, session: Session) -> list[EscrowRecord]:
        now = _now()
        opened: list[EscrowRecord] = []
        for record in self.open_escrows(session):
            stage = _CANCELLATION_STAGE[record.role]
            starts_at = tl.stage_time(tl.from_hex(record.timelocks), stage)
            if now < starts_at:
                continue
            record_event(
                session,
                record.address,
                WINDOW_OPENED_EVENT,
                now,
                data={"stage": stage.name.lower(), "starts_at": starts_at},
            )
            opened.append(record)
        if opened:
            session.flush()
            logger.info("%d escrow(s) entered their cancellation window", len(opened))
        return opened

    def sweep(self, session: Session) -> dict:
        """Run all deadline checks in a single pass."""
        return {"cancellable": self.mark_cancellable(session)}
