from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from swapledger import ledger
from swapledger import timelocks as tl
from swapledger.addressing import Role, address_of
from swapledger.errors import CrossLegDeadlineViolation, EscrowAlreadyExists, UnderfundedCreation
from swapledger.escrow import Escrow, record_event
from swapledger.immutables import NATIVE_ASSET, Immutables, normalize_address
from swapledger.models import EscrowRecord
from swapledger.timelocks import Stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DstImmutablesComplement:
    """Destination-leg terms announced when the source escrow is created."""

    maker: str
    amount: int
    token: str
    safety_deposit: int
    chain_id: int


def _require_amount(immutables: Immutables) -> None:
    if immutables.amount == 0:
        raise UnderfundedCreation("Escrow amount must be positive")


class EscrowFactory:
    """Creates escrow instances at addresses derived from their immutables."""

    def __init__(
        self,
        address: str,
        *,
        access_token: str,
        rescue_delay_src: int,
        rescue_delay_dst: int,
        chain_id: int = 1,
    ) -> None:
        self.address = normalize_address(address)
        self.chain_id = chain_id
        self._escrows = {
            Role.SOURCE: Escrow(
                Role.SOURCE,
                factory_address=self.address,
                access_token=access_token,
                rescue_delay=rescue_delay_src,
            ),
            Role.DESTINATION: Escrow(
                Role.DESTINATION,
                factory_address=self.address,
                access_token=access_token,
                rescue_delay=rescue_delay_dst,
            ),
        }

    def escrow(self, role: Role) -> Escrow:
        return self._escrows[Role(role)]

    def address_of(self, immutables: Immutables, role: Role) -> str:
        return address_of(self.address, immutables, Role(role))

    def _register(self, session: Session, address: str, immutables: Immutables, role: Role) -> EscrowRecord:
        record = EscrowRecord(
            address=address,
            role=role.value,
            order_hash="0x" + immutables.order_hash.hex(),
            hashlock="0x" + immutables.hashlock.hex(),
            maker=immutables.maker,
            taker=immutables.taker,
            token=immutables.token,
            amount=immutables.amount,
            safety_deposit=immutables.safety_deposit,
            timelocks=tl.to_hex(immutables.timelocks),
            created_at=immutables.created_at,
        )
        session.add(record)
        session.flush()
        return record

    def _ensure_vacant(self, session: Session, address: str) -> None:
        if session.get(EscrowRecord, address) is not None:
            raise EscrowAlreadyExists(f"An escrow already exists at {address}")

    def create_destination(
        self,
        session: Session,
        immutables: Immutables,
        src_cancellation_timestamp: int,
        *,
        caller: str,
        value: int,
        now: int,
    ) -> tuple[EscrowRecord, Immutables]:
        """Create and fund a destination escrow in one step.

        ``value`` is the native amount attached by the caller. It must equal the
        safety deposit, plus the swap amount when the swapped asset is native.
        """
        caller = normalize_address(caller)
        _require_amount(immutables)
        tl.validate(immutables.timelocks)

        native_amount = immutables.safety_deposit
        if immutables.is_native:
            native_amount += immutables.amount
        if value != native_amount:
            raise UnderfundedCreation(f"Attached value must be exactly {native_amount}, got {value}")

        immutables = immutables.with_timelocks(tl.with_creation_time(immutables.timelocks, now))
        dst_cancellation = tl.stage_time(immutables.timelocks, Stage.DST_CANCELLATION)
        if dst_cancellation > src_cancellation_timestamp:
            raise CrossLegDeadlineViolation(
                f"Destination cancellation at {dst_cancellation} is later than "
                f"source cancellation at {src_cancellation_timestamp}"
            )

        address = self.address_of(immutables, Role.DESTINATION)
        self._ensure_vacant(session, address)

        ledger.transfer(session, caller, address, NATIVE_ASSET, value, tx_type="escrow_funding", escrow_address=address)
        if not immutables.is_native:
            ledger.transfer(
                session,
                caller,
                address,
                immutables.token,
                immutables.amount,
                tx_type="escrow_funding",
                escrow_address=address,
            )

        record = self._register(session, address, immutables, Role.DESTINATION)
        record_event(
            session,
            address,
            "DstEscrowCreated",
            now,
            hashlock=immutables.hashlock,
            data={"taker": immutables.taker, "immutables": immutables.to_dict()},
        )
        logger.info("Destination escrow %s created by %s", address, caller)
        return record, immutables

    def create_source(
        self,
        session: Session,
        immutables: Immutables,
        complement: DstImmutablesComplement,
        *,
        now: int,
        fund: Callable[[str], None],
    ) -> tuple[EscrowRecord, Immutables]:
        """Create a source escrow from inside an order settlement.

        ``fund`` receives the new escrow address and must deliver the maker's
        asset and the safety deposit there before this returns; anything short
        of full funding raises and aborts the whole settlement.
        """
        _require_amount(immutables)
        tl.validate(immutables.timelocks)
        immutables = immutables.with_timelocks(tl.with_creation_time(immutables.timelocks, now))
        address = self.address_of(immutables, Role.SOURCE)
        self._ensure_vacant(session, address)

        fund(address)

        native_needed = immutables.safety_deposit
        if immutables.is_native:
            native_needed += immutables.amount
        elif ledger.balance_of(session, address, immutables.token) < immutables.amount:
            raise UnderfundedCreation(f"Escrow {address} did not receive {immutables.amount} of {immutables.token}")
        if ledger.balance_of(session, address, NATIVE_ASSET) < native_needed:
            raise UnderfundedCreation(f"Escrow {address} holds less than {native_needed} native")

        record = self._register(session, address, immutables, Role.SOURCE)
        record_event(
            session,
            address,
            "SrcEscrowCreated",
            now,
            hashlock=immutables.hashlock,
            data={"immutables": immutables.to_dict(), "complement": asdict(complement)},
        )
        logger.info("Source escrow %s created for order 0x%s", address, immutables.order_hash.hex())
        return record, immutables
