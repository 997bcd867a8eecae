from __future__ import annotations

import dataclasses

import pytest

from swapledger import ledger
from swapledger import timelocks as tl
from swapledger.addressing import Role
from swapledger.errors import (
    AuthorizationError,
    ImmutablesMismatchError,
    InsufficientBalance,
    SecretMismatchError,
    TimingError,
    UnsupportedOperation,
)
from swapledger.escrow import Phase
from swapledger.factory import DstImmutablesComplement
from swapledger.immutables import NATIVE_ASSET, Immutables, hashlock_of
from swapledger.models import EscrowEvent

NOW = 1_700_000_000
TOKEN_A = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20
SECRET = b"\x5a" * 32
HASHLOCK = hashlock_of(SECRET)
ORDER_HASH = b"\x0d" * 32
WORD = tl.pack([300, 600, 1800, 3600, 300, 600, 900])


def _create_src(h, maker, resolver, *, amount=1000, deposit=10):
    h.mint(maker.address, TOKEN_A, amount)
    h.mint(resolver.address, NATIVE_ASSET, deposit)
    imm = Immutables(
        order_hash=ORDER_HASH,
        hashlock=HASHLOCK,
        maker=maker.address,
        taker=resolver.address,
        token=TOKEN_A,
        amount=amount,
        safety_deposit=deposit,
        timelocks=WORD,
    )
    complement = DstImmutablesComplement(maker=maker.address, amount=500, token=TOKEN_B, safety_deposit=5, chain_id=56)
    with h.tx() as session:
        def fund(address: str) -> None:
            ledger.transfer(session, maker.address, address, TOKEN_A, amount, tx_type="order_fill")
            ledger.transfer(session, resolver.address, address, NATIVE_ASSET, deposit, tx_type="escrow_funding")

        record, stamped = h.factory.create_source(session, imm, complement, now=NOW, fund=fund)
    return record.address, stamped


def _create_dst(h, maker, resolver, *, amount=500, deposit=5):
    h.mint(resolver.address, TOKEN_B, amount)
    h.mint(resolver.address, NATIVE_ASSET, deposit)
    imm = Immutables(
        order_hash=ORDER_HASH,
        hashlock=HASHLOCK,
        maker=maker.address,
        taker=resolver.address,
        token=TOKEN_B,
        amount=amount,
        safety_deposit=deposit,
        timelocks=WORD,
    )
    with h.tx() as session:
        record, stamped = h.factory.create_destination(
            session, imm, NOW + 1800, caller=resolver.address, value=deposit, now=NOW
        )
    return record.address, stamped


def test_taker_withdraws_source_with_matching_secret(src, maker, resolver):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with src.tx() as session:
        receipt = escrow.withdraw(session, address, SECRET, imm, caller=resolver.address, now=NOW + 300)

    assert receipt.recipient == resolver.address
    assert receipt.secret == SECRET
    assert src.balance(resolver.address, TOKEN_A) == 1000
    assert src.balance(resolver.address, NATIVE_ASSET) == 10
    assert src.balance(address, TOKEN_A) == 0
    assert src.balance(address, NATIVE_ASSET) == 0

    with src.tx() as session:
        events = session.query(EscrowEvent).filter_by(escrow_address=address, event="EscrowWithdrawal").all()
    assert len(events) == 1
    assert events[0].secret == "0x" + SECRET.hex()


def test_wrong_secret_is_rejected_without_moving_funds(src, maker, resolver):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with pytest.raises(SecretMismatchError):
        with src.tx() as session:
            escrow.withdraw(session, address, b"\x00" * 32, imm, caller=resolver.address, now=NOW + 300)

    assert src.balance(address, TOKEN_A) == 1000
    assert src.balance(address, NATIVE_ASSET) == 10
    assert src.balance(resolver.address, TOKEN_A) == 0


def test_withdraw_is_gated_by_the_withdrawal_window(src, maker, resolver):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    for now in (NOW, NOW + 299, NOW + 1800, NOW + 5000):
        with pytest.raises(TimingError):
            with src.tx() as session:
                escrow.withdraw(session, address, SECRET, imm, caller=resolver.address, now=now)
    assert src.balance(address, TOKEN_A) == 1000


def test_only_the_taker_may_withdraw_or_cancel(src, maker, resolver, stranger):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with pytest.raises(AuthorizationError):
        with src.tx() as session:
            escrow.withdraw(session, address, SECRET, imm, caller=maker.address, now=NOW + 300)
    with pytest.raises(AuthorizationError):
        with src.tx() as session:
            escrow.cancel(session, address, imm, caller=stranger.address, now=NOW + 1800)


def test_terminal_action_cannot_be_replayed(src, maker, resolver):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with src.tx() as session:
        escrow.withdraw(session, address, SECRET, imm, caller=resolver.address, now=NOW + 300)

    with pytest.raises(InsufficientBalance):
        with src.tx() as session:
            escrow.withdraw(session, address, SECRET, imm, caller=resolver.address, now=NOW + 400)
    with pytest.raises(InsufficientBalance):
        with src.tx() as session:
            escrow.cancel(session, address, imm, caller=resolver.address, now=NOW + 1800)

    assert src.balance(resolver.address, TOKEN_A) == 1000
    assert src.balance(maker.address, TOKEN_A) == 0


def test_withdraw_to_sends_the_asset_to_a_chosen_target(src, maker, resolver, stranger):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with src.tx() as session:
        receipt = escrow.withdraw_to(
            session, address, SECRET, stranger.address, imm, caller=resolver.address, now=NOW + 300
        )
    assert receipt.recipient == stranger.address
    assert src.balance(stranger.address, TOKEN_A) == 1000
    assert src.balance(resolver.address, NATIVE_ASSET) == 10


def test_public_withdraw_needs_the_access_token(src, maker, resolver, stranger):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with pytest.raises(AuthorizationError):
        with src.tx() as session:
            escrow.public_withdraw(session, address, SECRET, imm, caller=stranger.address, now=NOW + 600)

    src.mint(stranger.address, src.access_token, 1)
    with pytest.raises(TimingError):
        with src.tx() as session:
            escrow.public_withdraw(session, address, SECRET, imm, caller=stranger.address, now=NOW + 599)

    with src.tx() as session:
        escrow.public_withdraw(session, address, SECRET, imm, caller=stranger.address, now=NOW + 600)
    assert src.balance(resolver.address, TOKEN_A) == 1000
    assert src.balance(stranger.address, NATIVE_ASSET) == 10


def test_cancel_returns_the_asset_to_its_depositor(src, maker, resolver):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    with pytest.raises(TimingError):
        with src.tx() as session:
            escrow.cancel(session, address, imm, caller=resolver.address, now=NOW + 1799)

    with src.tx() as session:
        receipt = escrow.cancel(session, address, imm, caller=resolver.address, now=NOW + 1800)
    assert receipt.recipient == maker.address
    assert src.balance(maker.address, TOKEN_A) == 1000
    assert src.balance(resolver.address, NATIVE_ASSET) == 10

    with pytest.raises(SecretMismatchError):
        with src.tx() as session:
            escrow.withdraw(session, address, b"\x01" * 32, imm, caller=resolver.address, now=NOW + 300)


def test_public_cancel_is_open_to_token_holders_late(src, maker, resolver, stranger):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    src.mint(stranger.address, src.access_token, 1)
    with pytest.raises(TimingError):
        with src.tx() as session:
            escrow.public_cancel(session, address, imm, caller=stranger.address, now=NOW + 3599)

    with src.tx() as session:
        escrow.public_cancel(session, address, imm, caller=stranger.address, now=NOW + 3600)
    assert src.balance(maker.address, TOKEN_A) == 1000
    assert src.balance(stranger.address, NATIVE_ASSET) == 10


def test_tampered_immutables_do_not_resolve_to_the_escrow(src, maker, resolver):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    tampered = dataclasses.replace(imm, amount=999)
    with pytest.raises(ImmutablesMismatchError):
        with src.tx() as session:
            escrow.withdraw(session, address, SECRET, tampered, caller=resolver.address, now=NOW + 300)

    unstamped = imm.with_timelocks(WORD)
    with pytest.raises(ImmutablesMismatchError):
        with src.tx() as session:
            escrow.withdraw(session, address, SECRET, unstamped, caller=resolver.address, now=NOW + 300)

    wrong_role = src.factory.escrow(Role.DESTINATION)
    with pytest.raises(ImmutablesMismatchError):
        with src.tx() as session:
            wrong_role.withdraw(session, address, SECRET, imm, caller=resolver.address, now=NOW + 300)
    assert src.balance(address, TOKEN_A) == 1000


def test_destination_pays_maker_on_withdraw(dst, maker, resolver):
    address, imm = _create_dst(dst, maker, resolver)
    escrow = dst.factory.escrow(Role.DESTINATION)
    with dst.tx() as session:
        receipt = escrow.withdraw(session, address, SECRET, imm, caller=resolver.address, now=NOW + 300)
    assert receipt.recipient == maker.address
    assert dst.balance(maker.address, TOKEN_B) == 500
    assert dst.balance(resolver.address, NATIVE_ASSET) == 5


def test_destination_cancel_refunds_taker(dst, maker, resolver):
    address, imm = _create_dst(dst, maker, resolver)
    escrow = dst.factory.escrow(Role.DESTINATION)
    with pytest.raises(TimingError):
        with dst.tx() as session:
            escrow.cancel(session, address, imm, caller=resolver.address, now=NOW + 899)
    with dst.tx() as session:
        escrow.cancel(session, address, imm, caller=resolver.address, now=NOW + 900)
    assert dst.balance(resolver.address, TOKEN_B) == 500
    assert dst.balance(resolver.address, NATIVE_ASSET) == 5


def test_destination_has_no_public_cancel_or_withdraw_to(dst, maker, resolver, stranger):
    address, imm = _create_dst(dst, maker, resolver)
    escrow = dst.factory.escrow(Role.DESTINATION)
    with pytest.raises(UnsupportedOperation):
        with dst.tx() as session:
            escrow.public_cancel(session, address, imm, caller=stranger.address, now=NOW + 5000)
    with pytest.raises(UnsupportedOperation):
        with dst.tx() as session:
            escrow.withdraw_to(session, address, SECRET, stranger.address, imm, caller=resolver.address, now=NOW + 300)


def test_rescue_opens_after_the_delay(src, maker, resolver, stranger):
    address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    src.mint(stranger.address, TOKEN_B, 7)
    with src.tx() as session:
        ledger.transfer(session, stranger.address, address, TOKEN_B, 7, tx_type="transfer")

    rescue_at = tl.rescue_start(imm.timelocks, escrow.rescue_delay)
    with pytest.raises(TimingError):
        with src.tx() as session:
            escrow.rescue(session, address, TOKEN_B, 7, imm, caller=resolver.address, now=rescue_at - 1)
    with pytest.raises(AuthorizationError):
        with src.tx() as session:
            escrow.rescue(session, address, TOKEN_B, 7, imm, caller=stranger.address, now=rescue_at)

    with src.tx() as session:
        receipt = escrow.rescue(session, address, TOKEN_B, 7, imm, caller=resolver.address, now=rescue_at)
    assert receipt.action == "rescue"
    assert src.balance(resolver.address, TOKEN_B) == 7
    assert src.balance(address, TOKEN_A) == 1000


def test_phase_follows_the_ladder(src, dst, maker, resolver):
    _address, imm = _create_src(src, maker, resolver)
    escrow = src.factory.escrow(Role.SOURCE)
    assert escrow.phase(imm, NOW) is Phase.FINALITY
    assert escrow.phase(imm, NOW + 300) is Phase.PRIVATE_WITHDRAWAL
    assert escrow.phase(imm, NOW + 600) is Phase.PUBLIC_WITHDRAWAL
    assert escrow.phase(imm, NOW + 1800) is Phase.CANCELLATION
    assert escrow.phase(imm, NOW + 3600) is Phase.PUBLIC_CANCELLATION

    _dst_address, dst_imm = _create_dst(dst, maker, resolver)
    dst_escrow = dst.factory.escrow(Role.DESTINATION)
    assert dst_escrow.phase(dst_imm, NOW + 10_000) is Phase.CANCELLATION


def test_amounts_beyond_64_bits_are_held_exactly(src, dst, maker, resolver):
    big, deposit = 10**21, 10**18 + 7
    address, imm = _create_src(src, maker, resolver, amount=big, deposit=deposit)
    assert src.balance(address, TOKEN_A) == big

    with src.tx() as session:
        src.factory.escrow(Role.SOURCE).withdraw(session, address, SECRET, imm, caller=resolver.address, now=NOW + 300)
    assert src.balance(resolver.address, TOKEN_A) == big
    assert src.balance(resolver.address, NATIVE_ASSET) == deposit

    dst_address, dst_imm = _create_dst(dst, maker, resolver, amount=big + 1, deposit=deposit)
    with dst.tx() as session:
        dst.factory.escrow(Role.DESTINATION).cancel(
            session, dst_address, dst_imm, caller=resolver.address, now=NOW + 900
        )
    assert dst.balance(resolver.address, TOKEN_B) == big + 1
    assert dst.balance(dst_address, TOKEN_B) == 0
    with dst.tx() as session:
        assert ledger.holdings(session, resolver.address) == {dst_imm.token: big + 1, NATIVE_ASSET: deposit}
