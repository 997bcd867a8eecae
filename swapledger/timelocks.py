"""Packed timelock ladder.

A timelocks value is a single 256-bit word. The low 224 bits hold seven 32-bit
offsets (seconds relative to escrow creation), one per :class:`Stage`, stage
``i`` living at bits ``[32 * i, 32 * i + 32)``. The high 32 bits hold the
absolute creation timestamp, stamped by the factory when the escrow is created.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import IntEnum

from swapledger.errors import InvalidTimelocks


class Stage(IntEnum):
    SRC_WITHDRAWAL = 0
    SRC_PUBLIC_WITHDRAWAL = 1
    SRC_CANCELLATION = 2
    SRC_PUBLIC_CANCELLATION = 3
    DST_WITHDRAWAL = 4
    DST_PUBLIC_WITHDRAWAL = 5
    DST_CANCELLATION = 6


STAGE_BITS = 32
STAGE_COUNT = len(Stage)
CREATION_TIME_OFFSET = 224

_FIELD_MASK = (1 << STAGE_BITS) - 1
_OFFSETS_MASK = (1 << CREATION_TIME_OFFSET) - 1
_WORD_MASK = (1 << 256) - 1

SRC_STAGES = (
    Stage.SRC_WITHDRAWAL,
    Stage.SRC_PUBLIC_WITHDRAWAL,
    Stage.SRC_CANCELLATION,
    Stage.SRC_PUBLIC_CANCELLATION,
)
DST_STAGES = (
    Stage.DST_WITHDRAWAL,
    Stage.DST_PUBLIC_WITHDRAWAL,
    Stage.DST_CANCELLATION,
)


def _check_field(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidTimelocks(f"{name} must be an integer, got {value!r}")
    if value < 0 or value > _FIELD_MASK:
        raise InvalidTimelocks(f"{name} must fit in 32 bits, got {value}")
    return value


def _check_word(word: int) -> int:
    if isinstance(word, bool) or not isinstance(word, int) or word < 0 or word > _WORD_MASK:
        raise InvalidTimelocks(f"timelocks must be a 256-bit unsigned integer, got {word!r}")
    return word


def pack(offsets: Sequence[int]) -> int:
    """Pack seven relative offsets (stage order) into a word with no creation time."""
    if len(offsets) != STAGE_COUNT:
        raise InvalidTimelocks(f"expected {STAGE_COUNT} offsets, got {len(offsets)}")
    word = 0
    for stage in Stage:
        word |= _check_field(stage.name, offsets[stage]) << (stage * STAGE_BITS)
    return word


def unpack(word: int) -> list[int]:
    _check_word(word)
    return [(word >> (stage * STAGE_BITS)) & _FIELD_MASK for stage in Stage]


def creation_time(word: int) -> int:
    return _check_word(word) >> CREATION_TIME_OFFSET


def with_creation_time(word: int, timestamp: int) -> int:
    """Return ``word`` with its high bits replaced by ``timestamp``."""
    _check_word(word)
    _check_field("creation time", timestamp)
    return (word & _OFFSETS_MASK) | (timestamp << CREATION_TIME_OFFSET)


def offset(word: int, stage: Stage) -> int:
    return (_check_word(word) >> (Stage(stage) * STAGE_BITS)) & _FIELD_MASK


def stage_time(word: int, stage: Stage) -> int:
    return creation_time(word) + offset(word, stage)


def rescue_start(word: int, rescue_delay: int) -> int:
    return creation_time(word) + rescue_delay


def validate(word: int) -> None:
    """Reject ladders whose per-side offsets go backwards.

    The destination withdrawal window must also open no later than the source
    one, so the secret is always revealed on the destination leg first.
    """
    offsets = unpack(word)
    for side in (SRC_STAGES, DST_STAGES):
        for earlier, later in zip(side, side[1:]):
            if offsets[earlier] > offsets[later]:
                raise InvalidTimelocks(
                    f"{earlier.name} ({offsets[earlier]}) must not be later than "
                    f"{later.name} ({offsets[later]})"
                )
    if offsets[Stage.DST_WITHDRAWAL] > offsets[Stage.SRC_WITHDRAWAL]:
        raise InvalidTimelocks(
            f"DST_WITHDRAWAL ({offsets[Stage.DST_WITHDRAWAL]}) must not be later than "
            f"SRC_WITHDRAWAL ({offsets[Stage.SRC_WITHDRAWAL]})"
        )


def schedule(word: int) -> dict[str, int]:
    """Absolute time of every stage, keyed by lower-case stage name."""
    return {stage.name.lower(): stage_time(word, stage) for stage in Stage}


def to_hex(word: int) -> str:
    return f"0x{_check_word(word):064x}"


def from_hex(value: str) -> int:
    try:
        return _check_word(int(value, 16))
    except (TypeError, ValueError) as exc:
        raise InvalidTimelocks(f"invalid timelocks value {value!r}") from exc
