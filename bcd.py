"""Binary to decimal digit conversion (double-dabble)."""

from __future__ import annotations

# accumulator layout: value in bits 0..7, ones 8..11, tens 12..15, hundreds 16..19
_VALUE_BITS = 8
_SLOT_SHIFTS = (8, 12, 16)


def double_dabble(value: int) -> tuple[int, int, int]:
    """Split an 8-bit value into its decimal digits (hundreds, tens, ones).

    Shift-and-correct: before each of the 8 left shifts every 4-bit digit
    slot holding 5 or more gets 3 added, so it carries correctly into the
    next decimal slot.
    """
    acc = int(value) & 0xFF
    for _ in range(_VALUE_BITS):
        for shift in _SLOT_SHIFTS:
            if (acc >> shift) & 0xF >= 5:
                acc += 3 << shift
        acc <<= 1
    hundreds = (acc >> 16) & 0xF
    tens = (acc >> 12) & 0xF
    ones = (acc >> 8) & 0xF
    return hundreds, tens, ones
