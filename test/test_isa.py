"""Tests for instruction decoding, encoding and mnemonics."""

from __future__ import annotations

import pytest
from isa import (
    RULES,
    Instruction,
    OpCode,
    UnknownOpcodeError,
    decode_instr,
    encode_instr,
    mnemonic,
    nibbles,
    program_bytes,
)

DECODE_CASES = [
    (0x0000, Instruction(OpCode.NOP)),
    (0x00E0, Instruction(OpCode.CLS)),
    (0x00EE, Instruction(OpCode.RET)),
    (0x1ABC, Instruction(OpCode.JP, nnn=0xABC)),
    (0x2345, Instruction(OpCode.CALL, nnn=0x345)),
    (0x3A12, Instruction(OpCode.SE_IMM, x=0xA, nn=0x12)),
    (0x4B34, Instruction(OpCode.SNE_IMM, x=0xB, nn=0x34)),
    (0x5120, Instruction(OpCode.SE_REG, x=1, y=2)),
    (0x6A3F, Instruction(OpCode.LD_IMM, x=0xA, nn=0x3F)),
    (0x7C01, Instruction(OpCode.ADD_IMM, x=0xC, nn=0x01)),
    (0x8120, Instruction(OpCode.LD_REG, x=1, y=2)),
    (0x8121, Instruction(OpCode.OR, x=1, y=2)),
    (0x8122, Instruction(OpCode.AND, x=1, y=2)),
    (0x8123, Instruction(OpCode.XOR, x=1, y=2)),
    (0x8124, Instruction(OpCode.ADD_REG, x=1, y=2)),
    (0x8125, Instruction(OpCode.SUB_REG, x=1, y=2)),
    (0x8126, Instruction(OpCode.SHR, x=1, y=2)),
    (0x8127, Instruction(OpCode.SUBN_REG, x=1, y=2)),
    (0x812E, Instruction(OpCode.SHL, x=1, y=2)),
    (0x9DE0, Instruction(OpCode.SNE_REG, x=0xD, y=0xE)),
    (0xA123, Instruction(OpCode.LD_I, nnn=0x123)),
    (0xB400, Instruction(OpCode.JP_V0, nnn=0x400)),
    (0xC7F0, Instruction(OpCode.RND, x=7, nn=0xF0)),
    (0xD125, Instruction(OpCode.DRW, x=1, y=2, n=5)),
    (0xE59E, Instruction(OpCode.SKP, x=5)),
    (0xE5A1, Instruction(OpCode.SKNP, x=5)),
    (0xF207, Instruction(OpCode.LD_VX_DT, x=2)),
    (0xF20A, Instruction(OpCode.LD_KEY, x=2)),
    (0xF215, Instruction(OpCode.LD_DT, x=2)),
    (0xF218, Instruction(OpCode.LD_ST, x=2)),
    (0xF21E, Instruction(OpCode.ADD_I, x=2)),
    (0xF229, Instruction(OpCode.LD_FONT, x=2)),
    (0xF233, Instruction(OpCode.LD_BCD, x=2)),
    (0xF255, Instruction(OpCode.STORE_REGS, x=2)),
    (0xF265, Instruction(OpCode.LOAD_REGS, x=2)),
]


@pytest.mark.parametrize(("word", "expected"), DECODE_CASES, ids=[f"{w:04X}" for w, _ in DECODE_CASES])
def test_decode(word: int, expected: Instruction) -> None:
    """Every opcode pattern decodes with its operands extracted."""
    assert decode_instr(word) == expected


def test_every_opcode_has_a_rule() -> None:
    assert {r.op for r in RULES} == set(OpCode)


def test_rules_ordered_most_specific_first() -> None:
    """No rule may follow one with fewer fixed bits."""
    fixed = [bin(r.mask).count("1") for r in RULES]
    assert fixed == sorted(fixed, reverse=True)


def test_fixed_patterns_not_shadowed() -> None:
    """A word matching a fully fixed pattern only ever matches that rule first."""
    for word, op in ((0x00E0, OpCode.CLS), (0x00EE, OpCode.RET), (0x0000, OpCode.NOP)):
        first = next(r for r in RULES if word & r.mask == r.pattern)
        assert first.op == op


@pytest.mark.parametrize("word", [0x0123, 0x00E1, 0x5121, 0x8128, 0x800F, 0x9001, 0xE000, 0xE19F, 0xF000, 0xF0FF, 0xFFFF])
def test_unknown_words_raise(word: int) -> None:
    """Words outside the instruction table are an explicit error."""
    with pytest.raises(UnknownOpcodeError) as exc:
        decode_instr(word)
    assert exc.value.word == word
    assert f"0x{word:04X}" in str(exc.value)


def test_encode_is_inverse_of_decode() -> None:
    for word, instr in DECODE_CASES:
        assert encode_instr(*instr) == word


def test_nibbles() -> None:
    assert nibbles(0xD12F) == (0xD, 0x1, 0x2, 0xF)


def test_program_bytes_big_endian() -> None:
    assert program_bytes([0x00E0, 0x1ABC]) == b"\x00\xe0\x1a\xbc"


@pytest.mark.parametrize(
    ("instr", "text"),
    [
        (Instruction(OpCode.CLS), "CLS"),
        (Instruction(OpCode.JP, nnn=0xABC), "JP 0xABC"),
        (Instruction(OpCode.LD_IMM, x=0xA, nn=0x3F), "LD_IMM VA, 0x3F"),
        (Instruction(OpCode.ADD_REG, x=1, y=0xF), "ADD_REG V1, VF"),
        (Instruction(OpCode.DRW, x=1, y=2, n=5), "DRW V1, V2, 5"),
        (Instruction(OpCode.LD_BCD, x=3), "LD_BCD V3"),
    ],
)
def test_mnemonic(instr: Instruction, text: str) -> None:
    assert mnemonic(instr) == text
