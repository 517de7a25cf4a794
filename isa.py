"""ISA: instruction encodings, decoder and helpers.

Every instruction is one 16-bit big-endian word. The word is split into four
nibbles and matched against an ordered list of (mask, pattern) rules; rules
with more fixed bits are always tried first so a fully fixed pattern such as
00E0 can never be shadowed by a wildcard one.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import NamedTuple

INSTR_SIZE = 2  # bytes per instruction word


class OpCode(IntEnum):
    """Keeps opcodes from all operations."""

    NOP = 0  # 0000
    CLS = 1  # 00E0 clear screen
    RET = 2  # 00EE
    JP = 3  # 1NNN
    CALL = 4  # 2NNN
    SE_IMM = 5  # 3XNN  skip if VX == NN
    SNE_IMM = 6  # 4XNN  skip if VX != NN
    SE_REG = 7  # 5XY0  skip if VX == VY
    LD_IMM = 8  # 6XNN  VX = NN
    ADD_IMM = 9  # 7XNN  VX += NN, VF untouched
    LD_REG = 10  # 8XY0  VX = VY
    OR = 11  # 8XY1
    AND = 12  # 8XY2
    XOR = 13  # 8XY3
    ADD_REG = 14  # 8XY4  VF = carry
    SUB_REG = 15  # 8XY5  VF = not borrow
    SHR = 16  # 8XY6  VF = lsb before shift
    SUBN_REG = 17  # 8XY7  VX = VY - VX, VF = not borrow
    SHL = 18  # 8XYE  VF = msb before shift
    SNE_REG = 19  # 9XY0  skip if VX != VY
    LD_I = 20  # ANNN
    JP_V0 = 21  # BNNN  PC = V0 + NNN
    RND = 22  # CXNN
    DRW = 23  # DXYN
    SKP = 24  # EX9E  skip if key VX pressed
    SKNP = 25  # EXA1  skip if key VX not pressed
    LD_VX_DT = 26  # FX07
    LD_KEY = 27  # FX0A  wait for key, blocking
    LD_DT = 28  # FX15
    LD_ST = 29  # FX18
    ADD_I = 30  # FX1E
    LD_FONT = 31  # FX29
    LD_BCD = 32  # FX33
    STORE_REGS = 33  # FX55
    LOAD_REGS = 34  # FX65


class Operands(Enum):
    """Operand encodings carried by an instruction word."""

    NONE = "none"
    ADDR = "nnn"  # low 12 bits
    X = "x"  # second nibble
    XNN = "x,nn"  # second nibble + low byte
    XY = "x,y"  # second and third nibble
    XYN = "x,y,n"  # all three low nibbles


class Instruction(NamedTuple):
    """Decoded instruction: opcode plus its operand fields (unused fields are 0)."""

    op: OpCode
    x: int = 0
    y: int = 0
    n: int = 0
    nn: int = 0
    nnn: int = 0


class Rule(NamedTuple):
    mask: int
    pattern: int
    op: OpCode
    operands: Operands


class UnknownOpcodeError(ValueError):
    """Raised when an instruction word matches no decode rule."""

    def __init__(self, word: int) -> None:
        self.word = word
        super().__init__(f"Unknown opcode 0x{word:04X}")


_RULE_TABLE: list[Rule] = [
    Rule(0xFFFF, 0x0000, OpCode.NOP, Operands.NONE),
    Rule(0xFFFF, 0x00E0, OpCode.CLS, Operands.NONE),
    Rule(0xFFFF, 0x00EE, OpCode.RET, Operands.NONE),
    Rule(0xF000, 0x1000, OpCode.JP, Operands.ADDR),
    Rule(0xF000, 0x2000, OpCode.CALL, Operands.ADDR),
    Rule(0xF000, 0x3000, OpCode.SE_IMM, Operands.XNN),
    Rule(0xF000, 0x4000, OpCode.SNE_IMM, Operands.XNN),
    Rule(0xF00F, 0x5000, OpCode.SE_REG, Operands.XY),
    Rule(0xF000, 0x6000, OpCode.LD_IMM, Operands.XNN),
    Rule(0xF000, 0x7000, OpCode.ADD_IMM, Operands.XNN),
    Rule(0xF00F, 0x8000, OpCode.LD_REG, Operands.XY),
    Rule(0xF00F, 0x8001, OpCode.OR, Operands.XY),
    Rule(0xF00F, 0x8002, OpCode.AND, Operands.XY),
    Rule(0xF00F, 0x8003, OpCode.XOR, Operands.XY),
    Rule(0xF00F, 0x8004, OpCode.ADD_REG, Operands.XY),
    Rule(0xF00F, 0x8005, OpCode.SUB_REG, Operands.XY),
    Rule(0xF00F, 0x8006, OpCode.SHR, Operands.XY),
    Rule(0xF00F, 0x8007, OpCode.SUBN_REG, Operands.XY),
    Rule(0xF00F, 0x800E, OpCode.SHL, Operands.XY),
    Rule(0xF00F, 0x9000, OpCode.SNE_REG, Operands.XY),
    Rule(0xF000, 0xA000, OpCode.LD_I, Operands.ADDR),
    Rule(0xF000, 0xB000, OpCode.JP_V0, Operands.ADDR),
    Rule(0xF000, 0xC000, OpCode.RND, Operands.XNN),
    Rule(0xF000, 0xD000, OpCode.DRW, Operands.XYN),
    Rule(0xF0FF, 0xE09E, OpCode.SKP, Operands.X),
    Rule(0xF0FF, 0xE0A1, OpCode.SKNP, Operands.X),
    Rule(0xF0FF, 0xF007, OpCode.LD_VX_DT, Operands.X),
    Rule(0xF0FF, 0xF00A, OpCode.LD_KEY, Operands.X),
    Rule(0xF0FF, 0xF015, OpCode.LD_DT, Operands.X),
    Rule(0xF0FF, 0xF018, OpCode.LD_ST, Operands.X),
    Rule(0xF0FF, 0xF01E, OpCode.ADD_I, Operands.X),
    Rule(0xF0FF, 0xF029, OpCode.LD_FONT, Operands.X),
    Rule(0xF0FF, 0xF033, OpCode.LD_BCD, Operands.X),
    Rule(0xF0FF, 0xF055, OpCode.STORE_REGS, Operands.X),
    Rule(0xF0FF, 0xF065, OpCode.LOAD_REGS, Operands.X),
]

# most fixed bits first; sorted() is stable so table order breaks ties
RULES: list[Rule] = sorted(_RULE_TABLE, key=lambda r: -bin(r.mask).count("1"))

_RULE_BY_OP: dict[OpCode, Rule] = {r.op: r for r in RULES}


def nibbles(word: int) -> tuple[int, int, int, int]:
    """Split a 16-bit word into four nibbles, most significant first."""
    return (word >> 12) & 0xF, (word >> 8) & 0xF, (word >> 4) & 0xF, word & 0xF


def decode_instr(word: int) -> Instruction:
    """Decode a 16-bit instruction word.

    Raises UnknownOpcodeError if no rule matches.
    """
    word &= 0xFFFF
    for rule in RULES:
        if word & rule.mask == rule.pattern:
            _, x, y, n = nibbles(word)
            if rule.operands is Operands.ADDR:
                return Instruction(rule.op, nnn=word & 0x0FFF)
            if rule.operands is Operands.XNN:
                return Instruction(rule.op, x=x, nn=word & 0x00FF)
            if rule.operands is Operands.XY:
                return Instruction(rule.op, x=x, y=y)
            if rule.operands is Operands.XYN:
                return Instruction(rule.op, x=x, y=y, n=n)
            if rule.operands is Operands.X:
                return Instruction(rule.op, x=x)
            return Instruction(rule.op)
    raise UnknownOpcodeError(word)


def encode_instr(op: OpCode, x: int = 0, y: int = 0, n: int = 0, nn: int = 0, nnn: int = 0) -> int:
    """Encode an instruction back into its 16-bit word.

    Only the operand fields the opcode carries are used; others are ignored.
    """
    rule = _RULE_BY_OP[op]
    word = rule.pattern
    if rule.operands is Operands.ADDR:
        word |= nnn & 0x0FFF
    elif rule.operands is Operands.XNN:
        word |= ((x & 0xF) << 8) | (nn & 0xFF)
    elif rule.operands is Operands.XY:
        word |= ((x & 0xF) << 8) | ((y & 0xF) << 4)
    elif rule.operands is Operands.XYN:
        word |= ((x & 0xF) << 8) | ((y & 0xF) << 4) | (n & 0xF)
    elif rule.operands is Operands.X:
        word |= (x & 0xF) << 8
    return word


def program_bytes(words: list[int]) -> bytes:
    """Pack instruction words into a big-endian program image."""
    return b"".join(int(w & 0xFFFF).to_bytes(INSTR_SIZE, "big") for w in words)


def mnemonic(instr: Instruction) -> str:
    """Get operation mnemonic."""
    operands = _RULE_BY_OP[instr.op].operands
    name = instr.op.name
    if operands is Operands.ADDR:
        return f"{name} 0x{instr.nnn:03X}"
    if operands is Operands.XNN:
        return f"{name} V{instr.x:X}, 0x{instr.nn:02X}"
    if operands is Operands.XY:
        return f"{name} V{instr.x:X}, V{instr.y:X}"
    if operands is Operands.XYN:
        return f"{name} V{instr.x:X}, V{instr.y:X}, {instr.n}"
    if operands is Operands.X:
        return f"{name} V{instr.x:X}"
    return name
