"""ISA: CHIP-8 instruction encodings and helpers."""

from __future__ import annotations

from enum import IntEnum
from typing import NamedTuple


class Chip8Error(Exception):
    """Base class for interpreter errors."""


class UnknownInstruction(Chip8Error):
    """Raised by the decoder for a word outside the instruction set."""

    def __init__(self, word: int) -> None:
        super().__init__(f"Unknown instruction: 0x{word:04X}")
        self.word = word


class OpCode(IntEnum):
    """Keeps opcodes from all operations."""

    CLS = 0  # 00E0: clear screen
    RET = 1  # 00EE: return from subroutine

    JP = 10  # 1NNN: PC = NNN
    CALL = 11  # 2NNN: call subroutine at NNN
    JP_V0 = 12  # BNNN: PC = V0 + NNN

    SE_IMM = 20  # 3XNN: skip if VX == NN
    SNE_IMM = 21  # 4XNN: skip if VX != NN
    SE_REG = 22  # 5XY0: skip if VX == VY
    SNE_REG = 23  # 9XY0: skip if VX != VY

    LD_IMM = 30  # 6XNN: VX = NN
    ADD_IMM = 31  # 7XNN: VX += NN (no flag)

    LD_REG = 40  # 8XY0: VX = VY
    OR = 41  # 8XY1
    AND = 42  # 8XY2
    XOR = 43  # 8XY3
    ADD_REG = 44  # 8XY4: VF = carry
    SUB = 45  # 8XY5: VF = not borrow
    SHR = 46  # 8XY6: VF = lost bit
    SUBN = 47  # 8XY7: VX = VY - VX, VF = not borrow
    SHL = 48  # 8XYE: VF = lost bit

    LD_I = 50  # ANNN: I = NNN
    RND = 51  # CXNN: VX = rand & NN
    DRW = 52  # DXYN: draw sprite

    SKP = 60  # EX9E: skip if key VX pressed
    SKNP = 61  # EXA1: skip if key VX not pressed

    LD_DT = 70  # FX07: VX = delay timer
    LD_KEY = 71  # FX0A: wait for key
    SET_DT = 72  # FX15: delay timer = VX
    SET_ST = 73  # FX18: sound timer = VX
    ADD_I = 74  # FX1E: I += VX, VF = overflow past 0xFFF
    LD_FONT = 75  # FX29: I = glyph address of VX
    BCD = 76  # FX33
    STORE = 77  # FX55: memory[I..] = V0..VX
    LOAD = 78  # FX65: V0..VX = memory[I..]


# Every instruction is one 16-bit big-endian word.
INSTR_SIZE = 2


class Instr(NamedTuple):
    """Decoded instruction with all positional fields pre-extracted."""

    opcode: OpCode
    x: int  # bits 8-11
    y: int  # bits 4-7
    n: int  # low 4 bits
    nn: int  # low byte
    nnn: int  # low 12 bits
    word: int


# secondary selectors: (family nibble, low nibble or low byte) -> opcode
_ALU_OPS: dict[int, OpCode] = {
    0x0: OpCode.LD_REG,
    0x1: OpCode.OR,
    0x2: OpCode.AND,
    0x3: OpCode.XOR,
    0x4: OpCode.ADD_REG,
    0x5: OpCode.SUB,
    0x6: OpCode.SHR,
    0x7: OpCode.SUBN,
    0xE: OpCode.SHL,
}

_KEY_OPS: dict[int, OpCode] = {
    0x9E: OpCode.SKP,
    0xA1: OpCode.SKNP,
}

_MISC_OPS: dict[int, OpCode] = {
    0x07: OpCode.LD_DT,
    0x0A: OpCode.LD_KEY,
    0x15: OpCode.SET_DT,
    0x18: OpCode.SET_ST,
    0x1E: OpCode.ADD_I,
    0x29: OpCode.LD_FONT,
    0x33: OpCode.BCD,
    0x55: OpCode.STORE,
    0x65: OpCode.LOAD,
}

# families selected by the top nibble alone
_FAMILY_OPS: dict[int, OpCode] = {
    0x1: OpCode.JP,
    0x2: OpCode.CALL,
    0x3: OpCode.SE_IMM,
    0x4: OpCode.SNE_IMM,
    0x5: OpCode.SE_REG,
    0x6: OpCode.LD_IMM,
    0x7: OpCode.ADD_IMM,
    0x9: OpCode.SNE_REG,
    0xA: OpCode.LD_I,
    0xB: OpCode.JP_V0,
    0xC: OpCode.RND,
    0xD: OpCode.DRW,
}


def _select(word: int) -> OpCode:
    family = word >> 12
    if family in _FAMILY_OPS:
        return _FAMILY_OPS[family]
    if family == 0x0:
        if word == 0x00E0:
            return OpCode.CLS
        if word == 0x00EE:
            return OpCode.RET
    elif family == 0x8:
        if (word & 0x000F) in _ALU_OPS:
            return _ALU_OPS[word & 0x000F]
    elif family == 0xE:
        if (word & 0x00FF) in _KEY_OPS:
            return _KEY_OPS[word & 0x00FF]
    elif family == 0xF:
        if (word & 0x00FF) in _MISC_OPS:
            return _MISC_OPS[word & 0x00FF]
    raise UnknownInstruction(word)


def decode_word(word: int) -> Instr:
    """Decode a 16-bit instruction word.

    Raises UnknownInstruction for words outside the instruction set.
    """
    word &= 0xFFFF
    return Instr(
        opcode=_select(word),
        x=(word >> 8) & 0xF,
        y=(word >> 4) & 0xF,
        n=word & 0xF,
        nn=word & 0xFF,
        nnn=word & 0xFFF,
        word=word,
    )


def decode_instr(blob: bytes | bytearray, offset: int) -> Instr:
    """Decode instruction from bytes at offset.

    Addresses wrap at the end of the 4 KiB address space, so a fetch at
    0xFFF reads its second byte from 0x000.
    Raises UnknownInstruction for undecodable words.
    """
    size = len(blob)
    hi = blob[offset % size]
    lo = blob[(offset + 1) % size]
    return decode_word((hi << 8) | lo)


def encode_instr(
    opcode: OpCode, x: int = 0, y: int = 0, n: int = 0, nn: int | None = None, nnn: int | None = None
) -> bytes:
    """Encode an instruction into its two big-endian bytes.

    Fields that an opcode does not use are ignored.
    """
    word = _template(opcode)
    if nnn is not None:
        word |= nnn & 0xFFF
    elif nn is not None:
        word |= ((x & 0xF) << 8) | (nn & 0xFF)
    else:
        word |= ((x & 0xF) << 8) | ((y & 0xF) << 4)
        if opcode == OpCode.DRW:
            word |= n & 0xF
    return word.to_bytes(INSTR_SIZE, "big")


def words_to_bytes(program: str | list[int]) -> bytes:
    """Turn "6005 A200" (or a list of words) into a big-endian image."""
    if isinstance(program, str):
        return bytes.fromhex("".join(program.split()))
    return b"".join((int(w) & 0xFFFF).to_bytes(INSTR_SIZE, "big") for w in program)


def _template(opcode: OpCode) -> int:
    if opcode == OpCode.CLS:
        return 0x00E0
    if opcode == OpCode.RET:
        return 0x00EE
    for table, base in ((_ALU_OPS, 0x8000), (_KEY_OPS, 0xE000), (_MISC_OPS, 0xF000)):
        for sel, op in table.items():
            if op == opcode:
                return base | sel
    for family, op in _FAMILY_OPS.items():
        if op == opcode:
            return family << 12
    err = f"No encoding for {opcode!r}"
    raise ValueError(err)


def mnemonic(instr: Instr) -> str:
    """Get operation mnemonic."""
    op = instr.opcode
    if op in (OpCode.CLS, OpCode.RET):
        return op.name
    if op in (OpCode.JP, OpCode.CALL, OpCode.LD_I, OpCode.JP_V0):
        return f"{op.name} 0x{instr.nnn:03X}"
    if op in (OpCode.SE_IMM, OpCode.SNE_IMM, OpCode.LD_IMM, OpCode.ADD_IMM, OpCode.RND):
        return f"{op.name} V{instr.x:X}, 0x{instr.nn:02X}"
    if op == OpCode.DRW:
        return f"{op.name} V{instr.x:X}, V{instr.y:X}, {instr.n}"
    if op in (OpCode.SE_REG, OpCode.SNE_REG) or op in _ALU_OPS.values():
        return f"{op.name} V{instr.x:X}, V{instr.y:X}"
    return f"{op.name} V{instr.x:X}"
