"""Decoder tests: word -> Instr."""

from __future__ import annotations

import pytest
from isa import (
    INSTR_SIZE,
    Instr,
    OpCode,
    UnknownInstruction,
    decode_instr,
    decode_word,
    encode_instr,
    mnemonic,
    words_to_bytes,
)


@pytest.mark.parametrize(
    ("word", "opcode"),
    [
        (0x00E0, OpCode.CLS),
        (0x00EE, OpCode.RET),
        (0x1ABC, OpCode.JP),
        (0x2ABC, OpCode.CALL),
        (0x3A12, OpCode.SE_IMM),
        (0x4A12, OpCode.SNE_IMM),
        (0x5AB0, OpCode.SE_REG),
        (0x6A12, OpCode.LD_IMM),
        (0x7A12, OpCode.ADD_IMM),
        (0x8AB0, OpCode.LD_REG),
        (0x8AB1, OpCode.OR),
        (0x8AB2, OpCode.AND),
        (0x8AB3, OpCode.XOR),
        (0x8AB4, OpCode.ADD_REG),
        (0x8AB5, OpCode.SUB),
        (0x8AB6, OpCode.SHR),
        (0x8AB7, OpCode.SUBN),
        (0x8ABE, OpCode.SHL),
        (0x9AB0, OpCode.SNE_REG),
        (0xAABC, OpCode.LD_I),
        (0xBABC, OpCode.JP_V0),
        (0xCA12, OpCode.RND),
        (0xDAB5, OpCode.DRW),
        (0xEA9E, OpCode.SKP),
        (0xEAA1, OpCode.SKNP),
        (0xFA07, OpCode.LD_DT),
        (0xFA0A, OpCode.LD_KEY),
        (0xFA15, OpCode.SET_DT),
        (0xFA18, OpCode.SET_ST),
        (0xFA1E, OpCode.ADD_I),
        (0xFA29, OpCode.LD_FONT),
        (0xFA33, OpCode.BCD),
        (0xFA55, OpCode.STORE),
        (0xFA65, OpCode.LOAD),
    ],
)
def test_decode_selects_family(word: int, opcode: OpCode) -> None:
    assert decode_word(word).opcode == opcode


def test_decode_extracts_positional_fields() -> None:
    instr = decode_word(0xD3A7)
    assert instr == Instr(OpCode.DRW, x=0x3, y=0xA, n=0x7, nn=0xA7, nnn=0x3A7, word=0xD3A7)


@pytest.mark.parametrize("word", [0x0000, 0x0123, 0x00E1, 0x8AB8, 0x8ABF, 0xEA00, 0xFA00, 0xFAFF])
def test_unknown_words_raise(word: int) -> None:
    with pytest.raises(UnknownInstruction) as exc:
        decode_word(word)
    assert exc.value.word == word
    assert f"0x{word:04X}" in str(exc.value)


def test_decode_instr_is_big_endian_and_wraps() -> None:
    mem = bytearray(4096)
    mem[0x200:0x202] = b"\x60\x05"
    assert decode_instr(mem, 0x200).word == 0x6005

    mem[0xFFF] = 0xA1
    mem[0x000] = 0x23
    assert decode_instr(mem, 0xFFF).word == 0xA123


def test_encode_instr_builds_expected_words() -> None:
    assert encode_instr(OpCode.CLS) == b"\x00\xe0"
    assert encode_instr(OpCode.JP, nnn=0x345) == b"\x13\x45"
    assert encode_instr(OpCode.LD_IMM, x=0xA, nn=0x12) == b"\x6a\x12"
    assert encode_instr(OpCode.SUBN, x=1, y=2) == b"\x81\x27"
    assert encode_instr(OpCode.DRW, x=1, y=2, n=5) == b"\xd1\x25"
    assert encode_instr(OpCode.LD_FONT, x=3) == b"\xf3\x29"
    assert len(encode_instr(OpCode.RET)) == INSTR_SIZE


def test_words_to_bytes_accepts_text_and_lists() -> None:
    assert words_to_bytes("6005 A200\nF029") == bytes.fromhex("6005A200F029")
    assert words_to_bytes([0x6005, 0xA200]) == b"\x60\x05\xa2\x00"


def test_mnemonic() -> None:
    assert mnemonic(decode_word(0x00E0)) == "CLS"
    assert mnemonic(decode_word(0x1234)) == "JP 0x234"
    assert mnemonic(decode_word(0x6A05)) == "LD_IMM VA, 0x05"
    assert mnemonic(decode_word(0x8124)) == "ADD_REG V1, V2"
    assert mnemonic(decode_word(0xD125)) == "DRW V1, V2, 5"
    assert mnemonic(decode_word(0xF333)) == "BCD V3"
