"""RV32I instruction set with M and fused-multiply extensions: decoding."""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass

REGNUM = 32


class Reg(enum.IntEnum):
    """Integer registers by ABI name."""

    ZERO = 0
    RA = 1
    SP = 2
    GP = 3
    TP = 4
    T0 = 5
    T1 = 6
    T2 = 7
    S0 = 8
    S1 = 9
    A0 = 10
    A1 = 11
    A2 = 12
    A3 = 13
    A4 = 14
    A5 = 15
    A6 = 16
    A7 = 17
    S2 = 18
    S3 = 19
    S4 = 20
    S5 = 21
    S6 = 22
    S7 = 23
    S8 = 24
    S9 = 25
    S10 = 26
    S11 = 27
    T3 = 28
    T4 = 29
    T5 = 30
    T6 = 31

    @property
    def abi_name(self) -> str:
        return self.name.lower()


REG_NAMES = tuple(reg.abi_name for reg in Reg)


class Inst(enum.IntEnum):
    """Instructions the pipeline understands."""

    LUI = 0
    AUIPC = 1
    JAL = 2
    JALR = 3
    BEQ = 4
    BNE = 5
    BLT = 6
    BGE = 7
    BLTU = 8
    BGEU = 9
    LB = 10
    LH = 11
    LW = 12
    LBU = 13
    LHU = 14
    SB = 15
    SH = 16
    SW = 17
    ADDI = 18
    SLTI = 19
    SLTIU = 20
    XORI = 21
    ORI = 22
    ANDI = 23
    SLLI = 24
    SRLI = 25
    SRAI = 26
    ADD = 27
    SUB = 28
    SLL = 29
    SLT = 30
    SLTU = 31
    XOR = 32
    SRL = 33
    SRA = 34
    OR = 35
    AND = 36
    ECALL = 37
    FMADD = 38
    FMSUB = 39
    FNMADD = 40
    FNMSUB = 41
    MUL = 42
    MULH = 43
    DIV = 44
    REM = 45

    @property
    def mnemonic(self) -> str:
        return self.name.lower()


class Opcode(enum.IntEnum):
    """Major opcode field (bits 6..0)."""

    REG = 0x33
    IMM = 0x13
    LUI = 0x37
    BRANCH = 0x63
    STORE = 0x23
    LOAD = 0x03
    SYSTEM = 0x73
    AUIPC = 0x17
    JAL = 0x6F
    JALR = 0x67
    FUSED = 0x0B


class DecodeError(ValueError):
    """Raised for an instruction word that cannot be decoded."""

    def __init__(self, message: str, word: int) -> None:
        super().__init__(message)
        self.word = word


_BRANCHES = frozenset({Inst.BEQ, Inst.BNE, Inst.BLT, Inst.BGE, Inst.BLTU, Inst.BGEU})
_JUMPS = frozenset({Inst.JAL, Inst.JALR})
_LOADS = frozenset({Inst.LB, Inst.LH, Inst.LW, Inst.LBU, Inst.LHU})


def is_branch(inst: Inst) -> bool:
    return inst in _BRANCHES


def is_jump(inst: Inst) -> bool:
    return inst in _JUMPS


def is_read_mem(inst: Inst) -> bool:
    return inst in _LOADS


@dataclass(frozen=True)
class DecodedInst:
    """A decoded instruction with its operand values read from registers.

    ``rs1``/``rs2``/``rs3`` are None when the instruction does not read that
    source register; ``dest`` is 0 when nothing is written.
    """

    inst: Inst
    dest: int = 0
    rs1: int | None = None
    rs2: int | None = None
    rs3: int | None = None
    op1: int = 0
    op2: int = 0
    op3: int = 0
    offset: int = 0
    text: str = ""

    @property
    def mnemonic(self) -> str:
        return self.inst.mnemonic


def _sign_extend(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    sign = 1 << (bits - 1)
    return (value ^ sign) - sign


def _to_signed(value: int) -> int:
    return _sign_extend(value, 32)


_REG_OPS = {
    (0x0, 0x00): Inst.ADD,
    (0x0, 0x01): Inst.MUL,
    (0x0, 0x20): Inst.SUB,
    (0x1, 0x00): Inst.SLL,
    (0x1, 0x01): Inst.MULH,
    (0x2, 0x00): Inst.SLT,
    (0x3, 0x00): Inst.SLTU,
    (0x4, 0x00): Inst.XOR,
    (0x4, 0x01): Inst.DIV,
    (0x5, 0x00): Inst.SRL,
    (0x5, 0x20): Inst.SRA,
    (0x6, 0x00): Inst.OR,
    (0x6, 0x01): Inst.REM,
    (0x7, 0x00): Inst.AND,
}
_IMM_OPS = {
    0x0: Inst.ADDI,
    0x1: Inst.SLLI,
    0x2: Inst.SLTI,
    0x3: Inst.SLTIU,
    0x4: Inst.XORI,
    0x6: Inst.ORI,
    0x7: Inst.ANDI,
}
_SHIFT_RIGHT_OPS = {0x00: Inst.SRLI, 0x10: Inst.SRAI}
_BRANCH_OPS = {
    0x0: Inst.BEQ,
    0x1: Inst.BNE,
    0x4: Inst.BLT,
    0x5: Inst.BGE,
    0x6: Inst.BLTU,
    0x7: Inst.BGEU,
}
_STORE_OPS = {0x0: Inst.SB, 0x1: Inst.SH, 0x2: Inst.SW}
_LOAD_OPS = {0x0: Inst.LB, 0x1: Inst.LH, 0x2: Inst.LW, 0x4: Inst.LBU, 0x5: Inst.LHU}
_FUSED_OPS = {
    (0x0, 0x0): Inst.FMADD,
    (0x0, 0x1): Inst.FMADD,
    (0x0, 0x2): Inst.FMSUB,
    (0x0, 0x3): Inst.FMSUB,
    (0x1, 0x0): Inst.FNMADD,
    (0x1, 0x1): Inst.FNMSUB,
}


def decode(word: int, regs: Sequence[int]) -> DecodedInst:
    """Decode a 32-bit instruction word, reading operands from ``regs``."""
    word &= 0xFFFFFFFF
    opcode_field = word & 0x7F
    funct3 = (word >> 12) & 0x7
    funct2 = (word >> 25) & 0x3
    funct7 = (word >> 25) & 0x7F
    rd = (word >> 7) & 0x1F
    rs1 = (word >> 15) & 0x1F
    rs2 = (word >> 20) & 0x1F
    rs3 = (word >> 27) & 0xF

    imm_i = _sign_extend(word >> 20, 12)
    imm_s = _sign_extend(((word >> 7) & 0x1F) | ((word >> 20) & 0xFE0), 12)
    imm_sb = _sign_extend(
        ((word >> 7) & 0x1E)
        | ((word >> 20) & 0x7E0)
        | ((word << 4) & 0x800)
        | ((word >> 19) & 0x1000),
        13,
    )
    imm_u = _sign_extend(word >> 12, 20)
    imm_uj = (
        _sign_extend(
            ((word >> 21) & 0x3FF)
            | ((word >> 10) & 0x400)
            | ((word >> 1) & 0x7F800)
            | ((word >> 12) & 0x80000),
            20,
        )
        << 1
    )

    def value(reg: int) -> int:
        return _to_signed(regs[reg])

    try:
        opcode = Opcode(opcode_field)
    except ValueError:
        raise DecodeError(f"Unsupported opcode 0x{opcode_field:x}!", word) from None

    if opcode is Opcode.REG:
        inst = _REG_OPS.get((funct3, funct7))
        if inst is None:
            raise DecodeError(
                f"Unknown funct7 0x{funct7:x} for funct3 0x{funct3:x}", word
            )
        return DecodedInst(
            inst, dest=rd, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2),
            text=f"{inst.mnemonic} {REG_NAMES[rd]},{REG_NAMES[rs1]},{REG_NAMES[rs2]}",
        )

    if opcode is Opcode.IMM:
        op2 = imm_i
        if funct3 == 0x5:
            upper = (word >> 26) & 0x3F
            inst = _SHIFT_RIGHT_OPS.get(upper)
            if inst is None:
                raise DecodeError(f"Unknown funct7 0x{upper:x} for OP_IMM", word)
        else:
            inst = _IMM_OPS[funct3]
        if inst in (Inst.SLLI, Inst.SRLI, Inst.SRAI):
            op2 &= 0x3F
        return DecodedInst(
            inst, dest=rd, rs1=rs1, op1=value(rs1), op2=op2,
            text=f"{inst.mnemonic} {REG_NAMES[rd]},{REG_NAMES[rs1]},{op2}",
        )

    if opcode in (Opcode.LUI, Opcode.AUIPC):
        inst = Inst.LUI if opcode is Opcode.LUI else Inst.AUIPC
        return DecodedInst(
            inst, dest=rd, op1=imm_u, offset=imm_u,
            text=f"{inst.mnemonic} {REG_NAMES[rd]},{imm_u}",
        )

    if opcode is Opcode.JAL:
        return DecodedInst(
            Inst.JAL, dest=rd, op1=imm_uj, offset=imm_uj,
            text=f"jal {REG_NAMES[rd]},{imm_uj}",
        )

    if opcode is Opcode.JALR:
        return DecodedInst(
            Inst.JALR, dest=rd, rs1=rs1, op1=value(rs1), op2=imm_i,
            text=f"jalr {REG_NAMES[rd]},{REG_NAMES[rs1]},{imm_i}",
        )

    if opcode is Opcode.BRANCH:
        inst = _BRANCH_OPS.get(funct3)
        if inst is None:
            raise DecodeError(f"Unknown funct3 0x{funct3:x} at OP_BRANCH", word)
        return DecodedInst(
            inst, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2), offset=imm_sb,
            text=f"{inst.mnemonic} {REG_NAMES[rs1]},{REG_NAMES[rs2]},{imm_sb}",
        )

    if opcode is Opcode.STORE:
        inst = _STORE_OPS.get(funct3)
        if inst is None:
            raise DecodeError(f"Unknown funct3 0x{funct3:x} for OP_STORE", word)
        return DecodedInst(
            inst, rs1=rs1, rs2=rs2, op1=value(rs1), op2=value(rs2), offset=imm_s,
            text=f"{inst.mnemonic} {REG_NAMES[rs2]},{imm_s}({REG_NAMES[rs1]})",
        )

    if opcode is Opcode.LOAD:
        inst = _LOAD_OPS.get(funct3)
        if inst is None:
            raise DecodeError(f"Unknown funct3 0x{funct3:x} for OP_LOAD", word)
        return DecodedInst(
            inst, dest=rd, rs1=rs1, op1=value(rs1), op2=imm_i, offset=imm_i,
            text=f"{inst.mnemonic} {REG_NAMES[rd]},{imm_i}({REG_NAMES[rs1]})",
        )

    if opcode is Opcode.SYSTEM:
        if funct3 != 0x0 or funct7 != 0x0:
            raise DecodeError(
                f"Unknown OP_SYSTEM inst with funct3 0x{funct3:x} "
                f"and funct7 0x{funct7:x}",
                word,
            )
        return DecodedInst(
            Inst.ECALL, dest=Reg.A0, rs1=Reg.A0, rs2=Reg.A7,
            op1=value(Reg.A0), op2=value(Reg.A7), text="ecall",
        )

    # Opcode.FUSED
    inst = _FUSED_OPS.get((funct3, funct2))
    if inst is None:
        raise DecodeError(
            f"Unknown OP_FUSED inst with funct3 0x{funct3:x} and funct2 0x{funct2:x}",
            word,
        )
    return DecodedInst(
        inst, dest=rd, rs1=rs1, rs2=rs2, rs3=rs3,
        op1=value(rs1), op2=value(rs2), op3=value(rs3),
        text=(
            f"{inst.mnemonic} {REG_NAMES[rd]},{REG_NAMES[rs1]},"
            f"{REG_NAMES[rs2]},{REG_NAMES[rs3]}"
        ),
    )