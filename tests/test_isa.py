import pytest

from rvpipesim.isa import (
    REG_NAMES,
    DecodeError,
    Inst,
    Opcode,
    Reg,
    decode,
    is_branch,
    is_jump,
    is_read_mem,
)

ZERO_REGS = [0] * 32


def enc_r(opcode, funct3, funct7, rd, rs1, rs2):
    return (funct7 << 25) | (rs2 << 20) | (rs1 << 15) | (funct3 << 12) | (rd << 7) | opcode


def enc_i(opcode, funct3, rd, rs1, imm):
    return ((imm & 0xFFF) << 20) | (rs1 << 15) | (funct3 << 12) | (rd << 7) | opcode


def enc_s(funct3, rs1, rs2, imm):
    return (
        (((imm >> 5) & 0x7F) << 25) | (rs2 << 20) | (rs1 << 15)
        | (funct3 << 12) | ((imm & 0x1F) << 7) | Opcode.STORE
    )


def enc_b(funct3, rs1, rs2, imm):
    return (
        (((imm >> 12) & 1) << 31) | (((imm >> 5) & 0x3F) << 25) | (rs2 << 20)
        | (rs1 << 15) | (funct3 << 12) | (((imm >> 1) & 0xF) << 8)
        | (((imm >> 11) & 1) << 7) | Opcode.BRANCH
    )


def enc_u(opcode, rd, imm):
    return ((imm & 0xFFFFF) << 12) | (rd << 7) | opcode


def enc_j(rd, imm):
    return (
        (((imm >> 20) & 1) << 31) | (((imm >> 1) & 0x3FF) << 21)
        | (((imm >> 11) & 1) << 20) | (((imm >> 12) & 0xFF) << 12)
        | (rd << 7) | Opcode.JAL
    )


def enc_r4(funct3, funct2, rd, rs1, rs2, rs3):
    return (
        (rs3 << 27) | (funct2 << 25) | (rs2 << 20) | (rs1 << 15)
        | (funct3 << 12) | (rd << 7) | Opcode.FUSED
    )


def regs_with(**values):
    regs = [0] * 32
    for name, val in values.items():
        regs[Reg[name.upper()]] = val
    return regs


def test_register_names_match_abi():
    d = decode(enc_r(Opcode.REG, 0, 0x00, Reg.ZERO, Reg.SP, Reg.A7), ZERO_REGS)
    assert d.text == "add zero,sp,a7"
    assert d.text == f"add {REG_NAMES[0]},{REG_NAMES[Reg.SP]},{REG_NAMES[Reg.A7]}"
    t6 = decode(enc_r(Opcode.REG, 0, 0x00, Reg.T6, Reg.S11, Reg.T3), ZERO_REGS)
    assert t6.text == "add t6,s11,t3"


def test_mnemonics_follow_enum_values():
    assert Inst(37).mnemonic == "ecall"
    assert Inst(45).mnemonic == "rem"
    assert Inst.FNMSUB.mnemonic == "fnmsub"


def test_instruction_classes_are_disjoint():
    for inst in Inst:
        kinds = [is_branch(inst), is_jump(inst), is_read_mem(inst)]
        assert sum(kinds) <= 1
    assert sum(is_branch(i) for i in Inst) == 6
    assert sum(is_jump(i) for i in Inst) == 2
    assert sum(is_read_mem(i) for i in Inst) == 5


def test_known_addi_word():
    d = decode(0xFF010113, regs_with(sp=0x80000000))
    assert d.inst is Inst.ADDI
    assert d.text == "addi sp,sp,-16"
    assert d.op2 == -16
    assert d.op1 == -0x80000000
    assert d.rs1 == Reg.SP and d.dest == Reg.SP


def test_ecall_reads_a0_and_a7():
    d = decode(0x00000073, regs_with(a0=42, a7=3))
    assert d.inst is Inst.ECALL
    assert (d.op1, d.op2) == (42, 3)
    assert (d.rs1, d.rs2, d.dest) == (Reg.A0, Reg.A7, Reg.A0)
    assert d.text == "ecall"


@pytest.mark.parametrize(
    "funct3,funct7,inst",
    [
        (0, 0x00, Inst.ADD), (0, 0x01, Inst.MUL), (0, 0x20, Inst.SUB),
        (1, 0x00, Inst.SLL), (1, 0x01, Inst.MULH), (2, 0x00, Inst.SLT),
        (3, 0x00, Inst.SLTU), (4, 0x00, Inst.XOR), (4, 0x01, Inst.DIV),
        (5, 0x00, Inst.SRL), (5, 0x20, Inst.SRA), (6, 0x00, Inst.OR),
        (6, 0x01, Inst.REM), (7, 0x00, Inst.AND),
    ],
)
def test_register_ops(funct3, funct7, inst):
    regs = regs_with(t1=7, t2=0xFFFFFFFE)
    d = decode(enc_r(Opcode.REG, funct3, funct7, Reg.T0, Reg.T1, Reg.T2), regs)
    assert d.inst is inst
    assert (d.dest, d.rs1, d.rs2, d.rs3) == (Reg.T0, Reg.T1, Reg.T2, None)
    assert (d.op1, d.op2) == (7, -2)
    assert d.text == f"{inst.mnemonic} t0,t1,t2"


def test_register_op_bad_funct7():
    with pytest.raises(DecodeError):
        decode(enc_r(Opcode.REG, 2, 0x01, 1, 2, 3), ZERO_REGS)


@pytest.mark.parametrize("imm", [0, 1, -1, 2047, -2048, 100])
def test_addi_immediate_round_trip(imm):
    d = decode(enc_i(Opcode.IMM, 0, Reg.A0, Reg.A1, imm), ZERO_REGS)
    assert d.op2 == imm
    assert d.text == f"addi a0,a1,{imm}"


def test_shift_immediates():
    slli = decode(enc_i(Opcode.IMM, 1, 5, 6, 3), ZERO_REGS)
    srli = decode(enc_i(Opcode.IMM, 5, 5, 6, 4), ZERO_REGS)
    srai = decode(enc_i(Opcode.IMM, 5, 5, 6, 0x400 | 4), ZERO_REGS)
    assert (slli.inst, slli.op2) == (Inst.SLLI, 3)
    assert (srli.inst, srli.op2) == (Inst.SRLI, 4)
    assert (srai.inst, srai.op2) == (Inst.SRAI, 4)


def test_shift_right_bad_upper_bits():
    with pytest.raises(DecodeError):
        decode(enc_i(Opcode.IMM, 5, 5, 6, 0x200 | 4), ZERO_REGS)


@pytest.mark.parametrize("imm", [0, 1, -1, 0x7FFFF, -0x80000])
def test_upper_immediates(imm):
    lui = decode(enc_u(Opcode.LUI, Reg.T0, imm), ZERO_REGS)
    auipc = decode(enc_u(Opcode.AUIPC, Reg.T0, imm), ZERO_REGS)
    assert lui.inst is Inst.LUI and auipc.inst is Inst.AUIPC
    assert lui.offset == imm and lui.op1 == imm and auipc.offset == imm
    assert lui.text == f"lui t0,{imm}"


@pytest.mark.parametrize("offset", [0, 4, -4, 2048, -2048, 0xFFFFE, -0x100000])
def test_jal_offset_round_trip(offset):
    d = decode(enc_j(Reg.RA, offset), ZERO_REGS)
    assert d.inst is Inst.JAL
    assert d.offset == offset and d.op1 == offset
    assert d.dest == Reg.RA


def test_jalr_fields():
    d = decode(enc_i(Opcode.JALR, 0, Reg.ZERO, Reg.RA, -8), regs_with(ra=0x1000))
    assert d.inst is Inst.JALR
    assert (d.op1, d.op2, d.rs1, d.dest) == (0x1000, -8, Reg.RA, 0)
    assert d.text == "jalr zero,ra,-8"


@pytest.mark.parametrize("funct3,inst", [
    (0, Inst.BEQ), (1, Inst.BNE), (4, Inst.BLT),
    (5, Inst.BGE), (6, Inst.BLTU), (7, Inst.BGEU),
])
@pytest.mark.parametrize("offset", [2, -2, 4094, -4096, 8])
def test_branch_round_trip(funct3, inst, offset):
    d = decode(enc_b(funct3, Reg.A0, Reg.A1, offset), regs_with(a0=5, a1=9))
    assert d.inst is inst and is_branch(d.inst)
    assert d.offset == offset
    assert (d.op1, d.op2, d.dest) == (5, 9, 0)
    assert d.text == f"{inst.mnemonic} a0,a1,{offset}"


def test_branch_bad_funct3():
    with pytest.raises(DecodeError):
        decode(enc_b(2, 1, 2, 8), ZERO_REGS)


@pytest.mark.parametrize("funct3,inst", [(0, Inst.SB), (1, Inst.SH), (2, Inst.SW)])
@pytest.mark.parametrize("offset", [0, -1, 2047, -2048, 12])
def test_store_round_trip(funct3, inst, offset):
    d = decode(enc_s(funct3, Reg.SP, Reg.A0, offset), regs_with(sp=64, a0=3))
    assert d.inst is inst
    assert (d.offset, d.op1, d.op2) == (offset, 64, 3)
    assert d.text == f"{inst.mnemonic} a0,{offset}(sp)"


def test_store_bad_funct3():
    with pytest.raises(DecodeError):
        decode(enc_s(3, 1, 2, 0), ZERO_REGS)


@pytest.mark.parametrize("funct3,inst", [
    (0, Inst.LB), (1, Inst.LH), (2, Inst.LW), (4, Inst.LBU), (5, Inst.LHU),
])
def test_loads(funct3, inst):
    d = decode(enc_i(Opcode.LOAD, funct3, Reg.A2, Reg.SP, -12), regs_with(sp=100))
    assert d.inst is inst and is_read_mem(d.inst)
    assert (d.op1, d.op2, d.offset, d.dest) == (100, -12, -12, Reg.A2)
    assert d.text == f"{inst.mnemonic} a2,-12(sp)"


def test_load_bad_funct3():
    with pytest.raises(DecodeError):
        decode(enc_i(Opcode.LOAD, 3, 1, 2, 0), ZERO_REGS)


def test_system_other_than_ecall_rejected():
    with pytest.raises(DecodeError):
        decode(enc_i(Opcode.SYSTEM, 1, 0, 0, 0), ZERO_REGS)


@pytest.mark.parametrize("funct3,funct2,inst", [
    (0, 0, Inst.FMADD), (0, 1, Inst.FMADD), (0, 2, Inst.FMSUB),
    (0, 3, Inst.FMSUB), (1, 0, Inst.FNMADD), (1, 1, Inst.FNMSUB),
])
def test_fused_ops(funct3, funct2, inst):
    regs = regs_with(a1=1, a2=2, a3=3)
    d = decode(enc_r4(funct3, funct2, Reg.A0, Reg.A1, Reg.A2, Reg.A3), regs)
    assert d.inst is inst
    assert (d.op1, d.op2, d.op3) == (1, 2, 3)
    assert (d.rs1, d.rs2, d.rs3, d.dest) == (Reg.A1, Reg.A2, Reg.A3, Reg.A0)


def test_fused_bad_combination():
    with pytest.raises(DecodeError):
        decode(enc_r4(1, 2, 1, 2, 3, 4), ZERO_REGS)


@pytest.mark.parametrize("word", [0x00000000, 0x0000007F, 0x00000057])
def test_unsupported_opcode(word):
    with pytest.raises(DecodeError) as info:
        decode(word, ZERO_REGS)
    assert info.value.word == word


def test_register_values_are_signed():
    d = decode(enc_r(Opcode.REG, 0, 0, 1, 2, 3), [0, 0, 0xFFFFFFFF, 0x7FFFFFFF] + [0] * 28)
    assert d.op1 == -1
    assert d.op2 == 0x7FFFFFFF