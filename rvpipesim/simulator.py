"""Five-stage pipelined RV32 core with hazard detection and data forwarding."""

from __future__ import annotations

import dataclasses
import sys
from dataclasses import dataclass, field
from typing import TextIO

from .branch_predictor import BranchPredictor
from .isa import (
    REG_NAMES,
    REGNUM,
    DecodeError,
    Inst,
    Reg,
    decode,
    is_branch,
    is_jump,
    is_read_mem,
)
from .memory import MemoryAccessError, MemoryManager

MASK32 = 0xFFFFFFFF
_RECORD_LIMIT = 100000


class SimulationError(RuntimeError):
    """Raised when the simulated program does something the core cannot run."""


class _ProgramExit(Exception):
    """Internal signal raised by the exit system call."""


def _s32(value: int) -> int:
    value &= MASK32
    return value - (1 << 32) if value & 0x80000000 else value


def _u32(value: int) -> int:
    return value & MASK32


def _div(a: int, b: int) -> int:
    quotient = abs(a) // abs(b)
    return -quotient if (a < 0) != (b < 0) else quotient


@dataclass
class _FReg:
    bubble: bool = False
    stall: int = 0
    pc: int = 0
    inst: int = 0
    len: int = 0


@dataclass
class _DReg:
    bubble: bool = False
    stall: int = 0
    rs1: int | None = 0
    rs2: int | None = 0
    rs3: int | None = 0
    pc: int = 0
    inst: Inst = Inst.LUI
    op1: int = 0
    op2: int = 0
    op3: int = 0
    dest: int = 0
    offset: int = 0
    predicted_branch: bool = False
    predicted_pc: int = 0
    another_pc: int = 0


@dataclass
class _EReg:
    bubble: bool = False
    stall: int = 0
    pc: int = 0
    inst: Inst = Inst.LUI
    op1: int = 0
    op2: int = 0
    op3: int = 0
    write_reg: bool = False
    dest_reg: int = 0
    out: int = 0
    write_mem: bool = False
    read_mem: bool = False
    read_sign_ext: bool = False
    mem_len: int = 0
    branch: bool = False


@dataclass
class _MReg:
    bubble: bool = False
    stall: int = 0
    pc: int = 0
    inst: Inst = Inst.LUI
    op1: int = 0
    op2: int = 0
    op3: int = 0
    out: int = 0
    write_reg: bool = False
    dest_reg: int = 0


@dataclass
class History:
    """Counters and traces collected while simulating."""

    inst_count: int = 0
    cycle_count: int = 0
    stalled_cycle_count: int = 0
    predicted_branch: int = 0
    unpredicted_branch: int = 0
    data_hazard_count: int = 0
    control_hazard_count: int = 0
    memory_hazard_count: int = 0
    inst_record: list[str] = field(default_factory=list)
    reg_record: list[str] = field(default_factory=list)


_BRANCH_TESTS = {
    Inst.BEQ: lambda a, b: a == b,
    Inst.BNE: lambda a, b: a != b,
    Inst.BLT: lambda a, b: a < b,
    Inst.BGE: lambda a, b: a >= b,
    Inst.BLTU: lambda a, b: _u32(a) < _u32(b),
    Inst.BGEU: lambda a, b: _u32(a) >= _u32(b),
}
_LOADS = {
    Inst.LB: (1, True),
    Inst.LH: (2, True),
    Inst.LW: (4, True),
    Inst.LBU: (1, False),
    Inst.LHU: (2, False),
}
_STORES = {Inst.SB: (1, 0xFF), Inst.SH: (2, 0xFFFF), Inst.SW: (4, None)}
_ALU = {
    Inst.ADD: lambda a, b, c: a + b,
    Inst.ADDI: lambda a, b, c: a + b,
    Inst.SUB: lambda a, b, c: a - b,
    Inst.MUL: lambda a, b, c: a * b,
    Inst.DIV: lambda a, b, c: _div(a, b),
    Inst.SLT: lambda a, b, c: int(a < b),
    Inst.SLTI: lambda a, b, c: int(a < b),
    Inst.SLTU: lambda a, b, c: int(_u32(a) < _u32(b)),
    Inst.SLTIU: lambda a, b, c: int(_u32(a) < _u32(b)),
    Inst.XOR: lambda a, b, c: a ^ b,
    Inst.XORI: lambda a, b, c: a ^ b,
    Inst.OR: lambda a, b, c: a | b,
    Inst.ORI: lambda a, b, c: a | b,
    Inst.AND: lambda a, b, c: a & b,
    Inst.ANDI: lambda a, b, c: a & b,
    Inst.SLL: lambda a, b, c: a << (b & 31),
    Inst.SLLI: lambda a, b, c: a << (b & 31),
    Inst.SRL: lambda a, b, c: _u32(a) >> (b & 31),
    Inst.SRLI: lambda a, b, c: _u32(a) >> (b & 31),
    Inst.SRA: lambda a, b, c: a >> (b & 31),
    Inst.SRAI: lambda a, b, c: a >> (b & 31),
    Inst.FMADD: lambda a, b, c: a * b + c,
    Inst.FMSUB: lambda a, b, c: a * b - c,
    Inst.FNMADD: lambda a, b, c: -a * b + c,
    Inst.FNMSUB: lambda a, b, c: -a * b - c,
}
_SLOW = frozenset({Inst.MUL, Inst.FMADD, Inst.FMSUB, Inst.FNMADD, Inst.FNMSUB})


def _ratio(num: int, den: int) -> float:
    return num / den if den else float("nan")


class Simulator:
    """Cycle-level simulator of a classic five-stage pipeline."""

    def __init__(
        self,
        memory: MemoryManager,
        predictor: BranchPredictor,
        stdout: TextIO | None = None,
        stdin: TextIO | None = None,
    ) -> None:
        self.memory = memory
        self.branch_predictor = predictor
        self.stdout = stdout if stdout is not None else sys.stdout
        self.stdin = stdin if stdin is not None else sys.stdin
        self.is_single_step = False
        self.verbose = False
        self.should_dump_history = False
        self.data_forwarding = True
        self.dump_on_panic = False
        self.dump_path = "dump.txt"
        self.pc = 0
        self.reg = [0] * REGNUM
        self.stack_base = 0
        self.maximum_stack_size = 0
        self.history = History()
        self.exited = False
        self._pending = ""

        self._f = _FReg(bubble=True)
        self._f_new = _FReg()
        self._decode_who = _FReg()
        self._d = _DReg(bubble=True)
        self._d_new = _DReg()
        self._e = _EReg(bubble=True)
        self._e_new = _EReg()
        self._m = _MReg(bubble=True)
        self._m_new = _MReg()
        self._rst_pc_cnt = -1
        self._rst_pc = 0
        self._forward_fetcher = False
        self._stall_cnt = 0
        self._is_jump_or_branch = False
        self._execute_write_back = False
        self._execute_wb_reg: int | None = None
        self._memory_write_back = False
        self._memory_wb_reg: int | None = None

    def init_stack(self, baseaddr: int, max_size: int) -> None:
        self.reg[Reg.SP] = _u32(baseaddr)
        self.stack_base = _u32(baseaddr)
        self.maximum_stack_size = _u32(max_size)

    def _out(self, text: str) -> None:
        self.stdout.write(text)

    def _panic(self, message: str) -> None:
        if self.dump_on_panic:
            self.dump_history(self.dump_path)
        raise SimulationError(message)

    # Main loop

    def simulate(self) -> History:
        """Run until the program exits; return the collected history."""
        while self.step():
            pass
        return self.history

    def step(self) -> bool:
        """Advance one clock cycle; return False once the program has exited."""
        if self.exited:
            return False
        try:
            self._cycle()
        except _ProgramExit:
            self.exited = True
            return False
        return True

    def _cycle(self) -> None:
        if self._rst_pc_cnt == 0:
            self.pc = self._rst_pc
        elif self._rst_pc_cnt == 1:
            self._f = dataclasses.replace(self._decode_who)
        if self._rst_pc_cnt >= 0:
            self._rst_pc_cnt -= 1

        self.reg[0] = 0
        if self.reg[Reg.SP] < _u32(self.stack_base - self.maximum_stack_size):
            self._panic("Stack Overflow!")

        self._execute_write_back = False
        self._execute_wb_reg = None
        self._memory_write_back = False
        self._memory_wb_reg = None
        self._stall_cnt = 0
        self._is_jump_or_branch = False

        pc_in = self.pc
        self._fetch()
        if self._forward_fetcher and self._rst_pc_cnt == 1:
            self._f.bubble = True
            self._forward_fetcher = False
        self._decode()
        self._execute()
        self._memory_access()
        self._write_back()

        if self._stall_cnt > 0:
            self._decode_who = dataclasses.replace(self._f)

        if not self._f.stall:
            self._f = self._f_new
        else:
            self._f.stall -= 1
        if not self._d.stall:
            self._d = self._d_new
        else:
            self._d.stall -= 1
        self._e = self._e_new
        self._m = self._m_new
        self._f_new, self._d_new = _FReg(), _DReg()
        self._e_new, self._m_new = _EReg(), _MReg()

        if self._stall_cnt in (1, 2, 3):
            if self._rst_pc_cnt < 0:
                self._rst_pc_cnt = self._stall_cnt
            self._d.bubble = True
            if self._stall_cnt >= 2:
                self._f.bubble = True
            if self._stall_cnt == 3:
                self._forward_fetcher = True
        if self._stall_cnt > 0:
            self._rst_pc = self.pc
        if self._rst_pc_cnt > 0:
            self.pc = pc_in

        d = self._d
        if not d.bubble and not d.stall and not self._f.stall and d.predicted_branch:
            self.pc = d.predicted_pc

        h = self.history
        h.cycle_count += 1
        if self.verbose:
            print(h.cycle_count, file=sys.stderr)
        h.reg_record.append(self.reg_info())
        if len(h.reg_record) >= _RECORD_LIMIT:
            h.reg_record.clear()
            h.inst_record.clear()

        if self.verbose:
            print(f"STALL COUNT: {self._stall_cnt}", file=sys.stderr)
            print(f"RST PC COUNT: {self._rst_pc_cnt}", file=sys.stderr)
            self.print_info()

        if self.is_single_step:
            self._out("Type d to dump memory in dump.txt, press ENTER to continue: ")
            if "d" in self.stdin.readline():
                self.dump_history(self.dump_path)

    # Stages

    def _fetch(self) -> None:
        if self.pc % 2 != 0:
            self._panic(f"Illegal PC 0x{self.pc:x}!")
        try:
            inst = self.memory.get_int(self.pc)
        except MemoryAccessError as exc:
            self._panic(str(exc))
        if self.verbose:
            self._out(f"Fetched instruction 0x{inst:08x} at address 0x{self.pc:x}\n")
        self._f_new = _FReg(bubble=False, stall=0, pc=self.pc, inst=inst, len=4)
        self.pc = _u32(self.pc + 4)

    def _decode(self) -> None:
        f = self._f
        if f.stall:
            if self.verbose:
                self._out("Decode: Stall\n")
            self.pc = _u32(self.pc - 4)
            return
        if f.bubble or f.inst == 0:
            if self.verbose:
                self._out("Decode: Bubble\n")
            self._d_new.bubble = True
            return
        try:
            decoded = decode(f.inst, self.reg)
        except DecodeError as exc:
            self._panic(str(exc))
        self.history.inst_record.append(f"0x{f.pc:x}: {decoded.text}\n")
        if self.verbose:
            self._out(f"Decoded instruction 0x{f.inst:08x} as {decoded.text}\n")

        new = self._d_new
        predicted = False
        if is_branch(decoded.inst):
            predicted = self.branch_predictor.predict(
                f.pc, decoded.inst, decoded.op1, decoded.op2, decoded.offset
            )
            if predicted:
                new.predicted_pc = _u32(f.pc + decoded.offset)
                new.another_pc = _u32(f.pc + 4)
                self._f_new.bubble = True
            else:
                new.another_pc = _u32(f.pc + decoded.offset)

        new.stall = 0
        new.bubble = False
        new.rs1, new.rs2, new.rs3 = decoded.rs1, decoded.rs2, decoded.rs3
        new.pc = f.pc
        new.inst = decoded.inst
        new.predicted_branch = predicted
        new.dest = decoded.dest
        new.op1, new.op2, new.op3 = decoded.op1, decoded.op2, decoded.op3
        new.offset = decoded.offset

    def _execute(self) -> None:
        d = self._d
        if d.stall or d.bubble:
            if self.verbose:
                self._out("Execute: Stall\n" if d.stall else "Execute: Bubble\n")
            self._e_new.bubble = True
            return
        inst = d.inst
        if self.verbose:
            self._out(f"Execute: {inst.mnemonic}\n")
        h = self.history
        h.inst_count += 1

        op1, op2, op3, offset = d.op1, d.op2, d.op3, d.offset
        pc_out = d.pc
        write_reg = write_mem = read_mem = sign_ext = branch = False
        dest = d.dest
        out = 0
        mem_len = 0

        if inst is Inst.LUI:
            write_reg, out = True, offset << 12
        elif inst is Inst.AUIPC:
            write_reg, out = True, d.pc + (offset << 12)
        elif inst is Inst.JAL:
            write_reg, out, branch = True, d.pc + 4, True
            pc_out = _u32(d.pc + op1)
        elif inst is Inst.JALR:
            write_reg, out, branch = True, d.pc + 4, True
            pc_out = _u32(op1 + op2) & ~1
        elif inst in _BRANCH_TESTS:
            if _BRANCH_TESTS[inst](op1, op2):
                branch = True
                pc_out = _u32(d.pc + offset)
        elif inst in _LOADS:
            mem_len, sign_ext = _LOADS[inst]
            read_mem = write_reg = True
            out = op1 + offset
        elif inst in _STORES:
            mem_len, mask = _STORES[inst]
            write_mem = True
            out = op1 + offset
            if mask is not None:
                op2 &= mask
        elif inst in _ALU:
            write_reg = True
            if inst is Inst.DIV and op2 == 0:
                self._panic("Division by zero")
            out = _ALU[inst](op1, op2, op3)
            if inst in _SLOW:
                h.cycle_count += 3
        elif inst is Inst.ECALL:
            out = self._handle_system_call(op1, op2)
            write_reg = True
        else:
            self._panic(f"Unknown instruction type {int(inst)}")
        out = _s32(out)

        dn = self._d_new
        if is_branch(inst):
            if d.predicted_branch == branch:
                h.predicted_branch += 1
            else:
                self.pc = d.another_pc
                self._is_jump_or_branch = True
                self._f_new.bubble = True
                dn.bubble = True
                h.unpredicted_branch += 1
                h.control_hazard_count += 1
            self.branch_predictor.update(d.pc, branch)
        if is_jump(inst):
            self.pc = pc_out
            self._is_jump_or_branch = True
            self._f_new.bubble = True
            dn.bubble = True
            h.control_hazard_count += 1
        if is_read_mem(inst) and dest in (dn.rs1, dn.rs2, dn.rs3):
            if self.data_forwarding:
                self._f_new.stall = 2
                dn.stall = 2
                self._e_new.bubble = True
                h.cycle_count -= 1
            else:
                self._stall_cnt = 3
            h.memory_hazard_count += 1

        if write_reg and dest != 0 and not is_read_mem(inst):
            for slot in ("1", "2", "3"):
                if getattr(dn, "rs" + slot) == dest:
                    h.data_hazard_count += 1
                    if self.data_forwarding:
                        setattr(dn, "op" + slot, out)
                        self._execute_wb_reg = dest
                        self._execute_write_back = True
                        if self.verbose:
                            self._out(f"  Forward Data {REG_NAMES[dest]} to Decode op{slot}\n")
                    else:
                        self._stall_cnt = 3

        self._e_new = _EReg(
            bubble=False, stall=0, pc=pc_out, inst=inst, op1=op1, op2=op2, op3=op3,
            write_reg=write_reg, dest_reg=dest, out=out, write_mem=write_mem,
            read_mem=read_mem, read_sign_ext=sign_ext, mem_len=mem_len, branch=branch,
        )

    def _memory_access(self) -> None:
        e = self._e
        if e.stall:
            if self.verbose:
                self._out("Memory Access: Stall\n")
            return
        if e.bubble:
            if self.verbose:
                self._out("Memory Access: Bubble\n")
            self._m_new.bubble = True
            return

        out = e.out
        cycles = 0
        try:
            if e.write_mem:
                cycles = self.memory.write(out, e.op2, e.mem_len)
            if e.read_mem:
                value, cycles = self.memory.read(out, e.mem_len)
                out = _s32(value)
        except (MemoryAccessError, ValueError):
            self._panic("Invalid Mem Access!")
        h = self.history
        h.cycle_count += cycles
        if self.verbose:
            self._out(f"Memory Access: {e.inst.mnemonic}\n")

        dest = e.dest_reg
        dn = self._d_new
        if e.write_reg and dest != 0:
            if self.data_forwarding:
                fresh = not self._execute_write_back or self._execute_wb_reg != dest
                for slot in ("1", "2", "3"):
                    if getattr(dn, "rs" + slot) == dest and fresh:
                        setattr(dn, "op" + slot, out)
                        self._memory_write_back = True
                        self._memory_wb_reg = dest
                        h.data_hazard_count += 1
                        if self.verbose:
                            self._out(f"  Forward Data {REG_NAMES[dest]} to Decode op{slot}\n")
                d = self._d
                if d.stall:
                    if d.rs1 == dest:
                        d.op1 = out
                    if d.rs2 == dest:
                        d.op2 = out
                    if d.rs3 == dest:
                        d.op3 = out
                    self._memory_write_back = True
                    self._memory_wb_reg = dest
                    h.data_hazard_count += 1
                    if self.verbose:
                        self._out(f"  Forward Data {REG_NAMES[dest]} to Decode op2\n")
            elif (
                self._stall_cnt == 0
                and not self._is_jump_or_branch
                and dest in (dn.rs1, dn.rs2, dn.rs3)
            ):
                self._stall_cnt = 2
                h.data_hazard_count += 1

        self._m_new = _MReg(
            bubble=False, stall=0, pc=e.pc, inst=e.inst, op1=e.op1, op2=e.op2,
            op3=e.op3, dest_reg=dest, write_reg=e.write_reg, out=out,
        )

    def _write_back(self) -> None:
        m = self._m
        if m.stall or m.bubble:
            if self.verbose:
                self._out("WriteBack: stall\n" if m.stall else "WriteBack: Bubble\n")
            return
        if self.verbose:
            self._out(f"WriteBack: {m.inst.mnemonic}\n")
        dest = m.dest_reg
        if not (m.write_reg and dest != 0):
            return
        dn = self._d_new
        h = self.history
        if self.data_forwarding:
            fresh = (
                not self._execute_write_back or self._execute_wb_reg != dest
            ) and (not self._memory_write_back or self._memory_wb_reg != dest)
            for slot in ("1", "2", "3"):
                if getattr(dn, "rs" + slot) == dest and fresh:
                    setattr(dn, "op" + slot, m.out)
                    h.data_hazard_count += 1
                    if self.verbose:
                        self._out(f"  Forward Data {REG_NAMES[dest]} to Decode op{slot}\n")
        elif dest in (dn.rs1, dn.rs2, dn.rs3):
            if self._stall_cnt == 0 and not self._is_jump_or_branch:
                self._stall_cnt = 1
                h.data_hazard_count += 1
        self.reg[dest] = _u32(m.out)

    # System calls

    def _read_char(self) -> str:
        if self._pending:
            ch, self._pending = self._pending[0], self._pending[1:]
            return ch
        return self.stdin.read(1)

    def _skip_space(self) -> str:
        ch = self._read_char()
        while ch and ch.isspace():
            ch = self._read_char()
        return ch

    def _read_int(self) -> int | None:
        ch = self._skip_space()
        text = ""
        if ch in ("+", "-"):
            text, ch = ch, self._read_char()
        while ch and ch.isdigit():
            text += ch
            ch = self._read_char()
        if ch:
            self._pending = ch + self._pending
        digits = text.lstrip("+-")
        return int(text) if digits else None

    def _handle_system_call(self, op1: int, op2: int) -> int:
        kind, arg = op2, op1
        if kind == 0:
            addr = arg
            ch = self.memory.get_byte(addr)
            while ch != 0:
                self._out(chr(ch))
                addr += 1
                ch = self.memory.get_byte(addr)
        elif kind == 1:
            self._out(chr(arg & 0xFF))
        elif kind == 2:
            self._out(str(_s32(arg)))
        elif kind in (3, 93):
            self._out("Program exit from an exit() system call\n")
            if self.should_dump_history:
                self._out("Dumping history to dump.txt...")
                self.dump_history(self.dump_path)
            self.print_statistics()
            raise _ProgramExit
        elif kind == 4:
            ch = self._skip_space()
            if ch:
                op1 = _s32((op1 & ~0xFF) | (ord(ch) & 0xFF))
        elif kind == 5:
            value = self._read_int()
            if value is not None:
                op1 = _s32(value)
        else:
            self._panic(f"Unknown syscall type {kind}")
        return op1

    # Reporting

    def reg_info(self) -> str:
        """The program counter and every register as text."""
        parts = ["------------ CPU STATE ------------\n", f"PC: 0x{self.pc:x}\n"]
        for i, value in enumerate(self.reg):
            parts.append(f"{REG_NAMES[i]}: 0x{value:08x}({_s32(value)}) ")
            if i % 4 == 3:
                parts.append("\n")
        parts.append("-----------------------------------\n")
        return "".join(parts)

    def print_info(self) -> None:
        self._out(self.reg_info())

    def print_statistics(self) -> None:
        h = self.history
        self._out("------------ STATISTICS -----------\n")
        self._out(f"Number of Instructions: {h.inst_count}\n")
        self._out(f"Number of Cycles: {h.cycle_count}\n")
        self._out(
            f"Avg Cycles per Instrcution: {_ratio(h.cycle_count, h.inst_count):.4f}\n"
        )
        accuracy = _ratio(h.predicted_branch, h.predicted_branch + h.unpredicted_branch)
        self._out(
            f"Branch Perdiction Accuacy: {accuracy:.4f} "
            f"(Strategy: {self.branch_predictor.strategy_name()})\n"
        )
        self._out(f"Number of Control Hazards: {h.control_hazard_count}\n")
        self._out(f"Number of Data Hazards: {h.data_hazard_count}\n")
        self._out(f"Number of Memory Hazards: {h.memory_hazard_count}\n")
        self._out("-----------------------------------\n")

    def dump_history(self, path: str = "dump.txt") -> None:
        """Write the instruction/register trace and a memory dump to ``path``."""
        with open(path, "w", encoding="utf-8") as out:
            out.write("================== Excecution History ==================\n")
            for inst, regs in zip(self.history.inst_record, self.history.reg_record):
                out.write(inst)
                out.write(regs)
            out.write("========================================================\n\n")
            out.write("====================== Memory Dump ======================\n")
            out.write(self.memory.dump_memory())
            out.write("=========================================================\n\n")