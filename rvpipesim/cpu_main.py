"""Command line entry point of the pipelined CPU simulator."""

from __future__ import annotations

import sys
from dataclasses import dataclass

from .branch_predictor import BranchPredictor, Strategy
from .cache import Cache, Policy
from .elf import ElfError, format_elf_info, load_into_memory, read_elf
from .memory import MemoryManager
from .simulator import SimulationError, Simulator

STACK_BASE_ADDR = 0x80000000
STACK_SIZE = 0x400000

L1_POLICY = Policy(32 * 1024, 64, 32 * 1024 // 64, 8, 0, 8)
L2_POLICY = Policy(256 * 1024, 64, 256 * 1024 // 64, 8, 8, 20)
L3_POLICY = Policy(8 * 1024 * 1024, 64, 8 * 1024 * 1024 // 64, 8, 20, 100)


class UsageError(ValueError):
    """Raised for invalid command-line arguments."""


@dataclass
class Options:
    elf_file: str
    verbose: bool = False
    single_step: bool = False
    dump_history: bool = False
    data_forwarding: bool = True
    strategy: Strategy = Strategy.NT


def parse_args(argv: list[str]) -> Options:
    """Parse the arguments following the program name."""
    options = Options(elf_file="")
    elf_file = None
    args = iter(argv)
    for arg in args:
        if not arg.startswith("-"):
            if elf_file is not None:
                raise UsageError("more than one ELF file given")
            elf_file = arg
            continue
        flag = arg[1:2]
        if flag == "v":
            options.verbose = True
        elif flag == "s":
            options.single_step = True
        elif flag == "d":
            options.dump_history = True
        elif flag == "x":
            options.data_forwarding = False
        elif flag == "b":
            value = next(args, None)
            if value is None:
                raise UsageError("missing branch prediction strategy")
            try:
                options.strategy = Strategy(value)
            except ValueError:
                raise UsageError(f"unknown strategy {value}") from None
        else:
            raise UsageError(f"unknown option {arg}")
    if elf_file is None:
        raise UsageError("no ELF file given")
    options.elf_file = elf_file
    return options


def usage() -> str:
    return (
        "Usage: Simulator riscv-elf-file [-v] [-s] [-d] [-b param]\n"
        "Parameters: \n\t[-v] verbose output \n\t[-s] single step\n"
        "\t[-d] dump memory and register trace to dump.txt\n"
        "\t[-b param] branch perdiction strategy, accepted param AT, NT, BTFNT, BPB\n"
    )


def build_cache_hierarchy(memory: MemoryManager) -> tuple[Cache, Cache, Cache]:
    """Attach a three-level cache to ``memory``; return (l1, l2, l3)."""
    l3 = Cache(memory, L3_POLICY)
    l2 = Cache(memory, L2_POLICY, l3)
    l1 = Cache(memory, L1_POLICY, l2)
    memory.set_cache(l1)
    return l1, l2, l3


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    try:
        options = parse_args(args)
    except UsageError:
        print(usage(), end="")
        return 1

    memory = MemoryManager()
    build_cache_hierarchy(memory)

    try:
        elf = read_elf(options.elf_file)
    except (OSError, ElfError):
        print(f"Fail to load ELF file {options.elf_file}!", file=sys.stderr)
        return 1

    try:
        if options.verbose:
            print(format_elf_info(elf), end="")
        load_into_memory(elf, memory)
    except ElfError as exc:
        print(exc, file=sys.stderr)
        return 1

    if options.verbose:
        memory.print_info()

    simulator = Simulator(memory, BranchPredictor(options.strategy))
    simulator.is_single_step = options.single_step
    simulator.verbose = options.verbose
    simulator.should_dump_history = options.dump_history
    simulator.data_forwarding = options.data_forwarding
    simulator.dump_on_panic = True
    simulator.pc = elf.entry & 0xFFFFFFFF
    simulator.init_stack(STACK_BASE_ADDR, STACK_SIZE)
    try:
        simulator.simulate()
    except SimulationError as exc:
        print(exc, file=sys.stderr)
        print("Execution history and memory dump in dump.txt", file=sys.stderr)
        return 1
    return 0