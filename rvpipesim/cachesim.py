"""Sweep of single-level cache configurations over a memory access trace."""

from __future__ import annotations

import math
import re
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Union

from .cache import Cache, Policy
from .memory import MemoryManager

HIT_LATENCY = 1
MISS_LATENCY = 8
CSV_HEADER = (
    "cacheSize,blockSize,associativity,writeBack,writeAllocate,missRate,totalCycles\n"
)

_RECORD = re.compile(r"\s*(\S)\s*(?:0[xX])?([0-9a-fA-F]+)")


class TraceError(ValueError):
    """Raised for a trace record with an unknown access type."""


@dataclass(frozen=True)
class SimulationResult:
    cache_size: int
    block_size: int
    associativity: int
    write_back: bool
    write_allocate: bool
    miss_rate: float
    total_cycles: int


def _text(lines: Union[str, Iterable[str]]) -> str:
    if isinstance(lines, str):
        return lines
    return "\n".join(line.rstrip("\n") for line in lines)


def parse_trace(lines: Union[str, Iterable[str]]) -> list[tuple[str, int]]:
    """Read ``r``/``w`` records with hexadecimal addresses.

    Reading stops at the first text that is not a record.
    """
    text = _text(lines)
    records = []
    pos = 0
    while (match := _RECORD.match(text, pos)) is not None:
        kind = match.group(1)
        if kind not in ("r", "w"):
            raise TraceError(f"Illegal type {kind}")
        records.append((kind, int(match.group(2), 16) & 0xFFFFFFFF))
        pos = match.end()
    return records


def configurations() -> Iterator[tuple[int, int, int, bool, bool]]:
    """Every swept (size, block, associativity, write-back, write-allocate)."""
    cache_size = 32 * 1024
    while cache_size <= 32 * 1024 * 1024:
        block_size = 1
        while block_size <= 4096:
            associativity = 1
            while associativity <= 32:
                if (cache_size // block_size) % associativity == 0:
                    for write_back, write_allocate in (
                        (True, True), (True, False), (False, True), (False, False)
                    ):
                        yield cache_size, block_size, associativity, write_back, write_allocate
                associativity *= 2
            block_size *= 2
        cache_size *= 2


def simulate_cache(
    trace: Iterable[tuple[str, int]],
    cache_size: int,
    block_size: int,
    associativity: int,
    write_back: bool,
    write_allocate: bool,
    verbose: bool = False,
) -> SimulationResult:
    """Run ``trace`` through one freshly built cache and report its miss rate."""
    policy = Policy(
        cache_size, block_size, cache_size // block_size, associativity,
        HIT_LATENCY, MISS_LATENCY,
    )
    memory = MemoryManager()
    cache = Cache(memory, policy, None, write_back, write_allocate)
    memory.set_cache(cache)
    cache.print_info(False)

    for kind, addr in trace:
        if verbose:
            print(f"{kind} {addr:x}")
        if kind == "r":
            cache.get_byte(addr)
        elif kind == "w":
            cache.set_byte(addr, 0)
        else:
            raise TraceError(f"Illegal type {kind}")
        if verbose:
            cache.print_info(True)

    cache.print_statistics()
    stats = cache.statistics
    accesses = stats.num_hit + stats.num_miss
    miss_rate = stats.num_miss / accesses if accesses else math.nan
    return SimulationResult(
        cache_size, block_size, associativity, write_back, write_allocate,
        miss_rate, stats.total_cycles,
    )


def _csv_row(result: SimulationResult) -> str:
    return (
        f"{result.cache_size},{result.block_size},{result.associativity},"
        f"{int(result.write_back)},{int(result.write_allocate)},"
        f"{result.miss_rate:.6g},{result.total_cycles}\n"
    )


def _paused(trace: Iterable[tuple[str, int]]) -> Iterator[tuple[str, int]]:
    for record in trace:
        yield record
        print("Press Enter to Continue...", end="", flush=True)
        sys.stdin.readline()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    verbose = single_step = False
    path = None
    for arg in args:
        if arg.startswith("-"):
            flag = arg[1:2]
            if flag == "v":
                verbose = True
            elif flag == "s":
                single_step = True
            else:
                return 1
        elif path is None:
            path = arg
        else:
            return 1
    if path is None:
        return 1

    try:
        with open(path, encoding="utf-8") as trace_file:
            trace = parse_trace(trace_file)
    except OSError:
        print(f"Unable to open file {path}")
        return 1
    except TraceError as exc:
        print(exc, file=sys.stderr)
        return 1

    csv_path = path + ".csv"
    with open(csv_path, "w", encoding="utf-8") as csv_file:
        csv_file.write(CSV_HEADER)
        for config in configurations():
            records = _paused(trace) if single_step else trace
            csv_file.write(_csv_row(simulate_cache(records, *config, verbose=verbose)))
    print(f"Result has been written to {csv_path}")
    return 0