"""Two-level cache run over a memory access trace."""

from __future__ import annotations

import sys
from collections.abc import Iterable

from .cache import Cache, Policy
from .cachesim import TraceError, parse_trace
from .memory import MemoryAccessError, MemoryManager

L1_POLICY = Policy(32 * 1024, 64, 32 * 1024 // 64, 8, 2, 8)
L2_POLICY = Policy(256 * 1024, 64, 256 * 1024 // 64, 8, 8, 100)


def build_two_level(memory: MemoryManager) -> tuple[Cache, Cache]:
    """Attach an L1/L2 cache pair to ``memory``; return (l1, l2)."""
    l2 = Cache(memory, L2_POLICY)
    l1 = Cache(memory, L1_POLICY, l2)
    memory.set_cache(l1)
    return l1, l2


def run_trace(trace: Iterable[tuple[str, int]]) -> Cache:
    """Run ``trace`` through fresh memory; return the L1 cache."""
    memory = MemoryManager()
    l1, _ = build_two_level(memory)
    for kind, addr in trace:
        try:
            if kind == "r":
                memory.get_byte(addr)
            elif kind == "w":
                memory.set_byte(addr, 0)
            else:
                raise TraceError(f"Illegal type {kind}")
        except MemoryAccessError as exc:
            print(exc, file=sys.stderr)
    return l1


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        return 1
    path = args[0]
    try:
        with open(path, encoding="utf-8") as trace_file:
            trace = parse_trace(trace_file)
    except OSError:
        print(f"Unable to open file {path}")
        return 1
    except TraceError as exc:
        print(exc, file=sys.stderr)
        return 1
    l1 = run_trace(trace)
    print("L1 Cache:")
    l1.print_statistics()
    return 0