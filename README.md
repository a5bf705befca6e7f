# rvpipesim

A RISC-V simulator with a classic five-stage pipeline: fetch, decode,
execute, memory access and write-back. It runs RV32I programs plus `mul`,
`div` and four fused multiply-add style integer instructions, counts
cycles and data, control and memory hazards, supports data forwarding, and
puts a three-level cache hierarchy in front of a flat 32-bit address space.

The package also has a cache simulator that replays memory traces under
many cache configurations, a fixed two-level cache run over a trace, and a
converter that turns such traces into Dinero-style input.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Running a program

Build a statically linked RISC-V ELF executable, then:

```
rvpipesim program.elf [-v] [-s] [-d] [-x] [-b STRATEGY]
```

Options:

- `-v` verbose output: ELF information, memory layout and per-cycle
  pipeline and register state
- `-s` single step; at each prompt, a line containing `d` writes `dump.txt`
- `-d` write the execution trace, register trace and a memory dump to
  `dump.txt` when the program exits
- `-x` turn data forwarding off; hazards are resolved by stalling
- `-b STRATEGY` branch prediction strategy: `AT` (always taken),
  `NT` (always not taken, the default), `BTFNT` (backward taken, forward
  not taken) or `BPB` (a 4096-entry buffer of 2-bit counters)

The stack pointer starts at `0x80000000` with room for `0x400000` bytes;
growing past that stops the run with "Stack Overflow!". When the simulated
program does something the core cannot run, the error is printed and the
trace and memory dump are written to `dump.txt`.

Programs talk to the simulator through `ecall` with the call number in
`a7` and the argument in `a0`:

| a7    | action                     |
|-------|----------------------------|
| 0     | print the string at `a0`   |
| 1     | print the character `a0`   |
| 2     | print the integer `a0`     |
| 3, 93 | exit and print statistics  |
| 4     | read a character into `a0` |
| 5     | read an integer into `a0`  |

On exit the simulator reports instruction and cycle counts, cycles per
instruction, branch prediction accuracy and hazard counts.

## Cache experiments

A trace file holds accesses of the form `r` or `w` followed by a
hexadecimal address, e.g. `r 7fff1234`.

```
rvpipesim-cachesim trace.txt [-v] [-s]
```

runs the trace against every power-of-two configuration from 32 KiB to
32 MiB, block sizes of 1 to 4096 bytes and associativity 1 to 32 (where
the block count divides evenly), with each combination of write-back /
write-through and write-allocate / no-write-allocate, and writes the miss
rate and total cycles of each to `trace.txt.csv`. `-v` prints every access
and the cache lines after it; `-s` waits for Enter after each access.

```
rvpipesim-cacheopt trace.txt
```

replays the trace through a fixed two-level hierarchy (32 KiB L1, 256 KiB
L2, both 8-way with 64-byte blocks) and prints the statistics of both
levels.

```
rvpipesim-dinero trace.txt
```

writes `trace.txt.d4`, each record as `type address 1`.

## Using it as a library

```python
from rvpipesim.memory import MemoryManager
from rvpipesim.cache import Cache, Policy

memory = MemoryManager()
policy = Policy(cache_size=32 * 1024, block_size=64, block_num=512,
                associativity=8, hit_latency=1, miss_latency=8)
cache = Cache(memory, policy)
memory.set_cache(cache)

memory.set_int(0x1000, 0xDEADBEEF)
assert memory.get_int(0x1000) == 0xDEADBEEF
cache.print_statistics()
```

Other building blocks:

- `rvpipesim.simulator.Simulator` — the pipeline; `step()` advances one
  cycle, `simulate()` runs to exit and returns the `History` of counters
- `rvpipesim.isa.decode` — turns an instruction word into a `DecodedInst`
- `rvpipesim.branch_predictor.BranchPredictor` — the prediction strategies
- `rvpipesim.elf` — `read_elf`, `parse_elf`, `load_into_memory` and
  `format_elf_info`
- `rvpipesim.cachesim` — `parse_trace`, `configurations` and
  `simulate_cache`

## Limitations

- 16-bit compressed instructions are not supported.
- `mulh` and `rem` are decoded but stop the run when executed; division by
  zero also stops it.
- The non-RISC-V machine check is made only when ELF information is shown
  with `-v`.