"""Set-associative cache with LRU replacement and configurable write policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .memory import MemoryManager

ADDRESS_MASK = 0xFFFFFFFF
# Latency reported for a byte fetched straight from main memory.
MEMORY_LATENCY = 100


class PolicyError(ValueError):
    """Raised when a cache policy is inconsistent."""


def _is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def _log2i(value: int) -> int:
    return value.bit_length() - 1


@dataclass(frozen=True)
class Policy:
    """Geometry and latencies of one cache level (sizes in bytes)."""

    cache_size: int
    block_size: int
    block_num: int
    associativity: int
    hit_latency: int
    miss_latency: int

    def validate(self) -> None:
        """Raise PolicyError if the geometry does not fit together."""
        if not _is_power_of_two(self.cache_size):
            raise PolicyError(f"Invalid Cache Size {self.cache_size}")
        if not _is_power_of_two(self.block_size):
            raise PolicyError(f"Invalid Block Size {self.block_size}")
        if self.cache_size % self.block_size != 0:
            raise PolicyError("cacheSize % blockSize != 0")
        if self.block_num * self.block_size != self.cache_size:
            raise PolicyError("blockNum * blockSize != cacheSize")
        if self.associativity <= 0 or self.block_num % self.associativity != 0:
            raise PolicyError("blockNum % associativity != 0")


@dataclass
class Block:
    """One cache line."""

    set_index: int
    size: int
    valid: bool = False
    modified: bool = False
    tag: int = 0
    last_reference: int = 0
    data: bytearray | None = None

    def __post_init__(self) -> None:
        if self.data is None:
            self.data = bytearray(self.size)


@dataclass
class Statistics:
    num_read: int = 0
    num_write: int = 0
    num_hit: int = 0
    num_miss: int = 0
    total_cycles: int = 0


class Cache:
    """A cache level backed by a lower cache or, at the bottom, by memory.

    After every ``get_byte``/``set_byte`` the latency the access reported is
    left in ``last_cycles`` (0 when the access reports none).
    """

    def __init__(
        self,
        memory: MemoryManager,
        policy: Policy,
        lower_cache: Cache | None = None,
        write_back: bool = True,
        write_allocate: bool = True,
    ) -> None:
        policy.validate()
        self.memory = memory
        self.policy = policy
        self.lower_cache = lower_cache
        self.write_back = write_back
        self.write_allocate = write_allocate
        self.statistics = Statistics()
        self.last_cycles = 0
        self._reference_counter = 0
        self._offset_bits = _log2i(policy.block_size)
        self._id_bits = _log2i(policy.block_num // policy.associativity)
        # Valid lines of each touched set, in slot order; untouched slots are
        # invalid and, since lines are never invalidated, always at the end.
        self._sets: dict[int, list[Block]] = {}

    # Address decomposition

    def _tag(self, addr: int) -> int:
        return (addr & ADDRESS_MASK) >> (self._offset_bits + self._id_bits)

    def _set_id(self, addr: int) -> int:
        return (addr >> self._offset_bits) & ((1 << self._id_bits) - 1)

    def _offset(self, addr: int) -> int:
        return addr & (self.policy.block_size - 1)

    def _block_addr(self, block: Block) -> int:
        addr = (block.tag << (self._offset_bits + self._id_bits)) | (
            block.set_index << self._offset_bits
        )
        return addr & ADDRESS_MASK

    # Lookup

    def _lookup(self, addr: int) -> Block | None:
        tag = self._tag(addr)
        return next(
            (b for b in self._sets.get(self._set_id(addr), ()) if b.tag == tag), None
        )

    def get_block_id(self, addr: int) -> int | None:
        """Index of the line holding ``addr``, or None if it is not cached."""
        tag, set_id = self._tag(addr), self._set_id(addr)
        for position, block in enumerate(self._sets.get(set_id, ())):
            if block.tag == tag:
                return set_id * self.policy.associativity + position
        return None

    def in_cache(self, addr: int) -> bool:
        return self.get_block_id(addr) is not None

    # Accesses

    def get_byte(self, addr: int) -> int:
        addr &= ADDRESS_MASK
        self._reference_counter += 1
        stats = self.statistics
        stats.num_read += 1
        block = self._lookup(addr)
        if block is not None:
            stats.num_hit += 1
            stats.total_cycles += self.policy.hit_latency
            self.last_cycles = self.policy.hit_latency
        else:
            stats.num_miss += 1
            stats.total_cycles += self.policy.miss_latency
            block, self.last_cycles = self._load_block(addr)
        block.last_reference = self._reference_counter
        return block.data[self._offset(addr)]

    def set_byte(self, addr: int, val: int) -> None:
        addr &= ADDRESS_MASK
        val &= 0xFF
        self._reference_counter += 1
        stats = self.statistics
        stats.num_write += 1
        block = self._lookup(addr)
        if block is not None:
            stats.num_hit += 1
            stats.total_cycles += self.policy.hit_latency
            block.modified = True
            block.last_reference = self._reference_counter
            block.data[self._offset(addr)] = val
            if not self.write_back:
                self._write_block(block)
                stats.total_cycles += self.policy.miss_latency
            self.last_cycles = self.policy.hit_latency
            return

        stats.num_miss += 1
        stats.total_cycles += self.policy.miss_latency
        if self.write_allocate:
            block, self.last_cycles = self._load_block(addr)
            block.modified = True
            block.last_reference = self._reference_counter
            block.data[self._offset(addr)] = val
        else:
            if self.lower_cache is None:
                self.memory.set_byte_no_cache(addr, val)
            else:
                self.lower_cache.set_byte(addr, val)
            self.last_cycles = 0

    def _load_block(self, addr: int) -> tuple[Block, int]:
        """Bring the line holding ``addr`` in, evicting by LRU if needed."""
        size = self.policy.block_size
        begin = addr & ~(size - 1) & ADDRESS_MASK
        data = bytearray(size)
        cycles = 0
        for i in range(size):
            if self.lower_cache is None:
                data[i] = self.memory.get_byte_no_cache(begin + i)
                cycles = MEMORY_LATENCY
            else:
                data[i] = self.lower_cache.get_byte(begin + i)
                cycles = self.lower_cache.last_cycles

        set_id = self._set_id(addr)
        block = Block(set_index=set_id, size=size, valid=True, tag=self._tag(addr), data=data)
        ways = self._sets.setdefault(set_id, [])
        if len(ways) < self.policy.associativity:
            ways.append(block)
        else:
            victim = min(range(len(ways)), key=lambda p: ways[p].last_reference)
            evicted = ways[victim]
            if self.write_back and evicted.modified:
                self._write_block(evicted)
                self.statistics.total_cycles += self.policy.miss_latency
            ways[victim] = block
        return block, cycles

    def _write_block(self, block: Block) -> None:
        begin = self._block_addr(block)
        for i, value in enumerate(block.data):
            if self.lower_cache is None:
                self.memory.set_byte_no_cache(begin + i, value)
            else:
                self.lower_cache.set_byte(begin + i, value)

    # Reporting

    def _all_blocks(self):
        assoc = self.policy.associativity
        for set_id in range(self.policy.block_num // assoc):
            ways = self._sets.get(set_id, [])
            yield from ways
            for _ in range(assoc - len(ways)):
                yield Block(set_index=set_id, size=self.policy.block_size)

    def print_info(self, verbose: bool) -> None:
        p = self.policy
        print("---------- Cache Info -----------")
        print(f"Cache Size: {p.cache_size} bytes")
        print(f"Block Size: {p.block_size} bytes")
        print(f"Block Num: {p.block_num}")
        print(f"Associativiy: {p.associativity}")
        print(f"Hit Latency: {p.hit_latency}")
        print(f"Miss Latency: {p.miss_latency}")
        if verbose:
            for j, b in enumerate(self._all_blocks()):
                print(
                    f"Block {j}: tag 0x{b.tag:x} id {b.set_index} "
                    f"{'valid' if b.valid else 'invalid'} "
                    f"{'modified' if b.modified else 'unmodified'} "
                    f"(last ref {b.last_reference})"
                )

    def print_statistics(self) -> None:
        s = self.statistics
        print("-------- STATISTICS ----------")
        print(f"Num Read: {s.num_read}")
        print(f"Num Write: {s.num_write}")
        print(f"Num Hit: {s.num_hit}")
        print(f"Num Miss: {s.num_miss}")
        print(f"Total Cycles: {s.total_cycles}")
        if self.lower_cache is not None:
            print("---------- LOWER CACHE ----------")
            self.lower_cache.print_statistics()