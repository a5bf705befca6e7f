"""Flat 32-bit byte-addressable memory, optionally fronted by a cache."""

from __future__ import annotations

from typing import Any

ADDRESS_MASK = 0xFFFFFFFF
# Addresses strictly below this limit are valid.
ADDRESS_LIMIT = 0xFFFFFFFF
PAGE_SIZE = 4096
_PAGE_SHIFT = 12
_WIDTHS = (1, 2, 4)


class MemoryAccessError(Exception):
    """Raised on an access outside the addressable range."""

    def __init__(self, message: str, addr: int) -> None:
        super().__init__(message)
        self.addr = addr


class MemoryManager:
    """A single flat address space, stored sparsely in zero-filled pages."""

    def __init__(self) -> None:
        self.cache: Any = None
        self._pages: dict[int, bytearray] = {}

    def set_cache(self, cache: Any) -> None:
        """Route cached accesses through ``cache`` (or directly when None)."""
        self.cache = cache

    @staticmethod
    def _check(addr: int, what: str) -> int:
        addr &= ADDRESS_MASK
        if addr >= ADDRESS_LIMIT:
            raise MemoryAccessError(f"{what} to invalid addr 0x{addr:x}!", addr)
        return addr

    def copy_from(self, src: bytes, dest: int) -> None:
        """Write the bytes of ``src`` starting at ``dest``."""
        for i, value in enumerate(bytes(src)):
            self.set_byte(self._check(dest + i, "Data copy"), value)

    def set_byte_no_cache(self, addr: int, val: int) -> None:
        addr = self._check(addr, "Byte write")
        val &= 0xFF
        page_no = addr >> _PAGE_SHIFT
        page = self._pages.get(page_no)
        if page is None:
            if val == 0:
                return
            page = self._pages[page_no] = bytearray(PAGE_SIZE)
        page[addr & (PAGE_SIZE - 1)] = val

    def get_byte_no_cache(self, addr: int) -> int:
        addr = self._check(addr, "Byte read")
        page = self._pages.get(addr >> _PAGE_SHIFT)
        return 0 if page is None else page[addr & (PAGE_SIZE - 1)]

    def _store_byte(self, addr: int, val: int) -> int:
        addr = self._check(addr, "Byte write")
        if self.cache is None:
            self.set_byte_no_cache(addr, val)
            return 0
        self.cache.set_byte(addr, val & 0xFF)
        return self.cache.last_cycles

    def _load_byte(self, addr: int) -> tuple[int, int]:
        addr = self._check(addr, "Byte read")
        if self.cache is None:
            return self.get_byte_no_cache(addr), 0
        value = self.cache.get_byte(addr)
        return value, self.cache.last_cycles

    def set_byte(self, addr: int, val: int) -> None:
        self._store_byte(addr, val)

    def get_byte(self, addr: int) -> int:
        return self._load_byte(addr)[0]

    def read(self, addr: int, length: int) -> tuple[int, int]:
        """Read a little-endian unsigned value of 1, 2 or 4 bytes.

        Returns ``(value, cycles)`` where ``cycles`` is the latency the cache
        reported for the first byte (0 without a cache).
        """
        if length not in _WIDTHS:
            raise ValueError(f"Unknown memory access length {length}")
        value, cycles = self._load_byte(addr)
        for i in range(1, length):
            value |= self._load_byte(addr + i)[0] << (8 * i)
        return value, cycles

    def write(self, addr: int, value: int, length: int) -> int:
        """Write ``value`` little-endian over 1, 2 or 4 bytes; return cycles."""
        if length not in _WIDTHS:
            raise ValueError(f"Unknown memory access length {length}")
        cycles = self._store_byte(addr, value & 0xFF)
        for i in range(1, length):
            self._store_byte(addr + i, (value >> (8 * i)) & 0xFF)
        return cycles

    def set_short(self, addr: int, val: int) -> None:
        self.write(addr, val, 2)

    def get_short(self, addr: int) -> int:
        return self.read(addr, 2)[0]

    def set_int(self, addr: int, val: int) -> None:
        self.write(addr, val, 4)

    def get_int(self, addr: int) -> int:
        return self.read(addr, 4)[0]

    def print_info(self) -> str:
        """Print a description of the memory layout and return that text."""
        text = (
            "Memory Info: \n"
            "Single large page covering the entire address space.\n"
        )
        print(text, end="")
        return text

    def print_statistics(self) -> None:
        if self.cache is None:
            raise RuntimeError("no cache attached to memory")
        print("---------- CACHE STATISTICS ----------")
        self.cache.print_statistics()

    def dump_memory(self) -> str:
        """Text dump of every page that has ever held a non-zero byte."""
        parts = ["Memory Dump: \n"]
        for page_no in sorted(self._pages):
            base = page_no * PAGE_SIZE
            parts.append(f"0x{base:x}-0x{(base + PAGE_SIZE) & ADDRESS_MASK:x}\n")
            parts.extend(
                f"  0x{base + offset:x}: 0x{value:x}\n"
                for offset, value in enumerate(self._pages[page_no])
            )
        return "".join(parts)