"""Reading ELF executables and loading their segments into simulated memory."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from .memory import MemoryManager

ELFCLASS32 = 1
ELFCLASS64 = 2
ELFDATA2LSB = 1
ELFDATA2MSB = 2
EM_RISCV = 243
PT_NULL = 0

_MAGIC = b"\x7fELF"
_EI_NIDENT = 16
_MAX_ADDR = 0xFFFFFFFF

# (file header after e_ident, section header, program header)
_LAYOUTS = {
    ELFCLASS32: ("HHIIIIIHHHHHH", "IIIIIIIIII", "IIIIIIII"),
    ELFCLASS64: ("HHIQQQIHHHHHH", "IIQQQQIIQQ", "IIQQQQQQ"),
}


class ElfError(ValueError):
    """Raised for a file that is not a usable ELF executable."""


@dataclass(frozen=True)
class Section:
    index: int
    name: str
    type: int
    flags: int
    address: int
    offset: int
    size: int


@dataclass(frozen=True)
class Segment:
    index: int
    type: int
    flags: int
    virtual_address: int
    physical_address: int
    offset: int
    file_size: int
    memory_size: int
    align: int
    data: bytes = field(default=b"", repr=False)


@dataclass
class ElfFile:
    """The parts of an ELF file the simulator needs."""

    elf_class: int
    encoding: int
    type: int
    machine: int
    entry: int
    sections: list[Section] = field(default_factory=list)
    segments: list[Segment] = field(default_factory=list)


def _unpack(fmt: str, data: bytes, offset: int, what: str) -> tuple[int, ...]:
    try:
        return struct.unpack_from(fmt, data, offset)
    except struct.error:
        raise ElfError(f"Truncated {what}") from None


def _cstring(data: bytes, start: int) -> str:
    end = data.find(b"\0", start)
    if end < 0:
        end = len(data)
    return data[start:end].decode("utf-8", errors="replace")


def parse_elf(data: bytes) -> ElfFile:
    """Parse the header, section table and program headers of ``data``."""
    data = bytes(data)
    if len(data) < _EI_NIDENT or data[:4] != _MAGIC:
        raise ElfError("Not an ELF file")
    elf_class = data[4]
    if elf_class not in _LAYOUTS:
        raise ElfError(f"Unsupported ELF class {elf_class}")
    encoding = data[5]
    order = ">" if encoding == ELFDATA2MSB else "<"
    header_fmt, section_fmt, segment_fmt = (order + f for f in _LAYOUTS[elf_class])

    (
        e_type, machine, _version, entry, phoff, shoff, _flags,
        _ehsize, phentsize, phnum, shentsize, shnum, shstrndx,
    ) = _unpack(header_fmt, data, _EI_NIDENT, "ELF header")

    raw_sections = [
        _unpack(section_fmt, data, shoff + i * shentsize, "section header")
        for i in range(shnum)
    ]
    str_offset = str_size = None
    if shstrndx != 0 and shstrndx < len(raw_sections):
        str_offset, str_size = raw_sections[shstrndx][4], raw_sections[shstrndx][5]

    sections = []
    for i, (name_off, s_type, s_flags, addr, offset, size, *_rest) in enumerate(raw_sections):
        name = ""
        if str_offset is not None and name_off < str_size:
            name = _cstring(data, str_offset + name_off)
        sections.append(Section(i, name, s_type, s_flags, addr, offset, size))

    segments = []
    for i in range(phnum):
        values = _unpack(segment_fmt, data, phoff + i * phentsize, "program header")
        if elf_class == ELFCLASS32:
            p_type, offset, vaddr, paddr, filesz, memsz, p_flags, align = values
        else:
            p_type, p_flags, offset, vaddr, paddr, filesz, memsz, align = values
        content = b""
        if p_type != PT_NULL and filesz:
            content = data[offset:offset + filesz]
            if len(content) != filesz:
                raise ElfError(f"Truncated data of segment {i}")
        segments.append(
            Segment(i, p_type, p_flags, vaddr, paddr, offset, filesz, memsz, align, content)
        )

    return ElfFile(elf_class, encoding, e_type, machine, entry, sections, segments)


def read_elf(path: Union[str, Path]) -> ElfFile:
    """Read and parse the ELF file at ``path``."""
    return parse_elf(Path(path).read_bytes())


def load_into_memory(elf: ElfFile, memory: MemoryManager) -> None:
    """Copy every segment into memory, zero-filling past its file data."""
    for seg in elf.segments:
        if seg.virtual_address + seg.memory_size > _MAX_ADDR:
            raise ElfError(
                f"ELF address space larger than 32bit! Seg {seg.index} has max addr "
                f"of 0x{seg.virtual_address + seg.memory_size:x}"
            )
        addr = seg.virtual_address
        content = seg.data[:seg.memory_size]
        for i, value in enumerate(content):
            memory.set_byte_no_cache(addr + i, value)
        for p in range(addr + len(content), addr + seg.memory_size):
            memory.set_byte_no_cache(p, 0)


def format_elf_info(elf: ElfFile) -> str:
    """Describe the file's class, encoding, sections and segments."""
    lines = ["==========ELF Information=========="]
    lines.append("Type: ELF32" if elf.elf_class == ELFCLASS32 else "Type: ELF64")
    if elf.encoding == ELFDATA2LSB:
        lines.append("Encoding: Little Endian")
    else:
        lines.append("Encoding: Large Endian")
    if elf.machine != EM_RISCV:
        raise ElfError(f"ISA: Unsupported(0x{elf.machine:x})")
    lines.append(f"ISA: RISC-V(0x{elf.machine:x})")

    lines.append(f"Number of Sections: {len(elf.sections)}")
    lines.append("ID\tName\t\tAddress\tSize")
    lines.extend(
        f"[{s.index}]\t{s.name:<12}\t0x{s.address:x}\t{s.size}" for s in elf.sections
    )
    lines.append(f"Number of Segments: {len(elf.segments)}")
    lines.append("ID\tFlags\tAddress\tFSize\tMSize")
    lines.extend(
        f"[{g.index}]\t0x{g.flags:x}\t0x{g.virtual_address:x}\t{g.file_size}\t{g.memory_size}"
        for g in elf.segments
    )
    lines.append("===================================")
    return "\n".join(lines) + "\n"