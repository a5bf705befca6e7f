"""Conversion of ``r``/``w`` address traces to the Dinero IV input format."""

from __future__ import annotations

import re
import sys
from collections.abc import Iterable
from typing import Union

_RECORD = re.compile(r"\s*(\S)\s*(?:0[xX])?([0-9a-fA-F]+)")


def convert(lines: Union[str, Iterable[str]]) -> list[str]:
    """Turn each ``<type> <hex addr>`` record into ``<type> <hex addr> 1``."""
    if isinstance(lines, str):
        text = lines
    else:
        text = "\n".join(line.rstrip("\n") for line in lines)
    out = []
    pos = 0
    while (match := _RECORD.match(text, pos)) is not None:
        addr = int(match.group(2), 16) & 0xFFFFFFFF
        out.append(f"{match.group(1)} {addr:x} 1")
        pos = match.end()
    return out


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        return 1
    path = args[0]
    try:
        with open(path, encoding="utf-8") as infile:
            records = convert(infile)
    except OSError:
        print(f"Invalid file path {path}")
        return 1
    with open(path + ".d4", "w", encoding="utf-8") as outfile:
        outfile.writelines(record + "\n" for record in records)
    return 0