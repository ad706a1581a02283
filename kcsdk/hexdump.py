"""Hex and ASCII dump of binary data."""

from __future__ import annotations


def _printable(byte: int) -> str:
    return chr(byte) if 0x20 <= byte < 0x7F else "."


def hexdump(data: bytes | bytearray | memoryview, cols: int = 8) -> str:
    """Return a dump of ``data``: an offset, ``cols`` hex bytes and their ASCII form per line."""
    if cols <= 0:
        raise ValueError("cols must be positive")
    data = bytes(data)
    lines = []
    for offset in range(0, len(data), cols):
        chunk = data[offset:offset + cols]
        hex_part = "".join(f"{b:02x} " for b in chunk) + "   " * (cols - len(chunk))
        text = "".join(_printable(b) for b in chunk).ljust(cols)
        lines.append(f"0x{offset:06x}: {hex_part}{text}\n")
    return "".join(lines)