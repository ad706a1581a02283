"""Little-endian (reflected) CRC-32 as used by the flash partition tooling."""

from __future__ import annotations

_POLYNOMIAL = 0xEDB88320
_MASK = 0xFFFFFFFF


def _make_table() -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte
        for _ in range(8):
            crc = (crc >> 1) ^ _POLYNOMIAL if crc & 1 else crc >> 1
        table.append(crc)
    return tuple(table)


_TABLE = _make_table()


def crc32_le(crc: int, data: bytes | bytearray | memoryview) -> int:
    """Continue the CRC-32 ``crc`` over ``data`` and return the new value."""
    crc = (crc & _MASK) ^ _MASK
    for byte in bytes(data):
        crc = _TABLE[(crc ^ byte) & 0xFF] ^ (crc >> 8)
    return crc ^ _MASK