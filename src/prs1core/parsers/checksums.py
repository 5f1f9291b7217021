"""Checksum and byte formatting helpers for PRS1 chunk data."""

from prs1core.constants import FrameDecodingConstants


def _build_crc16_table(poly: int) -> tuple[int, ...]:
    table = []
    for byte in range(256):
        crc = byte << 8
        for _ in range(8):
            crc = ((crc << 1) ^ poly) if crc & 0x8000 else (crc << 1)
            crc &= 0xFFFF
        table.append(crc)
    return tuple(table)


_CRC16_TABLE = _build_crc16_table(FrameDecodingConstants.CRC16_POLY)


def crc16_ccitt_false(data: bytes | bytearray | memoryview) -> int:
    """
    Calculate CRC16-CCITT-FALSE (poly 0x1021, init 0xFFFF, no reflection).

    Args:
        data: Bytes to checksum

    Returns:
        16-bit CRC value
    """
    crc = FrameDecodingConstants.CRC16_INIT
    for byte in bytes(data):
        crc = ((crc << 8) & 0xFFFF) ^ _CRC16_TABLE[((crc >> 8) ^ byte) & 0xFF]
    return crc


def verify_trailing_crc16(raw: bytes) -> bool:
    """True if the last two bytes of ``raw`` are the little-endian CRC16 of the rest."""
    if len(raw) < FrameDecodingConstants.MIN_FRAME_FOR_CRC:
        return False
    stored = raw[-2] | (raw[-1] << 8)
    return crc16_ccitt_false(raw[:-2]) == stored


def hex_of(data: bytes, max_len: int | None = None) -> str:
    """
    Lowercase hex dump of ``data``, truncated with '...' past ``max_len`` bytes.

    Used in debug logging of unknown records.
    """
    shown = data if max_len is None else data[:max_len]
    suffix = "..." if len(shown) < len(data) else ""
    return shown.hex() + suffix
