"""
Length-delimited frame extraction for PRS1 chunk blobs.

A chunk file is a sequence of frames, each introduced by a little-endian
u16 length. Frames long enough to carry a checksum may end with a CRC16 of
the preceding bytes. An implausible length ends decoding of the blob
without raising; whatever trails it is treated as partial data.
"""

import logging

from collections.abc import Iterator
from dataclasses import dataclass, field

from prs1core.constants import FrameDecodingConstants
from prs1core.parsers.byte_reader import BytesLike, ByteReader
from prs1core.parsers.checksums import verify_trailing_crc16

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Frame:
    """
    One length-delimited unit of a chunk blob.

    Attributes:
        offset: Offset of the length field within the blob
        length: Declared length (bytes following the length field)
        payload: Frame bytes with a verified CRC stripped
        raw: Frame bytes as stored
        crc_ok: True when the trailing CRC16 matched
        crc16: Stored CRC value when it matched, else None
    """

    offset: int
    length: int
    payload: bytes = field(repr=False)
    raw: bytes = field(repr=False)
    crc_ok: bool = False
    crc16: int | None = None


class FrameDecoder:
    """
    Split a raw chunk blob into frames.

    Example:
        >>> decoder = FrameDecoder(enforce_crc=True)
        >>> frames = list(decoder.decode(blob))
    """

    def __init__(
        self,
        trust_frame_crc: bool = True,
        enforce_crc: bool = False,
        max_frames: int = FrameDecodingConstants.MAX_FRAMES,
    ):
        """
        Args:
            trust_frame_crc: Check and strip a trailing CRC16 when it matches
            enforce_crc: Drop frames whose CRC did not match
            max_frames: Hard cap on frames per blob
        """
        self.trust_frame_crc = trust_frame_crc
        self.enforce_crc = enforce_crc
        self.max_frames = max_frames

    def decode(self, blob: BytesLike) -> Iterator[Frame]:
        """
        Yield frames from ``blob`` in file order.

        The generator holds no state beyond its own reader, so decoding the
        same blob twice yields equal frames.
        """
        reader = ByteReader(blob)
        emitted = 0
        dropped = 0

        while reader.remaining >= FrameDecodingConstants.LENGTH_FIELD_BYTES:
            if emitted >= self.max_frames:
                logger.warning(f"Frame cap {self.max_frames} reached, stopping")
                break

            offset = reader.pos
            length = reader.read_uint16()
            if length == 0 or length > reader.remaining:
                logger.debug(
                    f"Stopping at offset {offset}: declared length {length}, "
                    f"{reader.remaining} bytes remain"
                )
                break

            raw = reader.read_bytes(length)
            frame = self._build_frame(offset, raw)

            if self.enforce_crc and not frame.crc_ok:
                dropped += 1
                continue

            emitted += 1
            yield frame

        if dropped:
            logger.debug(f"Dropped {dropped} frames with CRC mismatch")

    def _build_frame(self, offset: int, raw: bytes) -> Frame:
        if (
            self.trust_frame_crc
            and len(raw) >= FrameDecodingConstants.MIN_FRAME_FOR_CRC
            and verify_trailing_crc16(raw)
        ):
            return Frame(
                offset=offset,
                length=len(raw),
                payload=raw[: -FrameDecodingConstants.CRC_BYTES],
                raw=raw,
                crc_ok=True,
                crc16=raw[-2] | (raw[-1] << 8),
            )
        return Frame(offset=offset, length=len(raw), payload=raw, raw=raw)
