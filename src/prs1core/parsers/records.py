"""
Sub-record splitting of frame payloads.

PRS1 frames often pack several sub-records, each with a
``(type:u8, flags:u8, len:u16)`` header. The framing is not documented, so
the split is heuristic: the moment the headers stop looking plausible the
decoder gives up on the frame and, if nothing was emitted yet, hands out
the whole payload as a single record of type 0xFF.
"""

import logging

from collections.abc import Iterator
from dataclasses import dataclass, field

from prs1core.constants import RecordDecodingConstants
from prs1core.parsers.byte_reader import ByteReader
from prs1core.parsers.frames import Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Record:
    """
    One sub-record of a frame payload.

    A ``type`` of 0xFF marks the whole-payload fallback; its ``data`` is the
    entire frame payload.
    """

    frame_offset: int
    index_in_frame: int
    type: int
    flags: int
    data: bytes = field(repr=False)
    crc_ok: bool = False
    raw: bytes = field(default=b"", repr=False)

    @property
    def is_fallback(self) -> bool:
        return self.type == RecordDecodingConstants.FALLBACK_TYPE


class RecordDecoder:
    """Split frames into sub-records with a hard per-frame cap."""

    def __init__(
        self, max_records: int = RecordDecodingConstants.MAX_RECORDS_PER_FRAME
    ):
        self.max_records = max_records

    def fallback(self, frame: Frame) -> Record:
        """Single record wrapping the entire payload."""
        return Record(
            frame_offset=frame.offset,
            index_in_frame=0,
            type=RecordDecodingConstants.FALLBACK_TYPE,
            flags=0,
            data=frame.payload,
            crc_ok=frame.crc_ok,
            raw=frame.payload,
        )

    def decode(self, frame: Frame) -> Iterator[Record]:
        """
        Yield the sub-records of ``frame``.

        When the first sub-record header is implausible the whole payload is
        yielded as one fallback record. A later implausible header ends the
        frame with only the records parsed so far, and no fallback.
        """
        payload = frame.payload
        header_bytes = RecordDecodingConstants.HEADER_BYTES

        if len(payload) < header_bytes:
            yield self.fallback(frame)
            return

        reader = ByteReader(payload)
        emitted = 0

        while reader.remaining >= header_bytes:
            start = reader.pos
            rec_type = reader.read_uint8()
            flags = reader.read_uint8()
            length = reader.read_uint16()

            if length == 0 or length > reader.remaining:
                break

            data = reader.read_bytes(length)
            yield Record(
                frame_offset=frame.offset,
                index_in_frame=emitted,
                type=rec_type,
                flags=flags,
                data=data,
                crc_ok=frame.crc_ok,
                raw=payload[start : reader.pos],
            )
            emitted += 1

            if emitted >= self.max_records:
                logger.warning(
                    f"Frame at offset {frame.offset}: sub-record cap "
                    f"{self.max_records} reached"
                )
                break

            if reader.eof:
                return

            if reader.remaining >= header_bytes:
                next_len = reader.peek_uint16(2)
                if next_len == 0 or next_len > reader.remaining - header_bytes:
                    break

        if emitted == 0:
            yield self.fallback(frame)
