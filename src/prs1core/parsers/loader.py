"""
Per-file decode entry point.

The loader receives ``(path, bytes)`` pairs from whatever reads the card,
classifies each file and runs the matching decoder. Failures are isolated
per file: one bad file is reported and the rest of the batch continues.
"""

import logging

from collections.abc import Iterable
from pathlib import PurePath

from pydantic import BaseModel, ConfigDict, Field

from prs1core.config import Settings
from prs1core.constants import AggregationConstants, EventDecodingConstants
from prs1core.models.events import samples_from_events
from prs1core.models.session import Session
from prs1core.parsers.byte_reader import BytesLike
from prs1core.parsers.discovery import FileKind, classify_file
from prs1core.parsers.edf import EDFDecoder
from prs1core.parsers.event_registry import EventRegistry, decode_frames
from prs1core.parsers.frames import FrameDecoder
from prs1core.parsers.records import RecordDecoder

logger = logging.getLogger(__name__)


class ParseResult(BaseModel):
    """Outcome of decoding one file."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    source_path: str | None = Field(default=None, description="Decoded file")
    kind: FileKind = Field(description="Detected file kind")
    magic: str | None = Field(default=None, description="Printable 4-byte magic")
    length: int = Field(ge=0, description="File size in bytes")
    sessions: list[Session] = Field(default_factory=list)


class FileFailure(BaseModel):
    """A file whose decode raised."""

    source_path: str
    error: str


class BatchResult(BaseModel):
    """Results for a batch of files."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    results: list[ParseResult] = Field(default_factory=list)
    failures: list[FileFailure] = Field(default_factory=list)

    @property
    def sessions(self) -> list[Session]:
        return [s for r in self.results for s in r.sessions]


def _printable_magic(data: BytesLike) -> str | None:
    head = bytes(data[:4])
    if len(head) < 4 or not all(0x20 <= b <= 0x7E for b in head):
        return None
    return head.decode("ascii")


class Prs1Loader:
    """
    Decode PRS1 card files into sessions.

    Example:
        >>> loader = Prs1Loader(load_settings())
        >>> result = loader.parse(path.read_bytes(), source_path=str(path))
        >>> result.sessions
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or Settings()
        decoder = self.settings.decoder
        self.frame_decoder = FrameDecoder(
            trust_frame_crc=decoder.trust_frame_crc,
            enforce_crc=decoder.enforce_crc,
            max_frames=decoder.max_frames,
        )
        self.record_decoder = RecordDecoder(max_records=decoder.max_records_per_frame)
        self.registry = EventRegistry()
        self.edf_decoder = EDFDecoder(
            self.settings.edf, tz=self.settings.aggregation.timezone
        )

    def parse(self, data: BytesLike, source_path: str | None = None) -> ParseResult:
        """
        Decode one file.

        Args:
            data: Full file contents
            source_path: Path used for classification and labelling

        Returns:
            ParseResult with zero or one session
        """
        kind = classify_file(source_path or "", bytes(data[:8]))
        magic = _printable_magic(data)
        logger.debug(
            f"Parsing {source_path or '(memory)'}: kind={kind.value} "
            f"magic={magic or '(none)'} length={len(data)}"
        )

        sessions: list[Session] = []
        if kind is FileKind.EDF:
            session = self._parse_edf(data, source_path)
            if session is not None:
                sessions.append(session)
        elif kind is FileKind.CHUNK:
            sessions.append(self._parse_chunk(data, source_path))

        return ParseResult(
            source_path=source_path,
            kind=kind,
            magic=magic,
            length=len(data),
            sessions=sessions,
        )

    def parse_many(self, items: Iterable[tuple[str, BytesLike]]) -> BatchResult:
        """
        Decode several files, isolating failures per file.

        Args:
            items: ``(source_path, data)`` pairs

        Returns:
            BatchResult with successful results and per-file failures
        """
        batch = BatchResult()
        for source_path, data in items:
            try:
                batch.results.append(self.parse(data, source_path=source_path))
            except Exception as e:
                logger.warning(f"Failed to decode {source_path}: {e}")
                batch.failures.append(FileFailure(source_path=source_path, error=str(e)))

        logger.info(
            f"Decoded {len(batch.results)} files "
            f"({len(batch.sessions)} sessions, {len(batch.failures)} failures)"
        )
        return batch

    def _parse_edf(self, data: BytesLike, source_path: str | None) -> Session | None:
        result = self.edf_decoder.decode(data)
        if result is None:
            return None
        return Session(
            start_epoch_sec=result.start_epoch_sec,
            end_epoch_sec=result.end_epoch_sec,
            samples=result.samples,
            waveforms=result.waveforms,
            source_path=source_path,
            source_label=PurePath(source_path).name if source_path else None,
            minutes_used=result.minutes_used,
        )

    def _parse_chunk(self, data: BytesLike, source_path: str | None) -> Session:
        fallback_start = EventDecodingConstants.UNIX_MIN
        frames = self.frame_decoder.decode(data)
        events = decode_frames(
            frames,
            fallback_start,
            registry=self.registry,
            record_decoder=self.record_decoder,
        )

        start = end = fallback_start
        if events:
            start = events[0].t_epoch_sec
            end = events[-1].t_epoch_sec + AggregationConstants.CHUNK_SESSION_TAIL_SEC

        return Session(
            start_epoch_sec=start,
            end_epoch_sec=end,
            events=events,
            samples=samples_from_events(events),
            source_path=source_path,
            source_label=PurePath(source_path).name if source_path else None,
            minutes_used=round((end - start) / 60),
        )
