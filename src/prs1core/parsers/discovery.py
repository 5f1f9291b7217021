"""Candidate file classification and discovery for PRS1 card exports."""

import logging
import re

from enum import Enum
from pathlib import Path, PurePath

from prs1core.constants import EDF_EXTENSIONS, EDF_VERSION_MAGIC, SETTINGS_EXTENSIONS

logger = logging.getLogger(__name__)

__all__ = ["FileKind", "is_candidate_file", "classify_file", "find_candidate_files"]

_NUMERIC_EXTENSION = re.compile(r"\.\d{3}$")


class FileKind(str, Enum):
    """Kind of a card file as far as decoding is concerned."""

    EDF = "edf"
    CHUNK = "chunk"
    SETTINGS = "settings"
    UNKNOWN = "unknown"


def _suffix(name: str | PurePath) -> str:
    return PurePath(name).suffix.lower()


def is_candidate_file(name: str | PurePath) -> bool:
    """
    True for names worth reading: ``.edf``, ``.tgt``, ``.dat`` or ``.000``-``.999``.

    Only the name is inspected, so callers can filter before reading bytes.
    """
    suffix = _suffix(name)
    return (
        suffix in EDF_EXTENSIONS
        or suffix in SETTINGS_EXTENSIONS
        or bool(_NUMERIC_EXTENSION.search(suffix))
    )


def classify_file(name: str | PurePath, head: bytes = b"") -> FileKind:
    """
    Classify a file from its name and (optionally) its first bytes.

    Args:
        name: File name or path
        head: Leading bytes of the file, if already read

    Returns:
        FileKind; an EDF version field in ``head`` wins over the extension
    """
    if head.startswith(EDF_VERSION_MAGIC):
        return FileKind.EDF

    suffix = _suffix(name)
    if suffix in EDF_EXTENSIONS:
        return FileKind.EDF
    if suffix in SETTINGS_EXTENSIONS:
        return FileKind.SETTINGS
    if _NUMERIC_EXTENSION.search(suffix):
        return FileKind.CHUNK
    return FileKind.UNKNOWN


def find_candidate_files(root: Path) -> list[Path]:
    """
    Recursively list candidate files under ``root`` in sorted order.

    Unreadable directories are skipped.
    """
    if root.is_file():
        return [root] if is_candidate_file(root.name) else []

    found = []
    try:
        for path in root.rglob("*"):
            if path.is_file() and is_candidate_file(path.name):
                found.append(path)
    except (PermissionError, OSError) as e:
        logger.warning(f"Stopped scanning {root}: {e}")

    logger.debug(f"Found {len(found)} candidate files under {root}")
    return sorted(found)
