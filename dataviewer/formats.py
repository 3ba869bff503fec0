"""
Format detection for uploaded files.

- extension -> file type mapping (case-insensitive)
- bytes -> text decoding for the text formats (json, xml, csv)
"""

from __future__ import annotations

import logging
from typing import Literal, Optional

from charset_normalizer import from_bytes

from .rules import SUPPORTED_EXTENSIONS, TEXT_ENCODING

logger = logging.getLogger(__name__)

FileType = Literal["json", "xml", "excel", "csv", "unknown"]

_TYPE_BY_EXTENSION = {
    "json": "json",
    "xml": "xml",
    "xlsx": "excel",
    "xls": "excel",
    "csv": "csv",
}


def file_extension(filename: Optional[str]) -> Optional[str]:
    """Lower-cased text after the last dot, or None when there is none."""
    if not filename or "." not in filename:
        return None
    ext = filename.rsplit(".", 1)[1].lower()
    return ext or None


def is_supported(filename: Optional[str]) -> bool:
    return file_extension(filename) in SUPPORTED_EXTENSIONS


def file_type(filename: Optional[str]) -> FileType:
    ext = file_extension(filename)
    if ext is None:
        return "unknown"
    return _TYPE_BY_EXTENSION.get(ext, "unknown")


def decode_text(raw: bytes) -> str:
    """
    Decode uploaded bytes as text.

    Rules:
    - UTF-8 first, with a leading BOM dropped.
    - If the bytes are not UTF-8, use charset-normalizer's best guess.
    - If that fails too, decode UTF-8 with replacement characters.
    """
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass

    match = from_bytes(raw).best()
    if match is not None:
        try:
            text = raw.decode(match.encoding)
        except (UnicodeDecodeError, LookupError):
            logger.debug("detected encoding %s did not decode cleanly", match.encoding)
        else:
            logger.info("decoded upload as %s", match.encoding)
            return text

    return raw.decode(TEXT_ENCODING, errors="replace")
