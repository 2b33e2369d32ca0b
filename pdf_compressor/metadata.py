"""
metadata.py - Plain-text metadata reports for input and output PDFs.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pikepdf.models.metadata import decode_pdf_date

from .exceptions import FilesystemError
from .splitter import open_pdf
from .utils import atomic_write_bytes, format_bytes

logger = logging.getLogger(__name__)

NOT_SPECIFIED = "Not specified"

DOCUMENT_PROPERTIES = [
    ("Title", "/Title"),
    ("Author", "/Author"),
    ("Subject", "/Subject"),
    ("Keywords", "/Keywords"),
    ("Creator", "/Creator"),
    ("Producer", "/Producer"),
]

DATE_PROPERTIES = [
    ("Creation Date", "/CreationDate"),
    ("Last Modified", "/ModDate"),
]


def _info_value(docinfo, key: str) -> Optional[str]:
    value = docinfo.get(key) if docinfo is not None else None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _info_date(docinfo, key: str) -> Optional[str]:
    raw = _info_value(docinfo, key)
    if raw is None:
        return None
    try:
        return decode_pdf_date(raw).isoformat()
    except ValueError:
        return raw


def read_info(pdf_path: Union[str, os.PathLike], compressed: bool = False) -> str:
    """
    Build a metadata report for pdf_path.

    Raises:
        InputNotFoundError / InputInvalidError if the file cannot be opened
    """
    pdf_path = Path(pdf_path)

    with open_pdf(pdf_path) as pdf:
        size = pdf_path.stat().st_size
        page_count = len(pdf.pages)
        docinfo = pdf.trailer.get("/Info")
        properties = [
            f"{label}: {_info_value(docinfo, key) or NOT_SPECIFIED}"
            for label, key in DOCUMENT_PROPERTIES
        ]
        dates = [
            f"{label}: {_info_date(docinfo, key) or NOT_SPECIFIED}"
            for label, key in DATE_PROPERTIES
        ]

    lines = [
        "PDF Document Metadata",
        "=====================",
        "",
        "Basic Information",
        "-----------------",
        f"Filename: {pdf_path.name}",
        f"File Size: {format_bytes(size)} ({size:,} bytes)",
        f"Number of Pages: {page_count}",
        f"Extracted At: {datetime.now(timezone.utc).isoformat()}",
        f"Type: {'Compressed Output' if compressed else 'Original Input'}",
        "",
        "Document Properties",
        "-------------------",
        *properties,
        *dates,
    ]
    return "\n".join(lines) + "\n"


def write_metadata(
    pdf_path: Union[str, os.PathLike],
    destination: Union[str, os.PathLike],
    compressed: bool = False
) -> Path:
    """Write the metadata report for pdf_path to destination."""
    report = read_info(pdf_path, compressed=compressed)
    try:
        atomic_write_bytes(destination, report.encode("utf-8"))
    except OSError as e:
        raise FilesystemError("metadata", f"cannot write {destination}: {e}") from e
    logger.info(f"Metadata written to {destination}")
    return Path(destination)
