"""
splitter.py - Single-page extraction and page concatenation with pikepdf.

This is the only module that touches PDF structure. pikepdf objects
are not thread-safe, so splitting and merging happen on the scheduler
thread only.
"""

import io
import logging
import os
from pathlib import Path
from typing import Iterable, Union

import pikepdf

from .exceptions import InputInvalidError, InputNotFoundError
from .utils import atomic_write_bytes

logger = logging.getLogger(__name__)


def _save_to_bytes(pdf: pikepdf.Pdf, **save_options) -> bytes:
    buffer = io.BytesIO()
    pdf.save(buffer, **save_options)
    return buffer.getvalue()


def open_pdf(pdf_path: Union[str, os.PathLike]) -> pikepdf.Pdf:
    """Open a PDF, mapping failures to input errors."""
    pdf_path = Path(pdf_path)
    if not pdf_path.is_file():
        raise InputNotFoundError(f"File not found: {pdf_path}")
    try:
        return pikepdf.open(pdf_path)
    except pikepdf.PasswordError as e:
        raise InputInvalidError(f"{pdf_path.name} is password protected") from e
    except (pikepdf.PdfError, OSError) as e:
        raise InputInvalidError(f"Cannot open {pdf_path.name}: {e}") from e


class PageSplitter:
    """
    Extracts single pages from one open document.

    Usage:
        with PageSplitter(path) as splitter:
            data = splitter.split_to_single_page(0)
    """

    def __init__(self, pdf_path: Union[str, os.PathLike]):
        self.path = Path(pdf_path)
        self._pdf = None

    def open(self) -> "PageSplitter":
        if self._pdf is None:
            self._pdf = open_pdf(self.path)
            logger.debug(f"Opened {self.path.name}: {len(self._pdf.pages)} pages")
        return self

    def close(self):
        if self._pdf is not None:
            self._pdf.close()
            self._pdf = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def pdf(self) -> pikepdf.Pdf:
        if self._pdf is None:
            raise RuntimeError("PageSplitter is not open")
        return self._pdf

    @property
    def page_count(self) -> int:
        return len(self.pdf.pages)

    def split_to_single_page(self, index: int) -> bytes:
        """Return a standalone one-page PDF for the 0-indexed page."""
        with pikepdf.Pdf.new() as single:
            single.pages.append(self.pdf.pages[index])
            # Keep streams exactly as encoded in the source document
            return _save_to_bytes(
                single,
                compress_streams=False,
                stream_decode_level=pikepdf.StreamDecodeLevel.none
            )

    def write_page(self, index: int, destination: Union[str, os.PathLike]) -> Path:
        return atomic_write_bytes(destination, self.split_to_single_page(index))


def concatenate(page_paths: Iterable[Union[str, os.PathLike]]) -> bytes:
    """
    Concatenate PDF files in the given order into one document.

    Every page of every input is appended, so multi-page inputs keep
    all their pages.
    """
    sources = []
    try:
        with pikepdf.Pdf.new() as merged:
            for path in page_paths:
                source = pikepdf.open(path)
                sources.append(source)
                merged.pages.extend(source.pages)
            logger.debug(f"Concatenated {len(merged.pages)} pages from {len(sources)} files")
            return _save_to_bytes(
                merged,
                compress_streams=True,
                object_stream_mode=pikepdf.ObjectStreamMode.generate
            )
    finally:
        for source in sources:
            source.close()
