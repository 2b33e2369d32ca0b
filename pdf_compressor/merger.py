"""
merger.py - Reassemble page outputs into one document.

Pages are ordered by the number in their file name, never
lexicographically. The merged file is only shipped when it is smaller
than the original input; otherwise the output is a byte copy of the
original.
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import pikepdf

from .exceptions import FilesystemError
from .splitter import concatenate
from .utils import atomic_copy, atomic_write_bytes, format_bytes

logger = logging.getLogger(__name__)

PAGE_FILE_RE = re.compile(r"^page_(\d+)\.pdf$")


@dataclass
class MergeResult:
    """Result of merging a pages directory."""
    output_path: Path
    size: int
    original_size: int
    used_original: bool
    reason: Optional[str] = None


def page_files(pages_dir: Union[str, os.PathLike]) -> List[Path]:
    """Page output files in ascending page-number order."""
    numbered = []
    for path in Path(pages_dir).iterdir():
        match = PAGE_FILE_RE.match(path.name)
        if match and path.is_file():
            numbered.append((int(match.group(1)), path))
    numbered.sort(key=lambda item: item[0])
    return [path for _, path in numbered]


def merge_pages(pages_dir: Union[str, os.PathLike]) -> bytes:
    """Concatenate every page file in pages_dir, in page order."""
    return concatenate(page_files(pages_dir))


def merge_document(
    pages_dir: Union[str, os.PathLike],
    original_path: Union[str, os.PathLike],
    output_path: Union[str, os.PathLike],
    expected_pages: Optional[int] = None
) -> MergeResult:
    """
    Merge pages_dir into output_path with a whole-document fallback.

    Per-page savings do not guarantee a smaller document, so the merged
    size is compared against the real input file. The original is
    shipped instead when the merge is not smaller, when pages are
    missing, or when the merge itself fails.

    Args:
        pages_dir: Directory holding page_NNNNN.pdf files
        original_path: The untouched input document
        output_path: Final document path
        expected_pages: Page count the merge must reproduce

    Returns:
        MergeResult describing what was written
    """
    original_path = Path(original_path)
    output_path = Path(output_path)
    try:
        original_size = original_path.stat().st_size
    except OSError as e:
        raise FilesystemError("merge", f"cannot read {original_path}: {e}") from e

    files = page_files(pages_dir)
    reason = None
    merged = None

    if expected_pages is not None and len(files) != expected_pages:
        reason = f"only {len(files)} of {expected_pages} pages available"
    elif not files:
        reason = "no page files to merge"
    else:
        try:
            merged = concatenate(files)
        except (pikepdf.PdfError, OSError) as e:
            reason = f"merge failed: {e}"
        else:
            if len(merged) >= original_size:
                reason = (
                    f"merged document ({format_bytes(len(merged))}) is not smaller "
                    f"than the original ({format_bytes(original_size)})"
                )

    try:
        if reason is None:
            atomic_write_bytes(output_path, merged)
            size = len(merged)
            logger.info(f"Merged {len(files)} pages into {output_path} ({format_bytes(size)})")
        else:
            atomic_copy(original_path, output_path)
            size = original_size
            logger.warning(f"{reason}; using original file for {output_path.name}")
    except OSError as e:
        raise FilesystemError("merge", f"cannot write {output_path}: {e}") from e

    return MergeResult(
        output_path=output_path,
        size=size,
        original_size=original_size,
        used_original=reason is not None,
        reason=reason
    )
