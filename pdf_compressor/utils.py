"""
utils.py - Small helpers for sizes, durations and safe file writes.

Canonical outputs are written to a temporary sibling first and renamed
into place, so a reader never sees a partially written file.
"""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Union

PathLike = Union[str, os.PathLike]

SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def format_bytes(num_bytes: int) -> str:
    """Format a byte count, e.g. 1536 -> '1.5 KB'."""
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    exponent = 0
    while value >= 1024 and exponent < len(SIZE_UNITS) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {SIZE_UNITS[exponent]}"


def format_time(seconds: float) -> str:
    """Format a duration, e.g. 125.0 -> '2m 5.0s'."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    return f"{minutes}m {seconds - minutes * 60:.1f}s"


def _temp_sibling(destination: Path):
    return tempfile.NamedTemporaryFile(
        dir=destination.parent,
        prefix=f".{destination.name}.",
        suffix=".tmp",
        delete=False
    )


def atomic_write_bytes(destination: PathLike, data: bytes) -> Path:
    """Write data to destination via a temp file + rename."""
    destination = Path(destination)
    handle = _temp_sibling(destination)
    tmp_path = Path(handle.name)
    try:
        with handle:
            handle.write(data)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return destination


def atomic_copy(source: PathLike, destination: PathLike) -> Path:
    """Copy source to destination via a temp file + rename."""
    destination = Path(destination)
    handle = _temp_sibling(destination)
    tmp_path = Path(handle.name)
    handle.close()
    try:
        shutil.copyfile(source, tmp_path)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return destination
