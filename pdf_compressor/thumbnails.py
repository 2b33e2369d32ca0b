"""
thumbnails.py - First-page JPEG thumbnails using PyMuPDF.

Render slightly above the target width, then downsample with
INTER_AREA for a clean result before JPEG encoding.
"""

import io
import logging
import os
import threading
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image
try:
    import fitz  # pip install pymupdf
except ImportError:
    import pymupdf as fitz  # apt install python3-pymupdf

from .utils import atomic_write_bytes

logger = logging.getLogger(__name__)

THUMBNAIL_QUALITY = 80

# PyMuPDF is not thread-safe; page workers render one at a time
_RENDER_LOCK = threading.Lock()


def render_first_page(pdf_path: Union[str, os.PathLike], width: int) -> np.ndarray:
    """
    Rasterize page 1 so its width is at least `width` pixels.

    Returns:
        RGB numpy array
    """
    with _RENDER_LOCK:
        with fitz.open(pdf_path) as doc:
            if len(doc) == 0:
                raise ValueError(f"{Path(pdf_path).name} has no pages")
            page = doc[0]
            zoom = max(width / max(page.rect.width, 1.0), 0.01)
            pixmap = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
            image = np.frombuffer(pixmap.samples, dtype=np.uint8).reshape(
                pixmap.height, pixmap.width, pixmap.n
            ).copy()  # Copy to own the memory

    if image.shape[2] == 1:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    return image


def resize_to_width(image: np.ndarray, width: int) -> np.ndarray:
    """Scale image to exactly `width` pixels wide, preserving aspect ratio."""
    height, current_width = image.shape[:2]
    if current_width == width:
        return image
    new_height = max(1, round(height * width / current_width))
    interpolation = cv2.INTER_AREA if width < current_width else cv2.INTER_CUBIC
    return cv2.resize(image, (width, new_height), interpolation=interpolation)


def encode_jpeg(image: np.ndarray, quality: int = THUMBNAIL_QUALITY) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(image).save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def render_first_page_thumbnail(pdf_path: Union[str, os.PathLike], width: int) -> bytes:
    """Render page 1 of pdf_path as a JPEG `width` pixels wide."""
    image = resize_to_width(render_first_page(pdf_path, width), width)
    return encode_jpeg(image)


class Thumbnailer:
    """Writes thumbnails for page outputs."""

    def __init__(self, width: int):
        self.width = width

    def write(self, pdf_path: Path, thumb_path: Path) -> Path:
        data = render_first_page_thumbnail(pdf_path, self.width)
        atomic_write_bytes(thumb_path, data)
        logger.debug(f"Thumbnail {Path(thumb_path).name}: {len(data):,} bytes")
        return Path(thumb_path)
