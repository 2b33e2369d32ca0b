"""
config.py - Run configuration and output layout.

All tunables live in one immutable CompressorConfig that is passed
explicitly to the scheduler, page compressor and tool runner.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Tuple, Union

from .exceptions import FilesystemError
from .tools import Tool, ToolChain

DEFAULT_BATCH_SIZE = 100
DEFAULT_CONCURRENCY = 2
DEFAULT_THUMBNAIL_WIDTH = 200
DEFAULT_TOOL_TIMEOUT = 300.0  # seconds per tool invocation
DEFAULT_MAX_CONSECUTIVE_FAILURES = 10

# Page numbers are zero-padded to this width in every file name
PAGE_NUMBER_WIDTH = 5

# Order matters: on equal sizes the first chain wins
DEFAULT_CHAINS: Tuple[ToolChain, ...] = (
    ToolChain("gs", (Tool.GHOSTSCRIPT,)),
    ToolChain("qpdf", (Tool.QPDF,)),
    ToolChain("qpdf+mutool", (Tool.QPDF, Tool.MUTOOL)),
)


@dataclass(frozen=True)
class CompressorConfig:
    """Tunables for one compression run."""
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency: int = DEFAULT_CONCURRENCY
    thumbnail_width: int = DEFAULT_THUMBNAIL_WIDTH
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES
    chains: Tuple[ToolChain, ...] = DEFAULT_CHAINS
    # Tool name -> executable; a mapping is accepted and stored as sorted pairs
    executables: Tuple[Tuple[str, str], ...] = ()

    # Ghostscript
    gs_pdf_settings: str = "/screen"
    gs_compatibility: str = "1.4"
    gs_image_resolution: int = 96
    gs_jpeg_quality: int = 51

    # qpdf
    qpdf_compression_level: int = 9

    def __post_init__(self):
        if isinstance(self.executables, Mapping):
            object.__setattr__(self, "executables", tuple(sorted(self.executables.items())))
        object.__setattr__(self, "chains", tuple(self.chains))

    def validate(self):
        """Raise ValueError on an unusable configuration."""
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.thumbnail_width < 1:
            raise ValueError(f"thumbnail_width must be >= 1, got {self.thumbnail_width}")
        if self.tool_timeout <= 0:
            raise ValueError(f"tool_timeout must be > 0, got {self.tool_timeout}")
        if self.max_consecutive_failures < 1:
            raise ValueError(
                f"max_consecutive_failures must be >= 1, got {self.max_consecutive_failures}"
            )
        if not self.chains:
            raise ValueError("at least one tool chain is required")
        names = [chain.name for chain in self.chains]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate tool chain names: {names}")
        if not 1 <= self.gs_jpeg_quality <= 100:
            raise ValueError(f"gs_jpeg_quality must be 1-100, got {self.gs_jpeg_quality}")
        if not 0 <= self.qpdf_compression_level <= 9:
            raise ValueError(
                f"qpdf_compression_level must be 0-9, got {self.qpdf_compression_level}"
            )

    @property
    def chain_names(self) -> Tuple[str, ...]:
        return tuple(chain.name for chain in self.chains)

    @property
    def executable_overrides(self) -> Dict[str, str]:
        return dict(self.executables)


@dataclass
class RunOptions:
    """Which optional outputs to produce."""
    create_merged: bool = True
    keep_pages: bool = True
    create_metadata: bool = True
    create_thumbnails: bool = True


def page_stem(page_num: int) -> str:
    return f"page_{page_num:0{PAGE_NUMBER_WIDTH}d}"


@dataclass
class OutputLayout:
    """
    Fixed output directory layout:

        out/pages/page_NNNNN.pdf
        out/thumbnails/page_NNNNN_thumb.jpg
        out/original_pdf_metadata.txt
        out/compressed_pdf_metadata.txt
        out/<input>_compressed.pdf
    """
    root: Path = Path("out")

    def __post_init__(self):
        self.root = Path(self.root)

    @property
    def pages_dir(self) -> Path:
        return self.root / "pages"

    @property
    def thumbnails_dir(self) -> Path:
        return self.root / "thumbnails"

    @property
    def original_metadata_path(self) -> Path:
        return self.root / "original_pdf_metadata.txt"

    @property
    def compressed_metadata_path(self) -> Path:
        return self.root / "compressed_pdf_metadata.txt"

    def page_path(self, page_num: int) -> Path:
        return self.pages_dir / f"{page_stem(page_num)}.pdf"

    def thumbnail_path(self, page_num: int) -> Path:
        return self.thumbnails_dir / f"{page_stem(page_num)}_thumb.jpg"

    def merged_path(self, input_path: Union[str, os.PathLike]) -> Path:
        return self.root / f"{Path(input_path).stem}_compressed.pdf"

    def prepare(self, thumbnails: bool = True):
        """Create output directories. Failure here is fatal."""
        dirs = [self.root, self.pages_dir]
        if thumbnails:
            dirs.append(self.thumbnails_dir)
        for directory in dirs:
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FilesystemError("setup", f"cannot create {directory}: {e}") from e

    def clear_stale_outputs(self):
        """Remove page files and thumbnails left over from an earlier run."""
        for directory, pattern in ((self.pages_dir, "page_*.pdf"), (self.thumbnails_dir, "page_*_thumb.jpg")):
            if not directory.is_dir():
                continue
            for path in directory.glob(pattern):
                try:
                    path.unlink()
                except OSError as e:
                    raise FilesystemError("setup", f"cannot remove {path}: {e}") from e
