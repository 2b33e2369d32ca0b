"""
pipeline.py - End-to-end document compression.

Pipeline:
1. Validate input and configuration
2. Check every external tool up front
3. Split + compress pages batch by batch
4. Write metadata for the original
5. Merge pages (document-level fallback)
6. Write metadata for the merged output
7. Drop the pages directory if not wanted
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from .compressor import PageCompressor
from .config import CompressorConfig, OutputLayout, RunOptions
from .exceptions import InputNotFoundError
from .merger import MergeResult, merge_document
from .metadata import write_metadata
from .splitter import PageSplitter
from .scheduler import BatchScheduler
from .statistics import DocumentStatistics
from .thumbnails import Thumbnailer
from .tools import ToolRunner, describe_chains, required_tools, resolve_executables

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Everything a run produced."""
    input_path: Path
    stats: DocumentStatistics
    merge: Optional[MergeResult] = None
    metadata_paths: List[Path] = field(default_factory=list)

    def summary(self) -> str:
        return self.stats.summary()


def compress_document(
    input_path: Union[str, os.PathLike],
    config: Optional[CompressorConfig] = None,
    options: Optional[RunOptions] = None,
    layout: Optional[OutputLayout] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    runner: Optional[ToolRunner] = None
) -> RunResult:
    """
    Compress input_path into the output layout.

    Args:
        input_path: PDF to compress
        config: Run configuration (defaults apply when None)
        options: Optional outputs to produce
        layout: Output directories (default ./out)
        progress_callback: Optional callback(pages_done, total_pages)
        runner: Tool runner override; resolved from PATH when None

    Returns:
        RunResult with statistics and merge outcome

    Raises:
        InputNotFoundError, InputInvalidError, MissingExecutableError,
        FilesystemError, SystemicFailureError, ValueError (bad config)
    """
    config = config or CompressorConfig()
    options = options or RunOptions()
    layout = layout or OutputLayout()
    input_path = Path(input_path)

    config.validate()
    if not input_path.is_file():
        raise InputNotFoundError(f"File not found: {input_path}")

    if runner is None:
        executables = resolve_executables(required_tools(config.chains), config.executable_overrides)
        runner = ToolRunner(config, executables)
    logger.info(f"Tool chains: {describe_chains(config.chains)}")

    layout.prepare(thumbnails=options.create_thumbnails)
    layout.clear_stale_outputs()

    thumbnailer = Thumbnailer(config.thumbnail_width) if options.create_thumbnails else None
    compressor = PageCompressor(config, layout, runner, thumbnailer)
    scheduler = BatchScheduler(config, compressor, progress_callback)

    actual_original_size = input_path.stat().st_size

    with PageSplitter(input_path) as splitter:
        logger.info(
            f"Processing {input_path.name}: {splitter.page_count} pages, "
            f"{actual_original_size:,} bytes"
        )
        with tempfile.TemporaryDirectory(prefix="pdf-compressor-") as temp_dir:
            stats = scheduler.run_document(splitter, Path(temp_dir), actual_original_size)

    result = RunResult(input_path=input_path, stats=stats)

    if options.create_metadata:
        result.metadata_paths.append(
            write_metadata(input_path, layout.original_metadata_path, compressed=False)
        )

    if options.create_merged:
        result.merge = merge_document(
            layout.pages_dir,
            input_path,
            layout.merged_path(input_path),
            expected_pages=stats.total_pages
        )
        stats.final_size = result.merge.size
        stats.final_used_original = result.merge.used_original

        if options.create_metadata:
            result.metadata_paths.append(
                write_metadata(
                    result.merge.output_path, layout.compressed_metadata_path, compressed=True
                )
            )

    if not options.keep_pages:
        shutil.rmtree(layout.pages_dir, ignore_errors=True)
        logger.info(f"Removed page outputs in {layout.pages_dir}")

    stats.finish()
    return result

