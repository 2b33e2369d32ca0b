"""
compressor.py - Best-of-N compression of a single page.

For one page:
1. Measure the split page
2. Run every tool chain concurrently on it
3. Keep the smallest candidate (first configured chain wins ties)
4. Fall back to the original bytes when nothing is smaller
5. Write the result to its canonical page path
6. Thumbnail the written page

The emitted page is never larger than the input page.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import CompressorConfig, OutputLayout
from .exceptions import AllToolsFailedError, FilesystemError, MissingExecutableError, ToolError
from .statistics import KEPT_ORIGINAL, compression_ratio
from .tools import ToolChain, ToolRunner
from .utils import atomic_copy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageTask:
    """One page to compress. The work dir is private to this task."""
    page_num: int
    input_path: Path
    work_dir: Path


@dataclass(frozen=True)
class CompressionResult:
    """Outcome for one page. Immutable once created."""
    page_num: int
    original_size: int
    compressed_size: int
    tool: str
    output_path: Path
    thumbnail_path: Optional[Path] = None
    candidates: Dict[str, int] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def used_original(self) -> bool:
        return self.tool == KEPT_ORIGINAL

    @property
    def ratio(self) -> Optional[float]:
        return compression_ratio(self.original_size, self.compressed_size)


def select_best(
    candidates: List[Tuple[str, Path, int]]
) -> Optional[Tuple[str, Path, int]]:
    """
    Smallest candidate; candidates must be in configured chain order.

    Strict comparison keeps the earliest chain on equal sizes.
    """
    best = None
    for candidate in candidates:
        if best is None or candidate[2] < best[2]:
            best = candidate
    return best


class PageCompressor:
    """
    Compresses pages by running all tool chains and keeping the best.

    Args:
        config: Run configuration (chains, timeouts)
        layout: Where page outputs and thumbnails go
        runner: ToolRunner (or compatible) used for every chain
        thumbnailer: Optional Thumbnailer; None disables thumbnails
    """

    def __init__(
        self,
        config: CompressorConfig,
        layout: OutputLayout,
        runner: ToolRunner,
        thumbnailer=None
    ):
        self.config = config
        self.layout = layout
        self.runner = runner
        self.thumbnailer = thumbnailer

    def _run_chain(self, chain: ToolChain, task: PageTask) -> Tuple[Path, int]:
        return self.runner.run_chain(chain, task.input_path, task.work_dir / chain.name)

    def _collect_candidates(self, task: PageTask) -> Tuple[List[Tuple[str, Path, int]], Dict[str, int]]:
        """
        Run all chains concurrently.

        Failed chains are logged and dropped.

        Raises:
            AllToolsFailedError: no chain produced a file
            MissingExecutableError: a binary disappeared mid-run
        """
        chains = self.config.chains
        candidates = []
        errors: Dict[str, Exception] = {}

        with ThreadPoolExecutor(
            max_workers=len(chains),
            thread_name_prefix=f"page{task.page_num}"
        ) as executor:
            futures = [(chain, executor.submit(self._run_chain, chain, task)) for chain in chains]

            # Iterate in configured order so ties resolve deterministically
            for chain, future in futures:
                try:
                    path, size = future.result()
                except MissingExecutableError:
                    raise
                except ToolError as e:
                    logger.warning(f"Page {task.page_num}: {chain.name} failed: {e}")
                    errors[chain.name] = e
                    continue
                except Exception as e:
                    logger.warning(
                        f"Page {task.page_num}: {chain.name} failed unexpectedly: {e!r}"
                    )
                    errors[chain.name] = e
                    continue
                candidates.append((chain.name, path, size))

        if not candidates:
            raise AllToolsFailedError(task.page_num, errors)

        return candidates, {name: size for name, _, size in candidates}

    def compress_page(self, task: PageTask) -> CompressionResult:
        """Compress one page and write it to its canonical output path."""
        start = time.time()
        output_path = self.layout.page_path(task.page_num)

        try:
            original_size = task.input_path.stat().st_size
        except OSError as e:
            raise FilesystemError("measure", str(e), page_num=task.page_num) from e

        sizes: Dict[str, int] = {}
        try:
            candidates, sizes = self._collect_candidates(task)
            best = select_best(candidates)
        except AllToolsFailedError as e:
            logger.warning(f"{e}; keeping original")
            best = None

        if best is not None and best[2] < original_size:
            tool, source, compressed_size = best
        else:
            if best is not None:
                logger.warning(
                    f"Page {task.page_num}: no tool beat the original "
                    f"({best[2]:,} >= {original_size:,} bytes); keeping original"
                )
            tool, source, compressed_size = KEPT_ORIGINAL, task.input_path, original_size

        try:
            atomic_copy(source, output_path)
        except OSError as e:
            raise FilesystemError("write", str(e), page_num=task.page_num) from e

        thumbnail_path = self._thumbnail(task.page_num, output_path)

        result = CompressionResult(
            page_num=task.page_num,
            original_size=original_size,
            compressed_size=compressed_size,
            tool=tool,
            output_path=output_path,
            thumbnail_path=thumbnail_path,
            candidates=sizes,
            elapsed=time.time() - start
        )

        logger.info(
            f"Page {task.page_num}: {original_size:,} -> {compressed_size:,} bytes | {tool}"
        )
        return result

    def _thumbnail(self, page_num: int, page_path: Path) -> Optional[Path]:
        """Thumbnail the shipped page. Failures only cost the thumbnail."""
        if self.thumbnailer is None:
            return None
        try:
            return self.thumbnailer.write(page_path, self.layout.thumbnail_path(page_num))
        except Exception as e:
            logger.warning(f"Page {page_num}: thumbnail failed: {e}")
            return None
