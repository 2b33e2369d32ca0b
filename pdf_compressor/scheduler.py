"""
scheduler.py - Batch partitioning and bounded-parallel page processing.

Batches run strictly one after another. Inside a batch at most
`concurrency` pages are compressed at once, and every page in turn runs
its tool chains in parallel, so the number of live subprocesses is
bounded by concurrency * len(chains).

Results come back through futures to this thread, which is the only
owner of the statistics accumulators.
"""

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, List, Optional

from .compressor import PageCompressor, PageTask
from .config import CompressorConfig, page_stem
from .exceptions import MissingExecutableError, SystemicFailureError
from .splitter import PageSplitter
from .statistics import BatchStatistics, DocumentStatistics

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def partition_batches(total_pages: int, batch_size: int) -> List[range]:
    """
    Split pages 1..total_pages into consecutive batches.

    >>> [len(b) for b in partition_batches(250, 100)]
    [100, 100, 50]
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [
        range(start, min(start + batch_size, total_pages + 1))
        for start in range(1, total_pages + 1, batch_size)
    ]


class BatchScheduler:
    """Runs a whole document through the PageCompressor, batch by batch."""

    def __init__(
        self,
        config: CompressorConfig,
        compressor: PageCompressor,
        progress_callback: Optional[ProgressCallback] = None
    ):
        self.config = config
        self.compressor = compressor
        self.progress_callback = progress_callback
        self._pages_done = 0
        self._consecutive_failures = 0

    def run_document(
        self,
        splitter: PageSplitter,
        temp_dir: Path,
        actual_original_size: int
    ) -> DocumentStatistics:
        """
        Compress every page of the document open in splitter.

        Args:
            splitter: Open PageSplitter for the input document
            temp_dir: Private scratch directory, one subdirectory per batch
            actual_original_size: Size of the real input file

        Returns:
            DocumentStatistics (not yet finished; the caller adds merge info)
        """
        total_pages = splitter.page_count
        stats = DocumentStatistics(
            total_pages=total_pages,
            actual_original_size=actual_original_size,
            chain_names=list(self.config.chain_names)
        )
        self._pages_done = 0
        self._consecutive_failures = 0

        batches = partition_batches(total_pages, self.config.batch_size)
        logger.info(
            f"Processing {total_pages} pages in {len(batches)} batch(es) of up to "
            f"{self.config.batch_size}, {self.config.concurrency} page(s) at a time"
        )

        for batch_num, pages in enumerate(batches, start=1):
            logger.info(f"Processing batch {batch_num}/{len(batches)}: pages {pages[0]}-{pages[-1]}")
            batch_dir = Path(temp_dir) / f"batch_{batch_num:05d}"
            batch_dir.mkdir(parents=True, exist_ok=True)
            try:
                batch_stats = self.run_batch(batch_num, pages, splitter, batch_dir, total_pages)
            finally:
                # Free the batch's scratch space before the next one starts
                shutil.rmtree(batch_dir, ignore_errors=True)

            stats.merge(batch_stats)
            logger.info("\n" + batch_stats.summary())

        return stats

    def run_batch(
        self,
        batch_num: int,
        pages: range,
        splitter: PageSplitter,
        batch_dir: Path,
        total_pages: int
    ) -> BatchStatistics:
        batch_stats = BatchStatistics(batch_num, pages[0], pages[-1])

        tasks = []
        for page_num in pages:
            task = self._split(page_num, splitter, batch_dir, batch_stats, total_pages)
            if task is not None:
                tasks.append(task)

        with ThreadPoolExecutor(
            max_workers=self.config.concurrency,
            thread_name_prefix=f"batch{batch_num}"
        ) as executor:
            futures = {executor.submit(self.compressor.compress_page, task): task for task in tasks}

            try:
                for future in as_completed(futures):
                    task = futures[future]
                    try:
                        result = future.result()
                    except (MissingExecutableError, SystemicFailureError):
                        raise
                    except Exception as e:
                        # Any other page error is recorded; the batch goes on
                        self._page_failed(batch_stats, task.page_num, "compress", e, total_pages)
                        continue

                    self._consecutive_failures = 0
                    batch_stats.add(result)
                    self._advance(total_pages)
            except BaseException:
                executor.shutdown(wait=True, cancel_futures=True)
                raise

        return batch_stats

    def _split(
        self,
        page_num: int,
        splitter: PageSplitter,
        batch_dir: Path,
        batch_stats: BatchStatistics,
        total_pages: int
    ) -> Optional[PageTask]:
        stem = page_stem(page_num)
        input_path = batch_dir / f"{stem}.pdf"
        try:
            splitter.write_page(page_num - 1, input_path)
        except Exception as e:
            self._page_failed(batch_stats, page_num, "split", e, total_pages)
            return None
        return PageTask(page_num=page_num, input_path=input_path, work_dir=batch_dir / stem)

    def _page_failed(
        self,
        batch_stats: BatchStatistics,
        page_num: int,
        stage: str,
        error: BaseException,
        total_pages: int
    ):
        logger.error(f"Page {page_num} failed during {stage}: {error}")
        batch_stats.record_failure(page_num, stage, error)
        self._advance(total_pages)

        self._consecutive_failures += 1
        if self._consecutive_failures >= self.config.max_consecutive_failures:
            raise SystemicFailureError(
                f"{self._consecutive_failures} consecutive pages failed "
                f"(last: page {page_num}, {stage}: {error})"
            )

    def _advance(self, total_pages: int):
        self._pages_done += 1
        if self.progress_callback:
            self.progress_callback(self._pages_done, total_pages)
