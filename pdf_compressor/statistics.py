"""
statistics.py - Batch and document level compression statistics.

Workers never touch these objects. Page results arrive on the
scheduler thread, which folds them into a BatchStatistics and, once the
batch has drained, merges the batch into the DocumentStatistics.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .utils import format_bytes, format_time

KEPT_ORIGINAL = "original"


def compression_ratio(original_size: int, compressed_size: int) -> Optional[float]:
    """Percentage saved, or None when there is nothing to compare against."""
    if original_size <= 0:
        return None
    return (1 - compressed_size / original_size) * 100


def format_ratio(ratio: Optional[float]) -> str:
    if ratio is None:
        return "n/a"
    return f"{ratio:.1f}%"


def _format_wins(tool_wins: Dict[str, int], indent: str = "  ") -> List[str]:
    return [
        f"{indent}{tool}: {count} page{'s' if count != 1 else ''}"
        for tool, count in tool_wins.items()
        if count > 0
    ]


@dataclass(frozen=True)
class PageFailure:
    """A page that could not be processed at all."""
    page_num: int
    stage: str
    error: str


@dataclass
class BatchStatistics:
    """Accumulator for one batch of pages."""
    batch_num: int
    first_page: int
    last_page: int
    original_size: int = 0
    compressed_size: int = 0
    pages_ok: int = 0
    fallback_pages: int = 0
    tool_wins: Counter = field(default_factory=Counter)
    failures: List[PageFailure] = field(default_factory=list)

    @property
    def page_count(self) -> int:
        return self.last_page - self.first_page + 1

    def add(self, result):
        """Fold one CompressionResult into the batch."""
        self.original_size += result.original_size
        self.compressed_size += result.compressed_size
        self.pages_ok += 1
        self.tool_wins[result.tool] += 1
        if result.tool == KEPT_ORIGINAL:
            self.fallback_pages += 1

    def record_failure(self, page_num: int, stage: str, error: BaseException):
        self.failures.append(PageFailure(page_num, stage, str(error)))

    @property
    def ratio(self) -> Optional[float]:
        return compression_ratio(self.original_size, self.compressed_size)

    def summary(self) -> str:
        lines = [
            f"Batch {self.batch_num} (pages {self.first_page}-{self.last_page}):",
            f"  Original size: {format_bytes(self.original_size)}",
            f"  Compressed size: {format_bytes(self.compressed_size)}",
            f"  Compression ratio: {format_ratio(self.ratio)}",
        ]
        if self.failures:
            lines.append(f"  Failed pages: {', '.join(str(f.page_num) for f in self.failures)}")
        lines.append("  Best compression by tool:")
        lines.extend(_format_wins(self.tool_wins, indent="    "))
        return "\n".join(lines)


@dataclass
class DocumentStatistics:
    """
    Accumulator for the whole run.

    actual_original_size is the real input file size. It differs from
    page_original_size (the sum of split pages), which carries
    per-page container overhead.
    """
    total_pages: int
    actual_original_size: int
    chain_names: List[str] = field(default_factory=list)
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    batches: int = 0
    page_original_size: int = 0
    compressed_size: int = 0
    pages_ok: int = 0
    fallback_pages: int = 0
    tool_wins: Counter = field(default_factory=Counter)
    failures: List[PageFailure] = field(default_factory=list)

    # Set once the merged document has been written
    final_size: Optional[int] = None
    final_used_original: bool = False

    def __post_init__(self):
        # Stable report order: configured chains first, then the sentinel
        for name in list(self.chain_names) + [KEPT_ORIGINAL]:
            self.tool_wins.setdefault(name, 0)

    def merge(self, batch: BatchStatistics):
        self.batches += 1
        self.page_original_size += batch.original_size
        self.compressed_size += batch.compressed_size
        self.pages_ok += batch.pages_ok
        self.fallback_pages += batch.fallback_pages
        self.tool_wins.update(batch.tool_wins)
        self.failures.extend(batch.failures)

    def finish(self):
        self.end_time = time.time()

    @property
    def pages_failed(self) -> int:
        return len(self.failures)

    @property
    def elapsed(self) -> float:
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time

    @property
    def avg_time_per_page(self) -> Optional[float]:
        if self.total_pages == 0:
            return None
        return self.elapsed / self.total_pages

    @property
    def ratio(self) -> Optional[float]:
        """
        Savings over the pages that were processed.

        Failed pages have no output, so both sides only count pages that
        produced one.
        """
        return compression_ratio(self.page_original_size, self.compressed_size)

    @property
    def final_ratio(self) -> Optional[float]:
        if self.final_size is None:
            return None
        return compression_ratio(self.actual_original_size, self.final_size)

    def summary(self) -> str:
        avg = self.avg_time_per_page
        lines = [
            "Compression Summary:",
            f"Total pages processed: {self.pages_ok}/{self.total_pages}",
            f"Input file size: {format_bytes(self.actual_original_size)}",
            f"Original size of processed pages: {format_bytes(self.page_original_size)}",
            f"Compressed size of processed pages: {format_bytes(self.compressed_size)}",
            f"Compression ratio (processed pages): {format_ratio(self.ratio)}",
        ]
        if self.final_size is not None:
            note = " (original kept)" if self.final_used_original else ""
            lines.append(
                f"Merged document: {format_bytes(self.final_size)}"
                f" ({format_ratio(self.final_ratio)} vs input file){note}"
            )
        if self.fallback_pages:
            lines.append(f"Pages kept as original: {self.fallback_pages}")
        if self.failures:
            lines.append(f"Failed pages: {', '.join(str(f.page_num) for f in self.failures)}")
        lines.append(f"Total processing time: {format_time(self.elapsed)}")
        lines.append(
            f"Average time per page: {format_time(avg) if avg is not None else 'n/a'}"
        )
        lines.append("Best compression by tool:")
        lines.extend(_format_wins(self.tool_wins))
        return "\n".join(lines)
