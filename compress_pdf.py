#!/usr/bin/env python3
"""
compress_pdf.py - Best-of-N page compression CLI.

Every page is run through Ghostscript, qpdf and qpdf+mutool in
parallel; the smallest result wins. No output is ever larger than its
input: pages and the merged document fall back to the original bytes.

Usage:
    python compress_pdf.py input.pdf
    python compress_pdf.py input.pdf --batch-size 50 --workers 4
    python compress_pdf.py input.pdf --no-thumbnails --no-pages
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent to path when running as script
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent))

from pdf_compressor.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_TOOL_TIMEOUT,
    CompressorConfig,
    OutputLayout,
    RunOptions,
)
from pdf_compressor.exceptions import CompressorError
from pdf_compressor.pipeline import compress_document


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return number


def positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {value}")
    return number


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="compress",
        description="Compress a PDF page by page, keeping the smallest result per page.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Output layout (relative to --output-dir, default ./out):
  pages/page_NNNNN.pdf              compressed pages
  thumbnails/page_NNNNN_thumb.jpg   page thumbnails
  original_pdf_metadata.txt         metadata of the input
  compressed_pdf_metadata.txt       metadata of the merged output
  <input>_compressed.pdf            merged document

Requires gs, qpdf and mutool on PATH.
"""
    )

    parser.add_argument("input", type=Path, help="Input PDF file")

    parser.add_argument(
        "--no-merge",
        action="store_true",
        help="Do not create the merged output file"
    )
    parser.add_argument(
        "--no-pages",
        action="store_true",
        help="Do not keep individual page files"
    )
    parser.add_argument(
        "--no-metadata",
        action="store_true",
        help="Do not write metadata files"
    )
    parser.add_argument(
        "--no-thumbnails",
        action="store_true",
        help="Do not create page thumbnails"
    )
    parser.add_argument(
        "--batch-size",
        type=positive_int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Pages per batch (default: {DEFAULT_BATCH_SIZE})"
    )
    parser.add_argument(
        "-w", "--workers",
        type=positive_int,
        default=DEFAULT_CONCURRENCY,
        help=f"Pages compressed in parallel (default: {DEFAULT_CONCURRENCY})"
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=DEFAULT_TOOL_TIMEOUT,
        help=f"Seconds allowed per tool invocation (default: {DEFAULT_TOOL_TIMEOUT:g})"
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("out"),
        help="Output directory (default: ./out)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    return parser.parse_args(argv)


def print_progress(current: int, total: int):
    """Print progress bar."""
    if total <= 0:
        return
    width = 40
    filled = int(width * current / total)
    bar = "=" * filled + "-" * (width - filled)
    pct = current / total * 100
    print(f"\r[{bar}] {current}/{total} ({pct:.0f}%)", end="", file=sys.stderr)
    if current == total:
        print(file=sys.stderr)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.input.suffix.lower() != ".pdf":
        print(f"Warning: {args.input} does not have a .pdf extension", file=sys.stderr)

    config = CompressorConfig(
        batch_size=args.batch_size,
        concurrency=args.workers,
        tool_timeout=args.timeout
    )
    options = RunOptions(
        create_merged=not args.no_merge,
        keep_pages=not args.no_pages,
        create_metadata=not args.no_metadata,
        create_thumbnails=not args.no_thumbnails
    )

    print(f"Using batch size: {config.batch_size}")

    try:
        result = compress_document(
            args.input,
            config=config,
            options=options,
            layout=OutputLayout(args.output_dir),
            progress_callback=print_progress
        )
    except CompressorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    if result.merge is not None:
        if result.merge.used_original:
            print(
                f"Warning: compressed version was not smaller ({result.merge.reason}). "
                f"Using original file.",
                file=sys.stderr
            )
        else:
            print(f"Merged PDF saved to: {result.merge.output_path}")
    if result.stats.fallback_pages:
        print(
            f"Warning: {result.stats.fallback_pages} page(s) kept as original "
            f"because no tool made them smaller",
            file=sys.stderr
        )

    if result.stats.failures:
        print(
            f"Warning: {result.stats.pages_failed} page(s) could not be processed; "
            f"see log for details",
            file=sys.stderr
        )

    print(f"\n{result.summary()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
