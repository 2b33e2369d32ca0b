from __future__ import annotations

import re
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pikepdf
import pytest

from pdf_compressor.config import CompressorConfig, OutputLayout

PAGE_RE = re.compile(r"page_(\d+)")

# pikepdf is used from the fake runner's worker threads
_PDF_LOCK = threading.Lock()


def write_padded_pdf(
    path: Path,
    paddings: Sequence[int],
    widths: Optional[Sequence[float]] = None,
    title: Optional[str] = None,
    compress: bool = False,
) -> Path:
    """Write a PDF whose page i carries an uncompressed comment of paddings[i] bytes."""
    with _PDF_LOCK:
        pdf = pikepdf.Pdf.new()
        for index, padding in enumerate(paddings):
            width = widths[index] if widths else 200
            pdf.add_blank_page(page_size=(width, 200))
            content = b"%" + b"x" * max(padding, 0) + b"\n"
            pdf.pages[-1].Contents = pdf.make_indirect(pikepdf.Stream(pdf, content))
        if title is not None:
            pdf.docinfo["/Title"] = title
            pdf.docinfo["/Author"] = "pdf-compressor tests"
        pdf.save(path, compress_streams=compress)
        pdf.close()
    return path


Behavior = Callable[[int, int], Union[int, Exception]]


class FakeRunner:
    """
    Stands in for ToolRunner.

    behaviors maps chain name -> f(page_num, input_size) returning the
    output size to produce, or an exception instance to raise.
    Chains without a behavior echo the input size.
    """

    def __init__(
        self,
        behaviors: Optional[Dict[str, Behavior]] = None,
        pdf_output: bool = False,
        delay: float = 0.0,
        barrier: Optional[threading.Barrier] = None,
    ):
        self.behaviors = behaviors or {}
        self.pdf_output = pdf_output
        self.delay = delay
        self.barrier = barrier
        self.calls: List[tuple] = []
        self._lock = threading.Lock()
        self._active_pages: Dict[int, int] = {}
        self.max_pages_in_flight = 0

    def run_chain(self, chain, input_path, work_dir):
        input_path = Path(input_path)
        page_num = int(PAGE_RE.search(input_path.name).group(1))
        with self._lock:
            self.calls.append((chain.name, page_num))
            self._active_pages[page_num] = self._active_pages.get(page_num, 0) + 1
            self.max_pages_in_flight = max(self.max_pages_in_flight, len(self._active_pages))
        try:
            if self.barrier is not None:
                self.barrier.wait()
            if self.delay:
                time.sleep(self.delay)

            input_size = input_path.stat().st_size
            behavior = self.behaviors.get(chain.name, lambda page, size: size)
            outcome = behavior(page_num, input_size)
            if isinstance(outcome, Exception):
                raise outcome

            work_dir = Path(work_dir)
            work_dir.mkdir(parents=True, exist_ok=True)
            output = work_dir / "out.pdf"
            if self.pdf_output:
                write_padded_pdf(output, [outcome])
            else:
                output.write_bytes(b"\0" * outcome)
            return output, output.stat().st_size
        finally:
            with self._lock:
                self._active_pages[page_num] -= 1
                if not self._active_pages[page_num]:
                    del self._active_pages[page_num]


class RecordingThumbnailer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[tuple] = []

    def write(self, pdf_path, thumb_path):
        self.calls.append((Path(pdf_path), Path(thumb_path)))
        if self.fail:
            raise RuntimeError("renderer exploded")
        Path(thumb_path).parent.mkdir(parents=True, exist_ok=True)
        Path(thumb_path).write_bytes(b"jpeg")
        return Path(thumb_path)


@pytest.fixture()
def layout(tmp_path: Path) -> OutputLayout:
    out = OutputLayout(tmp_path / "out")
    out.prepare()
    return out


@pytest.fixture()
def config() -> CompressorConfig:
    return CompressorConfig(batch_size=10, concurrency=2, tool_timeout=5)


@pytest.fixture()
def pdf_factory(tmp_path: Path) -> Callable[..., Path]:
    def _create(filename: str, paddings: Sequence[int], **kwargs) -> Path:
        return write_padded_pdf(tmp_path / filename, paddings, **kwargs)

    return _create


@pytest.fixture()
def make_runner() -> Callable[..., FakeRunner]:
    return FakeRunner


@pytest.fixture()
def page_input(tmp_path: Path) -> Callable[[int, int], Path]:
    """Raw bytes standing in for a split page; tools never parse it in unit tests."""

    def _create(page_num: int, size: int) -> Path:
        path = tmp_path / "batch" / f"page_{page_num:05d}.pdf"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"p" * size)
        return path

    return _create


@pytest.fixture()
def make_thumbnailer() -> Callable[..., RecordingThumbnailer]:
    return RecordingThumbnailer
