from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

from pdf_compressor.config import CompressorConfig
from pdf_compressor.exceptions import MissingExecutableError, ToolExecutionError, ToolOutputMissingError
from pdf_compressor.tools import (
    Tool,
    ToolChain,
    ToolRunner,
    build_command,
    required_tools,
    resolve_executables,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts as fake tools")

# Copies the second-to-last argument to the last one (qpdf / mutool argument order)
COPY_SCRIPT = """#!/bin/sh
for arg in "$@"; do src="$dst"; dst="$arg"; done
cp "$src" "$dst"
"""

# Ghostscript order: -sOutputFile=<out> ... <input>
GS_TRUNCATE_SCRIPT = """#!/bin/sh
for arg in "$@"; do
  case "$arg" in -sOutputFile=*) dst="${arg#-sOutputFile=}";; esac
  src="$arg"
done
head -c 10 "$src" > "$dst"
"""

FAIL_SCRIPT = """#!/bin/sh
echo "something went badly wrong" >&2
exit 2
"""

NO_OUTPUT_SCRIPT = """#!/bin/sh
exit 0
"""

WARNING_SCRIPT = COPY_SCRIPT + "exit 3\n"

SLOW_SCRIPT = """#!/bin/sh
exec sleep 5
"""


def write_script(directory: Path, name: str, body: str) -> str:
    path = directory / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture()
def source(tmp_path: Path) -> Path:
    path = tmp_path / "page_00001.pdf"
    path.write_bytes(b"%PDF-1.4\n" + b"0" * 200)
    return path


def test_build_commands_use_fixed_templates(tmp_path: Path) -> None:
    config = CompressorConfig(gs_image_resolution=72, gs_jpeg_quality=40, qpdf_compression_level=6)
    src, out = tmp_path / "in.pdf", tmp_path / "out.pdf"

    gs = build_command(Tool.GHOSTSCRIPT, "gs", src, out, config)
    assert gs[0] == "gs"
    assert "-sDEVICE=pdfwrite" in gs
    assert "-dColorImageResolution=72" in gs
    assert "-dJPEGQ=40" in gs
    assert f"-sOutputFile={out}" in gs
    assert gs[-1] == str(src)

    qpdf = build_command(Tool.QPDF, "qpdf", src, out, config)
    assert "--compression-level=6" in qpdf
    assert qpdf[-2:] == [str(src), str(out)]

    mutool = build_command("mutool", "mutool", src, out, config)
    assert mutool[:2] == ["mutool", "clean"]
    assert mutool[-2:] == [str(src), str(out)]


def test_build_command_rejects_unknown_tool(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        build_command("pdfsqueeze", "x", tmp_path / "a", tmp_path / "b", CompressorConfig())


def test_chain_needs_steps() -> None:
    with pytest.raises(ValueError):
        ToolChain("empty", ())


def test_required_tools_in_first_use_order() -> None:
    assert required_tools(CompressorConfig().chains) == [Tool.GHOSTSCRIPT, Tool.QPDF, Tool.MUTOOL]


def test_resolve_executables_reports_every_missing_tool() -> None:
    overrides = {"qpdf": "no-such-qpdf-binary", "mutool": "no-such-mutool-binary"}
    with pytest.raises(MissingExecutableError) as excinfo:
        resolve_executables([Tool.QPDF, Tool.MUTOOL], overrides)
    assert excinfo.value.tools == ["mutool", "qpdf"]


@posix_only
def test_resolve_executables_uses_override(tmp_path: Path) -> None:
    script = write_script(tmp_path, "fake-qpdf", COPY_SCRIPT)
    resolved = resolve_executables([Tool.QPDF], {"qpdf": script})
    assert resolved == {Tool.QPDF: script}


@posix_only
def test_run_returns_output_size(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {Tool.QPDF: write_script(tmp_path, "qpdf", COPY_SCRIPT)})
    output = tmp_path / "out.pdf"

    size = runner.run(Tool.QPDF, source, output)

    assert size == source.stat().st_size
    assert output.read_bytes() == source.read_bytes()


@posix_only
def test_qpdf_warning_status_counts_as_success(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {Tool.QPDF: write_script(tmp_path, "qpdf", WARNING_SCRIPT)})
    assert runner.run(Tool.QPDF, source, tmp_path / "out.pdf") == source.stat().st_size


@posix_only
def test_warning_status_fails_other_tools(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {Tool.MUTOOL: write_script(tmp_path, "mutool", WARNING_SCRIPT)})
    with pytest.raises(ToolExecutionError) as excinfo:
        runner.run(Tool.MUTOOL, source, tmp_path / "out.pdf")
    assert excinfo.value.returncode == 3


@posix_only
def test_non_zero_exit_carries_stderr(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {Tool.GHOSTSCRIPT: write_script(tmp_path, "gs", FAIL_SCRIPT)})

    with pytest.raises(ToolExecutionError) as excinfo:
        runner.run(Tool.GHOSTSCRIPT, source, tmp_path / "out.pdf")

    assert excinfo.value.returncode == 2
    assert "something went badly wrong" in excinfo.value.stderr
    assert excinfo.value.tool == "gs"


@posix_only
def test_success_without_output_is_an_error(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {Tool.QPDF: write_script(tmp_path, "qpdf", NO_OUTPUT_SCRIPT)})
    with pytest.raises(ToolOutputMissingError):
        runner.run(Tool.QPDF, source, tmp_path / "out.pdf")


@posix_only
def test_timeout_is_an_execution_error(tmp_path: Path, source: Path) -> None:
    config = CompressorConfig(tool_timeout=0.5)
    runner = ToolRunner(config, {Tool.QPDF: write_script(tmp_path, "qpdf", SLOW_SCRIPT)})
    with pytest.raises(ToolExecutionError, match="timed out"):
        runner.run(Tool.QPDF, source, tmp_path / "out.pdf")


def test_missing_input_is_an_execution_error(tmp_path: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {Tool.QPDF: "qpdf"})
    with pytest.raises(ToolExecutionError, match="input file not found"):
        runner.run(Tool.QPDF, tmp_path / "absent.pdf", tmp_path / "out.pdf")


def test_vanished_executable_is_fatal(tmp_path: Path, source: Path) -> None:
    missing = str(tmp_path / "bin" / "qpdf-was-here")
    runner = ToolRunner(CompressorConfig(), {Tool.QPDF: missing})
    with pytest.raises(MissingExecutableError):
        runner.run(Tool.QPDF, source, tmp_path / "out.pdf")


@posix_only
def test_chain_steps_run_in_order(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {
        Tool.GHOSTSCRIPT: write_script(tmp_path, "gs", GS_TRUNCATE_SCRIPT),
        Tool.QPDF: write_script(tmp_path, "qpdf", COPY_SCRIPT),
    })
    chain = ToolChain("gs+qpdf", (Tool.GHOSTSCRIPT, Tool.QPDF))

    final, size = runner.run_chain(chain, source, tmp_path / "work")

    # gs truncates to 10 bytes, qpdf copies the gs output
    assert size == 10
    assert final == tmp_path / "work" / "step1_qpdf.pdf"
    assert (tmp_path / "work" / "step0_gs.pdf").read_bytes() == final.read_bytes()


@posix_only
def test_chain_stops_at_first_failure(tmp_path: Path, source: Path) -> None:
    runner = ToolRunner(CompressorConfig(), {
        Tool.QPDF: write_script(tmp_path, "qpdf", FAIL_SCRIPT),
        Tool.MUTOOL: write_script(tmp_path, "mutool", COPY_SCRIPT),
    })
    chain = ToolChain("qpdf+mutool", (Tool.QPDF, Tool.MUTOOL))

    with pytest.raises(ToolExecutionError):
        runner.run_chain(chain, source, tmp_path / "work")
    assert not (tmp_path / "work" / "step1_mutool.pdf").exists()
