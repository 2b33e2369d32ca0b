"""
tools.py - External compressor invocation.

Each tool is one of a fixed set of binaries with a fixed argument
template. A tool chain is an ordered list of tools: each step rewrites
the output of the previous one, the last step's file is the candidate.

Supported tools:
- gs      Ghostscript pdfwrite, aggressive /screen downsampling
- qpdf    lossless structural rewrite, object streams, recompressed flate
- mutool  MuPDF clean, garbage collection + stream compression
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from .exceptions import MissingExecutableError, ToolExecutionError, ToolOutputMissingError

logger = logging.getLogger(__name__)

# Keep stderr excerpts in log lines and exceptions readable
MAX_STDERR_CHARS = 2000


class Tool(str, Enum):
    """Supported external compressors."""

    GHOSTSCRIPT = "gs"
    QPDF = "qpdf"
    MUTOOL = "mutool"


@dataclass(frozen=True)
class ToolChain:
    """Named, ordered sequence of tools producing one candidate."""

    name: str
    steps: Tuple[Tool, ...]

    def __post_init__(self):
        if not self.steps:
            raise ValueError(f"Tool chain '{self.name}' has no steps")


# Executable names tried in order for each tool
EXECUTABLE_CANDIDATES: Dict[Tool, Tuple[str, ...]] = {
    Tool.GHOSTSCRIPT: ("gs", "gswin64c", "gswin32c"),
    Tool.QPDF: ("qpdf",),
    Tool.MUTOOL: ("mutool",),
}

# Exit statuses that mean "output written"; qpdf uses 3 for "succeeded with warnings"
SUCCESS_CODES: Dict[Tool, FrozenSet[int]] = {
    Tool.GHOSTSCRIPT: frozenset({0}),
    Tool.QPDF: frozenset({0, 3}),
    Tool.MUTOOL: frozenset({0}),
}


def build_ghostscript_command(executable: str, source: Path, output: Path, config) -> List[str]:
    resolution = config.gs_image_resolution
    return [
        executable,
        "-sDEVICE=pdfwrite",
        "-dNOPAUSE",
        "-dBATCH",
        "-dSAFER",
        "-dQUIET",
        f"-dPDFSETTINGS={config.gs_pdf_settings}",
        f"-dCompatibilityLevel={config.gs_compatibility}",
        # Downsample every image class to the same target
        "-dDownsampleColorImages=true",
        "-dDownsampleGrayImages=true",
        "-dDownsampleMonoImages=true",
        f"-dColorImageResolution={resolution}",
        f"-dGrayImageResolution={resolution}",
        f"-dMonoImageResolution={resolution}",
        f"-dJPEGQ={config.gs_jpeg_quality}",
        "-dDetectDuplicateImages=true",
        "-dCompressFonts=true",
        "-dSubsetFonts=true",
        "-dCompressPages=true",
        f"-sOutputFile={output}",
        str(source),
    ]


def build_qpdf_command(executable: str, source: Path, output: Path, config) -> List[str]:
    return [
        executable,
        "--linearize",
        "--object-streams=generate",
        "--recompress-flate",
        "--optimize-images",
        f"--compression-level={config.qpdf_compression_level}",
        str(source),
        str(output),
    ]


def build_mutool_command(executable: str, source: Path, output: Path, config) -> List[str]:
    return [executable, "clean", "-gggg", "-z", str(source), str(output)]


_BUILDERS = {
    Tool.GHOSTSCRIPT: build_ghostscript_command,
    Tool.QPDF: build_qpdf_command,
    Tool.MUTOOL: build_mutool_command,
}


def build_command(tool: Tool, executable: str, source: Path, output: Path, config) -> List[str]:
    """Construct the fixed argument list for tool."""
    return _BUILDERS[Tool(tool)](executable, Path(source), Path(output), config)


def required_tools(chains: Iterable[ToolChain]) -> List[Tool]:
    """Distinct tools used by chains, in first-use order."""
    seen: List[Tool] = []
    for chain in chains:
        for tool in chain.steps:
            if tool not in seen:
                seen.append(tool)
    return seen


def resolve_executables(
    tools: Iterable[Tool],
    overrides: Optional[Mapping[str, str]] = None
) -> Dict[Tool, str]:
    """
    Locate every tool on PATH.

    Args:
        tools: Tools that must be available
        overrides: Optional tool name -> executable name/path

    Returns:
        Mapping tool -> resolved executable path

    Raises:
        MissingExecutableError: listing every tool that was not found
    """
    overrides = overrides or {}
    resolved: Dict[Tool, str] = {}
    missing = []

    for tool in tools:
        tool = Tool(tool)
        candidates = (overrides[tool.value],) if tool.value in overrides else EXECUTABLE_CANDIDATES[tool]
        for candidate in candidates:
            found = shutil.which(candidate)
            if found:
                logger.debug(f"Found {tool.value}: {found}")
                resolved[tool] = found
                break
        else:
            missing.append(tool.value)

    if missing:
        raise MissingExecutableError(missing)

    return resolved


def _excerpt(text: Optional[str]) -> str:
    text = (text or "").strip()
    if len(text) > MAX_STDERR_CHARS:
        return text[:MAX_STDERR_CHARS] + "..."
    return text


class ToolRunner:
    """
    Runs one external tool at a time on one input file.

    Stateless apart from configuration, safe to share between threads.
    """

    def __init__(self, config, executables: Mapping[Tool, str]):
        self.config = config
        self.executables = dict(executables)

    def run(self, tool: Tool, input_path: Path, output_path: Path) -> int:
        """
        Run tool on input_path, writing output_path.

        Returns:
            Size of the output file in bytes

        Raises:
            ToolExecutionError: non-zero exit, timeout, launch failure
            ToolOutputMissingError: exit OK but no output file
            MissingExecutableError: the executable no longer exists
        """
        tool = Tool(tool)
        input_path = Path(input_path)
        output_path = Path(output_path)

        if not input_path.is_file():
            raise ToolExecutionError(tool.value, f"input file not found: {input_path}")

        executable = self.executables.get(tool, EXECUTABLE_CANDIDATES[tool][0])
        cmd = build_command(tool, executable, input_path, output_path, self.config)

        logger.debug(f"Running {tool.value}: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.config.tool_timeout
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the child before re-raising
            raise ToolExecutionError(
                tool.value,
                f"timed out after {self.config.tool_timeout:g}s",
                stderr=_excerpt(e.stderr if isinstance(e.stderr, str) else None)
            ) from e
        except FileNotFoundError as e:
            # Binary vanished after the startup check: systemic, not page specific
            raise MissingExecutableError([tool.value]) from e
        except OSError as e:
            raise ToolExecutionError(tool.value, f"failed to start: {e}") from e

        if result.returncode not in SUCCESS_CODES[tool]:
            stderr = _excerpt(result.stderr)
            raise ToolExecutionError(
                tool.value,
                f"exited with code {result.returncode}: {stderr}",
                returncode=result.returncode,
                stderr=stderr
            )

        if not output_path.is_file():
            raise ToolOutputMissingError(
                tool.value,
                f"exited with code {result.returncode} but wrote no output",
                returncode=result.returncode,
                stderr=_excerpt(result.stderr)
            )

        return output_path.stat().st_size

    def run_chain(self, chain: ToolChain, input_path: Path, work_dir: Path) -> Tuple[Path, int]:
        """
        Run every step of chain sequentially inside work_dir.

        Returns:
            (final output path, final output size)
        """
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)

        current = Path(input_path)
        size = 0
        for index, tool in enumerate(chain.steps):
            output = work_dir / f"step{index}_{Tool(tool).value}.pdf"
            size = self.run(tool, current, output)
            logger.debug(f"{chain.name} step {index} ({Tool(tool).value}): {size:,} bytes")
            current = output

        return current, size


def describe_chains(chains: Sequence[ToolChain]) -> str:
    return ", ".join(
        f"{chain.name} [{' -> '.join(Tool(t).value for t in chain.steps)}]" for chain in chains
    )
