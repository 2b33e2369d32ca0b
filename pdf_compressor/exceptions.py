"""
exceptions.py - Error types raised by the compression pipeline.

Tool and page level errors are recovered by the fallback policy.
Setup and document load errors are fatal.
"""

from typing import Dict, Iterable, Optional


class CompressorError(Exception):
    """Base class for all pdf_compressor errors."""


class ToolError(CompressorError):
    """An external compressor invocation did not produce a usable file."""

    def __init__(self, tool: str, message: str, returncode: Optional[int] = None, stderr: str = ""):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{tool}: {message}")


class ToolExecutionError(ToolError):
    """Process exited non-zero, timed out or could not be started."""


class ToolOutputMissingError(ToolError):
    """Process exited successfully but left no output file."""


class AllToolsFailedError(CompressorError):
    """Every configured tool chain failed for one page."""

    def __init__(self, page_num: int, errors: Dict[str, Exception]):
        self.page_num = page_num
        self.errors = dict(errors)
        details = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        super().__init__(f"Page {page_num}: all tools failed ({details})")


class MissingExecutableError(CompressorError):
    """A required external binary is not installed."""

    def __init__(self, tools: Iterable[str]):
        self.tools = sorted(tools)
        super().__init__(
            f"Required executable(s) not found in PATH: {', '.join(self.tools)}"
        )


class InputNotFoundError(CompressorError):
    """The input document does not exist."""


class InputInvalidError(CompressorError):
    """The input document cannot be opened or parsed."""


class FilesystemError(CompressorError):
    """Unexpected read/write/rename failure."""

    def __init__(self, stage: str, message: str, page_num: Optional[int] = None):
        self.stage = stage
        self.page_num = page_num
        where = f"page {page_num}, {stage}" if page_num is not None else stage
        super().__init__(f"{where}: {message}")


class SystemicFailureError(CompressorError):
    """Too many consecutive pages failed; the run is aborted."""
