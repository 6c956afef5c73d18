"""Bounded, time-limited execution of external OSRM tools.

All interaction with the OSRM executables goes through :func:`run_tool`,
which spawns the process from a structured argument list (never a shell),
keeps only the tail of each output stream, and kills the process when its
time budget runs out.  Callers receive :class:`StageFailure` exceptions with
the exit code and the end of stderr rather than raw subprocess errors.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, Field

from fleet_engine.errors import StageFailure, ToolTimeoutError

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_TAIL_CHARS = 400


class ToolResult(BaseModel):
    """Captured outcome of one tool invocation."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    truncated: bool = Field(default=False, description="Whether output exceeded the capture bound.")

    def tail(self, chars: int = _TAIL_CHARS) -> str:
        text = self.stderr.strip() or self.stdout.strip()
        return text[-chars:]


async def _drain(stream: asyncio.StreamReader | None, limit: int) -> tuple[bytes, bool]:
    """Read *stream* to EOF keeping at most the last *limit* bytes."""
    if stream is None:
        return b"", False
    buf = bytearray()
    truncated = False
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > limit:
            del buf[: len(buf) - limit]
            truncated = True
    return bytes(buf), truncated


async def run_tool(
    args: Sequence[str],
    *,
    stage: str,
    cwd: Path | None = None,
    timeout: float = 3600.0,
    max_output_bytes: int = 1024 * 1024,
    check: bool = True,
) -> ToolResult:
    """Run one external tool and return its captured result.

    Parameters
    ----------
    args:
        Executable followed by its arguments.
    stage:
        Pipeline stage name used in error messages.
    cwd:
        Working directory for the child process.
    timeout:
        Seconds before the process is killed.
    max_output_bytes:
        Per-stream capture bound; earlier output is discarded.
    check:
        When true a non-zero exit raises :class:`StageFailure`.

    Raises
    ------
    ToolTimeoutError
        The process exceeded *timeout* and was killed.
    StageFailure
        The executable could not be started, or exited non-zero with *check*.
    """
    argv = [str(a) for a in args]
    logger.info("[%s] %s", stage, " ".join(argv))
    start = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        raise StageFailure(stage, f"cannot execute {argv[0]}: {exc}") from exc

    try:
        (out, out_trunc), (err, err_trunc), returncode = await asyncio.wait_for(
            asyncio.gather(
                _drain(proc.stdout, max_output_bytes),
                _drain(proc.stderr, max_output_bytes),
                proc.wait(),
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        if proc.returncode is None:
            proc.kill()
        await proc.wait()
        raise ToolTimeoutError(stage, f"timed out after {timeout:.0f}s", returncode=proc.returncode) from exc

    result = ToolResult(
        args=argv,
        returncode=returncode,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
        duration_seconds=round(time.monotonic() - start, 3),
        truncated=out_trunc or err_trunc,
    )
    logger.debug("[%s] exit %d in %.1fs", stage, returncode, result.duration_seconds)
    if check and returncode != 0:
        raise StageFailure(stage, f"exit code {returncode}", returncode=returncode, output_tail=result.tail())
    return result
