"""Operating-system primitives for ``osrm-routed`` processes.

Port occupancy is the source of truth for "running": a TCP connect probe
tells whether something listens, and ``lsof`` names the owning pids, so
processes started outside this manager are still seen and stoppable.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from pathlib import Path

from fleet_engine.errors import StageFailure
from fleet_engine.executor.subprocess_runner import run_tool
from fleet_engine.executor.toolchain import OSRM_FILENAME

logger = logging.getLogger(__name__)

LOG_FILENAME = "osrm-routed.log"
_LSOF_TIMEOUT = 10.0


class PortProbe:
    """Answers whether a port is bound and which processes hold it."""

    def __init__(self, host: str = "127.0.0.1", connect_timeout: float = 1.0) -> None:
        self.host = host
        self.connect_timeout = connect_timeout

    async def is_bound(self, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()
        return True

    async def find_pids(self, port: int) -> list[int]:
        """Return pids listening on *port*; empty when none or ``lsof`` is unavailable."""
        try:
            result = await run_tool(
                ["lsof", "-t", f"-iTCP:{port}", "-sTCP:LISTEN"],
                stage="lsof",
                timeout=_LSOF_TIMEOUT,
                max_output_bytes=64 * 1024,
                check=False,
            )
        except StageFailure as exc:
            logger.warning("Cannot list processes on port %d: %s", port, exc)
            return []
        pids: list[int] = []
        for line in result.stdout.split():
            if line.isdigit():
                pids.append(int(line))
        return sorted(set(pids))


def send_signal(pid: int, sig: signal.Signals) -> bool:
    """Deliver *sig* to *pid*; return False when the process is already gone."""
    try:
        os.kill(pid, sig)
    except ProcessLookupError:
        return False
    logger.debug("Sent %s to pid %d", sig.name, pid)
    return True


async def spawn_routed(
    binary: str,
    algorithm: str,
    port: int,
    workdir: Path,
) -> asyncio.subprocess.Process:
    """Launch ``osrm-routed`` for the artifacts in *workdir*.

    The server runs in its own session so signals aimed at the orchestrator
    do not reach it; its output is appended to ``osrm-routed.log``.
    """
    log_path = workdir / LOG_FILENAME
    with log_path.open("ab") as log_file:
        proc = await asyncio.create_subprocess_exec(
            binary,
            "--algorithm",
            algorithm,
            "--port",
            str(port),
            OSRM_FILENAME,
            cwd=str(workdir),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=log_file,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
    logger.info("Spawned %s pid=%d on port %d", binary, proc.pid, port)
    return proc


def read_log_tail(workdir: Path, chars: int = 400) -> str:
    log_path = workdir / LOG_FILENAME
    try:
        data = log_path.read_bytes()
    except OSError:
        return ""
    return data[-chars:].decode("utf-8", errors="replace").strip()
