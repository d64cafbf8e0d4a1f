"""
Runs external tools (ffmpeg, ffprobe, yt-dlp) as asyncio subprocesses.

The child is always killed when the awaiting task is cancelled or the time
budget runs out, so no orphaned encoders outlive their job.
"""

import asyncio
import logging
from typing import Optional, Sequence

from tunefetch.exceptions import ProcessFailure, ProcessTimeout

log = logging.getLogger(__name__)


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


async def run_process(
    args: Sequence[str], timeout: Optional[float] = None
) -> tuple[bytes, bytes]:
    """
    Runs a command and returns its (stdout, stderr).

    Raises:
        ProcessFailure: The binary is missing or exited non-zero.
        ProcessTimeout: The command ran longer than ``timeout`` seconds.
    """
    log.debug(f"Running: {' '.join(args)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ProcessFailure(f"'{args[0]}' is not installed or not on PATH") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError as e:
        await _kill(process)
        raise ProcessTimeout(f"'{args[0]}' exceeded {timeout:.0f}s") from e
    except asyncio.CancelledError:
        await _kill(process)
        raise

    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        last_line = message.splitlines()[-1] if message else "no output"
        raise ProcessFailure(
            f"'{args[0]}' exited with code {process.returncode}: {last_line}",
            returncode=process.returncode,
            stderr=message,
        )
    return stdout, stderr
