"""
Async external command runner.

Every subprocess Cinevault starts (ffprobe, ffmpeg, library hooks) goes
through CommandRunner. It never raises for process outcomes: a spawn failure,
a non-zero exit and a timeout all come back as a CommandResult.
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Sequence, Union
from pathlib import Path

logger = logging.getLogger(__name__)

# FFmpeg rewrites its progress line with bare carriage returns
_LINE_SPLIT = re.compile(r"[\r\n]")

READ_CHUNK_SIZE = 4096
DEFAULT_KILL_GRACE = 5.0


@dataclass
class CommandResult:
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    spawn_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and self.spawn_error is None

    def describe(self) -> str:
        if self.spawn_error:
            return f"could not start: {self.spawn_error}"
        if self.timed_out:
            return "timed out"
        return f"exited with code {self.exit_code}"


class CommandRunner:
    """Runs a command with incremental stdout/stderr capture and an optional timeout."""

    def __init__(self, kill_grace: float = DEFAULT_KILL_GRACE):
        self.kill_grace = kill_grace

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        on_stderr_line: Optional[Callable[[str], None]] = None,
        tail_lines: Optional[int] = None,
    ) -> CommandResult:
        """
        Run ``command`` with ``args`` and wait for it to finish.

        Args:
            cwd: Working directory for the child.
            timeout: Seconds before the child is sent SIGTERM (then SIGKILL
                after ``kill_grace``). A timed out run has ``exit_code=None``.
            on_stderr_line: Called for each stderr line, split on CR and LF.
            tail_lines: Keep only the last N stderr lines instead of all of it.
        """
        argv = [str(command), *[str(a) for a in args]]
        logger.debug(f"[Command] Running: {' '.join(argv[:10])}{' ...' if len(argv) > 10 else ''}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
            )
        except (OSError, ValueError) as e:
            logger.warning(f"[Command] Failed to start {command}: {e}")
            return CommandResult(exit_code=None, stderr=str(e), spawn_error=str(e))

        stdout_chunks: List[bytes] = []
        stderr_lines: Deque[str] = deque(maxlen=tail_lines if tail_lines and tail_lines > 0 else None)

        def emit_line(line: str) -> None:
            if not line:
                return
            stderr_lines.append(line)
            if on_stderr_line:
                try:
                    on_stderr_line(line)
                except Exception as e:
                    logger.warning(f"[Command] stderr callback error: {e}")

        async def read_stdout():
            """Read stdout in separate task to prevent pipe blocking."""
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                stdout_chunks.append(chunk)

        async def read_stderr():
            # Chunked reads: a single progress "line" can exceed the StreamReader limit
            pending = ""
            while True:
                chunk = await process.stderr.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                pending += chunk.decode("utf-8", errors="replace")
                parts = _LINE_SPLIT.split(pending)
                pending = parts.pop()
                for part in parts:
                    emit_line(part)
            emit_line(pending)

        readers = [
            asyncio.create_task(read_stdout()),
            asyncio.create_task(read_stderr()),
        ]
        timed_out = False

        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(f"[Command] {command} timed out after {timeout}s, terminating")
                await self._terminate(process)
        except asyncio.CancelledError:
            logger.info(f"[Command] Cancelled, terminating {command}")
            await self._terminate(process)
            for task in readers:
                task.cancel()
            raise

        # Pipes can outlive the child if it left grandchildren behind
        done, still_reading = await asyncio.wait(readers, timeout=self.kill_grace)
        for task in still_reading:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.debug(f"[Command] Reader error: {task.exception()}")

        return CommandResult(
            exit_code=None if timed_out else process.returncode,
            stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
            stderr="\n".join(stderr_lines),
            timed_out=timed_out,
        )

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL if the child ignores it for ``kill_grace`` seconds."""
        if process.returncode is not None:
            return

        try:
            process.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace)
            return
        except asyncio.TimeoutError:
            pass

        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
        logger.warning("[Command] Process killed forcefully")
