"""Stdio transport: talks to a server subprocess over stdin/stdout.

Frames are newline-delimited JSON.  The server's stderr is drained in the
background and forwarded to the log so a chatty server cannot fill the pipe.
"""

from __future__ import annotations

import asyncio
import logging
import shlex

from mcpc.errors import TransportClosedError, TransportError

logger = logging.getLogger(__name__)

# Large tool results arrive as a single line.
_LINE_LIMIT = 16 * 1024 * 1024


class StdioTransport:
    """Launches *command* and exchanges frames over its standard streams."""

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        terminate_timeout: float = 5.0,
    ) -> None:
        self._command = command
        self._args = list(args or [])
        self._env = env
        self._terminate_timeout = terminate_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    async def connect(self) -> None:
        """Launch the subprocess."""
        parts = [*shlex.split(self._command), *self._args]
        try:
            self._process = await asyncio.create_subprocess_exec(
                *parts,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
                limit=_LINE_LIMIT,
            )
        except OSError as exc:
            raise TransportError(f"Cannot start {parts[0]!r}: {exc}") from exc
        if self._process.stderr is not None:
            self._stderr_task = asyncio.create_task(self._drain_stderr(self._process.stderr))

    async def send(self, data: bytes) -> None:
        """Write one frame as a line to stdin."""
        if self._process is None or self._process.stdin is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        try:
            self._process.stdin.write(data + b"\n")
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise TransportClosedError(f"Server stdin closed: {exc}") from exc

    async def receive(self) -> bytes:
        """Read the next non-empty line from stdout."""
        if self._process is None or self._process.stdout is None:
            msg = "Transport not connected"
            raise TransportError(msg)
        while True:
            line = await self._process.stdout.readline()
            if not line:
                msg = "Transport closed"
                raise TransportClosedError(msg)
            line = line.strip()
            if line:
                return line

    async def close(self) -> None:
        """Close stdin and terminate the subprocess."""
        process, self._process = self._process, None
        if process is None:
            return
        if process.stdin is not None:
            process.stdin.close()
        if process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._terminate_timeout)
            except TimeoutError:
                logger.warning("Server %s ignored SIGTERM, killing", self._command)
                process.kill()
                await process.wait()
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            self._stderr_task = None

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            logger.debug("[%s stderr] %s", self._command, line.decode(errors="replace").rstrip())
