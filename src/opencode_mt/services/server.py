"""Launch and stop a local ``opencode serve`` process."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from urllib.parse import urlparse

from .client import OpencodeClient

logger = logging.getLogger(__name__)

_STARTUP_POLL = 0.25


class ServerLaunchError(Exception):
    """Raised when the opencode binary is missing or the server never answers."""


class ServerProcess:
    """A child ``opencode serve`` bound to the configured host and port."""

    def __init__(self, url: str, command: str = "opencode") -> None:
        self.url = url
        self.command = command
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    def _args(self) -> list[str]:
        parsed = urlparse(self.url)
        args = ["serve"]
        if parsed.hostname:
            args += ["--hostname", parsed.hostname]
        if parsed.port:
            args += ["--port", str(parsed.port)]
        return args

    async def start(self, client: OpencodeClient, timeout: float = 15.0) -> None:
        """Spawn the server and wait until it answers a health check."""
        binary = shutil.which(self.command)
        if binary is None:
            raise ServerLaunchError(f"'{self.command}' not found on PATH")
        logger.info("Starting %s %s", binary, " ".join(self._args()))
        self._proc = await asyncio.create_subprocess_exec(
            binary,
            *self._args(),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            cwd=os.getcwd(),
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if self._proc.returncode is not None:
                raise ServerLaunchError(f"opencode serve exited with code {self._proc.returncode}")
            if await client.health():
                logger.info("opencode server is up at %s", self.url)
                return
            await asyncio.sleep(_STARTUP_POLL)
        await self.stop()
        raise ServerLaunchError(f"opencode server did not respond within {timeout:.0f}s")

    async def stop(self, timeout: float = 5.0) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            self._proc = None
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("opencode server did not exit, killing it")
            proc.kill()
            await proc.wait()
        logger.info("opencode server stopped")
        self._proc = None
