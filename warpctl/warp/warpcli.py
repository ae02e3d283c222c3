"""warp-cli subprocess controller."""

import asyncio
import logging
from contextlib import suppress
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class Mode(Enum):
    """Routing profiles selectable through ``warp-cli mode``."""

    DIRECT_1111 = "direct"
    WARP_1111 = "warp"

    @property
    def cli_argument(self) -> str:
        """Argument passed to ``warp-cli mode``."""
        return _MODE_ARGUMENTS[self]

    @property
    def label(self) -> str:
        return _MODE_LABELS[self][0]

    @property
    def ui_label(self) -> str:
        return _MODE_LABELS[self][1]


_MODE_ARGUMENTS = {
    Mode.DIRECT_1111: "proxy",
    Mode.WARP_1111: "warp",
}

_MODE_LABELS = {
    Mode.DIRECT_1111: ("1.1.1.1", "Warp"),
    Mode.WARP_1111: ("1.1.1.1 with Warp", "WARP"),
}


def _kill(process: asyncio.subprocess.Process) -> None:
    with suppress(ProcessLookupError):
        process.kill()


class WarpCli:
    """Control Cloudflare WARP through the ``warp-cli`` tool.

    Every command goes through :meth:`run`, which never raises for tool
    failures: a timeout, a non-zero exit or a launch error all yield an
    empty string.
    """

    def __init__(self, executable: str = "warp-cli", timeout: float = DEFAULT_TIMEOUT):
        self.executable = executable
        self.timeout = timeout

    async def run(self, *args: str) -> str:
        """Execute one command and return its standard output.

        Cancelling the calling task kills the child process before the
        cancellation propagates.
        """
        command = [self.executable, *args]
        printable = " ".join(command)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning("Could not launch %s: %s", printable, e)
            return ""

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            _kill(process)
            await process.wait()
            logger.warning("%s timed out after %.1fs", printable, self.timeout)
            return ""
        except asyncio.CancelledError:
            _kill(process)
            await process.wait()
            logger.debug("%s cancelled", printable)
            raise

        if process.returncode != 0:
            logger.warning(
                "%s exited with status %s: %s",
                printable,
                process.returncode,
                stderr.decode(errors="replace").strip(),
            )
            return ""

        output = stdout.decode(errors="replace")
        logger.debug("%s -> %r", printable, output.strip())
        return output

    async def connect(self) -> str:
        return await self.run("connect")

    async def disconnect(self) -> str:
        return await self.run("disconnect")

    async def status(self) -> str:
        return await self.run("status")

    async def account(self) -> str:
        return await self.run("account")

    async def set_mode(self, mode: Mode) -> str:
        return await self.run("mode", mode.cli_argument)

    async def register_license(self, key: str) -> str:
        """Attach a WARP+ license key to the current registration."""
        return await self.run("registration", "license", key)
