"""External command execution for disk and ESP tooling."""

import asyncio
import logging
import shlex
import shutil
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from slotupdater.errors import CommandError, MissingToolError


@dataclass(frozen=True)
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str


class CommandRunner:
    """Runs external tools (sgdisk, mcopy, findmnt, ...) as argv lists."""

    def __init__(self):
        """Initialize command runner."""
        self.logger = logging.getLogger("slotupdater.command")

    async def run(
        self, argv: Sequence[str], *, check: bool = True
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: Command and arguments (never passed through a shell)
            check: Raise CommandError on non-zero exit

        Returns:
            CommandResult with decoded stdout/stderr

        Raises:
            CommandError: If check is set and the command exits non-zero,
                or the executable cannot be started
        """
        argv_list = [str(a) for a in argv]
        self.logger.info(f"CMD {' '.join(shlex.quote(a) for a in argv_list)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv_list,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CommandError(argv_list, 127, str(e)) from e

        stdout, stderr = await process.communicate()
        result = CommandResult(
            argv=argv_list,
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

        if result.stdout.strip():
            self.logger.debug(f"STDOUT {result.stdout.strip()}")
        if result.stderr.strip():
            self.logger.debug(f"STDERR {result.stderr.strip()}")

        if check and result.returncode != 0:
            raise CommandError(argv_list, result.returncode, result.stderr)

        return result


def require_tools(tools: Iterable[str], path: Optional[str] = None) -> None:
    """Ensure every tool is on PATH.

    Raises:
        MissingToolError: Listing every missing tool
    """
    missing = [tool for tool in tools if shutil.which(tool, path=path) is None]
    if missing:
        raise MissingToolError(missing)
