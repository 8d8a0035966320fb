"""Error taxonomy for install and update transactions.

Every error is fatal to the current invocation. Each class pins the stage
it belongs to so the operator-facing message names the failing step.
"""

from typing import Optional, Sequence

from slotupdater.models.status import StageEnum


class UpdaterError(Exception):
    """Base class for all fatal updater errors."""

    stage: StageEnum = StageEnum.FAILED

    def __init__(self, message: str, stage: Optional[StageEnum] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def describe(self) -> str:
        """Return the operator-facing one-line description."""
        return f"{self.stage.value}: {self}"


class PrivilegeError(UpdaterError):
    stage = StageEnum.PREFLIGHT


class MissingToolError(UpdaterError):
    stage = StageEnum.PREFLIGHT

    def __init__(self, tools: Sequence[str]):
        self.tools = list(tools)
        super().__init__(f"Required tools not found on PATH: {', '.join(self.tools)}")


class FetchError(UpdaterError):
    stage = StageEnum.FETCHING


class VerificationError(UpdaterError):
    stage = StageEnum.VERIFYING


class DetectionError(UpdaterError):
    stage = StageEnum.DETECTING


class UnknownSlotError(UpdaterError):
    stage = StageEnum.RESOLVING


class WriteError(UpdaterError):
    stage = StageEnum.WRITING


class BootUpdateError(UpdaterError):
    stage = StageEnum.UPDATING_BOOT


class PartitionError(UpdaterError):
    stage = StageEnum.PARTITIONING


class CommandError(UpdaterError):
    """External command exited non-zero."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(
            f"Command failed ({returncode}): {' '.join(self.argv)}{detail}"
        )
