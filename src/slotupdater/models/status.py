"""Stage enum for install/update transactions."""

from enum import Enum


class StageEnum(str, Enum):
    """Transaction stages.

    Update transitions:
    preflight → fetching → verifying → detecting → resolving → writing
        → updating_boot → rebooting → success
                    ↓
                  failed (from any stage)

    Install transitions:
    preflight → fetching → verifying → partitioning → formatting
        → updating_boot → writing → formatting → success
    """

    PREFLIGHT = "preflight"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    DETECTING = "detecting"
    RESOLVING = "resolving"
    PARTITIONING = "partitioning"
    FORMATTING = "formatting"
    WRITING = "writing"
    UPDATING_BOOT = "updating_boot"
    REBOOTING = "rebooting"
    SUCCESS = "success"
    FAILED = "failed"
