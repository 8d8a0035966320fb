"""Slot, disk and slot-plan models."""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Slot(str, Enum):
    """A/B root filesystem slot.

    Each slot owns a fixed (root, verity) partition index pair. The pairs
    are a provisioning-time contract with the installer and must not drift.
    """

    A = "A"
    B = "B"

    @property
    def root_index(self) -> int:
        return SLOT_PARTITIONS[self][0]

    @property
    def verity_index(self) -> int:
        return SLOT_PARTITIONS[self][1]

    @property
    def other(self) -> "Slot":
        return Slot.B if self is Slot.A else Slot.A

    @classmethod
    def from_root_index(cls, index: int) -> Optional["Slot"]:
        """Return the slot whose root partition is ``index``, or None."""
        return SLOT_BY_ROOT_INDEX.get(index)


SLOT_PARTITIONS = {
    Slot.A: (2, 3),
    Slot.B: (4, 5),
}

SLOT_BY_ROOT_INDEX = {root: slot for slot, (root, _) in SLOT_PARTITIONS.items()}

ESP_INDEX = 1
DATA_INDEX = 6
PARTITION_COUNT = 6

# nvme0n1, mmcblk0, loop0 ... partitions are named <disk>p<N>
_P_INFIX_RE = re.compile(r"\d$")


class Disk(BaseModel):
    """Physical disk holding the six-partition layout."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., pattern=r"^/.+", description="Block device path, e.g. /dev/sda")

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def partition_prefix(self) -> str:
        """Prefix that a partition index is appended to."""
        if _P_INFIX_RE.search(self.name):
            return f"{self.path}p"
        return self.path

    def partition(self, index: int) -> str:
        """Return the device path of partition ``index``."""
        if index < 1:
            raise ValueError(f"Partition index must be >= 1, got {index}")
        return f"{self.partition_prefix}{index}"

    def partition_index(self, device: str) -> Optional[int]:
        """Return the index of ``device`` on this disk, or None if it is not one."""
        prefix = self.partition_prefix
        if not device.startswith(prefix):
            return None
        suffix = device[len(prefix):]
        if not suffix.isdigit() or suffix.startswith("0"):
            return None
        return int(suffix)


class RootDevice(BaseModel):
    """Raw partition backing the root mount, and its disk."""

    model_config = ConfigDict(frozen=True)

    disk: Disk
    partition: str = Field(..., description="Raw partition device path, e.g. /dev/sda2")
    source: str = Field(..., description="Root mount source as reported by findmnt")
    mapped_via: list[str] = Field(
        default_factory=list, description="Device-mapper devices walked to reach the partition"
    )


class SlotPlan(BaseModel):
    """Resolved current/target slot pair for one update transaction."""

    model_config = ConfigDict(frozen=True)

    disk: Disk
    current_slot: Slot
    current_root: str
    target_slot: Slot
    target_root: str
    target_verity: str

    @model_validator(mode="after")
    def target_differs_from_current(self) -> "SlotPlan":
        if self.target_slot == self.current_slot:
            raise ValueError(
                f"Target slot {self.target_slot.value} equals current slot"
            )
        return self

    @property
    def current_partitions(self) -> tuple[str, str]:
        return (
            self.disk.partition(self.current_slot.root_index),
            self.disk.partition(self.current_slot.verity_index),
        )

    @property
    def target_partitions(self) -> tuple[str, str]:
        return (self.target_root, self.target_verity)
