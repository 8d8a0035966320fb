"""Disk/partition inspector: resolve the live root mount to its raw partition."""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from slotupdater.errors import CommandError, DetectionError
from slotupdater.models.config import UpdaterConfig
from slotupdater.models.slot import PARTITION_COUNT, Disk, RootDevice
from slotupdater.services.command import CommandRunner

# Nested mappings deeper than this are treated as a loop
MAX_MAPPING_DEPTH = 8

# findmnt appends "[/subvolume]" for bind and btrfs subvolume mounts
_FSROOT_RE = re.compile(r"\[.*\]$")


class DiskInspector:
    """Resolves the block device behind ``/`` through device-mapper layers.

    Only sysfs slave links are used to walk mappings, so dm-verity,
    dm-crypt and stacked mappings resolve the same way.
    """

    def __init__(self, config: UpdaterConfig, runner: Optional[CommandRunner] = None):
        """Initialize inspector.

        Args:
            config: Updater configuration (sysfs_root, dev_root)
            runner: CommandRunner used for findmnt
        """
        self.logger = logging.getLogger("slotupdater.inspector")
        self.runner = runner or CommandRunner()
        self.dev_root = config.dev_root.rstrip("/")
        self.block_dir = Path(config.sysfs_root) / "class" / "block"

    async def inspect(self) -> RootDevice:
        """Resolve the root mount to its raw partition and parent disk.

        Raises:
            DetectionError: If any step of the resolution fails
        """
        source = await self.root_source()
        self.logger.info(f"Current root device: {source}")

        name = self.resolve_source(source)
        partition_name, chain = self.resolve_partition(name)
        if chain:
            self.logger.info(
                f"Root is mapped: {' -> '.join(chain + [partition_name])}"
            )

        disk = self.parent_disk(partition_name)
        partition = self.device_path(partition_name)
        self.check_layout(disk)

        self.logger.info(f"Root partition {partition} on disk {disk.path}")
        return RootDevice(disk=disk, partition=partition, source=source, mapped_via=chain)

    async def root_source(self) -> str:
        try:
            result = await self.runner.run(["findmnt", "-n", "-o", "SOURCE", "/"])
        except CommandError as e:
            raise DetectionError(f"Cannot read root mount source: {e}") from e
        lines = result.stdout.strip().splitlines()
        if not lines:
            raise DetectionError("findmnt reported no source for /")
        return _FSROOT_RE.sub("", lines[0].strip())

    def device_path(self, name: str) -> str:
        return f"{self.dev_root}/{name}"

    def resolve_source(self, source: str) -> str:
        """Map a mount source to its kernel block device name (sda2, dm-0, ...)."""
        mapper_prefix = f"{self.dev_root}/mapper/"
        if source.startswith(mapper_prefix):
            name = self._dm_name_to_kernel(source[len(mapper_prefix):])
        else:
            name = os.path.basename(os.path.realpath(source))

        if not (self.block_dir / name).exists():
            raise DetectionError(f"Root device {source} ({name}) is not a known block device")
        return name

    def _dm_name_to_kernel(self, map_name: str) -> str:
        for dm_dir in sorted(self.block_dir.glob("dm-*")):
            name_file = dm_dir / "dm" / "name"
            if name_file.is_file() and name_file.read_text().strip() == map_name:
                return dm_dir.name
        raise DetectionError(f"No device-mapper device named {map_name}")

    def resolve_partition(self, name: str) -> tuple[str, list[str]]:
        """Follow slave links down to the raw device.

        Returns:
            (raw device name, list of mapping devices walked)
        """
        chain: list[str] = []
        current = name
        for _ in range(MAX_MAPPING_DEPTH):
            slaves = self._slaves(current)
            if not slaves:
                return current, chain
            chain.append(current)
            current = self._pick_slave(current, slaves)

        raise DetectionError(
            f"Device-mapper chain from {name} deeper than {MAX_MAPPING_DEPTH} levels"
        )

    def _slaves(self, name: str) -> list[str]:
        slaves_dir = self.block_dir / name / "slaves"
        if not slaves_dir.is_dir():
            return []
        return sorted(entry.name for entry in slaves_dir.iterdir())

    def _pick_slave(self, mapping: str, slaves: list[str]) -> str:
        if len(slaves) == 1:
            return slaves[0]

        # dm-verity maps data and hash devices; the data (root) partition
        # always has the lower index of the pair
        numbered = []
        for slave in slaves:
            number = self.partition_number(slave)
            if number is None:
                raise DetectionError(
                    f"Cannot choose backing device of {mapping}: {slave} is not a partition"
                )
            numbered.append((number, slave))

        disks = {self._parent_name(slave) for slave in slaves}
        if len(disks) != 1:
            raise DetectionError(
                f"Devices backing {mapping} span several disks: {', '.join(sorted(disks))}"
            )
        return min(numbered)[1]

    def partition_number(self, name: str) -> Optional[int]:
        attr = self.block_dir / name / "partition"
        if not attr.is_file():
            return None
        try:
            return int(attr.read_text().strip())
        except ValueError:
            return None

    def _parent_name(self, name: str) -> str:
        return Path(os.path.realpath(self.block_dir / name)).parent.name

    def parent_disk(self, partition_name: str) -> Disk:
        """Return the disk a raw partition belongs to.

        Raises:
            DetectionError: If the device is not a partition
        """
        if self.partition_number(partition_name) is None:
            raise DetectionError(
                f"Root device {self.device_path(partition_name)} is not a disk partition"
            )
        disk_name = self._parent_name(partition_name)
        if not (self.block_dir / disk_name).exists():
            raise DetectionError(
                f"Could not determine parent disk of {self.device_path(partition_name)}"
            )
        return Disk(path=self.device_path(disk_name))

    def check_layout(self, disk: Disk) -> None:
        """Ensure the disk exposes partitions 1..6 with the expected names.

        Raises:
            DetectionError: If a partition is missing or named unexpectedly
        """
        found: dict[int, str] = {}
        disk_dir = Path(os.path.realpath(self.block_dir / disk.name))
        for attr in disk_dir.glob("*/partition"):
            try:
                found[int(attr.read_text().strip())] = attr.parent.name
            except ValueError:
                continue

        for index in range(1, PARTITION_COUNT + 1):
            if index not in found:
                raise DetectionError(
                    f"Disk {disk.path} has no partition {index}; "
                    f"expected the {PARTITION_COUNT}-partition layout"
                )
            path = self.device_path(found[index])
            if path != disk.partition(index):
                raise DetectionError(
                    f"Partition {index} of {disk.path} is {path}, expected {disk.partition(index)}"
                )
