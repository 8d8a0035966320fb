"""Installer: one-shot provisioning of a bare disk with the A/B layout."""

import logging
import os
import stat
from typing import Optional

from slotupdater.errors import CommandError, PartitionError
from slotupdater.models.config import UpdaterConfig
from slotupdater.models.slot import DATA_INDEX, ESP_INDEX, Disk, Slot
from slotupdater.models.status import StageEnum
from slotupdater.services.boot_updater import BootUpdater
from slotupdater.services.command import CommandRunner, require_tools
from slotupdater.services.fetcher import ReleaseFetcher
from slotupdater.services.image_writer import ImageWriter
from slotupdater.services.updater import require_root

INSTALL_TOOLS = ["sgdisk", "partprobe", "udevadm", "mkfs.vfat", "mkfs.ext4", "mmd", "mcopy"]


class Installer:
    """Partitions a disk, formats ESP and data, installs the release into slot A.

    Destructive: any partitioning or formatting failure is fatal and leaves
    the disk in whatever state it reached. Slot B is left empty.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        runner: Optional[CommandRunner] = None,
        fetcher: Optional[ReleaseFetcher] = None,
        writer: Optional[ImageWriter] = None,
        boot_updater: Optional[BootUpdater] = None,
    ):
        self.logger = logging.getLogger("slotupdater.installer")
        self.config = config
        self.runner = runner or CommandRunner()
        self.fetcher = fetcher or ReleaseFetcher(config)
        self.writer = writer or ImageWriter(
            block_size=config.block_size, verify=config.verify_writes
        )
        self.boot_updater = boot_updater or BootUpdater(runner=self.runner)
        self.layout = config.layout.partitions()

    def preflight(self) -> None:
        require_root()
        require_tools(INSTALL_TOOLS)

    def validate_disk(self, disk_path: str) -> Disk:
        """Ensure ``disk_path`` is a block device.

        Raises:
            PartitionError: If it does not exist or is not a block device
        """
        try:
            mode = os.stat(disk_path).st_mode
        except OSError as e:
            raise PartitionError(f"{disk_path} is not a block device: {e}") from e
        if not stat.S_ISBLK(mode):
            raise PartitionError(f"{disk_path} is not a block device.")
        return Disk(path=os.path.abspath(disk_path))

    async def run(self, disk_path: str) -> Disk:
        """Provision ``disk_path`` and install the latest release into slot A.

        Artifacts are downloaded before the disk is wiped.

        Raises:
            PartitionError: On validation, partitioning or formatting failure
            FetchError, VerificationError, WriteError, BootUpdateError:
                From the corresponding step
        """
        disk = self.validate_disk(disk_path)

        async with self.fetcher.fetch() as bundle:
            await self.partition(disk)

            esp = disk.partition(ESP_INDEX)
            await self._format(["mkfs.vfat", "-F", "32", "-n", "ESP", esp], esp)
            await self.boot_updater.prepare(esp)
            await self.boot_updater.update(esp, bundle.bootloader, bundle.boot_image, bundle.tag)

            slot = Slot.A
            self.logger.info(
                f"Writing {bundle.rootfs.name} to root_a ({disk.partition(slot.root_index)})..."
            )
            await self.writer.write_slot(
                bundle.rootfs,
                bundle.verity,
                disk.partition(slot.root_index),
                disk.partition(slot.verity_index),
            )

        data = disk.partition(DATA_INDEX)
        self.logger.info(f"Formatting data partition {data} as ext4...")
        await self._format(["mkfs.ext4", "-F", "-L", "data", data], data)

        await self.log_layout(disk)
        self.logger.info(f"Done! Installed build {bundle.tag} into slot A of {disk.path}")
        return disk

    async def partition(self, disk: Disk) -> None:
        """Write the six-partition GPT and wait for the partition nodes.

        Raises:
            PartitionError: If any partitioning command fails
        """
        self.logger.info(f"Partitioning {disk.path}...")
        create = ["sgdisk"]
        for part in self.layout:
            create.extend(part.sgdisk_args())
        create.append(disk.path)

        steps = [
            ["sgdisk", "--zap-all", disk.path],
            create,
            ["partprobe", disk.path],
            ["udevadm", "settle", f"--timeout={self.config.settle_timeout}"],
        ]
        for argv in steps:
            try:
                await self.runner.run(argv)
            except CommandError as e:
                raise PartitionError(f"Partitioning {disk.path} failed: {e}") from e

    async def _format(self, argv: list[str], device: str) -> None:
        try:
            await self.runner.run(argv)
        except CommandError as e:
            raise PartitionError(
                f"Formatting {device} failed: {e}", stage=StageEnum.FORMATTING
            ) from e

    async def log_layout(self, disk: Disk) -> None:
        result = await self.runner.run(["sgdisk", "-p", disk.path], check=False)
        self.logger.info(f"Layout of {disk.path}:\n{result.stdout.rstrip()}")
