"""A/B update transaction: detect, fetch, write inactive slot, repoint ESP, reboot."""

import logging
import os
from typing import Optional

from slotupdater.errors import CommandError, PrivilegeError, UpdaterError, WriteError
from slotupdater.models.config import UpdaterConfig
from slotupdater.models.slot import ESP_INDEX, SlotPlan
from slotupdater.models.status import StageEnum
from slotupdater.services.boot_updater import BootUpdater
from slotupdater.services.command import CommandRunner, require_tools
from slotupdater.services.fetcher import ReleaseFetcher
from slotupdater.services.image_writer import ImageWriter
from slotupdater.services.inspector import DiskInspector
from slotupdater.services.slot_resolver import SlotResolver

UPDATE_TOOLS = ["findmnt", "mcopy", "reboot"]


def require_root() -> None:
    """Raise PrivilegeError unless running with effective UID 0."""
    if os.geteuid() != 0:
        raise PrivilegeError("Run as root.")


class Updater:
    """Runs one update transaction against the live system.

    The transaction never writes the partitions of the booted slot: if it
    is interrupted, the target slot is left partially written while the
    ESP still points at the untouched current slot.
    """

    def __init__(
        self,
        config: UpdaterConfig,
        runner: Optional[CommandRunner] = None,
        fetcher: Optional[ReleaseFetcher] = None,
        inspector: Optional[DiskInspector] = None,
        resolver: Optional[SlotResolver] = None,
        writer: Optional[ImageWriter] = None,
        boot_updater: Optional[BootUpdater] = None,
    ):
        """Initialize updater.

        Args:
            config: Updater configuration
            runner: CommandRunner shared by all components
            fetcher, inspector, resolver, writer, boot_updater: Component
                overrides; built from ``config`` when None
        """
        self.logger = logging.getLogger("slotupdater.updater")
        self.config = config
        self.runner = runner or CommandRunner()
        self.fetcher = fetcher or ReleaseFetcher(config)
        self.inspector = inspector or DiskInspector(config, runner=self.runner)
        self.resolver = resolver or SlotResolver()
        self.writer = writer or ImageWriter(
            block_size=config.block_size, verify=config.verify_writes
        )
        self.boot_updater = boot_updater or BootUpdater(runner=self.runner)

    def preflight(self) -> None:
        """Check privilege and required tools before touching anything.

        Raises:
            PrivilegeError: If not running as root
            MissingToolError: If a required tool is missing
        """
        require_root()
        require_tools(UPDATE_TOOLS)

    async def plan(self) -> SlotPlan:
        """Detect the booted slot and compute the target slot.

        Raises:
            DetectionError: If the root topology cannot be resolved
            UnknownSlotError: If the root partition matches no slot
        """
        root = await self.inspector.inspect()
        return self.resolver.resolve(root.disk, root.partition)

    async def run(self, reboot: bool = True) -> SlotPlan:
        """Perform the update transaction.

        Args:
            reboot: Reboot into the new slot after a successful update

        Returns:
            The SlotPlan that was applied

        Raises:
            UpdaterError: Any fatal error; the active slot is never modified
        """
        plan = await self.plan()

        current = set(plan.current_partitions)
        if current & set(plan.target_partitions):
            raise WriteError(
                f"Target {plan.target_partitions} overlaps active slot {sorted(current)}"
            )

        async with self.fetcher.fetch() as bundle:
            self.logger.info(
                f"Installing build {bundle.tag} into slot {plan.target_slot.value}"
            )
            await self.writer.write_slot(
                bundle.rootfs,
                bundle.verity,
                plan.target_root,
                plan.target_verity,
                protected=plan.current_partitions,
            )
            await self.boot_updater.update(
                plan.disk.partition(ESP_INDEX),
                bundle.bootloader,
                bundle.boot_image,
                bundle.tag,
            )

        self.logger.info(
            f"Update complete: slot {plan.target_slot.value} holds build {bundle.tag}"
        )

        if reboot:
            await self.reboot()
        else:
            self.logger.info("Reboot skipped; the new slot takes effect on next boot")
        return plan

    async def reboot(self) -> None:
        self.logger.info("Rebooting...")
        try:
            await self.runner.run(["reboot"])
        except CommandError as e:
            raise UpdaterError(f"Failed to reboot: {e}", stage=StageEnum.REBOOTING) from e
