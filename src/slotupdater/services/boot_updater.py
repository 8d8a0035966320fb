"""Boot pointer updater: install bootloader and unified boot image into the ESP."""

import logging
import os
from pathlib import Path
from typing import Optional

from slotupdater.errors import BootUpdateError, CommandError
from slotupdater.models.release import boot_image_name
from slotupdater.services.command import CommandRunner

CANONICAL_BOOTLOADER = "::/EFI/systemd/systemd-bootx64.efi"
FALLBACK_BOOTLOADER = "::/EFI/BOOT/BOOTX64.EFI"
BOOT_IMAGE_DIR = "::/EFI/Linux"
ESP_DIRECTORIES = ["::/EFI", "::/EFI/systemd", "::/EFI/BOOT", BOOT_IMAGE_DIR]


def boot_image_destination(tag: str) -> str:
    return f"{BOOT_IMAGE_DIR}/{boot_image_name(tag)}"


class BootUpdater:
    """Copies signed boot binaries into the FAT ESP with mtools (no mount)."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        """Initialize boot updater.

        Args:
            runner: CommandRunner used for mmd/mcopy
        """
        self.logger = logging.getLogger("slotupdater.boot_updater")
        self.runner = runner or CommandRunner()

    async def prepare(self, esp: str) -> None:
        """Create the ESP directory tree on a freshly formatted ESP.

        Raises:
            BootUpdateError: If mmd fails
        """
        self.logger.info(f"Creating ESP directories on {esp}")
        try:
            await self.runner.run(["mmd", "-i", esp, *ESP_DIRECTORIES])
        except CommandError as e:
            raise BootUpdateError(f"Failed to create ESP directories on {esp}: {e}") from e

    async def update(self, esp: str, bootloader: Path, boot_image: Path, tag: str) -> list[str]:
        """Install bootloader and tagged boot image, overwriting existing files.

        Args:
            esp: ESP partition device
            bootloader: Signed bootloader binary
            boot_image: Signed unified boot image for ``tag``
            tag: Release tag naming the boot image entry

        Returns:
            ESP destinations written, in order

        Raises:
            BootUpdateError: If any copy fails. Root partitions may already
                hold the new release, but the old slot stays bootable.
        """
        copies = [
            (bootloader, CANONICAL_BOOTLOADER),
            (bootloader, FALLBACK_BOOTLOADER),
            (boot_image, boot_image_destination(tag)),
        ]

        self.logger.info(f"Updating ESP {esp} for release {tag}...")
        for source, destination in copies:
            try:
                await self.runner.run(["mcopy", "-o", "-i", esp, str(source), destination])
            except CommandError as e:
                self.logger.error(f"ESP update failed at {destination}: {e}")
                raise BootUpdateError(
                    f"Failed to copy {source.name} to {esp}{destination}: {e}"
                ) from e

        os.sync()
        return [destination for _, destination in copies]
