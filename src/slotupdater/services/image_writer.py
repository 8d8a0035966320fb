"""Image writer: raw block writes of root and verity images onto slot partitions."""

import logging
import os
import stat
from pathlib import Path
from typing import Iterable

from slotupdater.errors import WriteError
from slotupdater.utils.verification import compute_sha256

DEFAULT_BLOCK_SIZE = 4 * 1024 * 1024  # 4MiB


class ImageWriter:
    """Copies image files byte-for-byte onto partitions, flushing after each."""

    def __init__(self, block_size: int = DEFAULT_BLOCK_SIZE, verify: bool = True):
        """Initialize image writer.

        Args:
            block_size: Transfer block size for raw copies
            verify: Read back each partition and compare SHA-256 after writing
        """
        self.logger = logging.getLogger("slotupdater.image_writer")
        self.block_size = block_size
        self.verify = verify

    async def write_slot(
        self,
        root_image: Path,
        verity_image: Path,
        target_root: str,
        target_verity: str,
        protected: Iterable[str] = (),
    ) -> None:
        """Write a root image and its verity companion into one slot.

        Args:
            root_image: Root filesystem image
            verity_image: Verity companion of ``root_image``
            target_root: Root partition of the target slot
            target_verity: Verity partition of the target slot
            protected: Partitions that must never be written (the active slot)

        Raises:
            WriteError: If a target is protected or either copy fails
        """
        protected = set(protected)
        for target in (target_root, target_verity):
            if target in protected:
                raise WriteError(f"Refusing to write {target}: it backs the active slot")
        if target_root == target_verity:
            raise WriteError(f"Root and verity targets are the same device: {target_root}")

        await self.write_image(root_image, target_root)
        await self.write_image(verity_image, target_verity)

    async def write_image(self, image: Path, device: str) -> int:
        """Copy ``image`` onto ``device`` and flush it to stable storage.

        The destination is opened without O_CREAT, so a missing device node
        is an error rather than a new regular file.

        Returns:
            Number of bytes written

        Raises:
            WriteError: If the copy does not run to completion
        """
        self.logger.info(f"Writing {image.name} to {device}...")
        try:
            image_size = image.stat().st_size
            with open(image, "rb") as src:
                fd = os.open(device, os.O_WRONLY)
                try:
                    written = self._copy(src, fd, image_size, device)
                    os.fsync(fd)
                finally:
                    os.close(fd)
            os.sync()
        except WriteError:
            raise
        except OSError as e:
            self.logger.error(f"Failed to write {image} to {device}: {e}")
            raise WriteError(f"Failed to write {image.name} to {device}: {e}") from e

        if written != image_size:
            raise WriteError(
                f"Short write to {device}: {written} of {image_size} bytes"
            )

        if self.verify:
            self._verify(image, device, image_size)

        self.logger.info(f"Wrote {written} bytes to {device}")
        return written

    def _copy(self, src, fd: int, image_size: int, device: str) -> int:
        mode = os.fstat(fd).st_mode
        if stat.S_ISREG(mode):
            os.ftruncate(fd, 0)
        else:
            capacity = os.lseek(fd, 0, os.SEEK_END)
            os.lseek(fd, 0, os.SEEK_SET)
            if capacity < image_size:
                raise WriteError(
                    f"{device} is too small: {capacity} bytes, image needs {image_size}"
                )

        written = 0
        while True:
            block = src.read(self.block_size)
            if not block:
                break
            view = memoryview(block)
            while view:
                n = os.write(fd, view)
                if n == 0:
                    raise WriteError(f"No progress writing to {device} at byte {written}")
                written += n
                view = view[n:]

            if written and written % (256 * self.block_size) == 0:
                self.logger.debug(f"{device}: {written}/{image_size} bytes")
        return written

    def _verify(self, image: Path, device: str, size: int) -> None:
        try:
            expected = compute_sha256(image)
            actual = compute_sha256(Path(device), limit=size)
        except OSError as e:
            raise WriteError(f"Failed to read back {device}: {e}") from e
        if actual != expected:
            raise WriteError(
                f"Read-back of {device} does not match {image.name}: "
                f"expected {expected}, got {actual}"
            )
        self.logger.debug(f"Read-back of {device} matches {image.name}")
