"""Release metadata and downloaded bundle models."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

BOOTLOADER_NAME = "bootloader-signed.efi"
CHECKSUMS_NAME = "SHA256SUMS"


def boot_image_name(tag: str) -> str:
    """Name of the release-tagged signed unified boot image."""
    return f"uki-{tag}-signed.efi"


def rootfs_name(rootfs_format: str) -> str:
    return f"rootfs.{rootfs_format}"


def verity_name(rootfs_format: str) -> str:
    return f"rootfs.{rootfs_format}.verity"


class ReleaseAsset(BaseModel):
    """Asset entry of upstream release metadata (GitHub releases API shape)."""

    model_config = ConfigDict(extra="ignore")

    name: str
    browser_download_url: str = Field(..., pattern=r"^https?://.+")
    size: int = Field(0, ge=0)


class ReleaseMetadata(BaseModel):
    """Upstream release entry. Only the fields the fetcher needs are kept."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    tag_name: Optional[str] = None
    assets: list[ReleaseAsset] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.tag_name or ""

    def asset(self, name: str) -> Optional[ReleaseAsset]:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None


class Artifact(BaseModel):
    """One downloadable release artifact."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    size: int = Field(0, ge=0, description="Expected size in bytes, 0 if unknown")


class Release(BaseModel):
    """Immutable tagged bundle of the four boot/root artifacts."""

    model_config = ConfigDict(frozen=True)

    tag: str = Field(..., pattern=r"^\d+$")
    bootloader: Artifact
    boot_image: Artifact
    rootfs: Artifact
    verity: Artifact
    checksums: Optional[Artifact] = None

    def artifacts(self) -> list[Artifact]:
        """Return the four required artifacts in download order."""
        return [self.bootloader, self.boot_image, self.rootfs, self.verity]


class ReleaseBundle(BaseModel):
    """A Release whose artifacts have been downloaded to a scratch directory."""

    model_config = ConfigDict(frozen=True)

    release: Release
    directory: Path
    bootloader: Path
    boot_image: Path
    rootfs: Path
    verity: Path

    @property
    def tag(self) -> str:
        return self.release.tag

    @classmethod
    def in_directory(cls, release: Release, directory: Path) -> "ReleaseBundle":
        return cls(
            release=release,
            directory=directory,
            bootloader=directory / release.bootloader.name,
            boot_image=directory / release.boot_image.name,
            rootfs=directory / release.rootfs.name,
            verity=directory / release.verity.name,
        )
