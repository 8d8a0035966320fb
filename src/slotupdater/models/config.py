"""Configuration models for the installer and updater."""

import json
import logging
import re
import string
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from slotupdater.models.slot import DATA_INDEX, ESP_INDEX, SLOT_PARTITIONS, Slot

DEFAULT_CONFIG_PATH = Path("/etc/slotupdater.json")

_SIZE_RE = r"^\d+[KMGT]$"


class PartitionSpec(BaseModel):
    """One GPT partition created by the installer."""

    index: int = Field(..., ge=1)
    label: str
    type_code: str = Field(..., pattern=r"^[0-9a-fA-F]{4}$")
    size: Optional[str] = Field(
        None, description="sgdisk size (e.g. 512M); None takes the rest of the disk"
    )

    def sgdisk_args(self) -> list[str]:
        end = f"+{self.size}" if self.size else "0"
        return [
            "-n", f"{self.index}:0:{end}",
            "-t", f"{self.index}:{self.type_code}",
            "-c", f"{self.index}:{self.label}",
        ]


class LayoutConfig(BaseModel):
    """Partition sizes for the fixed six-partition layout."""

    esp_size: str = Field("512M", pattern=_SIZE_RE)
    root_size: str = Field("5G", pattern=_SIZE_RE)
    verity_size: str = Field("128M", pattern=_SIZE_RE)

    def partitions(self) -> list[PartitionSpec]:
        """Return the layout in partition-index order."""
        specs = [PartitionSpec(index=ESP_INDEX, label="ESP", type_code="ef00", size=self.esp_size)]
        for slot in Slot:
            root_index, verity_index = SLOT_PARTITIONS[slot]
            suffix = slot.value.lower()
            specs.append(PartitionSpec(
                index=root_index, label=f"root_{suffix}", type_code="8300", size=self.root_size
            ))
            specs.append(PartitionSpec(
                index=verity_index, label=f"verity_{suffix}", type_code="8300", size=self.verity_size
            ))
        specs.append(PartitionSpec(index=DATA_INDEX, label="data", type_code="8300", size=None))
        return sorted(specs, key=lambda s: s.index)


class UpdaterConfig(BaseModel):
    """Runtime configuration shared by slot-install and slot-update."""

    releases_url: str = Field(
        "https://api.github.com/repos/lucasbeiler/system/releases/latest",
        pattern=r"^https?://.+",
        description="Release metadata endpoint (single release or list)",
    )
    release_name_pattern: str = Field(
        r"os-(\d+)",
        description="Regex matched against release names; group 1 is the numeric tag",
    )
    download_url_template: Optional[str] = Field(
        "https://github.com/lucasbeiler/system/releases/download/{tag}",
        description="Fallback base URL for artifacts missing from the asset list",
    )
    rootfs_format: str = Field("erofs", pattern=r"^[a-z0-9]+$")
    http_timeout: float = Field(30.0, gt=0)
    chunk_size: int = Field(64 * 1024, gt=0)
    block_size: int = Field(4 * 1024 * 1024, gt=0, description="Raw write transfer size")
    verify_writes: bool = True
    require_checksums: bool = False
    sysfs_root: str = "/sys"
    dev_root: str = "/dev"
    log_file: str = "/var/log/slotupdater.log"
    log_level: str = Field("INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR)$")
    settle_timeout: int = Field(10, ge=0)
    layout: LayoutConfig = Field(default_factory=LayoutConfig)

    @field_validator("release_name_pattern")
    @classmethod
    def pattern_has_tag_group(cls, v: str) -> str:
        try:
            compiled = re.compile(v)
        except re.error as e:
            raise ValueError(f"Invalid release_name_pattern: {e}")
        if compiled.groups < 1:
            raise ValueError("release_name_pattern must capture the numeric tag in group 1")
        return v

    @field_validator("download_url_template")
    @classmethod
    def template_has_tag(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            fields = {name for _, name, _, _ in string.Formatter().parse(v) if name is not None}
        except ValueError as e:
            raise ValueError(f"Invalid download_url_template: {e}")
        if "tag" not in fields:
            raise ValueError("download_url_template must contain '{tag}'")
        unknown = sorted(fields - {"tag"})
        if unknown:
            raise ValueError(
                f"download_url_template may only use '{{tag}}', found: {', '.join(unknown)}"
            )
        return v


def load_config(path: Optional[Path] = None) -> UpdaterConfig:
    """Load configuration from a JSON file.

    Args:
        path: Explicit config file. When None, DEFAULT_CONFIG_PATH is used
            if it exists, otherwise built-in defaults.

    Returns:
        Validated UpdaterConfig

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If the file is not valid JSON or fails validation
    """
    logger = logging.getLogger("slotupdater.config")

    if path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            logger.debug("No config file found, using defaults")
            return UpdaterConfig()
        path = DEFAULT_CONFIG_PATH

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid config JSON in {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must contain a JSON object")

    try:
        config = UpdaterConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid config {path}: {e}")

    logger.debug(f"Loaded config from {path}")
    return config
