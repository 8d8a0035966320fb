"""Global pytest fixtures and configuration."""

import json
import sys
from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from slotupdater.errors import CommandError  # noqa: E402
from slotupdater.models.config import UpdaterConfig  # noqa: E402
from slotupdater.services.command import CommandResult  # noqa: E402

RELEASES_URL = "https://releases.example.com/repos/os/releases/latest"
DOWNLOAD_BASE = "https://downloads.example.com/os"


class FakeRunner:
    """Records commands instead of executing them.

    ``outputs`` maps a command name to its stdout; ``failures`` holds
    command names (or full argv tuples) that exit non-zero.
    """

    def __init__(self, outputs: Optional[dict] = None, failures: Optional[set] = None):
        self.calls: list[list[str]] = []
        self.outputs = outputs or {}
        self.failures = failures or set()

    async def run(self, argv, *, check: bool = True) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        failed = argv[0] in self.failures or tuple(argv) in self.failures
        result = CommandResult(
            argv=argv,
            returncode=1 if failed else 0,
            stdout=self.outputs.get(argv[0], ""),
            stderr="simulated failure" if failed else "",
        )
        if check and failed:
            raise CommandError(argv, 1, result.stderr)
        return result

    def commands(self, name: str) -> list[list[str]]:
        return [argv for argv in self.calls if argv[0] == name]


class FakeSysfs:
    """Builds a minimal /sys/class/block tree under a temporary directory."""

    def __init__(self, root: Path):
        self.root = root
        self.block = root / "class" / "block"
        self.devices = root / "devices" / "virtual" / "block"
        self.block.mkdir(parents=True)
        self.devices.mkdir(parents=True)

    @staticmethod
    def partition_name(disk: str, index: int) -> str:
        return f"{disk}p{index}" if disk[-1].isdigit() else f"{disk}{index}"

    def add_disk(self, disk: str, partitions=range(1, 7)) -> None:
        disk_dir = self.devices / disk
        disk_dir.mkdir()
        (self.block / disk).symlink_to(disk_dir)
        for index in partitions:
            name = self.partition_name(disk, index)
            part_dir = disk_dir / name
            part_dir.mkdir()
            (part_dir / "partition").write_text(f"{index}\n")
            (self.block / name).symlink_to(part_dir)

    def add_mapping(self, kernel_name: str, map_name: str, slaves: list[str]) -> None:
        dm_dir = self.devices / kernel_name
        (dm_dir / "dm").mkdir(parents=True)
        (dm_dir / "dm" / "name").write_text(f"{map_name}\n")
        (dm_dir / "slaves").mkdir()
        for slave in slaves:
            (dm_dir / "slaves" / slave).symlink_to(self.block / slave)
        (self.block / kernel_name).symlink_to(dm_dir)


def release_payload(tag: str = "42", name: Optional[str] = None, rootfs_format: str = "erofs",
                    extra_assets: Optional[dict[str, int]] = None) -> dict:
    """Release metadata in GitHub releases API shape."""
    names = [
        "bootloader-signed.efi",
        f"uki-{tag}-signed.efi",
        f"rootfs.{rootfs_format}",
        f"rootfs.{rootfs_format}.verity",
    ]
    assets = [
        {"name": n, "browser_download_url": f"{DOWNLOAD_BASE}/{tag}/{n}", "size": 0}
        for n in names
    ]
    for n, size in (extra_assets or {}).items():
        assets.append({"name": n, "browser_download_url": f"{DOWNLOAD_BASE}/{tag}/{n}", "size": size})
    return {"name": name or f"os-{tag}", "tag_name": tag, "assets": assets}


def artifact_contents(tag: str = "42", rootfs_format: str = "erofs") -> dict[str, bytes]:
    return {
        "bootloader-signed.efi": b"MZ-bootloader",
        f"uki-{tag}-signed.efi": b"MZ-uki-" + tag.encode(),
        f"rootfs.{rootfs_format}": b"\xe2\xe1\xf5\xe0" + b"R" * 10000,
        f"rootfs.{rootfs_format}.verity": b"verity\x00" + b"H" * 3000,
    }


def make_transport(
    payload,
    files: dict[str, bytes],
    failing: tuple[str, ...] = (),
    requests: Optional[list[str]] = None,
) -> httpx.MockTransport:
    """MockTransport serving release metadata and artifacts by file name."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if requests is not None:
            requests.append(url)
        if url == RELEASES_URL:
            if isinstance(payload, (bytes, str)):
                return httpx.Response(200, content=payload)
            return httpx.Response(200, content=json.dumps(payload).encode())
        name = url.rsplit("/", 1)[-1]
        if name in failing:
            return httpx.Response(404, content=b"not found")
        if name in files:
            return httpx.Response(200, content=files[name])
        return httpx.Response(404, content=b"not found")

    return httpx.MockTransport(handler)


@pytest.fixture
def config(tmp_path) -> UpdaterConfig:
    """Config pointing at the fake release server and a temporary sysfs."""
    return UpdaterConfig(
        releases_url=RELEASES_URL,
        download_url_template=None,
        sysfs_root=str(tmp_path / "sys"),
        dev_root="/dev",
        log_file=str(tmp_path / "logs" / "slotupdater.log"),
        block_size=4096,
    )


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sysfs(tmp_path) -> FakeSysfs:
    return FakeSysfs(tmp_path / "sys")


@pytest.fixture
def scratch_dirs(tmp_path, monkeypatch) -> list[Path]:
    """Redirect scratch directories under tmp_path and record them."""
    import tempfile

    created: list[Path] = []
    real_mkdtemp = tempfile.mkdtemp
    base = tmp_path / "scratch"
    base.mkdir()

    def recording_mkdtemp(*args, **kwargs):
        kwargs["dir"] = str(base)
        path = real_mkdtemp(*args, **kwargs)
        created.append(Path(path))
        return path

    monkeypatch.setattr("slotupdater.services.fetcher.tempfile.mkdtemp", recording_mkdtemp)
    return created


@pytest.fixture
def fake_devices(tmp_path) -> Callable[[str], Path]:
    """Create regular files standing in for partition device nodes."""
    dev = tmp_path / "dev"
    dev.mkdir()

    def make(name: str, content: bytes = b"") -> Path:
        path = dev / name
        path.write_bytes(content)
        return path

    return make
