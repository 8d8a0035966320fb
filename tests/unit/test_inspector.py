"""Unit tests for DiskInspector against a temporary sysfs tree."""

import pytest

from slotupdater.errors import DetectionError
from slotupdater.services.inspector import DiskInspector

from conftest import FakeRunner


@pytest.mark.unit
class TestDiskInspector:
    """Resolve the root mount through device-mapper layers."""

    def make_inspector(self, config, source: str) -> DiskInspector:
        return DiskInspector(config, runner=FakeRunner(outputs={"findmnt": f"{source}\n"}))

    @pytest.mark.asyncio
    async def test_direct_partition(self, config, sysfs):
        sysfs.add_disk("sda")
        inspector = self.make_inspector(config, "/dev/sda2")

        root = await inspector.inspect()

        assert root.disk.path == "/dev/sda"
        assert root.partition == "/dev/sda2"
        assert root.mapped_via == []

    @pytest.mark.asyncio
    async def test_verity_mapping_over_nvme(self, config, sysfs):
        sysfs.add_disk("nvme0n1")
        sysfs.add_mapping("dm-0", "root", ["nvme0n1p4", "nvme0n1p5"])
        inspector = self.make_inspector(config, "/dev/mapper/root")

        root = await inspector.inspect()

        assert root.disk.path == "/dev/nvme0n1"
        assert root.partition == "/dev/nvme0n1p4"
        assert root.mapped_via == ["dm-0"]
        assert root.source == "/dev/mapper/root"

    @pytest.mark.asyncio
    async def test_stacked_mappings(self, config, sysfs):
        sysfs.add_disk("sda")
        sysfs.add_mapping("dm-0", "verity", ["sda2", "sda3"])
        sysfs.add_mapping("dm-1", "root", ["dm-0"])
        inspector = self.make_inspector(config, "/dev/mapper/root")

        root = await inspector.inspect()

        assert root.partition == "/dev/sda2"
        assert root.mapped_via == ["dm-1", "dm-0"]

    @pytest.mark.asyncio
    async def test_strips_findmnt_fsroot_suffix(self, config, sysfs):
        sysfs.add_disk("sda")
        inspector = self.make_inspector(config, "/dev/sda4[/@]")

        root = await inspector.inspect()

        assert root.partition == "/dev/sda4"

    @pytest.mark.asyncio
    async def test_findmnt_failure(self, config, sysfs):
        inspector = DiskInspector(config, runner=FakeRunner(failures={"findmnt"}))

        with pytest.raises(DetectionError, match="Cannot read root mount source"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_empty_findmnt_output(self, config, sysfs):
        inspector = self.make_inspector(config, "")

        with pytest.raises(DetectionError, match="no source"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_unknown_mapper_name(self, config, sysfs):
        sysfs.add_disk("sda")
        sysfs.add_mapping("dm-0", "other", ["sda2"])
        inspector = self.make_inspector(config, "/dev/mapper/root")

        with pytest.raises(DetectionError, match="No device-mapper device named root"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_device_unknown_to_sysfs(self, config, sysfs):
        sysfs.add_disk("sda")
        inspector = self.make_inspector(config, "/dev/sdz2")

        with pytest.raises(DetectionError, match="not a known block device"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_whole_disk_root_is_rejected(self, config, sysfs):
        sysfs.add_disk("sda")
        inspector = self.make_inspector(config, "/dev/sda")

        with pytest.raises(DetectionError, match="not a disk partition"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_missing_partitions(self, config, sysfs):
        sysfs.add_disk("sda", partitions=range(1, 5))
        inspector = self.make_inspector(config, "/dev/sda2")

        with pytest.raises(DetectionError, match="has no partition 5"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_unexpected_partition_naming(self, config, sysfs):
        sysfs.add_disk("nvme0n1", partitions=[1, 3, 4, 5, 6])
        # partition 2 exposed without the p infix
        odd = sysfs.devices / "nvme0n1" / "nvme0n12"
        odd.mkdir()
        (odd / "partition").write_text("2\n")
        (sysfs.block / "nvme0n12").symlink_to(odd)
        inspector = self.make_inspector(config, "/dev/nvme0n1p4")

        with pytest.raises(DetectionError, match="Partition 2 of /dev/nvme0n1 is /dev/nvme0n12, expected /dev/nvme0n1p2"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_mapping_across_disks(self, config, sysfs):
        sysfs.add_disk("sda")
        sysfs.add_disk("sdb")
        sysfs.add_mapping("dm-0", "root", ["sda2", "sdb3"])
        inspector = self.make_inspector(config, "/dev/mapper/root")

        with pytest.raises(DetectionError, match="span several disks"):
            await inspector.inspect()

    @pytest.mark.asyncio
    async def test_mapping_loop(self, config, sysfs):
        sysfs.add_disk("sda")
        sysfs.add_mapping("dm-0", "root", ["sda2"])
        # make dm-0 its own slave
        (sysfs.devices / "dm-0" / "slaves" / "sda2").unlink()
        (sysfs.devices / "dm-0" / "slaves" / "dm-0").symlink_to(sysfs.block / "dm-0")
        inspector = self.make_inspector(config, "/dev/mapper/root")

        with pytest.raises(DetectionError, match="deeper than"):
            await inspector.inspect()
