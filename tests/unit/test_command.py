"""Unit tests for CommandRunner and require_tools."""

from unittest.mock import AsyncMock, patch

import pytest

from slotupdater.errors import CommandError, MissingToolError
from slotupdater.services.command import CommandRunner, require_tools


@pytest.mark.unit
class TestCommandRunner:
    """Test CommandRunner in isolation."""

    @pytest.fixture
    def command_runner(self):
        return CommandRunner()

    @pytest.mark.asyncio
    async def test_run_success(self, command_runner):
        # Arrange
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"/dev/sda2\n", b""))
        mock_process.returncode = 0

        with patch("asyncio.create_subprocess_exec", return_value=mock_process) as mock_exec:
            # Act
            result = await command_runner.run(["findmnt", "-n", "-o", "SOURCE", "/"])

        # Assert
        assert result.returncode == 0
        assert result.stdout == "/dev/sda2\n"
        assert mock_exec.call_args[0] == ("findmnt", "-n", "-o", "SOURCE", "/")

    @pytest.mark.asyncio
    async def test_run_failure_raises(self, command_runner):
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"", b"Problem opening /dev/sdz\n"))
        mock_process.returncode = 2

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            with pytest.raises(CommandError, match="Problem opening /dev/sdz") as exc_info:
                await command_runner.run(["sgdisk", "--zap-all", "/dev/sdz"])

        assert exc_info.value.returncode == 2
        assert exc_info.value.argv == ["sgdisk", "--zap-all", "/dev/sdz"]

    @pytest.mark.asyncio
    async def test_run_failure_without_check(self, command_runner):
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"", b"err"))
        mock_process.returncode = 1

        with patch("asyncio.create_subprocess_exec", return_value=mock_process):
            result = await command_runner.run(["sgdisk", "-p", "/dev/sda"], check=False)

        assert result.returncode == 1
        assert result.stderr == "err"

    @pytest.mark.asyncio
    async def test_missing_executable(self, command_runner):
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("mcopy")):
            with pytest.raises(CommandError) as exc_info:
                await command_runner.run(["mcopy", "-V"])

        assert exc_info.value.returncode == 127

    @pytest.mark.asyncio
    async def test_arguments_are_stringified(self, command_runner, tmp_path):
        mock_process = AsyncMock()
        mock_process.communicate = AsyncMock(return_value=(b"", b""))
        mock_process.returncode = 0

        with patch("asyncio.create_subprocess_exec", return_value=mock_process) as mock_exec:
            await command_runner.run(["mcopy", tmp_path / "bootloader-signed.efi"])

        assert mock_exec.call_args[0][1] == str(tmp_path / "bootloader-signed.efi")


@pytest.mark.unit
class TestRequireTools:

    def test_all_present(self, tmp_path):
        tool = tmp_path / "sgdisk"
        tool.write_text("#!/bin/sh\n")
        tool.chmod(0o755)

        require_tools(["sgdisk"], path=str(tmp_path))

    def test_lists_every_missing_tool(self, tmp_path):
        with pytest.raises(MissingToolError) as exc_info:
            require_tools(["sgdisk", "mcopy"], path=str(tmp_path))

        assert exc_info.value.tools == ["sgdisk", "mcopy"]
        assert exc_info.value.describe() == "preflight: Required tools not found on PATH: sgdisk, mcopy"
