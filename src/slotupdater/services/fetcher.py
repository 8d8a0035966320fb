"""Release fetcher: metadata lookup and artifact download into a scratch directory."""

import logging
import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import httpx
from pydantic import ValidationError

from slotupdater.errors import FetchError, VerificationError
from slotupdater.models.config import UpdaterConfig
from slotupdater.models.release import (
    BOOTLOADER_NAME,
    CHECKSUMS_NAME,
    Artifact,
    Release,
    ReleaseBundle,
    ReleaseMetadata,
    boot_image_name,
    rootfs_name,
    verity_name,
)
from slotupdater.utils.verification import parse_checksums, verify_sha256_or_raise


@asynccontextmanager
async def scratch_directory(prefix: str = "slotupdater-") -> AsyncIterator[Path]:
    """Create a private temporary directory, removed on every exit path."""
    logger = logging.getLogger("slotupdater.fetcher")
    path = Path(tempfile.mkdtemp(prefix=prefix))
    logger.debug(f"Created scratch directory {path}")
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug(f"Removed scratch directory {path}")


class ReleaseFetcher:
    """Retrieves the latest matching release and downloads its artifacts."""

    def __init__(
        self,
        config: UpdaterConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize release fetcher.

        Args:
            config: Updater configuration (endpoint, name pattern, timeouts)
            transport: Optional httpx transport (used by tests)
        """
        self.logger = logging.getLogger("slotupdater.fetcher")
        self.config = config
        self.transport = transport
        self.chunk_size = config.chunk_size
        self.name_pattern = re.compile(config.release_name_pattern)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.http_timeout,
            follow_redirects=True,
            transport=self.transport,
        )

    @asynccontextmanager
    async def fetch(self) -> AsyncIterator[ReleaseBundle]:
        """Download the latest release into a scratch directory.

        Yields:
            ReleaseBundle pointing at the four downloaded artifacts. The
            scratch directory and its contents are deleted when the
            context exits, whether normally, by exception or cancellation.

        Raises:
            FetchError: If metadata cannot be retrieved/parsed, no release
                matches, or any artifact download does not complete
            VerificationError: If a published checksum does not match
        """
        async with scratch_directory() as workdir:
            async with self._client() as client:
                release = await self.fetch_release(client)
                self.logger.info(
                    f"Downloading artifacts (build {release.tag}) to {workdir}..."
                )
                for artifact in release.artifacts():
                    await self._download(client, artifact, workdir / artifact.name)

                if release.checksums is not None:
                    checksums_path = workdir / release.checksums.name
                    await self._download(client, release.checksums, checksums_path)
                    self.verify_bundle(release, workdir, checksums_path)

            yield ReleaseBundle.in_directory(release, workdir)

    async def fetch_release(self, client: httpx.AsyncClient) -> Release:
        """Fetch release metadata and resolve the latest matching release.

        Raises:
            FetchError: If the endpoint fails, the body is not release JSON,
                or no release matches the name pattern
        """
        url = self.config.releases_url
        self.logger.info(f"Fetching release metadata from {url}")
        try:
            response = await client.get(
                url, headers={"Accept": "application/vnd.github+json"}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise FetchError(f"Failed to fetch release metadata from {url}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Release metadata from {url} is not valid JSON: {e}") from e

        return self.select_release(payload)

    def select_release(self, payload) -> Release:
        """Pick the highest-tagged release whose name matches the pattern.

        Args:
            payload: Decoded JSON, a single release object or a list of them

        Raises:
            FetchError: If the payload has the wrong shape or nothing matches
        """
        entries = payload if isinstance(payload, list) else [payload]
        try:
            releases = [ReleaseMetadata.model_validate(entry) for entry in entries]
        except ValidationError as e:
            raise FetchError(f"Unrecognized release metadata: {e}") from e

        best: Optional[tuple[int, str, ReleaseMetadata]] = None
        for metadata in releases:
            match = self.name_pattern.search(metadata.display_name)
            if not match:
                continue
            tag = re.sub(r"\D", "", match.group(1) or "")
            if not tag:
                continue
            if best is None or int(tag) > best[0]:
                best = (int(tag), tag, metadata)

        if best is None:
            raise FetchError(
                f"No release matching {self.name_pattern.pattern!r} "
                f"in metadata from {self.config.releases_url}"
            )

        _, tag, metadata = best
        self.logger.info(f"Latest release: {metadata.display_name} (tag {tag})")
        return self._build_release(tag, metadata)

    def _build_release(self, tag: str, metadata: ReleaseMetadata) -> Release:
        fmt = self.config.rootfs_format
        checksums = None
        asset = metadata.asset(CHECKSUMS_NAME)
        if asset is not None:
            checksums = Artifact(name=asset.name, url=asset.browser_download_url, size=asset.size)
        elif self.config.require_checksums:
            raise FetchError(f"Release {tag} does not publish {CHECKSUMS_NAME}")

        return Release(
            tag=tag,
            bootloader=self._artifact(tag, metadata, BOOTLOADER_NAME),
            boot_image=self._artifact(tag, metadata, boot_image_name(tag)),
            rootfs=self._artifact(tag, metadata, rootfs_name(fmt)),
            verity=self._artifact(tag, metadata, verity_name(fmt)),
            checksums=checksums,
        )

    def _artifact(self, tag: str, metadata: ReleaseMetadata, name: str) -> Artifact:
        asset = metadata.asset(name)
        if asset is not None:
            return Artifact(name=name, url=asset.browser_download_url, size=asset.size)

        template = self.config.download_url_template
        if template is None:
            raise FetchError(f"Release {tag} has no artifact named {name}")
        base = template.format(tag=tag).rstrip("/")
        return Artifact(name=name, url=f"{base}/{name}")

    async def _download(
        self, client: httpx.AsyncClient, artifact: Artifact, target_path: Path
    ) -> None:
        """Stream one artifact to disk; a short or failed transfer is an error.

        Raises:
            FetchError: On transport error, non-2xx status or size mismatch
        """
        self.logger.info(f"Downloading {artifact.name} from {artifact.url}")
        bytes_downloaded = 0
        try:
            async with client.stream("GET", artifact.url) as response:
                response.raise_for_status()
                expected = None
                if "Content-Encoding" not in response.headers:
                    length = response.headers.get("Content-Length")
                    expected = int(length) if length and length.isdigit() else None

                async with aiofiles.open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                        await f.write(chunk)
                        bytes_downloaded += len(chunk)

            if expected is not None and bytes_downloaded != expected:
                raise FetchError(
                    f"Incomplete download of {artifact.name}: "
                    f"got {bytes_downloaded} of {expected} bytes"
                )
            if artifact.size and bytes_downloaded != artifact.size:
                raise FetchError(
                    f"Size mismatch for {artifact.name}: "
                    f"release lists {artifact.size} bytes, got {bytes_downloaded}"
                )

        except FetchError:
            target_path.unlink(missing_ok=True)
            raise
        except (httpx.HTTPError, OSError) as e:
            target_path.unlink(missing_ok=True)
            self.logger.error(f"Download of {artifact.name} failed: {e}")
            raise FetchError(f"Failed to download {artifact.url}: {e}") from e

        self.logger.info(f"Downloaded {artifact.name} ({bytes_downloaded} bytes)")

    def verify_bundle(self, release: Release, workdir: Path, checksums_path: Path) -> None:
        """Check every downloaded artifact against the published SHA256SUMS.

        Raises:
            VerificationError: If the list is malformed, omits an artifact,
                or a hash does not match
        """
        self.logger.info(f"Verifying artifacts against {checksums_path.name}...")
        try:
            checksums = parse_checksums(checksums_path.read_text(encoding="utf-8"))
        except (ValueError, UnicodeDecodeError) as e:
            raise VerificationError(f"Invalid {checksums_path.name}: {e}") from e

        for artifact in release.artifacts():
            expected = checksums.get(artifact.name)
            if expected is None:
                raise VerificationError(
                    f"{checksums_path.name} has no entry for {artifact.name}"
                )
            verify_sha256_or_raise(workdir / artifact.name, expected)
