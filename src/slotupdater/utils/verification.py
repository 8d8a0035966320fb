"""SHA-256 verification utilities for release artifacts and written partitions."""

import hashlib
import logging
import re
from pathlib import Path
from typing import Optional

from slotupdater.errors import VerificationError

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")


def compute_sha256(
    file_path: Path, chunk_size: int = 1024 * 1024, limit: Optional[int] = None
) -> str:
    """Compute SHA-256 hash of a file or block device.

    Args:
        file_path: Path to file (or device) to hash
        chunk_size: Read buffer size
        limit: Hash only the first ``limit`` bytes (used to read back a
            partition that is larger than the image written to it)

    Returns:
        64-character hex SHA-256 hash string

    Raises:
        FileNotFoundError: If file doesn't exist
        OSError: If file read fails
    """
    logger = logging.getLogger("slotupdater.verification")
    sha = hashlib.sha256()
    remaining = limit

    try:
        with open(file_path, "rb") as f:
            while remaining is None or remaining > 0:
                size = chunk_size if remaining is None else min(chunk_size, remaining)
                chunk = f.read(size)
                if not chunk:
                    break
                sha.update(chunk)
                if remaining is not None:
                    remaining -= len(chunk)

        result = sha.hexdigest()
        logger.debug(f"Computed SHA-256 for {file_path}: {result}")
        return result

    except FileNotFoundError:
        logger.error(f"File not found: {file_path}")
        raise
    except OSError as e:
        logger.error(f"Failed to read {file_path}: {e}")
        raise


def verify_sha256(file_path: Path, expected: str) -> bool:
    """Verify file SHA-256 hash matches expected value.

    Raises:
        ValueError: If expected hash format is invalid
    """
    logger = logging.getLogger("slotupdater.verification")

    expected = expected.lower() if isinstance(expected, str) else expected
    if not isinstance(expected, str) or not _SHA256_RE.match(expected):
        raise ValueError(f"Invalid SHA-256 format: {expected} (must be 64-char hex)")

    actual = compute_sha256(file_path)
    match = actual == expected
    if match:
        logger.info(f"SHA-256 verification passed for {file_path.name}")
    else:
        logger.error(
            f"SHA-256 mismatch for {file_path.name}: expected {expected}, got {actual}"
        )
    return match


def verify_sha256_or_raise(file_path: Path, expected: str) -> None:
    """Verify file SHA-256 hash, raise VerificationError on mismatch."""
    try:
        ok = verify_sha256(file_path, expected)
    except ValueError as e:
        raise VerificationError(f"{file_path.name}: {e}")
    if not ok:
        raise VerificationError(
            f"SHA256_MISMATCH for {file_path}: expected {expected.lower()}"
        )


def parse_checksums(text: str) -> dict[str, str]:
    """Parse ``sha256sum`` output into a {filename: hash} mapping.

    Accepts both text (``<hash>  <name>``) and binary (``<hash> *<name>``)
    markers. Blank lines and ``#`` comments are skipped.

    Raises:
        ValueError: If a line is malformed
    """
    checksums: dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2 or not _SHA256_RE.match(parts[0].lower()):
            raise ValueError(f"Malformed checksum line {lineno}: {line!r}")
        name = parts[1].strip().lstrip("*")
        checksums[Path(name).name] = parts[0].lower()
    return checksums
