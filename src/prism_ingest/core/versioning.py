"""Content hashing for uploaded files."""

import hashlib
from pathlib import Path
from typing import Union
import logging

from prism_ingest.core.reader import UploadedFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


def compute_content_hash(content: bytes) -> str:
    """Compute the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(content).hexdigest()


def generate_file_hash(file: Union[UploadedFile, Path, str, bytes]) -> str:
    """Compute the content hash of a file.

    The digest covers the full byte content only, so the same workbook uploaded
    under different names hashes identically.

    Args:
        file: UploadedFile, raw bytes, or a path on disk

    Returns:
        Hexadecimal SHA-256 digest

    Raises:
        FileNotFoundError: If a path is given that does not exist
    """
    if isinstance(file, UploadedFile):
        file_hash = compute_content_hash(file.content)
        name = file.name
    elif isinstance(file, (bytes, bytearray)):
        file_hash = compute_content_hash(bytes(file))
        name = "<bytes>"
    else:
        file_path = Path(file)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        sha256_hash = hashlib.sha256()
        with open(file_path, "rb") as f:
            for byte_block in iter(lambda: f.read(CHUNK_SIZE), b""):
                sha256_hash.update(byte_block)
        file_hash = sha256_hash.hexdigest()
        name = file_path.name
    logger.debug(f"Computed hash for {name}: {file_hash}")
    return file_hash
