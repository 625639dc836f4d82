import hashlib

from pathlib import Path

CHUNK_SIZE = 1 << 16


def new_hasher():
    return hashlib.sha256()


def file_digest(path: str | Path) -> str:
    """Return the hex SHA-256 of the file at `path`, read in chunks."""
    hasher = new_hasher()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def bytes_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
