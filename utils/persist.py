from __future__ import annotations

import asyncio
import enum
import errno
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

import exception
from utils.download import TempDownload, download_to_temp
from utils.hashing import file_digest

LOGGER = logging.getLogger(__name__)


class PathFormat(enum.Enum):
    """How a downloaded file's location is written to the database."""

    # Only the filename; the base directory is supplied again when reading
    INLINE = "inline"
    # The base directory joined with the filename, exactly as configured
    AS_IS = "as-is"
    # The fully resolved path
    ABSOLUTE = "absolute"


@dataclass(frozen=True)
class Free:
    """Nothing is recorded for this asset yet."""


@dataclass(frozen=True)
class Compare:
    """A previous version is recorded at `old_path`; keep it if the content is the same."""

    old_path: Path

    def __post_init__(self):
        if not Path(self.old_path).is_absolute():
            raise ValueError(f"Compare needs an absolute path, got {self.old_path}")


@dataclass(frozen=True)
class Overwrite:
    """Replace unconditionally. `old_path` is the recorded location of the previous version, if any."""

    old_path: Path | None = None


OverwritePolicy = Free | Compare | Overwrite


class Disposition(enum.Enum):
    # The previous record, if any, now refers to a file that is no longer current
    STALE = "stale"
    # The previous file was deleted from the target path
    OVERWRITTEN = "overwritten"
    # The previous file was renamed aside, see Written.moved_to
    MOVED = "moved"


@dataclass(frozen=True)
class Unchanged:
    size: int


@dataclass(frozen=True)
class Written:
    final_path: Path
    encoded_path: str
    size: int
    disposition: Disposition
    moved_to: Path | None = None


PersistResult = Unchanged | Written


def same_location(a: str | Path, b: str | Path) -> bool:
    return Path(a).resolve() == Path(b).resolve()


def encode_path(final_path: Path, filename: str, fmt: PathFormat) -> str:
    if fmt is PathFormat.INLINE:
        return filename
    if fmt is PathFormat.AS_IS:
        return str(final_path)
    return str(Path(final_path).resolve())


def resolve_path(stored: str, base_dir: str | Path | None) -> Path:
    """Turn a stored path string back into a filesystem path."""
    path = Path(stored)
    if path.is_absolute():
        return path
    if path.parent == Path("."):
        if base_dir is None:
            raise exception.ConfigurationError(f"A base directory is needed to resolve {stored}")
        return Path(base_dir) / path
    return path


def move_aside_name(path: Path, digest: str) -> Path:
    return path.with_name(f"{path.stem}.{digest}{path.suffix}")


def move_file(src: Path, dst: Path) -> None:
    """Rename `src` to `dst`, copying across filesystems when a rename is impossible."""
    try:
        os.rename(src, dst)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        LOGGER.debug(f"{src} and {dst} are on different filesystems, copying")
        shutil.copy2(src, dst)
        os.remove(src)


def _move_aside(old_path: Path, old_digest: str) -> Path:
    aside = move_aside_name(old_path, old_digest)
    if aside.exists():
        # Same name means same digest, unless someone put a different file there
        if file_digest(aside) != old_digest:
            raise exception.TargetCollision(aside)
        LOGGER.info(f"{aside} already holds this content, removing {old_path}")
        old_path.unlink()
        return aside
    os.rename(old_path, aside)
    LOGGER.info(f"Moved previous version of {old_path.name} to {aside}")
    return aside


def _unlink_if_exists(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


async def persist(
    temp: TempDownload,
    base_dir: str | Path,
    filename: str,
    fmt: PathFormat,
    policy: OverwritePolicy,
) -> PersistResult:
    """
    Move a finished download to ``base_dir / filename``, reconciling with the previous version.

    ``Compare`` hashes the previous file: on a match nothing is written and ``Unchanged``
    is returned, otherwise the previous file is renamed aside when it sits at the target
    (``MOVED``) or left where it is (``STALE``). ``Overwrite`` deletes the target when the
    previous version lives there (``OVERWRITTEN``), else reports ``STALE``. In every case
    the target must be free before the rename, or ``TargetCollision`` is raised. Any
    other filesystem failure is raised as ``IntegrityError``.
    """
    final_path = Path(base_dir) / filename
    try:
        return await _reconcile(temp, final_path, filename, fmt, policy)
    except OSError as e:
        raise exception.IntegrityError(f"Could not persist {final_path}: {e}") from e


async def _reconcile(temp: TempDownload, final_path: Path, filename: str, fmt: PathFormat,
                     policy: OverwritePolicy) -> PersistResult:
    disposition = Disposition.STALE
    moved_to = None

    if isinstance(policy, Compare):
        old_path = Path(policy.old_path)
        old_digest = await asyncio.to_thread(file_digest, old_path)
        if old_digest == temp.digest:
            temp.discard()
            return Unchanged(size=temp.size)
        if same_location(old_path, final_path):
            moved_to = await asyncio.to_thread(_move_aside, old_path, old_digest)
            disposition = Disposition.MOVED
    elif isinstance(policy, Overwrite):
        if policy.old_path is None:
            await asyncio.to_thread(_unlink_if_exists, final_path)
        elif same_location(policy.old_path, final_path):
            await asyncio.to_thread(_unlink_if_exists, final_path)
            disposition = Disposition.OVERWRITTEN

    if final_path.exists():
        raise exception.TargetCollision(final_path)

    # The temp file lives in base_dir, so this is an atomic same-filesystem rename
    os.rename(temp.path, final_path)
    LOGGER.info(f"Saved to {final_path}")

    return Written(
        final_path=final_path,
        encoded_path=encode_path(final_path, filename, fmt),
        size=temp.size,
        disposition=disposition,
        moved_to=moved_to,
    )


def choose_policy(stored: str | None, base_dir: str | Path, overwrite: bool = False) -> OverwritePolicy:
    """Pick the overwrite policy for an asset given the path recorded for its previous version."""
    if stored is None:
        return Overwrite() if overwrite else Free()
    old_path = resolve_path(stored, base_dir).resolve()
    if overwrite:
        return Overwrite(old_path)
    if not old_path.exists():
        LOGGER.warning(f"Recorded file {old_path} is missing, replacing it")
        return Overwrite(old_path)
    return Compare(old_path)


async def download_then_persist(
    client,
    requester,
    base_dir: str | Path,
    filename: str,
    fmt: PathFormat,
    url: str,
    policy: OverwritePolicy,
    show_progress: bool = False,
) -> PersistResult:
    with await download_to_temp(client, requester, base_dir, url, show_progress) as temp:
        return await persist(temp, base_dir, filename, fmt, policy)
