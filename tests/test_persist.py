import errno
import os

from pathlib import Path

import pytest

import exception
from utils import persist
from utils.hashing import bytes_digest
from utils.persist import (
    Compare,
    Disposition,
    Free,
    Overwrite,
    PathFormat,
    Unchanged,
    Written,
    choose_policy,
    encode_path,
    move_aside_name,
    move_file,
    resolve_path,
)

OLD = b"old content"
NEW = b"new content"


@pytest.mark.asyncio
async def test_free_writes_new_file(tmp_path, make_temp):
    temp = make_temp(NEW)
    result = await persist.persist(temp, tmp_path, "1_p0.png", PathFormat.INLINE, Free())

    assert isinstance(result, Written)
    assert result.disposition is Disposition.STALE
    assert result.encoded_path == "1_p0.png"
    assert result.size == len(NEW)
    assert (tmp_path / "1_p0.png").read_bytes() == NEW
    assert not temp.path.exists()


@pytest.mark.asyncio
async def test_free_refuses_occupied_target(tmp_path, make_temp):
    (tmp_path / "1_p0.png").write_bytes(OLD)
    with pytest.raises(exception.TargetCollision):
        await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Free())
    assert (tmp_path / "1_p0.png").read_bytes() == OLD


@pytest.mark.asyncio
async def test_compare_same_content_is_unchanged(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    target.write_bytes(OLD)
    temp = make_temp(OLD)

    result = await persist.persist(temp, tmp_path, "1_p0.png", PathFormat.INLINE, Compare(target))

    assert result == Unchanged(size=len(OLD))
    assert not temp.path.exists()
    assert target.read_bytes() == OLD


@pytest.mark.asyncio
async def test_compare_changed_content_moves_old_aside(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    target.write_bytes(OLD)

    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(target))

    aside = tmp_path / f"1_p0.{bytes_digest(OLD)}.png"
    assert result.disposition is Disposition.MOVED
    assert result.moved_to == aside
    assert aside.read_bytes() == OLD
    assert target.read_bytes() == NEW


@pytest.mark.asyncio
async def test_compare_changed_content_elsewhere_is_stale(tmp_path, make_temp):
    old_dir = tmp_path / "old"
    old_dir.mkdir()
    old = old_dir / "1_p0.png"
    old.write_bytes(OLD)

    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(old))

    assert result.disposition is Disposition.STALE
    assert old.read_bytes() == OLD
    assert (tmp_path / "1_p0.png").read_bytes() == NEW


@pytest.mark.asyncio
async def test_compare_with_foreign_file_at_target_collides(tmp_path, make_temp):
    old_dir = tmp_path / "old"
    old_dir.mkdir()
    old = old_dir / "1_p0.png"
    old.write_bytes(OLD)
    (tmp_path / "1_p0.png").write_bytes(b"unrelated")

    with pytest.raises(exception.TargetCollision):
        await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(old))


@pytest.mark.asyncio
async def test_compare_aside_name_taken_by_other_content(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    target.write_bytes(OLD)
    move_aside_name(target, bytes_digest(OLD)).write_bytes(b"something else")

    with pytest.raises(exception.TargetCollision):
        await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(target))


@pytest.mark.asyncio
async def test_compare_aside_name_already_holds_same_content(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    target.write_bytes(OLD)
    aside = move_aside_name(target, bytes_digest(OLD))
    aside.write_bytes(OLD)

    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(target))

    assert result.disposition is Disposition.MOVED
    assert result.moved_to == aside
    assert target.read_bytes() == NEW


@pytest.mark.asyncio
async def test_repeated_changes_keep_every_version(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    versions = [b"v1", b"v2", b"v3"]
    await persist.persist(make_temp(versions[0]), tmp_path, "1_p0.png", PathFormat.INLINE, Free())
    for data in versions[1:]:
        await persist.persist(make_temp(data), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(target))

    assert target.read_bytes() == b"v3"
    for data in versions[:-1]:
        assert move_aside_name(target, bytes_digest(data)).read_bytes() == data


@pytest.mark.asyncio
async def test_compare_is_idempotent(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Free())
    for _ in range(2):
        result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Compare(target))
        assert isinstance(result, Unchanged)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["1_p0.png"]


@pytest.mark.asyncio
async def test_overwrite_at_target(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    target.write_bytes(OLD)

    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Overwrite(target))

    assert result.disposition is Disposition.OVERWRITTEN
    assert target.read_bytes() == NEW


@pytest.mark.asyncio
async def test_overwrite_elsewhere_is_stale(tmp_path, make_temp):
    old = tmp_path / "old.png"
    old.write_bytes(OLD)

    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Overwrite(old))

    assert result.disposition is Disposition.STALE
    assert old.read_bytes() == OLD


@pytest.mark.asyncio
async def test_overwrite_without_record_replaces_target(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    target.write_bytes(OLD)

    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Overwrite())

    assert result.disposition is Disposition.STALE
    assert target.read_bytes() == NEW


@pytest.mark.asyncio
async def test_overwrite_missing_recorded_file(tmp_path, make_temp):
    target = tmp_path / "1_p0.png"
    result = await persist.persist(make_temp(NEW), tmp_path, "1_p0.png", PathFormat.INLINE, Overwrite(target))

    assert result.disposition is Disposition.OVERWRITTEN
    assert target.read_bytes() == NEW


def test_compare_needs_absolute_path():
    with pytest.raises(ValueError):
        Compare(Path("relative/1_p0.png"))


@pytest.mark.parametrize("fmt", list(PathFormat))
@pytest.mark.asyncio
async def test_encoded_path_resolves_back(tmp_path, make_temp, monkeypatch, fmt):
    monkeypatch.chdir(tmp_path)
    base_dir = Path("downloads")
    base_dir.mkdir()
    result = await persist.persist(make_temp(NEW, base_dir), base_dir, "1_p0.png", fmt, Free())

    assert resolve_path(result.encoded_path, base_dir).resolve() == (tmp_path / "downloads" / "1_p0.png").resolve()


def test_encode_path_formats(tmp_path):
    final = tmp_path / "1_p0.png"
    assert encode_path(final, "1_p0.png", PathFormat.INLINE) == "1_p0.png"
    assert encode_path(final, "1_p0.png", PathFormat.AS_IS) == str(final)
    assert encode_path(final, "1_p0.png", PathFormat.ABSOLUTE) == str(final.resolve())


def test_resolve_bare_filename_needs_base_dir():
    with pytest.raises(exception.ConfigurationError):
        resolve_path("1_p0.png", None)


def test_choose_policy(tmp_path):
    (tmp_path / "present.png").write_bytes(OLD)

    assert choose_policy(None, tmp_path) == Free()
    assert choose_policy(None, tmp_path, overwrite=True) == Overwrite()
    assert choose_policy("present.png", tmp_path) == Compare((tmp_path / "present.png").resolve())
    assert choose_policy("present.png", tmp_path, overwrite=True) == Overwrite((tmp_path / "present.png").resolve())
    assert choose_policy("gone.png", tmp_path) == Overwrite((tmp_path / "gone.png").resolve())


def test_move_file_falls_back_to_copy_across_devices(tmp_path, monkeypatch):
    src = tmp_path / "a.png"
    dst = tmp_path / "b.png"
    src.write_bytes(OLD)
    os.utime(src, (1_000_000, 1_000_000))

    def cross_device(a, b):
        raise OSError(errno.EXDEV, "Invalid cross-device link")

    monkeypatch.setattr(persist.os, "rename", cross_device)
    move_file(src, dst)

    assert not src.exists()
    assert dst.read_bytes() == OLD
    assert dst.stat().st_mtime == 1_000_000


def test_move_file_propagates_other_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        move_file(tmp_path / "missing.png", tmp_path / "b.png")


@pytest.mark.asyncio
async def test_filesystem_failure_is_an_integrity_error(tmp_path, make_temp, monkeypatch):
    def denied(src, dst):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(persist.os, "rename", denied)
    temp = make_temp(NEW)

    with pytest.raises(exception.IntegrityError) as info:
        await persist.persist(temp, tmp_path, "1_p0.png", PathFormat.INLINE, Free())
    assert isinstance(info.value.__cause__, PermissionError)
    assert not (tmp_path / "1_p0.png").exists()
