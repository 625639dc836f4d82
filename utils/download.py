from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import typing
from dataclasses import dataclass
from pathlib import Path

import aiohttp
from tqdm import tqdm

import exception
from utils.fetch import Request, RequestDecorator
from utils.hashing import new_hasher

LOGGER = logging.getLogger(__name__)

CHUNK_SIZE = 1 << 16


@dataclass
class TempDownload:
    """A finished download waiting to be persisted next to its final location."""

    path: Path
    size: int
    digest: str

    def discard(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def __enter__(self) -> TempDownload:
        return self

    def __exit__(self, *exc_info) -> None:
        self.discard()


def _progress_bar(total: int | None) -> tqdm:
    # Without a length tqdm shows a running byte counter instead of a bar
    return tqdm(total=total, unit="B", unit_scale=True, unit_divisor=1024, leave=False)


async def download(
    client: aiohttp.ClientSession,
    requester: RequestDecorator,
    url: str,
    dst: typing.BinaryIO,
    show_progress: bool = False,
) -> tuple[int, str]:
    """
    Stream `url` into `dst`, hashing as it goes.

    Returns the number of bytes written and the hex SHA-256 of the body. The body is
    never held in memory as a whole; an interrupted download leaves `dst` partially
    written and it is up to the caller to throw it away.
    """
    request = requester.decorate(Request(url=url))
    hasher = new_hasher()
    written = 0
    bar = None
    try:
        async with client.request(request.method, request.url,
                                  headers=request.headers, params=request.params) as resp:
            if resp.status < 200 or resp.status >= 300:
                raise exception.RequestFailed(f"Failed to download {url}: HTTP {resp.status}", resp.status)

            if show_progress:
                bar = _progress_bar(resp.content_length)

            async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                dst.write(chunk)
                hasher.update(chunk)
                written += len(chunk)
                if bar is not None:
                    bar.update(len(chunk))
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise exception.RequestFailed(f"Failed to download {url}: {e}") from e
    finally:
        if bar is not None:
            bar.close()

    return written, hasher.hexdigest()


async def download_to_temp(
    client: aiohttp.ClientSession,
    requester: RequestDecorator,
    base_dir: str | Path,
    url: str,
    show_progress: bool = False,
) -> TempDownload:
    """Download `url` into a temp file inside `base_dir`, so persisting it is a plain rename."""
    base_dir = Path(base_dir)
    base_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=".", suffix=".part", dir=base_dir)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as f:
            size, digest = await download(client, requester, url, f, show_progress)
    except BaseException:
        path.unlink(missing_ok=True)
        raise
    LOGGER.debug(f"Downloaded {url} ({size} bytes) to {path}")
    return TempDownload(path=path, size=size, digest=digest)
