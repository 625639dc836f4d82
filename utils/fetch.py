from __future__ import annotations

import asyncio
import functools
import json
import logging
import random
import typing
from dataclasses import dataclass, field, replace

import aiohttp

import exception
from config import Session

LOGGER = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/58.0.3029.110 Safari/537.36"
)

DEFAULT_DELAY = 2.5
DEFAULT_JITTER = 0.5

T = typing.TypeVar("T")


def payload_parser(func: typing.Callable[..., T]) -> typing.Callable[..., T]:
    """Report a payload that does not have the expected shape as an ApiError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise exception.ApiError(f"Malformed payload in {func.__name__}: {e!r}") from e

    return wrapper


@dataclass(frozen=True)
class Request:
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)

    def with_headers(self, **headers: str) -> Request:
        return replace(self, headers={**self.headers, **headers})

    def with_params(self, **params: str) -> Request:
        return replace(self, params={**self.params, **params})


class RequestDecorator(typing.Protocol):
    def decorate(self, request: Request) -> Request: ...


class PlainRequest:
    """Only sets a browser user agent."""

    def decorate(self, request: Request) -> Request:
        return request.with_headers(**{"User-Agent": USER_AGENT})


class PixivRequest:
    def __init__(self, session: Session):
        self.session = session

    def decorate(self, request: Request) -> Request:
        pixiv = self.session.require_pixiv()
        return request.with_headers(**{
            "Cookie": f"PHPSESSID={pixiv.cookie};",
            "User-Agent": USER_AGENT,
            "Referer": "https://www.pixiv.net/",
        })


class FanboxRequest:
    def __init__(self, session: Session):
        self.session = session

    def decorate(self, request: Request) -> Request:
        fanbox = self.session.require_fanbox()
        return request.with_headers(**{
            "Cookie": fanbox.cookie_header(),
            "Origin": "https://www.fanbox.cc",
            "Referer": "https://www.fanbox.cc/",
            "User-Agent": USER_AGENT,
        }).with_params(lang="en")


class RateLimiter:
    """
    Serializes the pacing of every outbound API call.

    One instance is owned by the application and shared by all fetches. Each call waits
    until the not-before deadline, runs outside the lock, and when it finishes (either
    way) pushes the deadline to ``now + delay + uniform(-jitter, jitter)``. The gate
    never retries.
    """

    def __init__(self, delay: float = DEFAULT_DELAY, jitter: float = DEFAULT_JITTER,
                 client: aiohttp.ClientSession | None = None):
        self.delay = delay
        self.jitter = jitter
        self._client = client
        self._deadline: float | None = None
        self._lock = asyncio.Lock()

    @property
    def client(self) -> aiohttp.ClientSession:
        if self._client is None:
            self._client = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=300))
        return self._client

    def next_delay(self) -> float:
        if self.jitter <= 0:
            return max(self.delay, 0.0)
        return max(self.delay + random.uniform(-self.jitter, self.jitter), 0.0)

    async def call(self, func: typing.Callable[[aiohttp.ClientSession], typing.Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        async with self._lock:
            if self._deadline is not None:
                wait = self._deadline - loop.time()
                if wait > 0:
                    await asyncio.sleep(wait)
            # Hold the slot so a concurrent caller cannot start before this one finishes pacing
            self._deadline = loop.time() + self.next_delay()
            client = self.client
        try:
            return await func(client)
        finally:
            self._deadline = max(self._deadline, loop.time() + self.next_delay())

    async def fetch_json(self, requester: RequestDecorator, url: str,
                         params: dict[str, str] | None = None) -> typing.Any:
        request = requester.decorate(Request(url=url, params=dict(params or {})))

        async def _send(client: aiohttp.ClientSession) -> typing.Any:
            try:
                async with client.request(request.method, request.url,
                                          headers=request.headers, params=request.params) as resp:
                    text = await resp.text()
                    try:
                        return json.loads(text)
                    except json.JSONDecodeError:
                        raise exception.RequestFailed(
                            f"request to {request.url} failed: HTTP {resp.status}", resp.status
                        ) from None
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise exception.RequestFailed(f"request to {request.url} failed: {e}") from e

        LOGGER.debug(f"Fetching {url}")
        return await self.call(_send)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
