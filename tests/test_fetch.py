import asyncio

import pytest

import exception
from config import FanboxSession, PixivSession, Session
from utils.fetch import FanboxRequest, PixivRequest, RateLimiter, Request


class FakeClient:
    async def close(self):
        pass


@pytest.mark.asyncio
async def test_calls_are_spaced_by_delay():
    limiter = RateLimiter(delay=0.1, jitter=0, client=FakeClient())
    loop = asyncio.get_running_loop()
    started = []

    async def record(client):
        started.append(loop.time())

    for _ in range(3):
        await limiter.call(record)

    assert started[-1] - started[0] >= 0.2 - 0.01
    for a, b in zip(started, started[1:]):
        assert b - a >= 0.1 - 0.005


@pytest.mark.asyncio
async def test_first_call_does_not_wait():
    limiter = RateLimiter(delay=5, jitter=0, client=FakeClient())
    loop = asyncio.get_running_loop()
    before = loop.time()

    async def noop(client):
        return "ok"

    assert await limiter.call(noop) == "ok"
    assert loop.time() - before < 1


@pytest.mark.asyncio
async def test_failed_call_still_schedules_next():
    limiter = RateLimiter(delay=0.1, jitter=0, client=FakeClient())
    loop = asyncio.get_running_loop()

    async def boom(client):
        raise exception.RequestFailed("boom")

    with pytest.raises(exception.RequestFailed):
        await limiter.call(boom)

    before = loop.time()

    async def noop(client):
        return None

    await limiter.call(noop)
    assert loop.time() - before >= 0.1 - 0.005


@pytest.mark.asyncio
async def test_concurrent_callers_are_serialized():
    limiter = RateLimiter(delay=0.05, jitter=0, client=FakeClient())
    loop = asyncio.get_running_loop()
    started = []

    async def record(client):
        started.append(loop.time())

    await asyncio.gather(*(limiter.call(record) for _ in range(3)))
    started.sort()
    assert started[-1] - started[0] >= 0.1 - 0.01


def test_jitter_stays_in_range():
    limiter = RateLimiter(delay=1.0, jitter=0.5, client=FakeClient())
    for _ in range(100):
        assert 0.5 <= limiter.next_delay() <= 1.5


def test_pixiv_request_headers():
    session = Session(pixiv=PixivSession.from_cookie("123_abc"))
    request = PixivRequest(session).decorate(Request(url="https://www.pixiv.net/ajax/illust/1"))
    assert request.headers["Cookie"] == "PHPSESSID=123_abc;"
    assert request.headers["Referer"] == "https://www.pixiv.net/"
    assert "User-Agent" in request.headers


def test_fanbox_request_headers():
    session = Session(fanbox=FanboxSession(cookie="sess"))
    request = FanboxRequest(session).decorate(Request(url="https://api.fanbox.cc/post.info", params={"postId": "1"}))
    assert request.headers["Cookie"] == "FANBOXSESSID=sess;"
    assert request.headers["Origin"] == "https://www.fanbox.cc"
    assert request.params == {"postId": "1", "lang": "en"}


def test_fanbox_full_cookie_wins():
    session = Session(fanbox=FanboxSession(cookie="sess", full_cookie="FANBOXSESSID=x; other=y"))
    request = FanboxRequest(session).decorate(Request(url="https://api.fanbox.cc/"))
    assert request.headers["Cookie"] == "FANBOXSESSID=x; other=y"


def test_missing_credentials():
    with pytest.raises(exception.ConfigurationError):
        PixivRequest(Session()).decorate(Request(url="https://www.pixiv.net/"))
    with pytest.raises(exception.ConfigurationError):
        FanboxRequest(Session()).decorate(Request(url="https://api.fanbox.cc/"))
