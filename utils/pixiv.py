import logging
import typing

import exception
from config import Session
from entities import (
    AIType,
    Illust,
    IllustBookmark,
    IllustData,
    IllustDetail,
    IllustState,
    IllustType,
    Illustrator,
    Page,
    XRestrict,
    parse_timestamp,
)
from utils.fetch import PixivRequest, RateLimiter, payload_parser

LOGGER = logging.getLogger(__name__)

AJAX_URL = "https://www.pixiv.net/ajax"
BOOKMARK_PAGE_SIZE = 48


def unwrap(payload: dict) -> typing.Any:
    """Return the body of a pixiv ajax envelope, or raise ApiError."""
    if not isinstance(payload, dict):
        raise exception.ApiError("Unexpected pixiv response")
    if payload.get("error"):
        raise exception.ApiError(f"API error: {payload.get('message')}")
    body = payload.get("body")
    if body is None:
        raise exception.ApiError("No body in response")
    return body


def tag_names(tags) -> list[str]:
    # The bookmark feed sends a plain list, the illust API sends {"tags": [{"tag": ...}]}
    if isinstance(tags, dict):
        return [t["tag"] for t in tags.get("tags", [])]
    return list(tags or [])


@payload_parser
def parse_work(work: dict) -> Illust:
    illust_id = int(work["id"] if "id" in work else work["illustId"])
    is_unlisted = bool(work.get("isUnlisted", False))
    is_masked = bool(work.get("isMasked", False))
    if is_unlisted and is_masked:
        raise exception.ApiError(f"Work {illust_id} cannot be both unlisted and masked")

    if is_unlisted:
        LOGGER.warning(f"Unlisted work {illust_id}")
        state = IllustState.UNLISTED
    elif is_masked:
        LOGGER.warning(f"Masked work {illust_id}")
        state = IllustState.MASKED
    else:
        state = IllustState.NORMAL

    data = None
    if state == IllustState.NORMAL:
        data = IllustData(
            title=work["title"] if "title" in work else work["illustTitle"],
            tags=tag_names(work.get("tags")),
            author=Illustrator(
                id=int(work["userId"]),
                name=work["userName"],
                account=work.get("userAccount"),
            ),
            create_date=parse_timestamp(work["createDate"]),
            update_date=parse_timestamp(work.get("updateDate") or work["uploadDate"]),
            x_restrict=XRestrict(work.get("xRestrict", 0)),
            ai_type=AIType(work.get("aiType", 0)),
            illust_type=IllustType(work.get("illustType", 0)),
            page_count=int(work.get("pageCount", 1)),
        )

    bookmark = None
    bookmark_data = work.get("bookmarkData")
    if bookmark_data:
        bookmark = IllustBookmark(id=int(bookmark_data["id"]), private=bool(bookmark_data["private"]))

    return Illust(id=illust_id, state=state, data=data, bookmark=bookmark)


@payload_parser
def parse_detail(body: dict) -> Illust:
    illust = parse_work(body)
    if illust.data is not None:
        illust.data.detail = IllustDetail(
            description=body.get("description") or body.get("illustComment") or "",
            is_howto=bool(body.get("isHowto", False)),
            is_original=bool(body.get("isOriginal", False)),
        )
    return illust


@payload_parser
def parse_bookmark_tags(raw) -> dict[int, list[str]]:
    # An empty map is serialized as [] by the API
    if isinstance(raw, list):
        if raw:
            raise exception.ApiError("Expected bookmarkTags to be a map or an empty array")
        return {}
    return {int(k): list(v) for k, v in (raw or {}).items()}


@payload_parser
def parse_bookmarks(body: dict) -> tuple[int, list[Illust]]:
    tags_map = parse_bookmark_tags(body.get("bookmarkTags"))
    illusts = []
    for work in body.get("works", []):
        illust = parse_work(work)
        # Bookmark tags are kept for unlisted/masked works too
        if illust.bookmark is not None:
            illust.bookmark.tags = tags_map.pop(illust.bookmark.id, [])
        illusts.append(illust)
    return int(body.get("total", 0)), illusts


@payload_parser
def parse_pages(body: list) -> list[Page]:
    return [
        Page(index=i, url=p["urls"]["original"], width=p.get("width"), height=p.get("height"))
        for i, p in enumerate(body)
    ]


@payload_parser
def parse_ugoira(body: dict) -> Page:
    frames = [{"file": f["file"], "delay": int(f["delay"])} for f in body["frames"]]
    return Page(index=0, url=body["originalSrc"], ugoira_frames=frames)


async def get_bookmarks_page(limiter: RateLimiter, session: Session, tag: str | None,
                             hidden: bool, offset: int, limit: int = BOOKMARK_PAGE_SIZE) -> tuple[int, list[Illust]]:
    pixiv = session.require_pixiv()
    payload = await limiter.fetch_json(
        PixivRequest(session),
        f"{AJAX_URL}/user/{pixiv.uid}/illusts/bookmarks",
        params={
            "tag": tag or "",
            "offset": str(offset),
            "limit": str(limit),
            "rest": "hide" if hidden else "show",
            "lang": "en",
        },
    )
    return parse_bookmarks(unwrap(payload))


async def get_illust(limiter: RateLimiter, session: Session, illust_id: int) -> Illust:
    payload = await limiter.fetch_json(PixivRequest(session), f"{AJAX_URL}/illust/{illust_id}")
    return parse_detail(unwrap(payload))


async def get_illust_pages(limiter: RateLimiter, session: Session, illust_id: int) -> list[Page]:
    payload = await limiter.fetch_json(PixivRequest(session), f"{AJAX_URL}/illust/{illust_id}/pages")
    return parse_pages(unwrap(payload))


async def get_ugoira_meta(limiter: RateLimiter, session: Session, illust_id: int) -> Page:
    payload = await limiter.fetch_json(PixivRequest(session), f"{AJAX_URL}/illust/{illust_id}/ugoira_meta")
    return parse_ugoira(unwrap(payload))
