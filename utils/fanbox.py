import json
import logging
import typing

import exception
from config import Session
from entities import FanboxFile, FanboxImage, FanboxPost, FanboxPostBrief, parse_timestamp
from utils.fetch import FanboxRequest, RateLimiter, payload_parser

LOGGER = logging.getLogger(__name__)

API_URL = "https://api.fanbox.cc"


def unwrap(payload) -> typing.Any:
    """FANBOX answers either {"body": ...} or {"error": "..."}."""
    if isinstance(payload, dict):
        if "error" in payload:
            raise exception.ApiError(f"Fanbox API error: {payload['error']}")
        if "body" in payload:
            return payload["body"]
    raise exception.ApiError("Unexpected Fanbox response")


@payload_parser
def parse_brief(post: dict) -> FanboxPostBrief:
    return FanboxPostBrief(
        id=int(post["id"]),
        creator_id=post["creatorId"],
        title=post["title"],
        fee=int(post.get("feeRequired", 0)),
        published=parse_timestamp(post["publishedDatetime"]),
        updated=parse_timestamp(post["updatedDatetime"]),
        is_restricted=bool(post.get("isRestricted", False)),
    )


def _image(raw: dict, idx: int) -> FanboxImage:
    return FanboxImage(
        id=raw["id"],
        idx=idx,
        url=raw["originalUrl"],
        width=int(raw.get("width", 0)),
        height=int(raw.get("height", 0)),
        ext=raw["extension"],
    )


def _file(raw: dict, idx: int) -> FanboxFile:
    return FanboxFile(
        id=raw["id"],
        idx=idx,
        name=raw["name"],
        url=raw["url"],
        size=int(raw.get("size", 0)),
        ext=raw["extension"],
    )


def _ordered(mapping: dict, block_ids: list[str]) -> list[dict]:
    # Blocks give the reading order; anything only present in the map goes last
    seen = [i for i in dict.fromkeys(block_ids) if i in mapping]
    rest = [i for i in mapping if i not in seen]
    return [mapping[i] for i in seen + rest]


@payload_parser
def parse_post(post: dict) -> FanboxPost:
    brief = parse_brief(post)
    result = FanboxPost(
        id=brief.id,
        creator_id=brief.creator_id,
        title=brief.title,
        fee=brief.fee,
        published=brief.published,
        updated=brief.updated,
        is_adult=bool(post.get("hasAdultContent", False)),
    )

    body = post.get("body")
    if body is None:
        LOGGER.info(f"Post {brief.id} is restricted, body not available")
        return result

    if "blocks" in body:
        blocks = body["blocks"]
        result.body = json.dumps(blocks, ensure_ascii=False)
        result.is_body_rich = True
        images = _ordered(body.get("imageMap") or {},
                          [b["imageId"] for b in blocks if b.get("type") == "image"])
        files = _ordered(body.get("fileMap") or {},
                         [b["fileId"] for b in blocks if b.get("type") == "file"])
    else:
        result.body = body.get("text") or ""
        result.is_body_rich = False
        images = body.get("images") or []
        files = body.get("files") or []

    result.images = [_image(raw, idx) for idx, raw in enumerate(images)]
    result.files = [_file(raw, idx) for idx, raw in enumerate(files)]
    return result


@payload_parser
def parse_page(body) -> list[FanboxPostBrief]:
    items = body.get("items", []) if isinstance(body, dict) else body
    return [parse_brief(p) for p in items]


@payload_parser
def parse_paginates(body) -> list[str]:
    if not isinstance(body, list) or not all(isinstance(url, str) for url in body):
        raise TypeError(f"expected a list of page URLs, got {body!r}")
    return body


async def get_creator_paginates(limiter: RateLimiter, session: Session, creator_id: str) -> list[str]:
    payload = await limiter.fetch_json(
        FanboxRequest(session),
        f"{API_URL}/post.paginateCreator",
        params={"creatorId": creator_id, "sort": "newest"},
    )
    return parse_paginates(unwrap(payload))


async def get_page(limiter: RateLimiter, session: Session, page_url: str) -> list[FanboxPostBrief]:
    if not page_url.startswith(API_URL):
        raise exception.ApiError(f"Unexpected pagination URL {page_url}")
    payload = await limiter.fetch_json(FanboxRequest(session), page_url)
    return parse_page(unwrap(payload))


async def get_post(limiter: RateLimiter, session: Session, post_id: int) -> FanboxPost:
    payload = await limiter.fetch_json(FanboxRequest(session), f"{API_URL}/post.info",
                                       params={"postId": str(post_id)})
    return parse_post(unwrap(payload))
