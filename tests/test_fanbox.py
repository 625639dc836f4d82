import json

import pytest

import exception
from cmds.fanbox import file_filename, image_filename, sanitize
from utils import fanbox


def post(body=None, **extra) -> dict:
    data = {
        "id": "1000",
        "creatorId": "creator",
        "title": "Post",
        "feeRequired": 500,
        "publishedDatetime": "2024-04-01T00:00:00+09:00",
        "updatedDatetime": "2024-05-01T00:00:00+09:00",
        "isRestricted": body is None,
        "hasAdultContent": True,
        "body": body,
    }
    data.update(extra)
    return data


IMAGE = {"id": "img", "extension": "png", "width": 10, "height": 20, "originalUrl": "https://downloads.fanbox.cc/a.png"}
FILE = {"id": "doc", "name": "notes", "extension": "zip", "size": 123, "url": "https://downloads.fanbox.cc/b.zip"}


def test_unwrap():
    assert fanbox.unwrap({"body": [1]}) == [1]
    with pytest.raises(exception.ApiError):
        fanbox.unwrap({"error": "general_error"})
    with pytest.raises(exception.ApiError):
        fanbox.unwrap([])


def test_restricted_post():
    parsed = fanbox.parse_post(post())
    assert parsed.body is None
    assert parsed.is_body_rich is None
    assert parsed.images == []
    assert parsed.is_adult is True


def test_plain_post():
    parsed = fanbox.parse_post(post({"text": "hello", "images": [IMAGE], "files": [FILE]}))
    assert parsed.body == "hello"
    assert parsed.is_body_rich is False
    assert [i.id for i in parsed.images] == ["img"]
    assert parsed.files[0].name == "notes"
    assert parsed.files[0].size == 123


def test_article_post_follows_block_order():
    blocks = [
        {"type": "p", "text": "intro"},
        {"type": "image", "imageId": "second"},
        {"type": "file", "fileId": "doc"},
        {"type": "image", "imageId": "first"},
    ]
    parsed = fanbox.parse_post(post({
        "blocks": blocks,
        "imageMap": {"first": {**IMAGE, "id": "first"}, "second": {**IMAGE, "id": "second"},
                     "unused": {**IMAGE, "id": "unused"}},
        "fileMap": {"doc": FILE},
    }))
    assert parsed.is_body_rich is True
    assert json.loads(parsed.body) == blocks
    assert [(i.id, i.idx) for i in parsed.images] == [("second", 0), ("first", 1), ("unused", 2)]
    assert [f.id for f in parsed.files] == ["doc"]


def test_parse_page():
    items = [post({"text": ""}, id="1"), post(id="2")]
    assert [b.id for b in fanbox.parse_page(items)] == [1, 2]
    briefs = fanbox.parse_page({"items": items, "nextUrl": None})
    assert briefs[1].is_restricted is True


@pytest.mark.asyncio
async def test_pagination_urls_stay_on_the_api():
    with pytest.raises(exception.ApiError):
        await fanbox.get_page(None, None, "https://evil.example/post.listCreator")


def test_filenames():
    assert sanitize('a/b:c*?"<>|d') == "a_b_c______d"
    assert sanitize(" .. ") == "file"
    post_image = fanbox._image(IMAGE, 3)
    assert image_filename(1000, post_image) == "1000_3_img.png"
    post_file = fanbox._file({**FILE, "name": "part 1/2"}, 0)
    assert file_filename(1000, post_file) == "1000_f0_part 1_2.zip"


@pytest.mark.parametrize(
    "raw",
    [
        post(body={"text": "hi", "images": [{k: v for k, v in IMAGE.items() if k != "originalUrl"}]}),
        post(body={"text": "hi", "files": [{**FILE, "size": "big"}]}),
        post(body={"blocks": [{"type": "image"}], "imageMap": {}}),
        post(body="not an object"),
        {k: v for k, v in post().items() if k != "updatedDatetime"},
    ],
)
def test_malformed_post_is_an_api_error(raw):
    with pytest.raises(exception.ApiError):
        fanbox.parse_post(raw)


def test_malformed_listing_is_an_api_error():
    with pytest.raises(exception.ApiError):
        fanbox.parse_page({"items": [{"id": "1"}]})
    with pytest.raises(exception.ApiError):
        fanbox.parse_paginates({"next": None})
    assert fanbox.parse_paginates(["https://api.fanbox.cc/post.listCreator?page=1"]) == [
        "https://api.fanbox.cc/post.listCreator?page=1"
    ]
