from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass, field


class IllustState(enum.IntEnum):
    NORMAL = 0
    UNLISTED = 1
    MASKED = 2


class XRestrict(enum.IntEnum):
    PUBLIC = 0
    R18 = 1
    R18G = 2


class AIType(enum.IntEnum):
    UNSPECIFIED = 0
    NON_AI = 1
    AI = 2


class IllustType(enum.IntEnum):
    ILLUSTRATION = 0
    MANGA = 1
    UGOIRA = 2


class UpdateOutcome(enum.Enum):
    INSERTED = "inserted"
    BOOKMARK_ID_CHANGED = "bookmark_id_changed"
    UPDATED = "updated"
    SKIPPED = "skipped"

    @property
    def is_new(self) -> bool:
        """True when the item was not seen before at its current bookmark position."""
        return self in (UpdateOutcome.INSERTED, UpdateOutcome.BOOKMARK_ID_CHANGED)


# (stored, incoming) pairs that must not overwrite what is stored.
REJECTED_TRANSITIONS = frozenset({
    (IllustState.UNLISTED, IllustState.MASKED),
    (IllustState.NORMAL, IllustState.UNLISTED),
    (IllustState.NORMAL, IllustState.MASKED),
})


def accepts_transition(stored: IllustState, incoming: IllustState) -> bool:
    """
    Whether an observation in state `incoming` may replace a row stored as `stored`.

    Masked rows accept anything, unlisted rows accept unlisted or normal, normal rows
    only accept normal.
    """
    return (IllustState(stored), IllustState(incoming)) not in REJECTED_TRANSITIONS


def to_utc(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def parse_timestamp(value: str) -> datetime.datetime:
    return to_utc(datetime.datetime.fromisoformat(value))


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class Illustrator:
    id: int
    name: str
    account: str | None = None


@dataclass
class IllustDetail:
    description: str
    is_howto: bool
    is_original: bool


@dataclass
class IllustData:
    title: str
    tags: list[str]
    author: Illustrator
    create_date: datetime.datetime
    update_date: datetime.datetime
    x_restrict: XRestrict
    ai_type: AIType
    illust_type: IllustType
    page_count: int
    detail: IllustDetail | None = None


@dataclass
class IllustBookmark:
    id: int  # ordering id, changes when a bookmark is removed and re-added
    private: bool
    tags: list[str] | None = None  # None when the feed did not report them


@dataclass
class Illust:
    id: int
    state: IllustState
    data: IllustData | None = None
    bookmark: IllustBookmark | None = None

    @property
    def display_title(self) -> str:
        return self.data.title if self.data else "(unknown)"


@dataclass
class Page:
    index: int
    url: str
    width: int | None = None
    height: int | None = None
    ugoira_frames: list[dict] | None = None

    @property
    def filename(self) -> str:
        return self.url.rsplit("/", 1)[-1].split("?", 1)[0]


@dataclass
class FanboxImage:
    id: str
    idx: int
    url: str
    width: int
    height: int
    ext: str


@dataclass
class FanboxFile:
    id: str
    idx: int
    name: str
    url: str
    size: int
    ext: str


@dataclass
class FanboxPostBrief:
    id: int
    creator_id: str
    title: str
    fee: int
    published: datetime.datetime
    updated: datetime.datetime
    is_restricted: bool = False


@dataclass
class FanboxPost:
    id: int
    creator_id: str
    title: str
    fee: int
    published: datetime.datetime
    updated: datetime.datetime
    is_adult: bool = False
    body: str | None = None  # None for posts the user cannot see
    is_body_rich: bool | None = None
    images: list[FanboxImage] = field(default_factory=list)
    files: list[FanboxFile] = field(default_factory=list)
