import json
import logging
import os

from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

import exception

LOGGER = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite://archive.db"
DEFAULT_SETTINGS = {
    "delay": 2.5,
    "delay_jitter": 0.5,
    "max_retries": 3,
    "retry_delay": 5.0,
    "double_backoff": False,
    "path_format": "inline",
}


@dataclass
class PixivSession:
    uid: int
    cookie: str

    @classmethod
    def from_cookie(cls, cookie: str) -> "PixivSession":
        # PHPSESSID looks like "<uid>_<token>"
        uid_seg = cookie.split("_", 1)[0]
        if not uid_seg.isdigit():
            raise exception.ConfigurationError("Invalid uid in pixiv cookie")
        return cls(uid=int(uid_seg), cookie=cookie)


@dataclass
class FanboxSession:
    cookie: str | None = None
    full_cookie: str | None = None

    def cookie_header(self) -> str:
        if self.full_cookie:
            return self.full_cookie
        return f"FANBOXSESSID={self.cookie};"


@dataclass
class Session:
    pixiv: PixivSession | None = None
    fanbox: FanboxSession | None = None
    pixiv_dir: Path | None = None
    fanbox_dir: Path | None = None

    def require_pixiv(self) -> PixivSession:
        if self.pixiv is None:
            raise exception.ConfigurationError("Pixiv session is required, set PIXIV_COOKIE")
        return self.pixiv

    def require_fanbox(self) -> FanboxSession:
        if self.fanbox is None:
            raise exception.ConfigurationError("Fanbox session is required, set FANBOX_COOKIE")
        return self.fanbox

    def require_dir(self, platform: str) -> Path:
        base = self.pixiv_dir if platform == "pixiv" else self.fanbox_dir
        if base is None:
            raise exception.ConfigurationError(
                f"No base directory configured for {platform}, set {platform.upper()}_DIR"
            )
        return base


def normalize_database_url(url: str) -> str:
    # Accept "sqlite:archive.db" as well as tortoise's "sqlite://archive.db"
    if url.startswith("sqlite:") and not url.startswith("sqlite://"):
        return "sqlite://" + url[len("sqlite:"):]
    return url


class Config:
    def __init__(self, path: str | None = None, overrides: dict | None = None):
        load_dotenv()
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        self.base_path = Path(path or os.getenv("CONFIG_PATH", "./configs"))
        self.settings = {**DEFAULT_SETTINGS, **self.load_dict(self.base_path / "settings.json")}

        self.database_url = normalize_database_url(
            overrides.get("database_url") or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL
        )
        self.session = self.build_session(overrides)

    def load_json(self, path: Path):
        if path.is_file():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                LOGGER.warning(f"Ignoring malformed config file {path}: {e}")
                return {}
        else:
            return {}

    def load_dict(self, path: Path) -> dict:
        data = self.load_json(path)
        return data if isinstance(data, dict) else {}

    def build_session(self, overrides: dict) -> Session:
        pixiv_cookie = overrides.get("pixiv_cookie") or os.getenv("PIXIV_COOKIE")
        fanbox_cookie = overrides.get("fanbox_cookie") or os.getenv("FANBOX_COOKIE")
        fanbox_full = overrides.get("fanbox_cookie_full") or os.getenv("FANBOX_COOKIE_FULL")
        pixiv_dir = overrides.get("pixiv_dir") or os.getenv("PIXIV_DIR")
        fanbox_dir = overrides.get("fanbox_dir") or os.getenv("FANBOX_DIR")

        fanbox = None
        if fanbox_cookie or fanbox_full:
            fanbox = FanboxSession(cookie=fanbox_cookie, full_cookie=fanbox_full)

        return Session(
            pixiv=PixivSession.from_cookie(pixiv_cookie) if pixiv_cookie else None,
            fanbox=fanbox,
            pixiv_dir=Path(pixiv_dir) if pixiv_dir else None,
            fanbox_dir=Path(fanbox_dir) if fanbox_dir else None,
        )

    @property
    def delay(self) -> float:
        return float(self.settings["delay"])

    @property
    def delay_jitter(self) -> float:
        return float(self.settings["delay_jitter"])
