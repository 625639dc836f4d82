import argparse
import asyncio
import importlib
import logging
import pkgutil
import sys
import traceback
import typing

import cmds
import exception
from config import Config, Session
from db.db import Database
from utils.fetch import RateLimiter
from utils.persist import PathFormat


class Archiver:
    """Everything a command needs: configuration, the database and the shared fetch gate."""

    def __init__(self, config: Config, limiter: RateLimiter | None = None, db: Database | None = None) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = config
        self.db = db or Database(config.database_url)
        self.limiter = limiter or RateLimiter(config.delay, config.delay_jitter)

    async def start(self) -> None:
        await self.db.connect()
        self.logger.debug(f"Connected to {self.config.database_url}")

    async def close(self) -> None:
        await self.limiter.close()
        await self.db.close()

    @property
    def session(self) -> Session:
        return self.config.session

    @property
    def settings(self) -> dict:
        return self.config.settings

    def path_format(self, value: str | None) -> PathFormat:
        return PathFormat(value or self.settings["path_format"])


def _load_extensions(subparsers) -> None:
    logger = logging.getLogger("Archiver")
    for module in pkgutil.iter_modules(cmds.__path__):
        if module.name.startswith("_"):
            continue
        try:
            ext = importlib.import_module(f"cmds.{module.name}")
            ext.setup(subparsers)
        except (ImportError, AttributeError):
            logger.error(f"Failed to load command module {module.name}\n{traceback.format_exc()}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pixiv-archive", description="Archive pixiv and FANBOX content")
    parser.add_argument("--pixiv-cookie", help="PHPSESSID cookie of the pixiv account")
    parser.add_argument("--fanbox-cookie", help="FANBOXSESSID cookie")
    parser.add_argument("--fanbox-cookie-full", help="complete Cookie header for FANBOX")
    parser.add_argument("--database-url", help="tortoise database URL, e.g. sqlite://archive.db")
    parser.add_argument("--pixiv-dir", help="base directory of pixiv downloads")
    parser.add_argument("--fanbox-dir", help="base directory of FANBOX downloads")
    parser.add_argument("--config-dir", help="directory holding settings.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug messages")

    subparsers = parser.add_subparsers(dest="command_name", required=True)
    _load_extensions(subparsers)
    return parser


async def run(args: argparse.Namespace) -> int:
    config = Config(
        path=args.config_dir,
        overrides={
            "pixiv_cookie": args.pixiv_cookie,
            "fanbox_cookie": args.fanbox_cookie,
            "fanbox_cookie_full": args.fanbox_cookie_full,
            "database_url": args.database_url,
            "pixiv_dir": args.pixiv_dir,
            "fanbox_dir": args.fanbox_dir,
        },
    )
    app = Archiver(config)
    await app.start()
    try:
        return await args.command(app).run(args) or 0
    finally:
        await app.close()


def main(argv: typing.Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s: %(message)s",
    )
    logger = logging.getLogger("Archiver")
    try:
        return asyncio.run(run(args))
    except exception.ArchiveError as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Exiting...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
