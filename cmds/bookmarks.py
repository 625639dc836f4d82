import logging

from utils import pixiv
from utils.retry import with_retry


class BookmarksCommand:
    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, args) -> int:
        settings = self.app.settings
        offset = args.offset
        seen = 0
        new = 0
        while True:
            total, illusts = await with_retry(
                lambda: pixiv.get_bookmarks_page(
                    self.app.limiter, self.app.session, args.tag, args.private, offset, pixiv.BOOKMARK_PAGE_SIZE
                ),
                settings["max_retries"],
                settings["retry_delay"],
                settings["double_backoff"],
            )
            self.logger.debug(f"Bookmark page at offset {offset}: {len(illusts)} of {total}")
            if not illusts:
                break

            for illust in illusts:
                outcome = await self.app.db.update_illust(illust)
                self.logger.info(f"Queried {illust.id}: [{outcome.name}] {illust.display_title}")
                seen += 1
                if outcome.is_new:
                    new += 1
                elif args.termination == "on-hit":
                    self.logger.info(f"Reached an already known bookmark at {illust.id}, stopping")
                    return self.finish(seen, new)
                if args.max_cnt is not None and seen >= args.max_cnt:
                    return self.finish(seen, new)

            offset += len(illusts)
            if offset >= total:
                break
        return self.finish(seen, new)

    def finish(self, seen: int, new: int) -> int:
        self.logger.info(f"Processed {seen} bookmarks, {new} new")
        return 0


def setup(subparsers) -> None:
    parser = subparsers.add_parser("bookmarks", help="fetch the bookmark feed into the database")
    parser.add_argument("--tag", help="only bookmarks filed under this bookmark tag")
    parser.add_argument("--offset", type=int, default=0)
    parser.add_argument("--private", action="store_true", help="walk private bookmarks instead of public")
    parser.add_argument("--max-cnt", type=int, help="stop after this many bookmarks")
    parser.add_argument("--termination", choices=["on-hit", "until-end"], default="on-hit",
                        help="stop at the first known bookmark, or walk the whole feed")
    parser.set_defaults(command=BookmarksCommand)
