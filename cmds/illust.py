import json
import logging

from utils import pixiv
from utils.retry import with_retry


class IllustCommand:
    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, args) -> int:
        settings = self.app.settings
        illust = await with_retry(
            lambda: pixiv.get_illust(self.app.limiter, self.app.session, args.id),
            settings["max_retries"],
            settings["retry_delay"],
            settings["double_backoff"],
        )
        if args.dry_run:
            data = illust.data
            print(json.dumps({
                "id": illust.id,
                "state": illust.state.name,
                "title": data.title if data else None,
                "author": data.author.name if data else None,
                "tags": data.tags if data else [],
                "page_count": data.page_count if data else None,
                "bookmark_id": illust.bookmark.id if illust.bookmark else None,
            }, ensure_ascii=False, indent=2))
            return 0

        outcome = await self.app.db.update_illust(illust)
        self.logger.info(f"Queried {illust.id}: [{outcome.name}] {illust.display_title}")
        return 0


def setup(subparsers) -> None:
    parser = subparsers.add_parser("illust", help="fetch one illustration's details into the database")
    parser.add_argument("id", type=int)
    parser.add_argument("--dry-run", action="store_true", help="print what was fetched without storing it")
    parser.set_defaults(command=IllustCommand)
