import logging
import re

from pathlib import Path

import exception
from utils import fanbox
from utils.fetch import FanboxRequest
from utils.persist import Unchanged, choose_policy, download_then_persist, resolve_path
from utils.retry import with_retry

UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def sanitize(name: str) -> str:
    return UNSAFE_CHARS.sub("_", name).strip(" .") or "file"


def image_filename(post_id: int, image) -> str:
    return f"{post_id}_{image.idx}_{image.id}.{image.ext}"


def file_filename(post_id: int, file) -> str:
    return f"{post_id}_f{file.idx}_{sanitize(file.name)}.{file.ext}"


class FanboxCommand:
    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, args) -> int:
        match args.action:
            case "sync":
                return await self.sync(args)
            case "download":
                return await self.download(args)
        raise exception.ConfigurationError(f"Unknown fanbox action {args.action}")

    def _retry_options(self, args) -> tuple[int, float, bool]:
        settings = self.app.settings
        max_retries = args.max_retries if args.max_retries is not None else settings["max_retries"]
        retry_delay = args.retry_delay if args.retry_delay is not None else settings["retry_delay"]
        return max_retries, retry_delay, args.double_backoff or settings["double_backoff"]

    async def sync(self, args) -> int:
        limiter, session = self.app.limiter, self.app.session
        session.require_fanbox()
        retry = self._retry_options(args)

        page_urls = await with_retry(lambda: fanbox.get_creator_paginates(limiter, session, args.creator), *retry)
        self.logger.info(f"{args.creator}: {len(page_urls)} pages of posts")

        synced = 0
        failures = []
        for page_url in page_urls:
            briefs = await with_retry(lambda: fanbox.get_page(limiter, session, page_url), *retry)
            for brief in briefs:
                stored = await self.app.db.post_updated_at(brief.id)
                if stored is not None and stored >= brief.updated and not args.force:
                    self.logger.debug(f"Post {brief.id} is unchanged")
                    if args.stop_on_unchanged:
                        self.logger.info(f"Reached unchanged post {brief.id}, stopping")
                        return self._report(synced, failures)
                    continue

                try:
                    post = await with_retry(lambda: fanbox.get_post(limiter, session, brief.id), *retry)
                except exception.ConfigurationError:
                    raise
                except exception.ArchiveError as e:
                    if args.abort_on_fail:
                        raise
                    self.logger.error(f"Failed to fetch post {brief.id}: {e}")
                    failures.append(brief.id)
                    continue

                outcome = await self.app.db.upsert_post(post)
                self.logger.info(f"Post {post.id}: [{outcome.name}] {post.title}")
                synced += 1
        return self._report(synced, failures)

    def _report(self, synced: int, failures: list[int]) -> int:
        self.logger.info(f"Synced {synced} posts")
        if failures:
            self.logger.error(f"{len(failures)} posts failed: {failures}")
            return 1
        return 0

    async def download(self, args) -> int:
        base_dir = Path(args.base_dir) if args.base_dir else self.app.session.require_dir("fanbox")
        base_dir.mkdir(parents=True, exist_ok=True)

        post_ids = list(args.ids)
        if args.creator:
            post_ids += [i for i in await self.app.db.creator_post_ids(args.creator) if i not in post_ids]

        failures = []
        for post_id in post_ids:
            try:
                await self.download_post(post_id, base_dir, args)
            except exception.ConfigurationError:
                raise
            except exception.ArchiveError as e:
                if args.abort_on_fail:
                    raise
                self.logger.error(f"Failed to download post {post_id}: {e}")
                failures.append(post_id)

        if failures:
            self.logger.error(f"{len(failures)} of {len(post_ids)} posts failed: {failures}")
            return 1
        return 0

    async def download_post(self, post_id: int, base_dir: Path, args) -> None:
        images, files = await self.app.db.post_assets(post_id)
        assets = [(row, image_filename(post_id, row)) for row in images]
        assets += [(row, file_filename(post_id, row)) for row in files]
        for row, filename in assets:
            await self.download_asset(row, filename, base_dir, args)

    async def download_asset(self, row, filename: str, base_dir: Path, args) -> None:
        if row.path is not None and not (args.recheck or args.overwrite):
            if resolve_path(row.path, base_dir).exists():
                self.logger.debug(f"{filename} already downloaded")
                return

        fmt = self.app.path_format(args.path_format)
        policy = choose_policy(row.path, base_dir, args.overwrite)
        settings = self.app.settings
        result = await with_retry(
            lambda: download_then_persist(
                self.app.limiter.client, FanboxRequest(self.app.session), base_dir, filename, fmt, row.url, policy,
                args.progress,
            ),
            settings["max_retries"], settings["retry_delay"], settings["double_backoff"],
        )
        await self.app.db.record_asset(row, result, fmt)
        if isinstance(result, Unchanged):
            self.logger.info(f"{filename} unchanged ({result.size} bytes)")
        else:
            self.logger.info(f"{filename} [{result.disposition.name}] {result.final_path}")


def setup(subparsers) -> None:
    parser = subparsers.add_parser("fanbox", help="archive FANBOX posts")
    actions = parser.add_subparsers(dest="action", required=True)

    sync = actions.add_parser("sync", help="fetch a creator's posts into the database")
    sync.add_argument("creator")
    sync.add_argument("--max-retries", type=int)
    sync.add_argument("--retry-delay", type=float)
    sync.add_argument("--double-backoff", action="store_true", help="double the retry delay after each failure")
    sync.add_argument("--abort-on-fail", action="store_true")
    sync.add_argument("--stop-on-unchanged", action="store_true", help="stop at the first post that did not change")
    sync.add_argument("--force", action="store_true", help="fetch posts even if they did not change")
    sync.set_defaults(command=FanboxCommand)

    download = actions.add_parser("download", help="download images and files of stored posts")
    download.add_argument("ids", type=int, nargs="*")
    download.add_argument("--creator", help="every stored post of this creator")
    download.add_argument("--base-dir", help="download directory, defaults to FANBOX_DIR")
    download.add_argument("--overwrite", action="store_true")
    download.add_argument("--recheck", action="store_true")
    download.add_argument("--path-format", choices=["inline", "as-is", "absolute"])
    download.add_argument("--abort-on-fail", action="store_true")
    download.add_argument("--progress", action="store_true")
    download.set_defaults(command=FanboxCommand)
