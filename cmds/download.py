import asyncio
import logging

from pathlib import Path

import exception
from db.query import DownloadState, IllustQuery, OutputFormat, download_state_is
from entities import IllustType, Page
from utils import pixiv
from utils.fetch import PixivRequest
from utils.persist import Unchanged, Written, choose_policy, download_then_persist, resolve_path
from utils.retry import with_retry
from utils.ugoira import render_webp


class DownloadCommand:
    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, args) -> int:
        base_dir = Path(args.base_dir) if args.base_dir else self.app.session.require_dir("pixiv")
        base_dir.mkdir(parents=True, exist_ok=True)

        ids = list(args.ids)
        if args.missing:
            sql, params = IllustQuery(output=OutputFormat.ID).where(
                download_state_is(DownloadState.NOT_FULLY_DOWNLOADED)
            ).build()
            ids += [row["id"] for row in await self.app.db.query_raw(sql, params) if row["id"] not in ids]

        failures = []
        for illust_id in ids:
            try:
                await self.download_illust(illust_id, base_dir, args)
            except exception.ConfigurationError:
                raise
            except exception.ArchiveError as e:
                if args.abort_on_fail:
                    raise
                self.logger.error(f"Failed to download {illust_id}: {e}")
                failures.append(illust_id)

        if failures:
            self.logger.error(f"{len(failures)} of {len(ids)} illustrations failed: {failures}")
            return 1
        return 0

    async def fetch_pages(self, illust_id: int) -> list[Page]:
        settings = self.app.settings
        illust_type = await self.app.db.illust_type(illust_id)
        if illust_type == IllustType.UGOIRA:
            page = await with_retry(
                lambda: pixiv.get_ugoira_meta(self.app.limiter, self.app.session, illust_id),
                settings["max_retries"], settings["retry_delay"], settings["double_backoff"],
            )
            return [page]
        return await with_retry(
            lambda: pixiv.get_illust_pages(self.app.limiter, self.app.session, illust_id),
            settings["max_retries"], settings["retry_delay"], settings["double_backoff"],
        )

    async def download_illust(self, illust_id: int, base_dir: Path, args) -> None:
        fmt = self.app.path_format(args.path_format)
        pages = await self.fetch_pages(illust_id)
        current = await self.app.db.current_pages(illust_id)
        requester = PixivRequest(self.app.session)

        for page in pages:
            previous = current.get(page.index)
            if previous is not None and not (args.recheck or args.overwrite):
                if resolve_path(previous.path, base_dir).exists():
                    self.logger.debug(f"{illust_id} p{page.index} already downloaded")
                    continue

            policy = choose_policy(previous.path if previous else None, base_dir, args.overwrite)
            settings = self.app.settings
            result = await with_retry(
                lambda: download_then_persist(
                    self.app.limiter.client, requester, base_dir, page.filename, fmt, page.url, policy, args.progress
                ),
                settings["max_retries"], settings["retry_delay"], settings["double_backoff"],
            )
            await self.app.db.record_image(illust_id, page, result, previous, fmt)

            if isinstance(result, Unchanged):
                self.logger.info(f"{illust_id} p{page.index} unchanged ({result.size} bytes)")
                archive = resolve_path(previous.path, base_dir)
            else:
                self.logger.info(f"{illust_id} p{page.index} [{result.disposition.name}] {result.final_path}")
                archive = result.final_path

            if args.ugoira_webp and page.ugoira_frames:
                output = archive.with_suffix(".webp")
                if isinstance(result, Written) or not output.exists():
                    await asyncio.to_thread(render_webp, archive, page.ugoira_frames, output)
                    self.logger.info(f"Rendered {output}")


def setup(subparsers) -> None:
    parser = subparsers.add_parser("download", help="download the pages of stored illustrations")
    parser.add_argument("ids", type=int, nargs="*")
    parser.add_argument("--missing", action="store_true", help="also download every illustration with missing pages")
    parser.add_argument("--base-dir", help="download directory, defaults to PIXIV_DIR")
    parser.add_argument("--overwrite", action="store_true", help="replace existing files without comparing")
    parser.add_argument("--recheck", action="store_true", help="download again and compare with the stored file")
    parser.add_argument("--path-format", choices=["inline", "as-is", "absolute"])
    parser.add_argument("--abort-on-fail", action="store_true")
    parser.add_argument("--progress", action="store_true", help="show a progress bar per file")
    parser.add_argument("--ugoira-webp", action="store_true", help="render ugoira archives to animated WebP")
    parser.set_defaults(command=DownloadCommand)
