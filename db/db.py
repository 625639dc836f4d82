import logging

from pathlib import Path

from tortoise import Tortoise
from tortoise.transactions import in_transaction

import exception
from db import models
from entities import (
    FanboxPost,
    Illust,
    IllustData,
    IllustState,
    IllustType,
    Page,
    UpdateOutcome,
    accepts_transition,
    utcnow,
)
from utils.persist import Disposition, PathFormat, Unchanged, Written, encode_path

LOGGER = logging.getLogger(__name__)

ASSET_MODELS = {
    "images": models.Image,
    "fanbox-images": models.FanboxImage,
    "fanbox-files": models.FanboxFile,
    "fanbox-versions": models.FanboxAssetVersion,
}


class Database:
    _tag_cache: dict[str, int] | None = None  # tag -> tag id

    def __init__(self, url: str):
        self.url = url

    async def connect(self):
        await Tortoise.init(
            db_url=self.url,
            modules={"models": ["db.models"]},
            use_tz=True,
            timezone="UTC",
        )

        conn = Tortoise.get_connection("default")
        await conn.execute_query("PRAGMA foreign_keys = ON;")
        await conn.execute_query("PRAGMA journal_mode = WAL;")

        await Tortoise.generate_schemas(safe=True)
        await self.load_tags()

    async def load_tags(self):
        """Load all interned tags into the cache."""
        tags = await models.Tag.all().values("id", "tag")
        self._tag_cache = {t["tag"]: t["id"] for t in tags}

    async def close(self):
        await Tortoise.close_connections()

    # Tags

    async def _tag_id(self, name: str, pending: dict[str, int]) -> int:
        if self._tag_cache is not None and name in self._tag_cache:
            return self._tag_cache[name]
        if name in pending:
            return pending[name]
        tag, _ = await models.Tag.get_or_create(tag=name)
        pending[name] = tag.id
        return tag.id

    async def _sync_tags(self, link_model, illust_id: int, names: list[str], pending: dict[str, int]) -> None:
        """Make the tag links of `illust_id` exactly `names`: insert what is missing, then drop the rest."""
        wanted = [await self._tag_id(name, pending) for name in dict.fromkeys(names)]
        existing = set(await link_model.filter(illust_id=illust_id).values_list("tag_id", flat=True))
        for tag_id in wanted:
            if tag_id not in existing:
                await link_model.create(illust_id=illust_id, tag_id=tag_id)

        stale = link_model.filter(illust_id=illust_id)
        if wanted:
            stale = stale.exclude(tag_id__in=wanted)
        await stale.delete()

    # Illustrations

    async def _apply_data(self, row: models.Illust, data: IllustData, now) -> None:
        await models.Author.update_or_create(
            id=data.author.id,
            defaults={"name": data.author.name, "account": data.author.account},
        )
        row.title = data.title
        row.author_id = data.author.id
        row.create_date = data.create_date
        row.update_date = data.update_date
        row.x_restrict = data.x_restrict
        row.ai_type = data.ai_type
        row.illust_type = data.illust_type
        row.page_count = data.page_count
        if data.detail is not None:
            row.description = data.detail.description
            row.is_howto = data.detail.is_howto
            row.is_original = data.detail.is_original
            row.last_full_fetch = now

    async def update_illust(self, illust: Illust) -> UpdateOutcome:
        """
        Reconcile one fetched illustration with its stored row.

        Content (title, tags, author, dates, ...) is only written when the visibility
        lattice accepts the transition. Bookmark fields and bookmark tags are always
        written. ``last_fetch`` always advances, ``last_successful_fetch`` only when
        normal data was written.
        """
        # TODO: return SKIPPED when nothing differs instead of rewriting an identical row
        now = utcnow()
        pending: dict[str, int] = {}
        async with in_transaction():
            row = await models.Illust.get_or_none(id=illust.id)
            if row is None:
                row = models.Illust(id=illust.id, illust_state=illust.state, last_fetch=now)
                outcome = UpdateOutcome.INSERTED
                apply_content = True
            else:
                apply_content = accepts_transition(row.illust_state, illust.state)
                if illust.bookmark is not None and row.bookmark_id != illust.bookmark.id:
                    outcome = UpdateOutcome.BOOKMARK_ID_CHANGED
                elif not apply_content:
                    outcome = UpdateOutcome.SKIPPED
                else:
                    outcome = UpdateOutcome.UPDATED

            row.last_fetch = now
            if apply_content:
                row.illust_state = illust.state
                if illust.data is not None:
                    await self._apply_data(row, illust.data, now)
                if illust.state == IllustState.NORMAL:
                    row.last_successful_fetch = now
            if illust.bookmark is not None:
                row.bookmark_id = illust.bookmark.id
                row.bookmark_private = illust.bookmark.private
            await row.save()

            if apply_content and illust.data is not None:
                await self._sync_tags(models.IllustTag, illust.id, illust.data.tags, pending)
            if illust.bookmark is not None and illust.bookmark.tags is not None:
                await self._sync_tags(models.IllustBookmarkTag, illust.id, illust.bookmark.tags, pending)

        if self._tag_cache is not None:
            self._tag_cache.update(pending)
        return outcome

    async def illust_type(self, illust_id: int) -> IllustType | None:
        row = await models.Illust.get_or_none(id=illust_id)
        if row is None:
            raise exception.ContentLookupError(f"Illustration {illust_id} is not in the database")
        return row.illust_type

    async def current_pages(self, illust_id: int) -> dict[int, models.Image]:
        """The most recently verified image row of every downloaded page."""
        rows = await models.Image.filter(illust_id=illust_id).order_by("verified_date", "id")
        return {row.page: row for row in rows}

    async def record_image(self, illust_id: int, page: Page, result: Unchanged | Written,
                           previous: models.Image | None, fmt: PathFormat) -> None:
        now = utcnow()
        async with in_transaction():
            if isinstance(result, Unchanged):
                previous.verified_date = now
                await previous.save(update_fields=["verified_date"])
                return

            if previous is not None:
                if result.disposition is Disposition.OVERWRITTEN:
                    await previous.delete()
                elif result.disposition is Disposition.MOVED:
                    aside = result.final_path.with_name(result.moved_to.name)
                    moved = encode_path(aside, aside.name, fmt)
                    if await models.Image.filter(path=moved).exclude(id=previous.id).exists():
                        # The set-aside file is already recorded by an older version
                        await previous.delete()
                    else:
                        previous.path = moved
                        await previous.save(update_fields=["path"])

            dropped = await models.Image.filter(path=result.encoded_path).delete()
            if dropped:
                LOGGER.warning(f"Dropped {dropped} record(s) of the replaced file {result.encoded_path}")

            await models.Image.create(
                illust_id=illust_id,
                page=page.index,
                url=page.url,
                download_date=now,
                verified_date=now,
                path=result.encoded_path,
                width=page.width,
                height=page.height,
                ugoira_frames=page.ugoira_frames,
            )

    # FANBOX

    async def post_updated_at(self, post_id: int):
        row = await models.FanboxPost.get_or_none(id=post_id)
        return row.updated_datetime if row else None

    async def upsert_post(self, post: FanboxPost) -> UpdateOutcome:
        """
        Insert or refresh a post with its images and files.

        A restricted fetch (no body) never erases a stored body. Recorded local paths of
        images and files are kept.
        """
        now = utcnow()
        async with in_transaction():
            row = await models.FanboxPost.get_or_none(id=post.id)
            if row is not None and post.body is None and row.body is not None:
                row.fetched_at = now
                await row.save(update_fields=["fetched_at"])
                return UpdateOutcome.SKIPPED

            await models.FanboxPost.update_or_create(
                id=post.id,
                defaults={
                    "creator_id": post.creator_id,
                    "title": post.title,
                    "body": post.body,
                    "is_body_rich": post.is_body_rich,
                    "fee": post.fee,
                    "published_datetime": post.published,
                    "updated_datetime": post.updated,
                    "is_adult": post.is_adult,
                    "fetched_at": now,
                },
            )
            for image in post.images:
                await models.FanboxImage.update_or_create(
                    id=image.id,
                    defaults={"post_id": post.id, "url": image.url, "width": image.width,
                              "height": image.height, "ext": image.ext, "idx": image.idx},
                )
            for file in post.files:
                await models.FanboxFile.update_or_create(
                    id=file.id,
                    defaults={"post_id": post.id, "name": file.name, "url": file.url,
                              "size": file.size, "ext": file.ext, "idx": file.idx},
                )
        return UpdateOutcome.INSERTED if row is None else UpdateOutcome.UPDATED

    async def post_assets(self, post_id: int) -> tuple[list[models.FanboxImage], list[models.FanboxFile]]:
        if not await models.FanboxPost.exists(id=post_id):
            raise exception.ContentLookupError(f"Fanbox post {post_id} is not in the database")
        images = await models.FanboxImage.filter(post_id=post_id).order_by("idx")
        files = await models.FanboxFile.filter(post_id=post_id).order_by("idx")
        return images, files

    async def creator_post_ids(self, creator_id: str) -> list[int]:
        return await models.FanboxPost.filter(creator_id=creator_id).order_by("-id").values_list("id", flat=True)

    async def record_asset(self, row, result: Unchanged | Written, fmt: PathFormat) -> None:
        """
        Point a FANBOX image or file row at its new download.

        When the previous file was renamed aside, the set-aside path is kept as a
        ``FanboxAssetVersion`` of the asset.
        """
        if isinstance(result, Unchanged):
            return
        now = utcnow()
        kind = "image" if isinstance(row, models.FanboxImage) else "file"
        async with in_transaction():
            if result.disposition is Disposition.MOVED:
                aside = result.final_path.with_name(result.moved_to.name)
                moved = encode_path(aside, aside.name, fmt)
                if await models.FanboxAssetVersion.exists(path=moved):
                    LOGGER.debug(f"{moved} is already recorded as an older version of {row.id}")
                else:
                    await models.FanboxAssetVersion.create(
                        kind=kind,
                        asset_id=row.id,
                        path=moved,
                        downloaded_at=row.downloaded_at,
                        superseded_at=now,
                    )
                    LOGGER.info(f"Previous version of {row.id} kept at {moved}")

            dropped = await models.FanboxAssetVersion.filter(path=result.encoded_path).delete()
            if dropped:
                LOGGER.warning(f"Dropped {dropped} record(s) of the replaced file {result.encoded_path}")

            row.path = result.encoded_path
            row.downloaded_at = now
            await row.save(update_fields=["path", "downloaded_at"])

    async def asset_versions(self, kind: str, asset_id: str) -> list[models.FanboxAssetVersion]:
        return await models.FanboxAssetVersion.filter(kind=kind, asset_id=asset_id).order_by("id")

    # Paths

    async def asset_rows(self, kind: str) -> list:
        model = ASSET_MODELS[kind]
        return await model.filter(path__isnull=False).order_by("id")

    async def update_path(self, row, path: str) -> None:
        row.path = path
        await row.save(update_fields=["path"])

    async def query_raw(self, sql: str, params: list) -> list[dict]:
        conn = Tortoise.get_connection("default")
        return await conn.execute_query_dict(sql, params)
