from tortoise import fields, models

from entities import AIType, IllustState, IllustType, XRestrict


class Author(models.Model):
    id = fields.BigIntField(pk=True, generated=False)
    name = fields.TextField()
    account = fields.TextField(null=True)

    class Meta:
        table = "authors"


class Illust(models.Model):
    id = fields.BigIntField(pk=True, generated=False)
    title = fields.TextField(null=True)
    author = fields.ForeignKeyField("models.Author", related_name="illusts", null=True, on_delete=fields.SET_NULL)
    description = fields.TextField(null=True)
    is_howto = fields.BooleanField(null=True)
    is_original = fields.BooleanField(null=True)

    illust_state = fields.IntEnumField(IllustState)
    illust_type = fields.IntEnumField(IllustType, null=True)
    page_count = fields.IntField(null=True)

    # Stored in UTC
    create_date = fields.DatetimeField(null=True)
    update_date = fields.DatetimeField(null=True)

    x_restrict = fields.IntEnumField(XRestrict, null=True)
    ai_type = fields.IntEnumField(AIType, null=True)

    bookmark_id = fields.BigIntField(null=True)  # null for works that are not bookmarked
    bookmark_private = fields.BooleanField(null=True)

    last_fetch = fields.DatetimeField()
    last_successful_fetch = fields.DatetimeField(null=True)
    last_full_fetch = fields.DatetimeField(null=True)

    class Meta:
        table = "illusts"


class Tag(models.Model):
    id = fields.IntField(pk=True)
    tag = fields.CharField(max_length=255, unique=True)

    class Meta:
        table = "tags"


class IllustTag(models.Model):
    id = fields.IntField(pk=True)
    illust = fields.ForeignKeyField("models.Illust", related_name="tag_links", on_delete=fields.CASCADE)
    tag = fields.ForeignKeyField("models.Tag", related_name="illust_links", on_delete=fields.CASCADE)

    class Meta:
        table = "illust_tags"
        unique_together = (("illust", "tag"),)


class IllustBookmarkTag(models.Model):
    id = fields.IntField(pk=True)
    illust = fields.ForeignKeyField("models.Illust", related_name="bookmark_tag_links", on_delete=fields.CASCADE)
    tag = fields.ForeignKeyField("models.Tag", related_name="bookmark_links", on_delete=fields.CASCADE)

    class Meta:
        table = "illust_bookmark_tags"
        unique_together = (("illust", "tag"),)


class Image(models.Model):
    """One downloaded version of a page. Older versions are kept, the newest verified one is current."""

    id = fields.IntField(pk=True)
    illust = fields.ForeignKeyField("models.Illust", related_name="images", on_delete=fields.RESTRICT)
    page = fields.IntField()
    url = fields.TextField()

    download_date = fields.DatetimeField()
    verified_date = fields.DatetimeField()
    path = fields.CharField(max_length=1024, unique=True)

    width = fields.IntField(null=True)
    height = fields.IntField(null=True)
    ugoira_frames = fields.JSONField(null=True)

    class Meta:
        table = "images"
        indexes = (("illust_id", "verified_date"),)


class FanboxPost(models.Model):
    id = fields.BigIntField(pk=True, generated=False)
    creator_id = fields.CharField(max_length=255, index=True)
    title = fields.TextField()
    # body and is_body_rich are both null for restricted posts
    body = fields.TextField(null=True)
    is_body_rich = fields.BooleanField(null=True)

    fee = fields.IntField()
    published_datetime = fields.DatetimeField()
    updated_datetime = fields.DatetimeField()
    is_adult = fields.BooleanField(default=False)

    fetched_at = fields.DatetimeField()

    class Meta:
        table = "fanbox_posts"


class FanboxImage(models.Model):
    id = fields.CharField(max_length=255, pk=True)
    post = fields.ForeignKeyField("models.FanboxPost", related_name="images", on_delete=fields.CASCADE)

    url = fields.TextField()
    width = fields.IntField()
    height = fields.IntField()
    ext = fields.CharField(max_length=32)
    idx = fields.IntField()

    path = fields.CharField(max_length=1024, null=True, unique=True)
    downloaded_at = fields.DatetimeField(null=True)

    class Meta:
        table = "fanbox_images"


class FanboxFile(models.Model):
    id = fields.CharField(max_length=255, pk=True)
    post = fields.ForeignKeyField("models.FanboxPost", related_name="files", on_delete=fields.CASCADE)

    name = fields.TextField()
    url = fields.TextField()
    size = fields.BigIntField()
    ext = fields.CharField(max_length=32)
    idx = fields.IntField()

    path = fields.CharField(max_length=1024, null=True, unique=True)
    downloaded_at = fields.DatetimeField(null=True)

    class Meta:
        table = "fanbox_files"


class FanboxAssetVersion(models.Model):
    """A previous download of a FANBOX image or file that was renamed aside when its content changed."""

    id = fields.IntField(pk=True)
    kind = fields.CharField(max_length=16)  # "image" or "file"
    asset_id = fields.CharField(max_length=255, index=True)

    path = fields.CharField(max_length=1024, unique=True)
    downloaded_at = fields.DatetimeField(null=True)
    superseded_at = fields.DatetimeField()

    class Meta:
        table = "fanbox_asset_versions"
