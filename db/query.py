from __future__ import annotations

import enum
from dataclasses import dataclass, field

from entities import IllustState


class DownloadState(enum.Enum):
    FULLY_DOWNLOADED = "fully-downloaded"
    NOT_FULLY_DOWNLOADED = "not-fully-downloaded"


class Order(enum.Enum):
    ID_ASC = "id-asc"
    ID_DESC = "id-desc"
    BOOKMARK_ID_ASC = "bookmark-id-asc"
    BOOKMARK_ID_DESC = "bookmark-id-desc"


class OutputFormat(enum.Enum):
    COUNT = "count"
    ID = "id"
    JSON = "json"


ORDER_SQL = {
    Order.ID_ASC: "id ASC",
    Order.ID_DESC: "id DESC",
    Order.BOOKMARK_ID_ASC: "bookmark_id ASC",
    Order.BOOKMARK_ID_DESC: "bookmark_id DESC",
}

SELECT_SQL = {
    OutputFormat.COUNT: "COUNT(*) AS count",
    OutputFormat.ID: "id",
    OutputFormat.JSON: "*",
}


@dataclass(frozen=True)
class Clause:
    sql: str
    params: tuple = ()


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


def id_is(illust_id: int) -> Clause:
    return Clause("id = ?", (illust_id,))


def state_is(state: IllustState) -> Clause:
    return Clause("illust_state = ?", (int(state),))


def download_state_is(state: DownloadState) -> Clause:
    op = "=" if state is DownloadState.FULLY_DOWNLOADED else "!="
    return Clause(
        f"page_count {op} (SELECT COUNT(DISTINCT page) FROM images WHERE illust_id = illusts.id)"
    )


def has_all_tags(tags: list[str], link_table: str = "illust_tags") -> list[Clause]:
    """Every tag in `tags` must exist and be linked to the row through `link_table`."""
    if link_table not in ("illust_tags", "illust_bookmark_tags"):
        raise ValueError(f"Unknown tag table {link_table}")
    tags = list(dict.fromkeys(tags))
    marks = _placeholders(tags)
    return [
        Clause(
            f"NOT EXISTS (SELECT id FROM tags WHERE tag IN ({marks}) "
            f"AND id NOT IN (SELECT tag_id FROM {link_table} WHERE illust_id = illusts.id))",
            tuple(tags),
        ),
        Clause(f"(SELECT COUNT(*) FROM tags WHERE tag IN ({marks})) = ?", (*tags, len(tags))),
    ]


@dataclass
class IllustQuery:
    output: OutputFormat = OutputFormat.ID
    order: Order = Order.ID_ASC
    limit: int | None = None
    clauses: list[Clause] = field(default_factory=list)

    def where(self, *clauses: Clause) -> IllustQuery:
        self.clauses.extend(clauses)
        return self

    def build(self) -> tuple[str, list]:
        sql = f"SELECT {SELECT_SQL[self.output]} FROM illusts"
        params: list = []
        if self.clauses:
            sql += " WHERE " + " AND ".join(c.sql for c in self.clauses)
            for c in self.clauses:
                params.extend(c.params)
        if self.output is not OutputFormat.COUNT:
            sql += f" ORDER BY {ORDER_SQL[self.order]}"
            if self.limit is not None:
                sql += " LIMIT ?"
                params.append(self.limit)
        return sql, params
