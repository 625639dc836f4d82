import json
import logging

from db.query import (
    DownloadState,
    IllustQuery,
    Order,
    OutputFormat,
    download_state_is,
    has_all_tags,
    id_is,
    state_is,
)
from entities import IllustState


def build_query(args) -> IllustQuery:
    query = IllustQuery(output=OutputFormat(args.format), order=Order(args.order), limit=args.limit)
    if args.id is not None:
        query.where(id_is(args.id))
    if args.state is not None:
        query.where(state_is(IllustState[args.state.upper()]))
    if args.download_state is not None:
        query.where(download_state_is(DownloadState(args.download_state)))
    if args.tag:
        query.where(*has_all_tags(args.tag, "illust_tags"))
    if args.bookmark_tag:
        query.where(*has_all_tags(args.bookmark_tag, "illust_bookmark_tags"))
    return query


class QueryCommand:
    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, args) -> int:
        query = build_query(args)
        sql, params = query.build()
        if args.print_sql or args.dry_run:
            print(sql)
            print(params)
        if args.dry_run:
            return 0

        rows = await self.app.db.query_raw(sql, params)
        match query.output:
            case OutputFormat.COUNT:
                print(rows[0]["count"])
            case OutputFormat.ID:
                for row in rows:
                    print(row["id"])
            case OutputFormat.JSON:
                print(json.dumps(rows, ensure_ascii=False, default=str, indent=2))
        return 0


def setup(subparsers) -> None:
    parser = subparsers.add_parser("query", help="search stored illustrations")
    parser.add_argument("--id", type=int)
    parser.add_argument("--state", choices=[s.name.lower() for s in IllustState])
    parser.add_argument("--download-state", choices=[s.value for s in DownloadState])
    parser.add_argument("--tag", action="append", help="require this tag, may be repeated")
    parser.add_argument("--bookmark-tag", action="append", help="require this bookmark tag, may be repeated")
    parser.add_argument("--order", choices=[o.value for o in Order], default=Order.ID_ASC.value)
    parser.add_argument("--limit", type=int)
    parser.add_argument("--format", choices=[f.value for f in OutputFormat], default=OutputFormat.ID.value)
    parser.add_argument("--print-sql", action="store_true")
    parser.add_argument("--dry-run", action="store_true", help="print the query without running it")
    parser.set_defaults(command=QueryCommand)
