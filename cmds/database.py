import logging

from pathlib import Path

import exception
from db.db import ASSET_MODELS
from utils.persist import PathFormat, encode_path, move_file, resolve_path, same_location

PLATFORM_OF_KIND = {
    "images": "pixiv",
    "fanbox-images": "fanbox",
    "fanbox-files": "fanbox",
    "fanbox-versions": "fanbox",
}


class DatabaseCommand:
    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger(self.__class__.__name__)

    async def run(self, args) -> int:
        match args.action:
            case "relocate":
                old_base = args.from_dir or self.app.session.require_dir(PLATFORM_OF_KIND[args.kind])
                moved, rewritten, skipped = await self.relocate(
                    args.kind,
                    Path(old_base),
                    Path(args.to_dir),
                    self.app.path_format(args.path_format),
                    dry_run=args.dry_run,
                    overwrite=args.overwrite,
                    skip_missing=args.skip_missing,
                )
                verb = "Would move" if args.dry_run else "Moved"
                self.logger.info(f"{verb} {moved} files, {rewritten} paths rewritten, {skipped} skipped")
                return 0
        raise exception.ConfigurationError(f"Unknown database action {args.action}")

    async def relocate(self, kind: str, old_base: Path, new_base: Path, fmt: PathFormat,
                       dry_run: bool = False, overwrite: bool = False,
                       skip_missing: bool = False) -> tuple[int, int, int]:
        """
        Move every recorded file of `kind` into `new_base` and rewrite its stored path in `fmt`.

        Stored paths are read relative to `old_base`. A file that is already at its target
        only has its path re-encoded. Returns (moved, rewritten, skipped).
        """
        if kind not in ASSET_MODELS:
            raise exception.ConfigurationError(f"Unknown asset kind {kind}")
        if not dry_run:
            new_base.mkdir(parents=True, exist_ok=True)

        moved = rewritten = skipped = 0
        for row in await self.app.db.asset_rows(kind):
            current = resolve_path(row.path, old_base)
            target = new_base / current.name

            if not same_location(current, target):
                if not current.exists():
                    if skip_missing:
                        self.logger.warning(f"{current} is missing, skipping")
                        skipped += 1
                        continue
                    raise exception.IntegrityError(f"{current} is recorded but missing")
                if target.exists() and not overwrite:
                    raise exception.TargetCollision(target)

                if dry_run:
                    self.logger.info(f"Would move {current} to {target}")
                else:
                    if target.exists():
                        target.unlink()
                    move_file(current, target)
                    self.logger.debug(f"Moved {current} to {target}")
                moved += 1

            encoded = encode_path(target, target.name, fmt)
            if encoded != row.path:
                if dry_run:
                    self.logger.info(f"Would record {row.path} as {encoded}")
                else:
                    await self.app.db.update_path(row, encoded)
                rewritten += 1
        return moved, rewritten, skipped


def setup(subparsers) -> None:
    parser = subparsers.add_parser("database", help="maintain the database")
    actions = parser.add_subparsers(dest="action", required=True)

    relocate = actions.add_parser("relocate", help="move downloaded files and rewrite their stored paths")
    relocate.add_argument("--kind", choices=list(ASSET_MODELS), default="images")
    relocate.add_argument("--from", dest="from_dir", help="base directory the stored paths are relative to")
    relocate.add_argument("--to", dest="to_dir", required=True, help="new base directory")
    relocate.add_argument("--path-format", choices=["inline", "as-is", "absolute"])
    relocate.add_argument("--dry-run", action="store_true")
    relocate.add_argument("--overwrite", action="store_true", help="replace files already at the target")
    relocate.add_argument("--skip-missing", action="store_true", help="leave rows whose file is gone untouched")
    relocate.set_defaults(command=DatabaseCommand)
