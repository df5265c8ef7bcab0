import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from .config import AppConfig, update_settings, load_settings
from .core import PhotoFrameApp
from .exceptions import ConcurrentOperationError, PhotoFrameError

def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file next to the database."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "photo_frame.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("PIL").setLevel(logging.WARNING)

def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Photo Frame: catalog, fetch and serve photos from a NAS share")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--db", type=Path, default=None, help="SQLite catalog path (default: $LOCAL_DB_PATH or data/photos.db)")
    p.add_argument("--photos-dir", type=Path, default=None, help="Serving directory (default: $LOCAL_PHOTOS_PATH or data/photos)")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the catalog schema")
    sub.add_parser("scan", help="Scan the share and catalogue new photos")

    fetch = sub.add_parser("fetch", help="Replace the served photos with a fresh selection")
    fetch.add_argument("--count", type=int, default=None, help="Photos to fetch (default: settings photosPerDay)")

    sub.add_parser("stats", help="Show catalog statistics")

    lst = sub.add_parser("list", help="List catalog entries")
    group = lst.add_mutually_exclusive_group()
    group.add_argument("--active", action="store_true", help="Only photos downloaded and present on disk")
    group.add_argument("--deleted", action="store_true", help="Only soft-deleted photos")
    lst.add_argument("--limit", type=int, default=None)
    lst.add_argument("--offset", type=int, default=0)

    for name, help_text in (
        ("show", "Show one local copy"),
        ("viewed", "Record that a photo was displayed"),
        ("downloaded", "Record an explicit download of a photo"),
        ("delete", "Soft-delete a photo"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("id", type=int, help="Local copy id")

    report = sub.add_parser("report", help="Write a CSV report of the catalog")
    report.add_argument("--csv", type=Path, default=Path("catalog_report.csv"), help="Output path")

    settings = sub.add_parser("settings", help="Show or update runtime settings")
    settings.add_argument("--photos-per-day", type=int, default=None)
    settings.add_argument("--same-day", type=int, default=None, help="Same-day photos per fetch (0 disables)")
    settings.add_argument("--interval", type=int, default=None, help="Slideshow interval in seconds")

    flush = sub.add_parser("flush", help="Delete served photos and empty the catalog")
    flush.add_argument("--yes", action="store_true", help="Confirm the flush")

    return p.parse_args(argv)

def run(app: PhotoFrameApp, args) -> int:
    if args.command == "init-db":
        logging.info("Database initialization completed")
    elif args.command == "scan":
        result = app.scan()
        print(json.dumps(asdict(result)))
    elif args.command == "fetch":
        result = app.fetch(args.count)
        print(json.dumps(asdict(result)))
    elif args.command == "stats":
        print(json.dumps(app.stats.summary(), indent=2))
    elif args.command == "list":
        entries = app.db_ops.list_combined(
            limit=args.limit, offset=args.offset,
            active_only=args.active, deleted_only=args.deleted,
        )
        print("id     | local | file_name                        | local_file_name")
        print("-------+-------+----------------------------------+----------------")
        for e in entries:
            local_id = "" if e.local_copy_id is None else str(e.local_copy_id)
            flag = "yes" if e.file_exists_locally else "no"
            print(f"{local_id:6s} | {flag:5s} | {e.file_name[:32].ljust(32)} | {e.local_file_name or ''}")
    elif args.command == "show":
        entry = app.stats.photo(args.id)
        if entry is None:
            logging.error(f"Photo {args.id} not found")
            return 1
        print(json.dumps(asdict(entry), indent=2))
    elif args.command in ("viewed", "downloaded", "delete"):
        action = {
            "viewed": app.record_view,
            "downloaded": app.record_download,
            "delete": app.soft_delete,
        }[args.command]
        updated = action(args.id)
        print(json.dumps({"updated": updated}))
        return 0 if updated else 1
    elif args.command == "report":
        app.generate_report(args.csv)
    elif args.command == "settings":
        path = app.config.settings_path
        if args.photos_per_day is None and args.same_day is None and args.interval is None:
            current = load_settings(path)
        else:
            current = update_settings(
                path,
                photos_per_day=args.photos_per_day,
                same_day_photos=args.same_day,
                slideshow_interval=args.interval,
            )
        print(json.dumps(current.to_json(), indent=2))
    elif args.command == "flush":
        if not args.yes:
            logging.error("Refusing to flush without --yes")
            return 1
        app.flush()
    return 0

def main(argv=None):
    args = parse_args(argv)

    app_config = AppConfig.from_env()
    if args.db:
        app_config.db_path = args.db
    if args.photos_dir:
        app_config.photos_dir = args.photos_dir

    setup_logging(Path(app_config.db_path).parent, args.verbose)

    try:
        with PhotoFrameApp(app_config) as app:
            code = run(app, args)
    except ConcurrentOperationError as e:
        logging.error(f"Cannot start: {e}")
        code = 2
    except ValueError as e:
        logging.error(str(e))
        code = 1
    except PhotoFrameError as e:
        logging.error(f"Operation failed: {e}")
        code = 1
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        code = 1
    except Exception:
        logging.exception("Fatal error.")
        code = 1
    sys.exit(code)

if __name__ == "__main__":
    main()
