"""Entry point for RSS Feed Mailer: python -m rssfeed_mailer"""

import argparse
import asyncio
import logging
import sys

from rssfeed_mailer import __version__
from rssfeed_mailer.config import load_config
from rssfeed_mailer.database import create_database, open_database
from rssfeed_mailer.errors import RssMailerError
from rssfeed_mailer.sync import run_sync

logger = logging.getLogger("rssfeed_mailer")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rssfeed_mailer", description="Send RSS/Atom feed items as email"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("create", help="Create a new database")

    add = subparsers.add_parser("add", help="Add a feed to the database")
    add.add_argument("url", help="Feed URL")

    remove = subparsers.add_parser("remove", help="Remove a feed from the database")
    remove.add_argument("url", help="Feed URL")

    subparsers.add_parser("list", help="Print all feed URLs")

    run = subparsers.add_parser("run", help="Fetch feeds and send email for new items")
    run.add_argument("-v", "--verbose", action="store_true", help="Print more information")
    run.add_argument(
        "--no-send", action="store_true", help="Run as normal but do not send email"
    )
    run.add_argument("feed_urls", nargs="*", metavar="URL", help="Only fetch these feeds")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one command and return the process exit status."""
    args = build_parser().parse_args(argv)
    setup_logging(getattr(args, "verbose", False))

    try:
        config = load_config()

        if args.command == "create":
            create_database(config.db_path, config.store_open_timeout).close()
        elif args.command == "add":
            with open_database(config.db_path, config.store_open_timeout) as db:
                db.add_feed(args.url)
        elif args.command == "remove":
            with open_database(config.db_path, config.store_open_timeout) as db:
                db.remove_feed(args.url)
        elif args.command == "list":
            with open_database(config.db_path, config.store_open_timeout) as db:
                for url in db.list_feeds():
                    print(url)
        elif args.command == "run":
            asyncio.run(
                run_sync(config, feed_urls=args.feed_urls, no_send=args.no_send)
            )
    except RssMailerError as e:
        logger.debug("Command %r failed", args.command, exc_info=True)
        print(f"rssfeed_mailer: *** {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
