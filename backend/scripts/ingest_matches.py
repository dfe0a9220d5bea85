import argparse
from datetime import datetime, timezone

from dateutil import parser as date_parser
from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from ingestion.client import SportsFeedClient
from ingestion.service import ingest_league_matches


def _parse_datetime(value: str) -> datetime:
    parsed = date_parser.isoparse(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh the match cache from the sports feeds")
    parser.add_argument(
        "--league",
        dest="leagues",
        action="append",
        default=None,
        help="League code to ingest (repeatable, defaults to every enabled league)",
    )
    parser.add_argument(
        "--now",
        type=_parse_datetime,
        default=None,
        help="Treat this ISO-8601 timestamp as the current time when choosing the feed day",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    init_db()

    unknown = [code for code in args.leagues or [] if code.upper() not in settings.enabled_leagues]
    for code in unknown:
        logger.warning("Ignoring league '{}' which is not enabled", code)
    leagues = [code for code in args.leagues or [] if code not in unknown] or None
    if args.leagues and leagues is None:
        logger.error("No enabled leagues requested; nothing to ingest")
        return

    with SportsFeedClient(settings=settings) as client:
        counts = ingest_league_matches(leagues, client=client, now=args.now)

    logger.info("Ingested {} matches across {} leagues", sum(counts.values()), len(counts))


if __name__ == "__main__":
    main()
