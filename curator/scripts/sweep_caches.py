from __future__ import annotations

import argparse

from curator.config import load_settings
from curator.repositories.content_analysis_repository import ContentAnalysisRepository
from curator.repositories.database import Database
from curator.repositories.youtube_cache_repository import YouTubeCacheRepository


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Delete expired YouTube response-cache and content-analysis rows.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print per-type response-cache statistics after sweeping.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = load_settings(validate_secrets=False)
    database = Database(settings.db_path)
    database.initialize()
    cache_repository = YouTubeCacheRepository(database)

    deleted_responses = cache_repository.sweep()
    deleted_analyses = ContentAnalysisRepository(database).sweep()
    print(f"Deleted expired response-cache rows: {deleted_responses}")
    print(f"Deleted expired content-analysis rows: {deleted_analyses}")

    if not args.stats:
        return

    stats = cache_repository.stats()
    if not stats:
        print("Response cache is empty.")
        return
    print("cache_type\tlive\texpired\ttotal_accesses")
    for row in stats:
        print(f"{row.cache_type}\t{row.live_entries}\t{row.expired_entries}\t{row.total_accesses}")


if __name__ == "__main__":
    main()
