"""Maintain the on-disk formulary release cache.

Usage:
    python -m medicare.formulary.refresh            # download the latest release
    python -m medicare.formulary.refresh --status   # list cached releases
    python -m medicare.formulary.refresh --clear    # delete the cache
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from medicare.config import settings
from medicare.formulary.cache_store import CacheStore
from medicare.formulary.exceptions import FormularyError
from medicare.formulary.parser import locate_reference_files
from medicare.formulary.releases import ReleaseResolver
from medicare.logging_config import setup_logging

logger = logging.getLogger(__name__)


def print_status(store: CacheStore) -> int:
    """Print one line per cached release; return the number of valid ones."""
    manifest = store.load()
    if not manifest:
        print(f"No cached releases in {store.root}")
        return 0

    valid = 0
    for month in sorted(manifest, reverse=True):
        entry = manifest[month]
        ok = store.is_valid(entry)
        valid += ok
        print(
            f"{month}  downloaded {entry.download_date:%Y-%m-%d %H:%M}  "
            f"{'valid' if ok else 'stale'}  {entry.extract_path}"
        )
    return valid


async def refresh(store: CacheStore, data_dir: Path | None = None) -> int:
    resolver = ReleaseResolver(store, data_dir=data_dir)
    release = await resolver.resolve()
    files = locate_reference_files(release.extract_path)
    logger.info(
        "Release %s (%s) ready from %s: plans=%s formulary=%s",
        release.month, release.file_date, release.source,
        files.plan_path.name, files.coverage_path.name,
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Manage the cached CMS formulary release")
    parser.add_argument(
        "--cache-dir", type=Path, default=None,
        help=f"Cache root (default: {settings.formulary_cache_dir})",
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--status", action="store_true", help="List cached releases and exit")
    group.add_argument("--clear", action="store_true", help="Delete every cached release")
    args = parser.parse_args(argv)

    setup_logging(settings.log_level, settings.log_format)

    store = CacheStore(
        args.cache_dir or settings.formulary_cache_dir,
        max_age_days=settings.formulary_cache_max_age_days,
    )

    if args.status:
        print_status(store)
        return 0
    if args.clear:
        store.clear()
        return 0

    try:
        return asyncio.run(refresh(store, settings.formulary_data_dir))
    except FormularyError as exc:
        logger.error("Refresh failed: %s", exc.detail)
        return 1


if __name__ == "__main__":
    sys.exit(main())
