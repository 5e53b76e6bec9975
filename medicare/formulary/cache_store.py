"""On-disk cache of downloaded monthly formulary releases.

Layout under the cache root::

    cache-manifest.json     # {month: ReleaseManifestEntry}
    2025-11.zip             # downloaded archive
    2025-11/                # extracted files
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import ValidationError

from medicare.formulary.models import ReleaseManifestEntry

logger = logging.getLogger(__name__)

MANIFEST_FILE = "cache-manifest.json"
MAX_CACHE_AGE_DAYS = 30

Manifest = dict[str, ReleaseManifestEntry]


class CacheStore:
    """Directory-based release cache with a JSON manifest."""

    def __init__(self, root: Path, max_age_days: int = MAX_CACHE_AGE_DAYS):
        self.root = Path(root)
        self.max_age = timedelta(days=max_age_days)

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    def zip_path_for(self, month: str) -> Path:
        return self.root / f"{month}.zip"

    def extract_path_for(self, month: str) -> Path:
        return self.root / month

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    # -- manifest ----------------------------------------------------------

    def load(self) -> Manifest:
        """Read the whole manifest. Missing or corrupt manifests are empty."""
        self.ensure_root()
        path = self.manifest_path
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable cache manifest %s", path, exc_info=True)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring cache manifest %s: expected an object", path)
            return {}

        manifest: Manifest = {}
        for month, data in raw.items():
            try:
                manifest[month] = ReleaseManifestEntry.model_validate(data)
            except ValidationError:
                logger.warning("Dropping invalid manifest entry for %s", month)
        return manifest

    def save(self, manifest: Manifest) -> None:
        self.ensure_root()
        payload = {month: entry.model_dump(mode="json") for month, entry in manifest.items()}
        self.manifest_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    # -- validity ----------------------------------------------------------

    def is_valid(self, entry: ReleaseManifestEntry, now: datetime | None = None) -> bool:
        """True iff *entry* is younger than the retention window and its files exist.

        Existence only: a partially extracted directory still counts as valid.
        """
        now = now or datetime.now(timezone.utc)
        downloaded = entry.download_date
        if downloaded.tzinfo is None:
            downloaded = downloaded.replace(tzinfo=timezone.utc)
        if now - downloaded >= self.max_age:
            return False
        return Path(entry.zip_path).exists() and Path(entry.extract_path).exists()

    def get_valid(self, month: str) -> ReleaseManifestEntry | None:
        entry = self.load().get(month)
        if entry is not None and self.is_valid(entry):
            return entry
        return None

    def latest_valid(self) -> ReleaseManifestEntry | None:
        """Newest month whose entry is still valid, if any."""
        manifest = self.load()
        for month in sorted(manifest, reverse=True):
            if self.is_valid(manifest[month]):
                return manifest[month]
        return None

    def record(self, month: str, zip_path: Path, extract_path: Path) -> ReleaseManifestEntry:
        """Add (or replace) the entry for *month*, stamped now."""
        entry = ReleaseManifestEntry(
            month=month,
            download_date=datetime.now(timezone.utc),
            zip_path=str(zip_path),
            extract_path=str(extract_path),
        )
        manifest = self.load()
        manifest[month] = entry
        self.save(manifest)
        logger.info("Recorded formulary release %s in cache manifest", month)
        return entry

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)
            logger.info("Cleared formulary cache at %s", self.root)
