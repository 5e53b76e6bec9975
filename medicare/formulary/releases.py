"""Find, download and extract the monthly CMS formulary release.

Release resolution is an ordered list of strategies.  Each one either
returns a :class:`ResolvedRelease` or raises :class:`SourceUnavailable`;
:meth:`ReleaseResolver.resolve` returns the first success.  The default
order is configured directory (if any), then the CMS catalog, then the
newest still-valid release in the on-disk cache.
"""

from __future__ import annotations

import asyncio
import logging
import re
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, Sequence

import httpx

from medicare.config import settings
from medicare.formulary.cache_store import CacheStore
from medicare.formulary.exceptions import SourceUnavailable
from medicare.formulary.models import ReleaseInfo, ResolvedRelease
from medicare.services.metrics import metrics

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"(\d{4})-(\d{2})(?:-(\d{2}))?")
_MONTH_KEY = re.compile(r"^\d{4}-\d{2}$")


def parse_file_date(title: str) -> tuple[str, str]:
    """Split a distribution title into ``(file_date, month)``.

    CMS titles look like ``"<dataset title> : 2025-11-19"``; the text after
    the last colon is the file date.  ``"November 2025"`` style suffixes are
    accepted too.
    """
    suffix = title.rsplit(":", 1)[-1].strip() if ":" in title else title.strip()

    match = _ISO_DATE.search(suffix)
    if match:
        return match.group(0), f"{match.group(1)}-{match.group(2)}"

    for fmt in ("%B %Y", "%b %Y", "%B %d, %Y", "%b %d, %Y"):
        try:
            parsed = datetime.strptime(suffix, fmt)
        except ValueError:
            continue
        return suffix, parsed.strftime("%Y-%m")

    raise SourceUnavailable(f"Could not parse a release date from title {title!r}")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class CatalogClient:
    """Reads the data.cms.gov DCAT catalog to find the latest release."""

    def __init__(
        self,
        catalog_url: str | None = None,
        dataset_title: str | None = None,
        timeout: float | None = None,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.catalog_url = catalog_url or settings.cms_catalog_url
        self.dataset_title = dataset_title or settings.cms_formulary_dataset_title
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self._transport = _transport

    async def _fetch_catalog(self) -> Any:
        kwargs: dict[str, Any] = {"timeout": self.timeout, "follow_redirects": True}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                resp = await client.get(self.catalog_url)
                resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"CMS catalog unreachable: {exc}") from exc
        except ValueError as exc:
            raise SourceUnavailable("CMS catalog returned a non-JSON body") from exc

    async def resolve_latest(self) -> ReleaseInfo:
        data = await self._fetch_catalog()
        datasets = data.get("dataset", []) if isinstance(data, dict) else []
        dataset = next(
            (d for d in datasets if isinstance(d, dict) and d.get("title") == self.dataset_title),
            None,
        )
        if not dataset or not dataset.get("distribution"):
            raise SourceUnavailable(f"Dataset {self.dataset_title!r} not found in CMS catalog")

        # First distribution is the latest release
        latest = dataset["distribution"][0]
        download_url = latest.get("downloadURL")
        if not download_url:
            raise SourceUnavailable("Latest formulary distribution has no download URL")

        file_date, month = parse_file_date(latest.get("title", ""))
        return ReleaseInfo(month=month, download_url=download_url, file_date=file_date)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class ReleaseStrategy(Protocol):
    name: str

    async def resolve(self) -> ResolvedRelease: ...


class ConfiguredDirectoryStrategy:
    """Use a pre-extracted release directory named in configuration."""

    name = "configured"

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    async def resolve(self) -> ResolvedRelease:
        if not self.directory.is_dir():
            raise SourceUnavailable(f"Configured formulary directory {self.directory} does not exist")
        modified = datetime.fromtimestamp(self.directory.stat().st_mtime, tz=timezone.utc)
        month = self.directory.name if _MONTH_KEY.match(self.directory.name) else modified.strftime("%Y-%m")
        return ResolvedRelease(
            month=month,
            file_date=modified.date().isoformat(),
            extract_path=self.directory,
            source=self.name,
        )


class RemoteReleaseStrategy:
    """Ask the CMS catalog for the latest release and make sure it is on disk."""

    name = "remote"

    def __init__(self, catalog: CatalogClient, resolver: ReleaseResolver):
        self.catalog = catalog
        self.resolver = resolver

    async def resolve(self) -> ResolvedRelease:
        info = await self.catalog.resolve_latest()
        extract_path = await self.resolver.ensure_local(info.month, info.download_url)
        return ResolvedRelease(
            month=info.month,
            file_date=info.file_date,
            extract_path=extract_path,
            source=self.name,
        )


class CachedReleaseStrategy:
    """Fall back to the newest release in the cache that is still valid."""

    name = "cache"

    def __init__(self, store: CacheStore):
        self.store = store

    async def resolve(self) -> ResolvedRelease:
        entry = self.store.latest_valid()
        if entry is None:
            raise SourceUnavailable("No valid cached formulary release")
        return ResolvedRelease(
            month=entry.month,
            file_date=entry.download_date.date().isoformat(),
            extract_path=Path(entry.extract_path),
            source=self.name,
        )


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


def _extract_archive(zip_path: Path, extract_path: Path) -> int:
    """Extract *zip_path* into *extract_path*, expanding nested archives in place.

    Returns the number of files extracted.
    """
    extract_path.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(zip_path) as archive:
        archive.extractall(extract_path)

    expanded: set[Path] = set()
    while True:
        nested = [p for p in extract_path.rglob("*") if p.suffix.lower() == ".zip" and p not in expanded]
        if not nested:
            break
        for inner in nested:
            expanded.add(inner)
            with zipfile.ZipFile(inner) as archive:
                archive.extractall(inner.with_suffix(""))

    return sum(1 for p in extract_path.rglob("*") if p.is_file())


class ReleaseResolver:
    """Resolves a locally available formulary release.

    Downloads are neither resumable nor atomic: a crash mid-extraction
    leaves a partial directory that :meth:`CacheStore.is_valid` accepts.
    """

    def __init__(
        self,
        store: CacheStore,
        catalog: CatalogClient | None = None,
        strategies: Sequence[ReleaseStrategy] | None = None,
        data_dir: Path | None = None,
        download_timeout: float | None = None,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.catalog = catalog or CatalogClient(_transport=_transport)
        self.download_timeout = (
            download_timeout if download_timeout is not None else settings.download_timeout
        )
        self._transport = _transport
        if strategies is None:
            strategies = self.default_strategies(data_dir)
        self.strategies: list[ReleaseStrategy] = list(strategies)

    def default_strategies(self, data_dir: Path | None = None) -> list[ReleaseStrategy]:
        strategies: list[ReleaseStrategy] = []
        if data_dir is not None:
            strategies.append(ConfiguredDirectoryStrategy(data_dir))
        strategies.append(RemoteReleaseStrategy(self.catalog, self))
        strategies.append(CachedReleaseStrategy(self.store))
        return strategies

    async def resolve(self) -> ResolvedRelease:
        """Try each strategy in order; raise if none yields a release."""
        failures: list[str] = []
        for strategy in self.strategies:
            try:
                release = await strategy.resolve()
            except SourceUnavailable as exc:
                logger.warning("Release strategy %r failed: %s", strategy.name, exc.detail)
                failures.append(f"{strategy.name}: {exc.detail}")
                continue
            metrics.inc_release_source(release.source)
            logger.info(
                "Using formulary release %s from %s", release.month, release.source,
                extra={"month": release.month, "source": release.source},
            )
            return release

        metrics.inc_release_source("failure")
        raise SourceUnavailable(
            "No formulary release available (" + "; ".join(failures) + ")"
        )

    async def ensure_local(self, month: str, download_url: str) -> Path:
        """Return the extract directory for *month*, downloading it if needed."""
        entry = self.store.get_valid(month)
        if entry is not None:
            logger.info("Using cached formulary data for %s", month)
            return Path(entry.extract_path)

        logger.info("Cache miss or invalid, downloading formulary data for %s", month)
        self.store.ensure_root()
        zip_path = self.store.zip_path_for(month)
        extract_path = self.store.extract_path_for(month)

        await self._download(download_url, zip_path)
        try:
            count = await asyncio.to_thread(_extract_archive, zip_path, extract_path)
        except zipfile.BadZipFile as exc:
            raise SourceUnavailable(f"Downloaded archive for {month} is not a valid zip") from exc
        logger.info("Extracted %d files to %s", count, extract_path)

        self.store.record(month, zip_path, extract_path)
        return extract_path

    async def _download(self, url: str, dest: Path) -> None:
        kwargs: dict[str, Any] = {"timeout": self.download_timeout, "follow_redirects": True}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        written = 0
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                async with client.stream("GET", url) as resp:
                    resp.raise_for_status()
                    with dest.open("wb") as fh:
                        async for chunk in resp.aiter_bytes():
                            fh.write(chunk)
                            written += len(chunk)
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"Failed to download formulary archive: {exc}") from exc
        logger.info("Downloaded %d bytes to %s", written, dest)
