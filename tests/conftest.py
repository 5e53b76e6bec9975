from __future__ import annotations

import gzip
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from medicare.api.dependencies import get_engine
from medicare.api.main import app
from medicare.formulary.dataset_cache import DatasetCache
from medicare.formulary.models import ResolvedRelease
from medicare.formulary.parser import load_dataset
from medicare.formulary.search import FormularySearchEngine
from medicare.services.metrics import metrics

PLAN_HEADER = (
    "CONTRACT_ID|PLAN_ID|SEGMENT_ID|CONTRACT_NAME|PLAN_NAME|FORMULARY_ID|"
    "PREMIUM|DEDUCTIBLE|MA_REGION_CODE|PDP_REGION_CODE|STATE"
)
COVERAGE_HEADER = (
    "FORMULARY_ID|FORMULARY_VERSION|CONTRACT_YEAR|RXCUI|NDC|TIER_LEVEL_VALUE|"
    "QUANTITY_LIMIT_YN|QUANTITY_LIMIT_AMOUNT|QUANTITY_LIMIT_DAYS|"
    "PRIOR_AUTHORIZATION_YN|STEP_THERAPY_YN"
)


def plan_line(contract, plan_id, name, formulary_id, state, segment="000"):
    return "|".join(
        [contract, plan_id, segment, f"{contract} Inc", name, formulary_id, "0", "0", "", "", state]
    )


def coverage_line(
    formulary_id, rxcui, ndc, tier, ql="N", pa="N", st="N", ql_amount="", ql_days=""
):
    return "|".join(
        [formulary_id, "1", "2025", rxcui, ndc, tier, ql, ql_amount, ql_days, pa, st]
    )


# Three plans (F2 is offered in two states), and coverage rows including an
# orphan formulary (F9), an unlisted tier (7) and a truncated line.
SAMPLE_PLANS = [
    plan_line("H1111", "001", "Alpha Rx Plan", "F1", "CA"),
    plan_line("S2222", "002", "Beta Rx Plan", "F2", "TX"),
    plan_line("S3333", "003", "Gamma Rx Plan", "F2", "NY"),
]
SAMPLE_COVERAGE = [
    coverage_line("F1", "111", "000111", "2"),
    coverage_line("F1", "111", "000222", "2", pa="Y"),
    coverage_line("F2", "111", "000111", "3", ql="Y", ql_amount="30", ql_days="30"),
    coverage_line("F2", "222", "000333", "1", st="Y"),
    coverage_line("F9", "111", "000444", "4", ql="Y", pa="Y", st="Y"),
    coverage_line("F1", "333", "000555", "7"),
    "F1|1|2025|444",
]


def _write(path: Path, header: str, lines: list[str]) -> None:
    text = "\n".join([header, *lines]) + "\n"
    if path.name.endswith(".gz"):
        with gzip.open(path, "wt", encoding="utf-8") as fh:
            fh.write(text)
    else:
        path.write_text(text, encoding="utf-8")


def write_release_files(
    directory: Path,
    plans: list[str],
    coverage: list[str],
    gz: bool = False,
) -> Path:
    """Write a plan file and a coverage file the way CMS names them."""
    directory.mkdir(parents=True, exist_ok=True)
    suffix = ".txt.gz" if gz else ".txt"
    _write(directory / f"plan information  PPUF_2025Q4{suffix}", PLAN_HEADER, plans)
    _write(directory / f"basic drugs formulary file  PPUF_2025Q4{suffix}", COVERAGE_HEADER, coverage)
    return directory


@pytest.fixture
def write_release():
    return write_release_files


@pytest.fixture
def sample_release_dir(tmp_path):
    return write_release_files(tmp_path / "2025-11", SAMPLE_PLANS, SAMPLE_COVERAGE)


@pytest.fixture
def make_engine():
    """Build an engine over a release directory with a stubbed RxNorm client.

    The returned engine exposes ``loader`` (an ``AsyncMock`` wrapping the
    dataset load) for asserting whether any file I/O was attempted.
    """

    def _make(release_dir: Path, rxcuis: list[str] | None = None, month: str = "2025-11"):
        release = ResolvedRelease(
            month=month,
            file_date=f"{month}-19",
            extract_path=release_dir,
            source="remote",
        )

        async def _load():
            return load_dataset(release)

        loader = AsyncMock(side_effect=_load)
        rxnorm = AsyncMock()
        rxnorm.resolve.return_value = list(rxcuis or [])
        engine = FormularySearchEngine(DatasetCache(loader, ttl=3600), rxnorm)
        engine.loader = loader
        return engine

    return _make


@pytest.fixture
def sample_engine(make_engine, sample_release_dir):
    return make_engine(sample_release_dir, rxcuis=["111"])


@pytest.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def override_engine():
    """Install an engine for the API; cleared after the test."""

    def _override(engine):
        app.dependency_overrides[get_engine] = lambda: engine
        return engine

    yield _override
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
