"""Search and filter Medicare Part D formulary coverage."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from medicare.config import Settings, settings as default_settings
from medicare.formulary.cache_store import CacheStore
from medicare.formulary.dataset_cache import DatasetCache
from medicare.formulary.exceptions import InvalidQuery
from medicare.formulary.models import (
    UNKNOWN,
    CoverageRecord,
    DataSource,
    FormularyDataset,
    FormularyEntry,
    FormularyQuery,
    FormularySearchResult,
)
from medicare.formulary.parser import iter_coverage_records, load_dataset
from medicare.formulary.releases import ReleaseResolver
from medicare.formulary.rxnorm import RxNormClient
from medicare.services.metrics import metrics

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25
COVERAGE_PAGE_SIZE = 100


@dataclass(frozen=True)
class CoverageFilter:
    """Conjunction of the active predicates; ``None`` fields are inactive."""

    rxcuis: frozenset[str] | None = None
    ndc: str | None = None
    plan_formulary_ids: frozenset[str] | None = None
    state_formulary_ids: frozenset[str] | None = None
    tier: str | None = None
    prior_auth: bool | None = None
    quantity_limit: bool | None = None
    step_therapy: bool | None = None
    # Display-only: pick the labelling plan among a formulary's plans
    state: str | None = None
    plan_id: str | None = None

    @classmethod
    def build(
        cls,
        query: FormularyQuery,
        dataset: FormularyDataset,
        rxcuis: list[str] | None = None,
    ) -> CoverageFilter:
        plan_ids = None
        if query.plan_id:
            # A plan ID may name the formulary directly or a plan that uses it
            plan_ids = frozenset({query.plan_id}) | dataset.plans_by_plan_id.get(
                query.plan_id, frozenset()
            )
        state = query.plan_state.strip().upper() if query.plan_state else None
        state_ids = None
        if state:
            state_ids = dataset.plans_by_state.get(state, frozenset())
        return cls(
            rxcuis=frozenset(rxcuis) if query.drug_name else None,
            ndc=query.ndc_code or None,
            plan_formulary_ids=plan_ids,
            state_formulary_ids=state_ids,
            tier=str(query.tier) if query.tier is not None else None,
            prior_auth=query.requires_prior_auth,
            quantity_limit=query.has_quantity_limit,
            step_therapy=query.has_step_therapy,
            state=state or None,
            plan_id=query.plan_id or None,
        )

    def matches(self, record: CoverageRecord) -> bool:
        if self.rxcuis is not None and record.rxcui not in self.rxcuis:
            return False
        if self.ndc is not None and record.ndc != self.ndc:
            return False
        if self.plan_formulary_ids is not None and record.formulary_id not in self.plan_formulary_ids:
            return False
        if self.state_formulary_ids is not None and record.formulary_id not in self.state_formulary_ids:
            return False
        if self.tier is not None and record.tier != self.tier:
            return False
        if self.prior_auth is not None and record.requires_prior_auth != self.prior_auth:
            return False
        if self.quantity_limit is not None and record.has_quantity_limit != self.quantity_limit:
            return False
        if self.step_therapy is not None and record.has_step_therapy != self.step_therapy:
            return False
        return True


def to_entry(
    record: CoverageRecord,
    dataset: FormularyDataset,
    flt: CoverageFilter | None = None,
) -> FormularyEntry:
    if flt is None:
        plan = dataset.plan_for(record.formulary_id)
    else:
        plan = dataset.display_plan(record.formulary_id, flt.state, flt.plan_id)
    return FormularyEntry(
        formulary_id=record.formulary_id,
        plan_name=(plan.plan_name if plan else "") or UNKNOWN,
        state=(plan.state if plan else "") or UNKNOWN,
        rxcui=record.rxcui,
        ndc=record.ndc,
        tier=record.tier,
        tier_level=record.tier_level,
        prior_authorization=record.requires_prior_auth,
        quantity_limit=record.has_quantity_limit,
        quantity_limit_amount=record.quantity_limit_amount,
        quantity_limit_days=record.quantity_limit_days,
        step_therapy=record.has_step_therapy,
    )


def scan_coverage(
    dataset: FormularyDataset,
    flt: CoverageFilter,
    offset: int,
    size: int,
) -> tuple[int, list[FormularyEntry], int]:
    """Stream the coverage file once.

    Returns ``(total_matches, page, rows_scanned)``; the page holds matches
    ``offset`` through ``offset + size - 1`` in file order.
    """
    total = 0
    rows = 0
    page: list[FormularyEntry] = []
    # Reads to the end so total counts every match, not just this page
    for record in iter_coverage_records(dataset.coverage_path):
        rows += 1
        if not flt.matches(record):
            continue
        if offset <= total < offset + size:
            page.append(to_entry(record, dataset, flt))
        total += 1
    return total, page, rows


class FormularySearchEngine:
    """Searches the current formulary release.

    The dataset cache and RxNorm client are injected; build a process-wide
    instance with :func:`build_engine`.
    """

    def __init__(
        self,
        dataset_cache: DatasetCache,
        rxnorm: RxNormClient,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        coverage_page_size: int = COVERAGE_PAGE_SIZE,
    ) -> None:
        self.dataset_cache = dataset_cache
        self.rxnorm = rxnorm
        self.default_page_size = default_page_size
        self.coverage_page_size = coverage_page_size

    async def search(
        self,
        query: FormularyQuery,
        default_size: int | None = None,
    ) -> FormularySearchResult:
        if not query.has_subject():
            raise InvalidQuery("At least one of drug_name, ndc_code, or plan_id is required")

        size = query.size if query.size and query.size > 0 else (default_size or self.default_page_size)
        offset = max(query.offset or 0, 0)

        rxcuis: list[str] = []
        if query.drug_name:
            rxcuis = await self.rxnorm.resolve(query.drug_name)
            if not rxcuis:
                metrics.inc_search(short_circuit=True)
                return FormularySearchResult(
                    total=0,
                    offset=offset,
                    limit=size,
                    drug_name_searched=query.drug_name,
                    rxcuis_found=[],
                    message=f"No RXCUI codes found for drug name: {query.drug_name}",
                )

        dataset = await self.dataset_cache.get()
        flt = CoverageFilter.build(query, dataset, rxcuis)
        total, entries, rows = await asyncio.to_thread(scan_coverage, dataset, flt, offset, size)
        metrics.inc_search(rows_scanned=rows)
        logger.info(
            "Formulary search matched %d of %d rows", total, rows,
            extra={"month": dataset.month},
        )

        return FormularySearchResult(
            total=total,
            offset=offset,
            limit=size,
            drug_name_searched=query.drug_name,
            rxcuis_found=rxcuis,
            formulary_entries=entries,
            data_source=DataSource(month=dataset.month, file_date=dataset.file_date),
        )

    async def search_formulary(self, **params: Any) -> FormularySearchResult:
        """Keyword form of :meth:`search`, as exposed to tool callers."""
        return await self.search(FormularyQuery(**params))

    async def get_drug_coverage(
        self,
        drug_name: str,
        size: int | None = None,
        offset: int = 0,
    ) -> FormularySearchResult:
        """Coverage of one drug across every plan, with a larger default page."""
        query = FormularyQuery(drug_name=drug_name, size=size, offset=offset)
        return await self.search(query, default_size=self.coverage_page_size)

    async def get_plan_formulary(
        self,
        plan_id: str,
        tier: int | None = None,
        size: int | None = None,
        offset: int = 0,
    ) -> FormularySearchResult:
        query = FormularyQuery(plan_id=plan_id, tier=tier, size=size, offset=offset)
        return await self.search(query, default_size=self.coverage_page_size)


def build_engine(config: Settings | None = None) -> FormularySearchEngine:
    """Wire the cache store, release resolver, dataset cache and RxNorm client."""
    config = config or default_settings
    store = CacheStore(config.formulary_cache_dir, max_age_days=config.formulary_cache_max_age_days)
    resolver = ReleaseResolver(
        store,
        data_dir=config.formulary_data_dir,
        download_timeout=config.download_timeout,
    )

    async def load() -> FormularyDataset:
        release = await resolver.resolve()
        return await asyncio.to_thread(load_dataset, release)

    return FormularySearchEngine(
        DatasetCache(load, ttl=config.formulary_dataset_ttl),
        RxNormClient(),
        default_page_size=config.formulary_default_page_size,
        coverage_page_size=config.formulary_coverage_page_size,
    )
