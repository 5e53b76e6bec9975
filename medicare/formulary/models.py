"""Data model for formulary releases, parsed records, queries and results."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

DATASET_LABEL = "Monthly Prescription Drug Plan Formulary and Pharmacy Network Information"

TIER_DESCRIPTIONS: dict[str, str] = {
    "1": "Preferred Generic",
    "2": "Generic",
    "3": "Preferred Brand",
    "4": "Non-Preferred Brand",
    "5": "Specialty Tier",
    "6": "Select Care Drugs",
}

UNKNOWN = "Unknown"


# ---------------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------------


class ReleaseManifestEntry(BaseModel):
    """One downloaded monthly release, as persisted in the cache manifest."""

    month: str = Field(..., description="Release month key (YYYY-MM)")
    download_date: datetime = Field(..., description="When the archive was downloaded (UTC)")
    zip_path: str = Field(..., description="Path of the downloaded archive")
    extract_path: str = Field(..., description="Directory the archive was extracted to")
    file_hashes: dict[str, str] = Field(
        default_factory=dict,
        description="Per-file content hashes (reserved for integrity checks)",
    )


class ReleaseInfo(BaseModel):
    """Latest release as advertised by the CMS catalog."""

    month: str
    download_url: str
    file_date: str


class ResolvedRelease(BaseModel):
    """A release that is available on local disk."""

    month: str
    file_date: str
    extract_path: Path
    source: str = Field(..., description="'configured', 'remote' or 'cache'")


# ---------------------------------------------------------------------------
# Parsed records
# ---------------------------------------------------------------------------


def _is_yes(flag: str) -> bool:
    return flag.strip().upper() == "Y"


@dataclass(frozen=True, slots=True)
class PlanRecord:
    contract_id: str
    plan_id: str
    segment_id: str
    plan_name: str
    formulary_id: str
    state: str


@dataclass(frozen=True, slots=True)
class CoverageRecord:
    """One (formulary, drug) row of the basic drugs formulary file.

    Utilization-management flags keep their raw ``Y``/``N`` text; the
    boolean properties read them.
    """

    formulary_id: str
    rxcui: str
    ndc: str
    tier: str
    quantity_limit: str
    quantity_limit_amount: str
    quantity_limit_days: str
    prior_authorization: str
    step_therapy: str

    @property
    def requires_prior_auth(self) -> bool:
        return _is_yes(self.prior_authorization)

    @property
    def has_quantity_limit(self) -> bool:
        return _is_yes(self.quantity_limit)

    @property
    def has_step_therapy(self) -> bool:
        return _is_yes(self.step_therapy)

    @property
    def tier_level(self) -> str:
        return TIER_DESCRIPTIONS.get(self.tier.strip()) or self.tier or "Unknown Tier"


@dataclass(frozen=True)
class FormularyDataset:
    """Everything a search needs from one release, minus the coverage rows.

    Coverage rows are streamed from ``coverage_path`` on every search; only
    the plan file is indexed in memory.
    """

    month: str
    file_date: str
    source: str
    coverage_path: Path
    plans: dict[str, PlanRecord]
    plans_by_state: dict[str, frozenset[str]]
    plans_by_plan_id: dict[str, frozenset[str]]
    plans_by_formulary: dict[str, tuple[PlanRecord, ...]] = field(default_factory=dict)
    loaded_at: float = field(default_factory=time.monotonic)

    def plan_for(self, formulary_id: str) -> PlanRecord | None:
        return self.plans.get(formulary_id)

    def display_plan(
        self,
        formulary_id: str,
        state: str | None = None,
        plan_id: str | None = None,
    ) -> PlanRecord | None:
        """First plan of *formulary_id* that agrees with the active plan filters.

        *state* is compared upper-cased. A *plan_id* naming the formulary
        itself accepts any of its plans.
        """
        for plan in self.plans_by_formulary.get(formulary_id, ()):
            if state is not None and plan.state.strip().upper() != state:
                continue
            if plan_id is not None and plan_id != formulary_id and plan.plan_id != plan_id:
                continue
            return plan
        return self.plan_for(formulary_id)


# ---------------------------------------------------------------------------
# Queries and results
# ---------------------------------------------------------------------------


class FormularyQuery(BaseModel):
    """Parameters of ``search_formulary``.

    ``None`` means "no filter" for every field; in particular a UM flag
    of ``False`` filters for rows where the restriction is absent.
    """

    drug_name: str | None = Field(None, description="Free-text drug name, resolved via RxNorm")
    ndc_code: str | None = Field(None, description="Exact 11-digit NDC")
    tier: int | None = Field(None, description="Formulary tier (1-6)")
    requires_prior_auth: bool | None = None
    has_quantity_limit: bool | None = None
    has_step_therapy: bool | None = None
    plan_state: str | None = Field(None, description="Two-letter state of the plan")
    plan_id: str | None = Field(None, description="Plan ID or formulary ID")
    size: int | None = Field(None, description="Page size; <= 0 or missing uses the default")
    offset: int = Field(0, description="Number of matches to skip")

    def has_subject(self) -> bool:
        return bool(self.drug_name or self.ndc_code or self.plan_id)


class FormularyEntry(BaseModel):
    """A coverage row joined with its plan."""

    formulary_id: str
    plan_name: str = Field(..., description="Plan name, or 'Unknown' when no plan uses the formulary")
    state: str = Field(..., description="Plan state, or 'Unknown'")
    rxcui: str
    ndc: str
    tier: str = Field(..., description="Raw tier value from the file")
    tier_level: str = Field(..., description="Human-readable tier description")
    prior_authorization: bool
    quantity_limit: bool
    quantity_limit_amount: str = ""
    quantity_limit_days: str = ""
    step_therapy: bool


class DataSource(BaseModel):
    dataset: str = DATASET_LABEL
    month: str
    file_date: str


class FormularySearchResult(BaseModel):
    total: int = Field(..., description="Matches before pagination")
    offset: int
    limit: int
    drug_name_searched: str | None = None
    rxcuis_found: list[str] = Field(default_factory=list)
    message: str | None = None
    formulary_entries: list[FormularyEntry] = Field(default_factory=list)
    data_source: DataSource | None = None
