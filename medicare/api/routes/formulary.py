"""Formulary search endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from medicare.api.dependencies import get_engine
from medicare.api.schemas import ErrorResponse, MedicareInfoRequest
from medicare.formulary.models import FormularyQuery, FormularySearchResult
from medicare.formulary.search import FormularySearchEngine

router = APIRouter(tags=["formulary"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "No drug or plan to search for"},
    422: {"model": ErrorResponse, "description": "Validation error"},
    500: {"model": ErrorResponse, "description": "Release is missing a reference file"},
    502: {"model": ErrorResponse, "description": "RxNorm lookup failed"},
    503: {"model": ErrorResponse, "description": "No formulary release available"},
}


@router.get(
    "/v1/formulary",
    summary="Search Medicare Part D formularies",
    description=(
        "Search the latest monthly CMS formulary release. At least one of "
        "`drug_name`, `ndc_code` or `plan_id` is required. Drug names are "
        "resolved to RxCUIs via RxNorm; a name RxNorm does not know returns "
        "`total = 0` with a message rather than an error.\n\n"
        "All filters are combined with AND. Omitting a utilization-management "
        "flag disables that filter; passing `false` keeps only rows without "
        "the restriction. Results keep the file order and are paginated via "
        "`offset` and `size`; `total` counts every match."
    ),
    response_model=FormularySearchResult,
    responses=_ERRORS,
)
async def search_formulary(
    drug_name: str | None = Query(None, description="Drug name, e.g. 'metformin'"),
    ndc_code: str | None = Query(None, description="Exact NDC, e.g. '00002143380'"),
    tier: int | None = Query(None, ge=1, description="Tier number (1-6)"),
    requires_prior_auth: bool | None = Query(None),
    has_quantity_limit: bool | None = Query(None),
    has_step_therapy: bool | None = Query(None),
    plan_state: str | None = Query(None, description="Two-letter state, e.g. 'CA'"),
    plan_id: str | None = Query(None, description="Plan ID or formulary ID"),
    size: int | None = Query(None, description="Page size (default 25)"),
    offset: int = Query(0, ge=0, description="Number of matches to skip"),
    engine: FormularySearchEngine = Depends(get_engine),
):
    query = FormularyQuery(
        drug_name=drug_name,
        ndc_code=ndc_code,
        tier=tier,
        requires_prior_auth=requires_prior_auth,
        has_quantity_limit=has_quantity_limit,
        has_step_therapy=has_step_therapy,
        plan_state=plan_state,
        plan_id=plan_id,
        size=size,
        offset=offset,
    )
    return await engine.search(query)


@router.get(
    "/v1/formulary/coverage",
    summary="Coverage of one drug across all plans",
    response_model=FormularySearchResult,
    responses=_ERRORS,
)
async def drug_coverage(
    drug_name: str = Query(..., description="Drug name resolved via RxNorm"),
    size: int | None = Query(None, description="Page size (default 100)"),
    offset: int = Query(0, ge=0),
    engine: FormularySearchEngine = Depends(get_engine),
):
    return await engine.get_drug_coverage(drug_name, size=size, offset=offset)


@router.get(
    "/v1/formulary/plans/{plan_id}",
    summary="Formulary of one plan",
    response_model=FormularySearchResult,
    responses=_ERRORS,
)
async def plan_formulary(
    plan_id: str,
    tier: int | None = Query(None, ge=1),
    size: int | None = Query(None, description="Page size (default 100)"),
    offset: int = Query(0, ge=0),
    engine: FormularySearchEngine = Depends(get_engine),
):
    return await engine.get_plan_formulary(plan_id, tier=tier, size=size, offset=offset)


@router.post(
    "/medicare_info",
    summary="Tool dispatcher",
    description="Run a tool method from a JSON body (`{\"method\": \"search_formulary\", ...}`).",
    response_model=FormularySearchResult,
    responses=_ERRORS,
)
async def medicare_info(
    body: MedicareInfoRequest,
    engine: FormularySearchEngine = Depends(get_engine),
):
    return await engine.search(body.to_query())
