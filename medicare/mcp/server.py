"""FastMCP server wrapping the formulary search engine as tools for agents."""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from medicare.formulary.models import FormularyQuery
from medicare.formulary.search import FormularySearchEngine, build_engine


_engine: FormularySearchEngine | None = None


mcp = FastMCP(
    name="Medicare Formulary",
    instructions=(
        "Searches Medicare Part D plan formularies from the latest monthly "
        "CMS release. Use search_formulary to check whether plans cover a "
        "drug, at which tier, and with which restrictions (prior "
        "authorization, quantity limits, step therapy). A total of 0 with a "
        "message means the drug name was not recognised by RxNorm; try a "
        "generic or brand name. Use get_drug_coverage for a wide view of one "
        "drug and get_plan_formulary to page through one plan's formulary."
    ),
)


def _get_engine() -> FormularySearchEngine:
    """Process-wide search engine, built on first tool call and shared by every session."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = build_engine()
    return _engine


@mcp.tool()
async def search_formulary(
    drug_name: str | None = None,
    ndc_code: str | None = None,
    tier: int | None = None,
    requires_prior_auth: bool | None = None,
    has_quantity_limit: bool | None = None,
    has_step_therapy: bool | None = None,
    plan_state: str | None = None,
    plan_id: str | None = None,
    size: int | None = None,
    offset: int = 0,
) -> dict[str, Any]:
    """Search Medicare Part D formulary coverage.

    At least one of drug_name, ndc_code or plan_id is required. All other
    arguments narrow the result; leave a restriction flag unset to ignore
    it, set it to false to keep only rows WITHOUT that restriction.

    Args:
        drug_name: Drug name (e.g. "metformin", "Eliquis"). Resolved to
                   RxNorm concepts, so brand and generic names both work.
        ndc_code: Exact 11-digit National Drug Code (e.g. "00002143380").
        tier: Tier number. 1=Preferred Generic, 2=Generic, 3=Preferred
              Brand, 4=Non-Preferred Brand, 5=Specialty, 6=Select Care.
        requires_prior_auth: Filter on the prior authorization flag.
        has_quantity_limit: Filter on the quantity limit flag.
        has_step_therapy: Filter on the step therapy flag.
        plan_state: Two-letter state of the plan (e.g. "CA").
        plan_id: Plan ID or formulary ID.
        size: Results per page (default 25).
        offset: Number of matches to skip.

    Returns:
        Dict with total (all matches), offset, limit, rxcuis_found,
        formulary_entries (plan name, state, tier, tier_level and the
        restriction flags for each match) and data_source (release month
        and file date).
    """
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
    result = await _get_engine().search(query)
    return result.model_dump()


@mcp.tool()
async def get_drug_coverage(
    drug_name: str,
    size: int | None = None,
    offset: int = 0,
) -> dict[str, Any]:
    """Show how every plan covers one drug.

    Same output as search_formulary, with a default page of 100 entries.

    Args:
        drug_name: Drug name resolved via RxNorm.
        size: Results per page (default 100).
        offset: Number of matches to skip.
    """
    result = await _get_engine().get_drug_coverage(drug_name, size=size, offset=offset)
    return result.model_dump()


@mcp.tool()
async def get_plan_formulary(
    plan_id: str,
    tier: int | None = None,
    size: int | None = None,
    offset: int = 0,
) -> dict[str, Any]:
    """List the drugs on one plan's formulary, optionally for one tier.

    Args:
        plan_id: Plan ID or formulary ID.
        tier: Optional tier number (1-6).
        size: Results per page (default 100).
        offset: Number of matches to skip.
    """
    result = await _get_engine().get_plan_formulary(
        plan_id, tier=tier, size=size, offset=offset,
    )
    return result.model_dump()
