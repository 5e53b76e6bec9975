"""Tests for the formulary MCP server tools."""

from __future__ import annotations

from unittest.mock import patch

import pytest

mcp_sdk = pytest.importorskip("mcp", reason="mcp package not installed")

from medicare.mcp.server import (  # noqa: E402
    get_drug_coverage,
    get_plan_formulary,
    mcp,
    search_formulary,
)

_PATCH_ENGINE = "medicare.mcp.server._engine"


@pytest.mark.asyncio
async def test_search_formulary_returns_dict(sample_engine):
    with patch(_PATCH_ENGINE, sample_engine):
        result = await search_formulary(drug_name="metformin", plan_state="TX")

    assert isinstance(result, dict)
    assert result["total"] == 1
    assert result["formulary_entries"][0]["plan_name"] == "Beta Rx Plan"
    assert result["data_source"]["month"] == "2025-11"


@pytest.mark.asyncio
async def test_search_formulary_short_circuit(make_engine, sample_release_dir):
    engine = make_engine(sample_release_dir, rxcuis=[])
    with patch(_PATCH_ENGINE, engine):
        result = await search_formulary(drug_name="notadrug")

    assert result["total"] == 0
    assert result["message"] == "No RXCUI codes found for drug name: notadrug"


@pytest.mark.asyncio
async def test_search_formulary_requires_subject(sample_engine):
    from medicare.formulary.exceptions import InvalidQuery

    with patch(_PATCH_ENGINE, sample_engine), pytest.raises(InvalidQuery):
        await search_formulary(tier=1)


@pytest.mark.asyncio
async def test_get_drug_coverage_default_page(sample_engine):
    with patch(_PATCH_ENGINE, sample_engine):
        result = await get_drug_coverage(drug_name="metformin")

    assert result["limit"] == 100
    assert result["total"] == 4


@pytest.mark.asyncio
async def test_get_plan_formulary(sample_engine):
    with patch(_PATCH_ENGINE, sample_engine):
        result = await get_plan_formulary(plan_id="F2", tier=3)

    assert [e["ndc"] for e in result["formulary_entries"]] == ["000111"]


@pytest.mark.asyncio
async def test_engine_built_once_and_shared(sample_engine):
    with patch(_PATCH_ENGINE, None), patch(
        "medicare.mcp.server.build_engine", return_value=sample_engine
    ) as mock_build:
        first = await get_plan_formulary(plan_id="F1")
        second = await get_drug_coverage(drug_name="metformin")

    mock_build.assert_called_once_with()
    assert first["total"] == 4
    assert second["total"] == 4
    assert sample_engine.loader.await_count == 1


@pytest.mark.asyncio
async def test_tools_registered():
    names = {tool.name for tool in await mcp.list_tools()}
    assert names == {"search_formulary", "get_drug_coverage", "get_plan_formulary"}
