"""Pydantic request/response models for OpenAPI documentation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from medicare.formulary.models import FormularyQuery


class ErrorResponse(BaseModel):
    """Structured error returned by all non-2xx responses."""

    error: bool = Field(True, description="Always true for error responses")
    status_code: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Human-readable error message")


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------


class DatasetHealth(BaseModel):
    """The formulary release currently held in memory."""

    loaded: bool = Field(..., description="Whether a release has been loaded yet")
    month: str | None = Field(None, description="Release month (YYYY-MM)")
    file_date: str | None = Field(None, description="CMS file date of the release")
    source: str | None = Field(
        None, description="Where the release came from: 'configured', 'remote' or 'cache'"
    )
    formularies: int | None = Field(None, description="Formulary IDs with a known plan")
    ttl_seconds: int = Field(..., description="How long a loaded release is reused")
    hit_rate: float = Field(..., description="Dataset cache hit rate (0.0-1.0)")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Always 'ok' when the process is serving")
    dataset: DatasetHealth
    uptime_seconds: float = Field(..., description="Seconds since the process started")


# ---------------------------------------------------------------------------
# POST /medicare_info
# ---------------------------------------------------------------------------


class MedicareInfoRequest(FormularyQuery):
    """Tool-dispatcher body: ``method`` plus the method's parameters.

    ``formulary_drug_name`` is accepted as an alias of ``drug_name``.
    """

    model_config = ConfigDict(extra="ignore")

    method: Literal["search_formulary"] = Field(
        ..., description="Tool method to run; only 'search_formulary' is served here"
    )
    formulary_drug_name: str | None = Field(None, description="Alias of drug_name")

    @model_validator(mode="after")
    def _apply_alias(self) -> MedicareInfoRequest:
        if self.formulary_drug_name and not self.drug_name:
            self.drug_name = self.formulary_drug_name
        return self

    def to_query(self) -> FormularyQuery:
        return FormularyQuery.model_validate(
            self.model_dump(exclude={"method", "formulary_drug_name"})
        )
