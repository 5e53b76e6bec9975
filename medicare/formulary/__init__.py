"""Local Medicare Part D formulary search engine."""

from __future__ import annotations

from medicare.formulary.exceptions import (
    FormularyError,
    FormularyFileNotFound,
    InvalidQuery,
    SourceUnavailable,
    UpstreamError,
)
from medicare.formulary.models import FormularyQuery, FormularySearchResult
from medicare.formulary.search import FormularySearchEngine, build_engine

__all__ = [
    "FormularyError",
    "FormularyFileNotFound",
    "FormularyQuery",
    "FormularySearchEngine",
    "FormularySearchResult",
    "InvalidQuery",
    "SourceUnavailable",
    "UpstreamError",
    "build_engine",
]
