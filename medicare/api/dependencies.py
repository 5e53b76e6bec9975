"""FastAPI dependencies."""

from __future__ import annotations

from medicare.formulary.search import FormularySearchEngine, build_engine

_engine: FormularySearchEngine | None = None


def get_engine() -> FormularySearchEngine:
    """Process-wide search engine, built on first use."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        _engine = build_engine()
    return _engine
