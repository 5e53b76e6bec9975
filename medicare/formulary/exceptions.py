"""Exception hierarchy for the formulary search engine."""

from __future__ import annotations


class FormularyError(Exception):
    """Base exception for all formulary search failures.

    ``status_code`` is the HTTP status the API layer reports for it.
    """

    status_code: int = 500

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class InvalidQuery(FormularyError):
    """Raised when a search names no drug or plan to look for."""

    status_code = 400


class SourceUnavailable(FormularyError):
    """Raised when no formulary release can be obtained.

    Either the CMS catalog or archive download failed, or every release
    strategy (including the on-disk cache) came up empty.
    """

    status_code = 503


class UpstreamError(FormularyError):
    """Raised when the RxNorm vocabulary service could not be queried."""

    status_code = 502


class FormularyFileNotFound(FormularyError):
    """Raised when an extracted release lacks exactly one plan or coverage file."""

    status_code = 500
