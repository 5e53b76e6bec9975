"""Resolve free-text drug names to RxCUIs through the NLM RxNav API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from medicare.config import settings
from medicare.formulary.exceptions import UpstreamError
from medicare.services.metrics import metrics

logger = logging.getLogger(__name__)


def first_concept_rxcuis(payload: Any) -> list[str]:
    """RxCUIs of the first concept group that has any concept properties."""
    if not isinstance(payload, dict):
        return []
    groups = (payload.get("drugGroup") or {}).get("conceptGroup") or []
    for group in groups:
        properties = group.get("conceptProperties") if isinstance(group, dict) else None
        if properties:
            return [str(prop["rxcui"]) for prop in properties if prop.get("rxcui")]
    return []


class RxNormClient:
    """Async client for ``/REST/drugs.json``.

    An unknown drug name is a normal outcome and yields ``[]``; only a
    failure to ask (network, HTTP status, unparseable body) raises
    :class:`UpstreamError`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.rxnav_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout
        self._transport = _transport

    async def resolve(self, drug_name: str) -> list[str]:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                resp = await client.get(f"{self.base_url}/drugs.json", params={"name": drug_name})
                resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            metrics.inc_rxnorm("failure")
            raise UpstreamError(f"RxNorm API error: {exc}") from exc
        except ValueError as exc:
            metrics.inc_rxnorm("failure")
            raise UpstreamError("RxNorm API error: response was not valid JSON") from exc

        try:
            rxcuis = first_concept_rxcuis(payload)
        except (AttributeError, TypeError, KeyError) as exc:
            metrics.inc_rxnorm("failure")
            raise UpstreamError("RxNorm API error: unexpected response shape") from exc
        metrics.inc_rxnorm("ok" if rxcuis else "empty")
        logger.info("Resolved %r to %d RxCUIs", drug_name, len(rxcuis))
        return rxcuis
