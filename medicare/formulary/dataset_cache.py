"""Time-bounded holder for the currently loaded formulary dataset."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from medicare.formulary.models import FormularyDataset
from medicare.services.metrics import metrics

logger = logging.getLogger(__name__)

DatasetLoader = Callable[[], Awaitable[FormularyDataset]]


class DatasetCache:
    """Holds one :class:`FormularyDataset` for ``ttl`` seconds.

    The dataset is only ever replaced after a successful load; a failed
    reload propagates and leaves the previous dataset in place.  While a
    reload is in flight, other callers get the stale dataset if there is
    one instead of waiting.
    """

    def __init__(self, loader: DatasetLoader, ttl: int = 3600):
        self._loader = loader
        self._ttl = ttl
        self._dataset: FormularyDataset | None = None
        self._loaded_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def current(self) -> FormularyDataset | None:
        return self._dataset

    @property
    def ttl(self) -> int:
        return self._ttl

    def _is_fresh(self) -> bool:
        return self._dataset is not None and time.monotonic() - self._loaded_at < self._ttl

    async def get(self) -> FormularyDataset:
        if self._is_fresh():
            metrics.inc_dataset_hit()
            return self._dataset

        if self._lock.locked() and self._dataset is not None:
            metrics.inc_dataset_hit()
            return self._dataset

        async with self._lock:
            # Another caller may have finished a reload while we waited
            if self._is_fresh():
                metrics.inc_dataset_hit()
                return self._dataset

            metrics.inc_dataset_miss()
            try:
                dataset = await self._loader()
            except Exception:
                metrics.inc_dataset_reload_failure()
                if self._dataset is not None:
                    logger.warning(
                        "Formulary reload failed; keeping dataset for %s", self._dataset.month
                    )
                raise

            self._dataset = dataset
            self._loaded_at = time.monotonic()
            logger.info("Loaded formulary dataset for %s", dataset.month)
            return dataset

    def invalidate(self) -> None:
        """Force a reload on the next :meth:`get`; the old dataset stays until it succeeds."""
        self._loaded_at = float("-inf")

    def invalidate_after(self, ttl: int) -> None:
        self._ttl = ttl
