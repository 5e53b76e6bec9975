from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from medicare import __version__
from medicare.api.dependencies import get_engine
from medicare.api.exception_handlers import (
    formulary_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from medicare.api.middleware import RequestLoggingMiddleware
from medicare.api.routes.formulary import router as formulary_router
from medicare.api.schemas import HealthResponse
from medicare.config import settings
from medicare.formulary.exceptions import FormularyError
from medicare.formulary.search import FormularySearchEngine
from medicare.logging_config import setup_logging
from medicare.services.metrics import metrics

logger = logging.getLogger("medicare")

_DESCRIPTION = """\
Medicare Part D formulary search over the monthly CMS public-use files.

Drug names are resolved to **RxNorm** concepts, then matched against the
**basic drugs formulary** file of the latest release and joined with the
**plan information** file for plan names and states.

### Data freshness

The latest release is discovered from the data.cms.gov catalog and cached
on disk for 30 days. When the catalog cannot be reached, the newest valid
cached release is used instead. A loaded release is kept in memory for an
hour.
"""

_OPENAPI_TAGS = [
    {
        "name": "system",
        "description": "Health checks and operational endpoints.",
    },
    {
        "name": "formulary",
        "description": (
            "Search plan formularies by drug, NDC, plan, state, tier and "
            "utilization-management restrictions."
        ),
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level, settings.log_format)
    logger.info("Formulary cache at %s", settings.formulary_cache_dir)
    yield


app = FastAPI(
    title="Medicare Formulary API",
    version=__version__,
    summary="Medicare Part D formulary search",
    description=_DESCRIPTION,
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_exception_handler(FormularyError, formulary_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

origins = [o.strip() for o in settings.cors_origins.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(formulary_router)


@app.get(
    "/health",
    tags=["system"],
    summary="Health check",
    description="Report the formulary release held in memory. Never triggers a load.",
    response_model=HealthResponse,
)
async def health(engine: FormularySearchEngine = Depends(get_engine)):
    cache = engine.dataset_cache
    dataset = cache.current
    return {
        "status": "ok",
        "dataset": {
            "loaded": dataset is not None,
            "month": dataset.month if dataset else None,
            "file_date": dataset.file_date if dataset else None,
            "source": dataset.source if dataset else None,
            "formularies": len(dataset.plans) if dataset else None,
            "ttl_seconds": cache.ttl,
            "hit_rate": metrics.dataset_hit_rate(),
        },
        "uptime_seconds": metrics.uptime_seconds(),
    }


@app.get(
    "/metrics",
    tags=["system"],
    summary="Application metrics",
    description="Request counters, latency percentiles, dataset cache, release "
    "source and RxNorm lookup statistics.",
)
async def get_metrics():
    return metrics.snapshot()
