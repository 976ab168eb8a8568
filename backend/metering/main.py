from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from metering.core.config import settings
from metering.core.database import init_db
from metering.routers import billable_metrics, events, usage

OPENAPI_TAGS = [
    {"name": "Billable Metrics", "description": "Declare the metrics events are metered against."},
    {"name": "Events", "description": "Ingest and query usage events."},
    {"name": "Usage", "description": "Aggregate usage and match charge filters."},
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Usage metering API. Ingest raw usage events and aggregate them into "
        "billable quantities per subscription, metric, billing period, "
        "charge filter and group."
    ),
    openapi_tags=OPENAPI_TAGS,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    billable_metrics.router, prefix="/v1/billable_metrics", tags=["Billable Metrics"]
)
app.include_router(events.router, prefix="/v1/events", tags=["Events"])
app.include_router(usage.router, prefix="/v1/usage", tags=["Usage"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
