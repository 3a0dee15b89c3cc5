from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.deps import get_import_service, get_orchestrator
from .api.v1 import router as api_router
from .core.db import init_db
from .core.logging import configure_logging
from .core.settings import get_settings
from .jobs.scheduler import SchedulerManager


settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    orchestrator = get_orchestrator()
    scheduler_manager = SchedulerManager(orchestrator, imports=get_import_service())
    scheduler_manager.start()
    try:
        yield
    finally:
        scheduler_manager.shutdown()
        orchestrator.shutdown()


app = FastAPI(title=settings.app_name, docs_url="/docs", redoc_url="/redoc", lifespan=lifespan)

def _parse_env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_env_csv(key: str) -> list[str]:
    raw = os.getenv(key, "")
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


# CORS:
# - Without `CORS_ALLOW_ORIGINS` only the local frontend dev server is allowed.
# - In prod, set `CORS_ALLOW_ORIGINS` (comma-separated), e.g.
#   "https://faq.example.com,https://admin.faq.example.com"
origins = _parse_env_csv("CORS_ALLOW_ORIGINS") or [
    "http://127.0.0.1:5173",
    "http://localhost:5173",
]
origin_regex = os.getenv("CORS_ALLOW_ORIGIN_REGEX") or None
allow_credentials = _parse_env_bool("CORS_ALLOW_CREDENTIALS", default=True)

logger.info(
    "CORS config: allow_origins=%s allow_origin_regex=%s allow_credentials=%s",
    origins,
    origin_regex,
    allow_credentials,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_origin_regex=origin_regex,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health", tags=["system"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}
