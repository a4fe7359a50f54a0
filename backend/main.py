import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from api.checks import router as checks_router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("TagPulse ready (headless=%s).", settings.headless)
    yield
    logger.info("Shutting down.")


app = FastAPI(
    title="TagPulse",
    description="Analytics tracking health checks",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS (configurable via CORS_ORIGINS env var)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(checks_router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "service": "tagpulse",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
