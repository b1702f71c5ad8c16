"""Main FastAPI application"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ideascan import models  # noqa: F401  registers tables on Base.metadata
from ideascan.config import settings
from ideascan.database import Base, engine
from ideascan.routes import scans, subreddits

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info(f"Starting {settings.APP_NAME}...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Subreddit scanning pipeline: fetch, classify, extract ideas",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.include_router(scans.router)
app.include_router(subreddits.router)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.APP_VERSION}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ideascan.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
