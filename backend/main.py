"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import jobs, sync
from database import init_db
from logging_config import setup_logging
from services import job_runner

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; drain background jobs on shutdown."""
    init_db()
    yield
    job_runner.shutdown(wait=True)


app = FastAPI(
    title="LedgerSync",
    description="Multi-account transaction and holdings synchronization",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(sync.router)
app.include_router(jobs.router)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
