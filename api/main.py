"""Taskflow API — FastAPI entry point.

Registers middleware, the board router and lifecycle hooks.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.deps import reset_board
from api.middleware import OrgMiddleware
from api.router import router as board_router
from board.database import close_db
from board.observability import setup_logging, setup_otel

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    setup_logging(LOG_LEVEL, json_console=os.getenv("LOG_JSON", "false").lower() == "true")
    setup_otel("taskflow-api")
    logger.info("Taskflow API started")
    yield
    reset_board()
    close_db()
    logger.info("Taskflow API shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Taskflow",
    description="Task lifecycle and collaboration engine for multi-stage project boards",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Organization scoping
app.add_middleware(OrgMiddleware)

app.include_router(board_router, prefix="/api/board", tags=["Board"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    return {
        "name": "Taskflow",
        "version": VERSION,
        "docs": "/docs",
        "description": "Task lifecycle and collaboration engine",
    }
