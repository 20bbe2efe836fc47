"""
FastAPI application entry point.

Run with: uvicorn api.main:app --reload
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from backend/.env (optional) before other imports that read env
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(env_path)

from api.routes import discoveries
from db import init_db

logger = logging.getLogger(__name__)


# Create app
app = FastAPI(
    title="Walk Discoveries API",
    description="Discover, review and keep places found along completed walks",
    version="0.1.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(discoveries.router, tags=["discoveries"])


@app.on_event("startup")
def startup_event():
    """Initialize database tables and replay writes queued while the store was down."""
    init_db()
    synced = discoveries.get_store().flush_pending()
    if synced:
        logger.info("Startup: replayed %d queued discovery write(s)", synced)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Walk Discoveries API"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
