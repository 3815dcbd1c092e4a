"""
Sankhya Sales Assistant — API Server
======================================

Chat backend for the Sankhya CRM dashboard. Replies are streamed from Gemini;
the first turn of each conversation carries a snapshot of the caller's CRM
data (leads, activities, funnels, orders) fetched from Sankhya and cached in
Redis.

Route groups:
  /api/health              - Health check
  /api/gemini/chat         - Streaming chat (Server-Sent Events)
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.api.middleware import SessionCookieMiddleware
from dashboard.api.routers.chat import router as chat_router
from integrations.sankhya import SankhyaClient
from scripts.crm.analysis_service import AnalysisAggregator
from scripts.crm.prompt_builder import MODEL_ACKNOWLEDGEMENT, SYSTEM_PROMPT
from scripts.crm.result_cache import ResultCache
from scripts.lib.ai_provider import GeminiChatRelay

load_dotenv()

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ─── Lifespan ─────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app):
    """Application startup and shutdown."""
    logger.info("Starting Sankhya Sales Assistant...")

    app.state.sankhya = SankhyaClient()
    status = "configured" if app.state.sankhya.is_configured else "not configured"
    logger.info("Sankhya integration: %s", status)

    app.state.cache = ResultCache.from_url()
    if await app.state.cache.ping():
        logger.info("Redis result cache connected")
    else:
        logger.warning("Redis result cache not reachable — analysis fetches will fail to cache")

    app.state.aggregator = AnalysisAggregator(app.state.sankhya, app.state.cache)
    app.state.relay = GeminiChatRelay(SYSTEM_PROMPT, MODEL_ACKNOWLEDGEMENT)

    logger.info("Sankhya Sales Assistant ready")
    yield
    logger.info("Shutting down Sankhya Sales Assistant...")
    await app.state.cache.close()


# ─── App Setup ────────────────────────────────────────────────

cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app = FastAPI(
    title="Sankhya Sales Assistant",
    version=VERSION,
    description="Gemini sales assistant over Sankhya CRM data",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SessionCookieMiddleware)


# ─── Include Routers ──────────────────────────────────────────

app.include_router(chat_router)


# ─── Health ───────────────────────────────────────────────────

@app.get("/api/health", tags=["system"])
async def health():
    """Health check with service status."""
    sankhya = getattr(app.state, "sankhya", None)
    cache = getattr(app.state, "cache", None)

    return {
        "status": "healthy",
        "service": "Sankhya Sales Assistant",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {
            "sankhya": sankhya.get_status() if sankhya else None,
            "redis": await cache.ping() if cache else False,
            "gemini": bool(os.getenv("GEMINI_API_KEY")),
        },
    }
