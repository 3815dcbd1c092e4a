"""
Sales Assistant — Gemini Chat Router
======================================
Streaming chat over the caller's CRM data.

Endpoints:
  POST /api/gemini/chat   - Stream a reply as Server-Sent Events

Frames:
  data: {"text": "<increment>"}    one per model increment
  data: [DONE]                     end of reply
  event: error / data: {"error"}   model stream failed mid-reply (no [DONE])

On the first turn (empty history) the CRM snapshot for the caller and date
range is fetched and prepended to the message. Later turns send the history
as-is.
"""
from __future__ import annotations

import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from models.chat_models import ChatRequest, SessionUser
from dashboard.api.middleware import current_user
from scripts.crm.analysis_service import AnalysisAggregator
from scripts.crm.prompt_builder import build_context_prompt
from scripts.lib.ai_provider import GeminiChatRelay
from scripts.lib.errors import StreamError
from scripts.lib.logger import setup_logger

logger = setup_logger("chat_router")

router = APIRouter(prefix="/api/gemini", tags=["chat"])

ERROR_MESSAGE = "Erro ao processar mensagem"
DONE_FRAME = "data: [DONE]\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def get_aggregator(request: Request) -> AnalysisAggregator:
    return request.app.state.aggregator


def get_relay(request: Request) -> GeminiChatRelay:
    return request.app.state.relay


def sse_frame(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def event_stream(stream: AsyncIterator[str]) -> AsyncIterator[str]:
    """Forward each increment as its own frame; close the model stream on exit."""
    try:
        async for text in stream:
            yield sse_frame({"text": text})
    except StreamError:
        yield "event: error\n" + sse_frame({"error": ERROR_MESSAGE})
        return
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    yield DONE_FRAME


@router.post("/chat")
async def chat(
    req: ChatRequest,
    user: SessionUser = Depends(current_user),
    aggregator: AnalysisAggregator = Depends(get_aggregator),
    relay: GeminiChatRelay = Depends(get_relay),
):
    """Stream a Gemini reply, injecting CRM context on the first turn."""
    try:
        message = req.message
        if not req.history:
            date_range = req.resolve_range()
            logger.info(
                "First turn — loading CRM context for user %s (%s to %s)",
                user.id, date_range.data_inicio, date_range.data_fim,
            )
            analysis = await aggregator.fetch_analysis(date_range, user.id, user.is_admin)
            message = build_context_prompt(analysis, user.name, req.message)
        else:
            logger.info("Follow-up turn — using existing history (%d turns)", len(req.history))

        stream = await relay.open_stream(req.history, message)
    except Exception as e:
        logger.error("Gemini chat failed: %s", e, exc_info=True)
        return JSONResponse(status_code=500, content={"error": ERROR_MESSAGE})

    return StreamingResponse(
        event_stream(stream),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
