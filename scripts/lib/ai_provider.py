"""
Sales Assistant — Gemini Chat Relay
=====================================

Streams a Gemini reply for one conversation turn. The turn list sent to the
model is always:

    [system preamble (user), acknowledgement (model), *history, current turn]

History roles are mapped for Gemini: "assistant" -> "model", anything else
-> "user".

Usage:
    from scripts.lib.ai_provider import GeminiChatRelay

    relay = GeminiChatRelay(system_prompt=SYSTEM_PROMPT, acknowledgement=ACK)
    stream = await relay.open_stream(history, message)
    async for text in stream:
        print(text, end="")
"""
from __future__ import annotations

import os
import time
from typing import Any, AsyncIterator, List, Optional, Sequence

from google import genai
from google.genai import types

from models.chat_models import ChatTurn
from scripts.lib.errors import ConfigError, StreamError
from scripts.lib.logger import setup_logger

logger = setup_logger("ai_provider")


# ─── Provider Config ────────────────────────────────────────

GEMINI_MODEL = "gemini-2.5-flash"

DEFAULT_MAX_TOKENS = 1500
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT = 30  # seconds


def _content(role: str, text: str) -> types.Content:
    return types.Content(role=role, parts=[types.Part(text=text)])


class GeminiChatRelay:
    """Relays one chat turn to Gemini and yields text increments as they arrive."""

    def __init__(
        self,
        system_prompt: str,
        acknowledgement: str,
        *,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        timeout: Optional[float] = None,
    ):
        self.system_prompt = system_prompt
        self.acknowledgement = acknowledgement
        self.model = model or os.getenv("GEMINI_MODEL", GEMINI_MODEL)
        self.max_tokens = max_tokens
        self.temperature = temperature
        if timeout is None:
            timeout = float(os.getenv("GEMINI_TIMEOUT") or DEFAULT_TIMEOUT)
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            api_key = os.getenv("GEMINI_API_KEY")
            if not api_key:
                raise ConfigError("GEMINI_API_KEY not set", setting="GEMINI_API_KEY")
            # HttpOptions.timeout is in milliseconds
            self._client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return self._client

    def build_contents(self, history: Sequence[ChatTurn], message: str) -> List[types.Content]:
        contents = [
            _content("user", self.system_prompt),
            _content("model", self.acknowledgement),
        ]
        for turn in history:
            role = "model" if turn.role == "assistant" else "user"
            contents.append(_content(role, turn.content))
        contents.append(_content("user", message))
        return contents

    async def open_stream(self, history: Sequence[ChatTurn], message: str) -> AsyncIterator[str]:
        """
        Open the streaming call and return an iterator of text increments.

        Errors raised while opening propagate as-is; errors raised while
        iterating are wrapped in StreamError.
        """
        contents = self.build_contents(history, message)
        config = types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
        )
        start = time.perf_counter()
        response_stream = await self.client.aio.models.generate_content_stream(
            model=self.model,
            contents=contents,
            config=config,
        )
        logger.info("Gemini stream opened [%s] turns=%d", self.model, len(contents))
        return self._relay(response_stream, start)

    async def _relay(self, response_stream: AsyncIterator[Any], start: float) -> AsyncIterator[str]:
        chunks = 0
        try:
            async for chunk in response_stream:
                text = chunk.text
                if not text:
                    continue
                chunks += 1
                yield text
        except Exception as e:
            logger.error("Gemini stream failed after %d chunks: %s", chunks, e)
            raise StreamError(f"Model stream failed: {e}", chunks_sent=chunks) from e
        finally:
            aclose = getattr(response_stream, "aclose", None)
            if aclose is not None:
                await aclose()

        latency_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "AI [gemini/%s] chunks=%d latency=%dms", self.model, chunks, latency_ms,
        )
