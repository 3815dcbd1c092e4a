"""Tests for the Gemini chat relay."""

import os
from unittest.mock import patch

import pytest

from models.chat_models import ChatTurn
from scripts.lib.ai_provider import GeminiChatRelay
from scripts.lib.errors import ConfigError, StreamError


def make_relay(client=None, **kwargs):
    return GeminiChatRelay("PREAMBULO", "ENTENDIDO", client=client, **kwargs)


async def collect(stream):
    return [text async for text in stream]


class TestBuildContents:
    def test_first_turn_has_preamble_ack_and_message(self):
        contents = make_relay().build_contents([], "Olá")
        assert [c.role for c in contents] == ["user", "model", "user"]
        assert [c.parts[0].text for c in contents] == ["PREAMBULO", "ENTENDIDO", "Olá"]

    def test_history_roles_mapped(self):
        history = [
            ChatTurn(role="user", content="q1"),
            ChatTurn(role="assistant", content="a1"),
            ChatTurn(role="system", content="odd"),
        ]
        contents = make_relay().build_contents(history, "q2")

        assert len(contents) == 2 + len(history) + 1
        assert [c.role for c in contents[2:]] == ["user", "model", "user", "user"]
        assert contents[-1].parts[0].text == "q2"


class TestClient:
    def test_missing_api_key_raises_config_error(self):
        with patch.dict("os.environ", {"GEMINI_API_KEY": ""}, clear=False):
            with pytest.raises(ConfigError):
                make_relay().client

    def test_model_from_env(self):
        with patch.dict("os.environ", {"GEMINI_MODEL": "gemini-test"}, clear=False):
            assert make_relay().model == "gemini-test"

    def test_client_built_with_timeout(self):
        with patch.dict("os.environ", {"GEMINI_API_KEY": "key"}, clear=False):
            with patch("scripts.lib.ai_provider.genai.Client") as client_cls:
                make_relay(timeout=30).client

        kwargs = client_cls.call_args.kwargs
        assert kwargs["api_key"] == "key"
        assert kwargs["http_options"].timeout == 30000

    def test_timeout_from_env(self):
        with patch.dict("os.environ", {"GEMINI_TIMEOUT": "12.5"}, clear=False):
            assert make_relay().timeout == 12.5

    def test_default_timeout(self):
        with patch.dict("os.environ", {}, clear=False):
            os.environ.pop("GEMINI_TIMEOUT", None)
            assert make_relay().timeout == 30.0


class TestOpenStream:
    @pytest.mark.asyncio
    async def test_yields_increments_in_order(self, fake_gemini):
        client, models = fake_gemini(chunks=["Olá", "", " mundo"])
        stream = await make_relay(client, model="gemini-2.5-flash").open_stream([], "oi")

        assert await collect(stream) == ["Olá", " mundo"]
        assert models.closed is True

    @pytest.mark.asyncio
    async def test_sends_generation_config(self, fake_gemini):
        client, models = fake_gemini(chunks=["ok"])
        stream = await make_relay(client, model="gemini-2.5-flash").open_stream([], "oi")
        await collect(stream)

        call = models.calls[0]
        assert call["model"] == "gemini-2.5-flash"
        assert call["config"].temperature == 0.7
        assert call["config"].max_output_tokens == 1500
        assert len(call["contents"]) == 3

    @pytest.mark.asyncio
    async def test_open_failure_propagates(self, fake_gemini):
        client, _ = fake_gemini(open_error=RuntimeError("quota exceeded"))
        with pytest.raises(RuntimeError):
            await make_relay(client).open_stream([], "oi")

    @pytest.mark.asyncio
    async def test_mid_stream_failure_raises_stream_error(self, fake_gemini):
        client, models = fake_gemini(chunks=["parcial"], error=RuntimeError("connection reset"))
        stream = await make_relay(client).open_stream([], "oi")

        received = []
        with pytest.raises(StreamError) as exc:
            async for text in stream:
                received.append(text)

        assert received == ["parcial"]
        assert exc.value.details["chunks_sent"] == 1
        assert models.closed is True
