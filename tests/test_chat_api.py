"""Tests for the chat endpoint, session cookie and health check."""

import json
from unittest.mock import AsyncMock
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from dashboard.api.main import app
from dashboard.api.middleware import parse_session_cookie
from dashboard.api.routers.chat import get_aggregator, get_relay
from scripts.crm.prompt_builder import MODEL_ACKNOWLEDGEMENT, SYSTEM_PROMPT
from scripts.lib.ai_provider import GeminiChatRelay
from scripts.lib.errors import RemoteFetchError

ADMIN_COOKIE = {"cookie": 'user={"id":42,"name":"Ana","role":"admin"}'}


@pytest.fixture
def aggregator(sample_analysis):
    fake = AsyncMock()
    fake.fetch_analysis = AsyncMock(return_value=sample_analysis)
    return fake


@pytest.fixture
def chat_client(aggregator, fake_gemini):
    def _make(**stream):
        gemini, models = fake_gemini(**stream)
        relay = GeminiChatRelay(SYSTEM_PROMPT, MODEL_ACKNOWLEDGEMENT, client=gemini)
        app.dependency_overrides[get_aggregator] = lambda: aggregator
        app.dependency_overrides[get_relay] = lambda: relay
        return TestClient(app), models

    yield _make
    app.dependency_overrides.clear()


def data_frames(body):
    return [line[len("data: "):] for line in body.split("\n") if line.startswith("data: ")]


class TestSessionCookie:
    def test_decodes_user(self):
        user = parse_session_cookie('{"id": 7, "name": "Bruno", "role": "vendedor"}')
        assert (user.id, user.name, user.is_admin) == (7, "Bruno", False)

    @pytest.mark.parametrize("raw", [None, "", "not json", "[1, 2]", '{"id": "abc"}'])
    def test_unreadable_cookie_is_anonymous(self, raw):
        user = parse_session_cookie(raw)
        assert (user.id, user.name, user.is_admin) == (0, "Usuário", False)

    def test_null_fields_use_defaults(self):
        user = parse_session_cookie('{"id": 3, "name": null}')
        assert (user.id, user.name) == (3, "Usuário")

    def test_percent_encoded_cookie(self):
        user = parse_session_cookie(quote('{"id":42,"name":"Ana Lúcia","role":"admin"}'))
        assert (user.id, user.name, user.is_admin) == (42, "Ana Lúcia", True)


class TestChatEndpoint:
    def test_first_turn_injects_context_and_streams(self, chat_client, aggregator):
        client, models = chat_client(chunks=["Você tem ", "2 leads."])
        response = client.post(
            "/api/gemini/chat",
            json={
                "message": "Quais leads priorizar?",
                "history": [],
                "filtro": {"dataInicio": "2024-01-01", "dataFim": "2024-03-31"},
            },
            headers=ADMIN_COOKIE,
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = data_frames(response.text)
        assert [json.loads(f)["text"] for f in frames[:-1]] == ["Você tem ", "2 leads."]
        assert frames[-1] == "[DONE]"

        date_range, user_id, is_admin = aggregator.fetch_analysis.call_args.args
        assert (str(date_range.data_inicio), str(date_range.data_fim)) == ("2024-01-01", "2024-03-31")
        assert (user_id, is_admin) == (42, True)

        contents = models.calls[0]["contents"]
        assert len(contents) == 3
        assert contents[0].parts[0].text == SYSTEM_PROMPT
        prompt = contents[-1].parts[0].text
        assert prompt.startswith("CONTEXTO DO SISTEMA (2024-01-01 a 2024-03-31):")
        assert "👤 Usuário: Ana" in prompt
        assert "- 2 leads no pipeline" in prompt
        assert prompt.endswith("PERGUNTA DO USUÁRIO:\nQuais leads priorizar?")

    def test_percent_encoded_cookie_keeps_admin_scope(self, chat_client, aggregator):
        client, _ = chat_client(chunks=["ok"])
        cookie = quote('{"id":42,"name":"Ana","role":"admin"}')
        response = client.post(
            "/api/gemini/chat", json={"message": "oi"}, headers={"cookie": f"user={cookie}"},
        )

        assert response.status_code == 200
        _, user_id, is_admin = aggregator.fetch_analysis.call_args.args
        assert (user_id, is_admin) == (42, True)

    def test_anonymous_caller_scoped_to_user_zero(self, chat_client, aggregator):
        client, _ = chat_client(chunks=["ok"])
        response = client.post("/api/gemini/chat", json={"message": "oi"})

        assert response.status_code == 200
        _, user_id, is_admin = aggregator.fetch_analysis.call_args.args
        assert (user_id, is_admin) == (0, False)

    def test_follow_up_turn_skips_context(self, chat_client, aggregator):
        client, models = chat_client(chunks=["Claro."])
        history = [
            {"role": "user", "content": "Quais leads?"},
            {"role": "assistant", "content": "Mercado Bom Preço."},
        ]
        response = client.post(
            "/api/gemini/chat",
            json={"message": "E atividades?", "history": history},
            headers=ADMIN_COOKIE,
        )

        assert response.status_code == 200
        aggregator.fetch_analysis.assert_not_called()
        contents = models.calls[0]["contents"]
        assert len(contents) == 2 + len(history) + 1
        assert [c.role for c in contents[2:]] == ["user", "model", "user"]
        assert contents[-1].parts[0].text == "E atividades?"

    def test_aggregation_failure_returns_500(self, chat_client, aggregator):
        aggregator.fetch_analysis.side_effect = RemoteFetchError("lead products failed")
        client, models = chat_client(chunks=["never"])
        response = client.post("/api/gemini/chat", json={"message": "oi"})

        assert response.status_code == 500
        assert response.json() == {"error": "Erro ao processar mensagem"}
        assert models.calls == []

    def test_model_open_failure_returns_500(self, chat_client):
        client, _ = chat_client(open_error=RuntimeError("invalid key"))
        response = client.post("/api/gemini/chat", json={"message": "oi", "history": [
            {"role": "user", "content": "a"}, {"role": "assistant", "content": "b"},
        ]})

        assert response.status_code == 500
        assert response.json() == {"error": "Erro ao processar mensagem"}

    def test_mid_stream_failure_sends_error_frame(self, chat_client):
        client, models = chat_client(chunks=["Olá"], error=RuntimeError("reset"))
        response = client.post("/api/gemini/chat", json={"message": "oi"})

        assert response.status_code == 200
        assert 'data: {"text": "Olá"}\n\n' in response.text
        assert 'event: error\ndata: {"error": "Erro ao processar mensagem"}\n\n' in response.text
        assert "[DONE]" not in response.text
        assert models.closed is True

    def test_reversed_date_filter_rejected(self, chat_client):
        client, _ = chat_client(chunks=["ok"])
        response = client.post("/api/gemini/chat", json={
            "message": "oi",
            "filtro": {"dataInicio": "2024-03-31", "dataFim": "2024-01-01"},
        })
        assert response.status_code == 422

    def test_missing_message_rejected(self, chat_client):
        client, _ = chat_client(chunks=["ok"])
        response = client.post("/api/gemini/chat", json={"history": []})
        assert response.status_code == 422


class TestHealth:
    def test_health_without_services(self):
        response = TestClient(app).get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert set(body["integrations"]) == {"sankhya", "redis", "gemini"}

    def test_health_reports_cache_and_sankhya(self, monkeypatch, result_cache):
        from integrations.sankhya import SankhyaClient

        monkeypatch.setattr(app.state, "sankhya", SankhyaClient(), raising=False)
        monkeypatch.setattr(app.state, "cache", result_cache, raising=False)
        body = TestClient(app).get("/api/health").json()

        assert body["integrations"]["redis"] is True
        assert body["integrations"]["sankhya"]["name"] == "Sankhya"
