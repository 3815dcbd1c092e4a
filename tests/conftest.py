"""Shared fixtures: fake Redis, Sankhya wire-format builders, sample snapshot."""

import os

os.environ.setdefault("LOG_TO_FILE", "false")

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
import redis.asyncio as redis

from models.crm_models import (
    Activity,
    AggregatedAnalysis,
    DateRange,
    Funnel,
    Lead,
    LeadProduct,
    Order,
    Stage,
)
from scripts.crm.result_cache import ResultCache


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis with a manual clock."""

    def __init__(self):
        self.store = {}
        self.now = 0.0
        self.fail_reads = False
        self.fail_writes = False
        self.set_calls = []

    def advance(self, seconds: float):
        self.now += seconds

    async def get(self, key):
        if self.fail_reads:
            raise redis.ConnectionError("connection refused")
        item = self.store.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self.now >= expires_at:
            del self.store[key]
            return None
        return value

    async def set(self, key, value, ex=None):
        if self.fail_writes:
            raise redis.ConnectionError("connection refused")
        self.set_calls.append((key, ex))
        self.store[key] = (value, self.now + ex if ex else None)
        return True

    async def ping(self):
        return True

    async def aclose(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def result_cache(fake_redis):
    return ResultCache(fake_redis)


def columnar(fields, rows, unwrap_single=False):
    """Encode rows the way loadRecords does: metadata field list + f0..fN cells."""
    entities = []
    for row in rows:
        raw = {}
        for i, name in enumerate(fields):
            if name in row:
                raw[f"f{i}"] = {} if row[name] is None else {"$": row[name]}
        entities.append(raw)
    entity = entities[0] if unwrap_single and len(entities) == 1 else entities
    return {
        "total": str(len(rows)),
        "metadata": {"fields": {"field": [{"name": name} for name in fields]}},
        "entity": entity,
    }


def load_records_response(entities):
    return {
        "serviceName": "CRUDServiceProvider.loadRecords",
        "status": "1",
        "responseBody": {"entities": entities},
    }


@pytest.fixture
def make_entities():
    return columnar


@pytest.fixture
def make_response():
    def _make(fields, rows, unwrap_single=False):
        return load_records_response(columnar(fields, rows, unwrap_single))
    return _make


def build_sample_analysis():
    return AggregatedAnalysis(
        leads=[
            Lead(CODLEAD="1", NOME="Mercado Bom Preço", VALOR="25000.50",
                 CODESTAGIO="10", CODFUNIL="1", STATUS_LEAD="EM_ANDAMENTO"),
            Lead(CODLEAD="2", NOME="Padaria Central", VALOR="abc",
                 CODESTAGIO="99", CODFUNIL="7"),
        ],
        produtos_leads=[
            LeadProduct(CODITEM="1", CODLEAD="1", DESCRPROD="ERP Cloud", VLRTOTAL="1000"),
            LeadProduct(CODITEM="2", CODLEAD="1", DESCRPROD="Módulo Fiscal"),
        ],
        estagios_funis=[
            Stage(CODESTAGIO="11", CODFUNIL="1", NOME="Demo", ORDEM="2"),
            Stage(CODESTAGIO="10", CODFUNIL="1", NOME="Discovery", ORDEM="1"),
        ],
        funis=[Funnel(CODFUNIL="1", NOME="Vendas Diretas")],
        atividades=[
            Activity(CODATIVIDADE="5", CODLEAD="1", TIPO="LIGACAO",
                     DESCRICAO="Ligar para confirmar proposta|extra", STATUS="ATRASADO",
                     DATA_INICIO="15012024 14:30:00"),
        ],
        pedidos=[
            Order(NUNOTA="9001", CODPARC="300", NOMEPARC="Mercado Bom Preço",
                  DTNEG="20/02/2024", VLRNOTA="1500.00"),
        ],
        filtro=DateRange(data_inicio=date(2024, 1, 1), data_fim=date(2024, 3, 31)),
        timestamp=datetime(2024, 4, 1, 12, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def sample_analysis():
    return build_sample_analysis()


class FakeModels:
    """Stand-in for client.aio.models with a scripted stream."""

    def __init__(self, chunks=(), error=None, open_error=None):
        self.chunks = list(chunks)
        self.error = error
        self.open_error = open_error
        self.calls = []
        self.closed = False

    async def generate_content_stream(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.open_error:
            raise self.open_error
        return self._stream()

    async def _stream(self):
        try:
            for text in self.chunks:
                yield SimpleNamespace(text=text)
            if self.error:
                raise self.error
        finally:
            self.closed = True


@pytest.fixture
def fake_gemini():
    def _make(chunks=(), error=None, open_error=None):
        models = FakeModels(chunks, error, open_error)
        return SimpleNamespace(aio=SimpleNamespace(models=models)), models
    return _make
