"""
Sankhya CRM — Pydantic Models
===============================

Typed records for the rows returned by the Sankhya loadRecords API, plus the
aggregated analysis snapshot injected into the first chat turn.

Field names are the remote column names (CODLEAD, NOME, VALOR, ...). Every
field is optional because the remote API omits null columns entirely.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Annotated, Any, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

DEFAULT_LOOKBACK_DAYS = 90


def parse_amount(value: Any) -> float:
    """Parse a wire-format monetary string; absent or non-numeric values are 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(amount) or math.isinf(amount):
        return 0.0
    return amount


Amount = Annotated[float, BeforeValidator(parse_amount)]


class SankhyaRecord(BaseModel):
    """Base for every mapped row: unknown columns are ignored, ids stay strings."""
    model_config = ConfigDict(extra="ignore", frozen=True, coerce_numbers_to_str=True)


# ─── Date Range ─────────────────────────────────────────────

class DateRange(BaseModel):
    """Inclusive calendar date range (dataInicio..dataFim)."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data_inicio: date = Field(alias="dataInicio")
    data_fim: date = Field(alias="dataFim")

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.data_inicio > self.data_fim:
            raise ValueError("dataInicio must not be after dataFim")
        return self

    @classmethod
    def last_days(cls, days: int = DEFAULT_LOOKBACK_DAYS, today: Optional[date] = None) -> "DateRange":
        end = today or date.today()
        return cls(data_inicio=end - timedelta(days=days), data_fim=end)


# ─── Pipeline ───────────────────────────────────────────────

class Funnel(SankhyaRecord):
    CODFUNIL: Optional[str] = None
    NOME: Optional[str] = None
    DESCRICAO: Optional[str] = None
    COR: Optional[str] = None
    ATIVO: Optional[str] = None
    DATA_CRIACAO: Optional[str] = None
    DATA_ATUALIZACAO: Optional[str] = None


class Stage(SankhyaRecord):
    CODESTAGIO: Optional[str] = None
    CODFUNIL: Optional[str] = None
    NOME: Optional[str] = None
    ORDEM: Optional[str] = None
    COR: Optional[str] = None
    ATIVO: Optional[str] = None


class Lead(SankhyaRecord):
    CODLEAD: Optional[str] = None
    NOME: Optional[str] = None
    DESCRICAO: Optional[str] = None
    VALOR: Amount = 0.0
    CODESTAGIO: Optional[str] = None
    DATA_VENCIMENTO: Optional[str] = None
    TIPO_TAG: Optional[str] = None
    COR_TAG: Optional[str] = None
    CODPARC: Optional[str] = None
    CODFUNIL: Optional[str] = None
    CODUSUARIO: Optional[str] = None
    ATIVO: Optional[str] = None
    DATA_CRIACAO: Optional[str] = None
    DATA_ATUALIZACAO: Optional[str] = None
    STATUS_LEAD: Optional[str] = None
    MOTIVO_PERDA: Optional[str] = None
    DATA_CONCLUSAO: Optional[str] = None


class Activity(SankhyaRecord):
    CODATIVIDADE: Optional[str] = None
    CODLEAD: Optional[str] = None
    TIPO: Optional[str] = None
    DESCRICAO: Optional[str] = None
    DATA_HORA: Optional[str] = None
    DATA_INICIO: Optional[str] = None
    DATA_FIM: Optional[str] = None
    CODUSUARIO: Optional[str] = None
    DADOS_COMPLEMENTARES: Optional[str] = None
    COR: Optional[str] = None
    ORDEM: Optional[str] = None
    ATIVO: Optional[str] = None
    STATUS: Optional[str] = None  # AGUARDANDO | ATRASADO | REALIZADO


class LeadProduct(SankhyaRecord):
    CODITEM: Optional[str] = None
    CODLEAD: Optional[str] = None
    CODPROD: Optional[str] = None
    DESCRPROD: Optional[str] = None
    QUANTIDADE: Optional[str] = None
    VLRUNIT: Amount = 0.0
    VLRTOTAL: Amount = 0.0
    ATIVO: Optional[str] = None
    DATA_INCLUSAO: Optional[str] = None


# ─── Commercial ─────────────────────────────────────────────

class Order(SankhyaRecord):
    NUNOTA: Optional[str] = None
    CODPARC: Optional[str] = None
    NOMEPARC: Optional[str] = None
    DTNEG: Optional[str] = None
    VLRNOTA: Amount = 0.0
    CODVEND: Optional[str] = None
    OBSERVACAO: Optional[str] = None


class Product(SankhyaRecord):
    CODPROD: Optional[str] = None
    DESCRPROD: Optional[str] = None
    ATIVO: Optional[str] = None


class Customer(SankhyaRecord):
    CODPARC: Optional[str] = None
    NOMEPARC: Optional[str] = None
    CGC_CPF: Optional[str] = None
    CLIENTE: Optional[str] = None
    ATIVO: Optional[str] = None


# ─── Aggregated Snapshot ────────────────────────────────────

class AggregatedAnalysis(BaseModel):
    """Everything fetched for one (user, date range); cached as a unit."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    leads: List[Lead] = Field(default_factory=list)
    produtos_leads: List[LeadProduct] = Field(default_factory=list, alias="produtosLeads")
    estagios_funis: List[Stage] = Field(default_factory=list, alias="estagiosFunis")
    funis: List[Funnel] = Field(default_factory=list)
    atividades: List[Activity] = Field(default_factory=list)
    pedidos: List[Order] = Field(default_factory=list)
    produtos: List[Product] = Field(default_factory=list)
    clientes: List[Customer] = Field(default_factory=list)
    filtro: DateRange
    timestamp: datetime

    @property
    def total_leads(self) -> int:
        return len(self.leads)

    @property
    def total_atividades(self) -> int:
        return len(self.atividades)

    @property
    def total_pedidos(self) -> int:
        return len(self.pedidos)

    @property
    def total_produtos(self) -> int:
        return len(self.produtos)

    @property
    def total_clientes(self) -> int:
        return len(self.clientes)

    @property
    def valor_total_pedidos(self) -> float:
        return sum(p.VLRNOTA for p in self.pedidos)
