"""
Sales Assistant — Chat Pydantic Models
========================================

Request models for the streaming chat endpoint and the session user
resolved from the `user` cookie.
"""
from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.crm_models import DateRange


class ChatTurn(BaseModel):
    """One prior conversation turn as held by the client."""
    role: str = Field(description="user | assistant")
    content: str = ""


class ChatFilter(BaseModel):
    """Optional date filter sent by the dashboard."""
    dataInicio: Optional[date] = None
    dataFim: Optional[date] = None

    @field_validator("dataInicio", "dataFim", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def check_order(self) -> "ChatFilter":
        if self.dataInicio and self.dataFim and self.dataInicio > self.dataFim:
            raise ValueError("dataInicio must not be after dataFim")
        return self

    def to_range(self) -> Optional[DateRange]:
        """Return the explicit range, or None when either bound is missing."""
        if self.dataInicio is None or self.dataFim is None:
            return None
        return DateRange(data_inicio=self.dataInicio, data_fim=self.dataFim)


class ChatRequest(BaseModel):
    """Body of POST /api/gemini/chat."""
    message: str
    history: List[ChatTurn] = Field(default_factory=list)
    filtro: Optional[ChatFilter] = None

    def resolve_range(self, today: Optional[date] = None) -> DateRange:
        """Caller-supplied range, or the 90 days preceding `today`."""
        explicit = self.filtro.to_range() if self.filtro else None
        return explicit or DateRange.last_days(today=today)


class SessionUser(BaseModel):
    """Caller identity decoded from the opaque session cookie."""
    id: int = 0
    name: str = "Usuário"
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
