"""
Sankhya Integration
====================

Connects to the Sankhya ERP/CRM gateway for:
- Bearer-token login (four static credential headers)
- Authenticated loadRecords queries
- Mapping the columnar entity/metadata wire shape into plain rows

Setup:
1. Create an integration app in the Sankhya developer portal
2. Set SANKHYA_TOKEN, SANKHYA_APPKEY, SANKHYA_USERNAME and SANKHYA_PASSWORD
   in .env (SANKHYA_BASE_URL defaults to the sandbox)
"""

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type, TypeVar

import aiohttp
from pydantic import BaseModel

from scripts.lib.errors import (
    APIError,
    APITimeoutError,
    AuthenticationError,
    RemoteFetchError,
    SessionExpiredError,
)

logger = logging.getLogger(__name__)

SANKHYA_API_URL = "https://api.sandbox.sankhya.com.br"
LOGIN_PATH = "/login"
LOAD_RECORDS_PATH = (
    "/gateway/v1/mge/service.sbr"
    "?serviceName=CRUDServiceProvider.loadRecords&outputType=json"
)

LOGIN_TIMEOUT = 10  # seconds
QUERY_TIMEOUT = 30

RecordT = TypeVar("RecordT", bound=BaseModel)


class TokenCache:
    """Process-wide holder for the Sankhya bearer token."""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get(self) -> Optional[str]:
        return self._token

    def invalidate(self) -> None:
        self._token = None

    async def refresh(self, login: Callable[[], Awaitable[str]]) -> str:
        """Drop the current token and store the one returned by `login`."""
        self._token = None
        token = await login()
        self._token = token
        return token


class SankhyaClient:
    """Sankhya gateway connector."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_cache: Optional[TokenCache] = None,
        query_timeout: float = QUERY_TIMEOUT,
    ):
        self.base_url = (base_url or os.getenv("SANKHYA_BASE_URL") or SANKHYA_API_URL).rstrip("/")
        self.api_token = os.getenv("SANKHYA_TOKEN", "")
        self.app_key = os.getenv("SANKHYA_APPKEY", "")
        self.username = os.getenv("SANKHYA_USERNAME", "")
        self.password = os.getenv("SANKHYA_PASSWORD", "")
        self.token_cache = token_cache or TokenCache()
        self.query_timeout = query_timeout

    @property
    def is_configured(self) -> bool:
        return all([self.api_token, self.app_key, self.username, self.password])

    @property
    def load_records_url(self) -> str:
        return f"{self.base_url}{LOAD_RECORDS_PATH}"

    def _login_headers(self) -> Dict[str, str]:
        return {
            "token": self.api_token,
            "appkey": self.app_key,
            "username": self.username,
            "password": self.password,
        }

    async def _post(
        self, url: str, *, headers: Dict[str, str], json_body: Any, timeout: float,
    ) -> Tuple[int, Any]:
        """POST and return (status, body); body is parsed JSON on 2xx, raw text otherwise."""
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout) as session:
                async with session.post(url, headers=headers, json=json_body) as resp:
                    if resp.status >= 400:
                        return resp.status, await resp.text()
                    try:
                        return resp.status, await resp.json(content_type=None)
                    except ValueError as e:
                        raise RemoteFetchError(f"Invalid JSON from {url}: {e}", source=url) from e
        except asyncio.TimeoutError as e:
            raise APITimeoutError(url, timeout) from e

    async def _login(self) -> str:
        url = f"{self.base_url}{LOGIN_PATH}"
        try:
            status, body = await self._post(
                url, headers=self._login_headers(), json_body={}, timeout=LOGIN_TIMEOUT,
            )
        except (APITimeoutError, RemoteFetchError, aiohttp.ClientError) as e:
            raise AuthenticationError(str(e), url=url) from e

        if status >= 400:
            raise AuthenticationError(f"login returned {status}", url=url, status_code=status)

        token = None
        if isinstance(body, dict):
            token = body.get("bearerToken") or body.get("token")
        if not token:
            raise AuthenticationError("no token in login response", url=url, status_code=status)

        logger.info("Sankhya login succeeded")
        return token

    async def get_token(self) -> str:
        """Return the cached bearer token, logging in when there is none."""
        token = self.token_cache.get()
        if token:
            return token
        return await self.token_cache.refresh(self._login)

    async def request(self, url: str, payload: Dict[str, Any]) -> Any:
        """Make an authenticated POST to the Sankhya gateway."""
        token = await self.get_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        status, body = await self._post(
            url, headers=headers, json_body=payload, timeout=self.query_timeout,
        )

        if status in (401, 403):
            self.token_cache.invalidate()
            logger.warning("Sankhya rejected token (%d) — cache cleared", status)
            raise SessionExpiredError(url, status_code=status)
        if status >= 400:
            logger.error("Sankhya POST %s returned %d: %s", url, status, str(body)[:200])
            raise APIError(f"Sankhya returned {status}", status_code=status, url=url)
        return body

    async def load_records(self, payload: Dict[str, Any]) -> Any:
        """Run a CRUDServiceProvider.loadRecords query."""
        return await self.request(self.load_records_url, payload)

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": "Sankhya",
            "configured": self.is_configured,
            "base_url": self.base_url,
            "authenticated": self.token_cache.get() is not None,
        }


# ─── Entity Mapping ──────────────────────────────────────────

def extract_entities(response: Any) -> Optional[Dict[str, Any]]:
    """Return responseBody.entities, or None when the response carries none."""
    if not isinstance(response, dict):
        return None
    if str(response.get("status", "")) == "0":
        raise RemoteFetchError(
            response.get("statusMessage") or "Sankhya service error",
            source=response.get("serviceName"),
        )
    body = response.get("responseBody")
    if not isinstance(body, dict):
        return None
    return body.get("entities")


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def map_entities(entities: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Reshape the columnar wire format into one dict per entity.

    Field `i` of metadata.fields.field is read from key `f{i}` (its "$"
    member). Entities missing a value for a field simply omit that key.
    """
    if not entities or not entities.get("entity"):
        return []

    metadata = entities.get("metadata") or {}
    fields = _as_list((metadata.get("fields") or {}).get("field"))
    field_names = [f.get("name") for f in fields]

    rows = []
    for raw in _as_list(entities["entity"]):
        row: Dict[str, Any] = {}
        for i, name in enumerate(field_names):
            cell = raw.get(f"f{i}")
            if isinstance(cell, dict) and "$" in cell:
                row[name] = cell["$"]
        rows.append(row)
    return rows


def parse_records(rows: List[Dict[str, Any]], model: Type[RecordT]) -> List[RecordT]:
    """Validate mapped rows into typed records."""
    return [model.model_validate(row) for row in rows]
