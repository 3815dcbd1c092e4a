"""
Sankhya Analysis Aggregator
============================

Builds the CRM snapshot injected into the first turn of a chat:

1. Serve from the result cache when (user, date range) was fetched recently
2. Fan out seven independent loadRecords queries (leads, activities, funnels,
   stages, orders, products, customers); a failing category becomes empty
3. Fetch the product lines of the returned leads (depends on step 2)
4. Store the snapshot in the cache and return it

Concurrent misses on the same key share one computation.

Usage:
    from scripts.crm.analysis_service import AnalysisAggregator

    aggregator = AnalysisAggregator(SankhyaClient(), ResultCache.from_url())
    analysis = await aggregator.fetch_analysis(date_range, user_id=42, is_admin=False)
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from integrations import sankhya_queries as queries
from integrations.sankhya import SankhyaClient, extract_entities, map_entities, parse_records
from models.crm_models import (
    Activity,
    AggregatedAnalysis,
    Customer,
    DateRange,
    Funnel,
    Lead,
    LeadProduct,
    Order,
    Product,
    Stage,
)
from scripts.crm.result_cache import ResultCache, analysis_cache_key, default_ttl
from scripts.lib.errors import RemoteFetchError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# category -> record model, in fan-out order
CATEGORIES: Dict[str, Type] = {
    "leads": Lead,
    "atividades": Activity,
    "funis": Funnel,
    "estagios": Stage,
    "pedidos": Order,
    "produtos": Product,
    "clientes": Customer,
}


class AnalysisAggregator:
    """Fetches, maps and caches the CRM snapshot for one user and date range."""

    def __init__(
        self,
        client: SankhyaClient,
        cache: ResultCache,
        ttl_seconds: Optional[int] = None,
    ):
        self.client = client
        self.cache = cache
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else default_ttl()
        self._inflight: Dict[str, asyncio.Task] = {}

    async def fetch_analysis(
        self, date_range: DateRange, user_id: int, is_admin: bool = False,
    ) -> AggregatedAnalysis:
        key = analysis_cache_key(user_id, date_range)

        cached = await self.cache.get(key)
        if cached is not None:
            logger.info("Analysis cache hit: %s", key)
            return cached

        task = self._inflight.get(key)
        if task is not None:
            logger.info("Joining in-flight analysis fetch: %s", key)
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._compute(key, date_range, user_id, is_admin))
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._inflight.pop(key, None)
            else:
                task.add_done_callback(lambda t: self._finish_orphaned(key, t))

    def _finish_orphaned(self, key: str, task: asyncio.Task) -> None:
        """Done-callback for a computation whose caller was cancelled."""
        self._inflight.pop(key, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Analysis fetch for %s failed after caller left: %s", key, error)

    async def _compute(
        self, key: str, date_range: DateRange, user_id: int, is_admin: bool,
    ) -> AggregatedAnalysis:
        logger.info("Analysis cache miss, fetching from Sankhya: %s", key)
        start, end = date_range.data_inicio, date_range.data_fim

        payloads = {
            "leads": queries.leads_query(start, end, user_id, is_admin),
            "atividades": queries.activities_query(start, end),
            "funis": queries.funnels_query(),
            "estagios": queries.stages_query(),
            "pedidos": queries.orders_query(start, end),
            "produtos": queries.products_query(),
            "clientes": queries.customers_query(),
        }
        results = await asyncio.gather(
            *(self._fetch_category(name, payload) for name, payload in payloads.items())
        )
        data = dict(zip(payloads.keys(), results))

        logger.info(
            "Mapped Sankhya data: %s",
            ", ".join(f"{name}={len(rows)}" for name, rows in data.items()),
        )

        leads: List[Lead] = data["leads"]
        produtos_leads = await self._fetch_lead_products(leads) if leads else []

        analysis = AggregatedAnalysis(
            leads=leads,
            produtos_leads=produtos_leads,
            estagios_funis=data["estagios"],
            funis=data["funis"],
            atividades=data["atividades"],
            pedidos=data["pedidos"],
            produtos=data["produtos"],
            clientes=data["clientes"],
            filtro=date_range,
            timestamp=datetime.now(timezone.utc),
        )

        await self.cache.set(key, analysis, self.ttl_seconds)
        logger.info("Analysis cached for %ds: %s", self.ttl_seconds, key)
        return analysis

    async def _fetch_category(self, name: str, payload: Dict[str, Any]) -> List[Any]:
        """Fetch and map one category; any failure yields an empty list."""
        try:
            response = await self.client.load_records(payload)
            return parse_records(map_entities(extract_entities(response)), CATEGORIES[name])
        except Exception as e:
            logger.error("Failed to fetch %s (using empty result): %s", name, e)
            return []

    async def _fetch_lead_products(self, leads: List[Lead]) -> List[LeadProduct]:
        lead_ids = queries.numeric_lead_ids(lead.CODLEAD for lead in leads)
        if not lead_ids:
            return []
        try:
            response = await self.client.load_records(queries.lead_products_query(lead_ids))
            return parse_records(map_entities(extract_entities(response)), LeadProduct)
        except RemoteFetchError:
            raise
        except Exception as e:
            raise RemoteFetchError(f"Lead products query failed: {e}", source="AD_ADLEADSPRODUTOS") from e
