"""
Sankhya Analysis Snapshot Fetcher
==================================

Fetches the same CRM snapshot the chat injects on a first turn and writes it
to data/raw as JSON. Handy for checking what the assistant will "see" for a
given user and period, and for warming the Redis result cache.

Usage:
    python scripts/fetch_sankhya.py --user 12                      # last 90 days
    python scripts/fetch_sankhya.py --user 12 --admin              # all owners
    python scripts/fetch_sankhya.py --user 12 --start 2024-01-01 --end 2024-03-31
    python scripts/fetch_sankhya.py --user 12 --prompt             # also print the context block
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Path setup for standalone execution
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from integrations.sankhya import SankhyaClient
from models.crm_models import AggregatedAnalysis, DateRange
from scripts.crm.analysis_service import AnalysisAggregator
from scripts.crm.prompt_builder import build_context_prompt
from scripts.crm.result_cache import ResultCache
from scripts.lib.logger import setup_logger

logger = setup_logger("fetch_sankhya")

RAW_DIR = PROJECT_ROOT / "data" / "raw"


def write_snapshot(analysis: AggregatedAnalysis, user_id: int, out_dir: Path = RAW_DIR) -> Path:
    """Write the snapshot atomically and return its path."""
    out_dir.mkdir(parents=True, exist_ok=True)
    name = (
        f"sankhya_analysis_{user_id}_"
        f"{analysis.filtro.data_inicio.isoformat()}_{analysis.filtro.data_fim.isoformat()}.json"
    )
    out_path = out_dir / name
    tmp_path = out_path.with_suffix(".tmp")
    try:
        tmp_path.write_text(analysis.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        os.replace(str(tmp_path), str(out_path))
    finally:
        if tmp_path.exists():
            tmp_path.unlink()
    logger.info(
        "Saved snapshot: %d leads, %d activities, %d orders -> %s",
        analysis.total_leads, analysis.total_atividades, analysis.total_pedidos, out_path,
    )
    return out_path


async def fetch_snapshot(
    user_id: int, date_range: DateRange, is_admin: bool, redis_url: str | None = None,
) -> AggregatedAnalysis:
    client = SankhyaClient()
    if not client.is_configured:
        logger.warning("Sankhya credentials missing — set SANKHYA_* in .env")

    cache = ResultCache.from_url(redis_url)
    try:
        aggregator = AnalysisAggregator(client, cache)
        return await aggregator.fetch_analysis(date_range, user_id, is_admin)
    finally:
        await cache.close()


def main():
    parser = argparse.ArgumentParser(description="Sankhya Sales Assistant — Snapshot Fetcher")
    parser.add_argument("--user", type=int, required=True, help="Sankhya CODUSUARIO")
    parser.add_argument("--admin", action="store_true", help="Do not scope leads to the user")
    parser.add_argument("--start", type=date.fromisoformat, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=date.fromisoformat, help="End date (YYYY-MM-DD)")
    parser.add_argument("--redis-url", help="Override REDIS_URL")
    parser.add_argument("--prompt", action="store_true", help="Print the rendered context block")
    args = parser.parse_args()

    if args.start and args.end:
        date_range = DateRange(data_inicio=args.start, data_fim=args.end)
    else:
        date_range = DateRange.last_days()

    analysis = asyncio.run(fetch_snapshot(args.user, date_range, args.admin, args.redis_url))
    write_snapshot(analysis, args.user)

    if args.prompt:
        print(build_context_prompt(analysis, f"usuário {args.user}", "(pré-visualização)"))


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        logger.error(f"Sankhya snapshot failed: {e}", exc_info=True)
        sys.exit(1)
