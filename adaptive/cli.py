from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from adaptive import pipeline
from adaptive.config import AppConfig
from adaptive.infrastructure.error_handling import ConfigError, PersistenceError, UpstreamError
from adaptive.infrastructure.metrics_store import SqlMetricsStore, create_metrics_store
from adaptive.integrations.meta_client import AccountAuth, ClientConfig, MetaClient
from adaptive.logging_config import setup_logging
from adaptive.utils import FixedClock, parse_csv

logger = logging.getLogger(__name__)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="adaptive", description="Meta Ads insights scoring and ingestion")
    parser.add_argument("--settings", default=None, help="Path to settings YAML (default: $ADAPTIVE_SETTINGS).")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    rank = sub.add_parser("rank", help="Print ranked insights as JSON")
    rank.add_argument("--days", type=int, default=21)
    rank.add_argument("--limit", type=int, default=500)
    rank.add_argument("--no-smoothing", action="store_true")
    rank.add_argument("--lcb", action="store_true")
    rank.add_argument("--alpha-ctr", type=float, default=None)
    rank.add_argument("--beta-ctr", type=float, default=None)
    rank.add_argument("--alpha-cvr", type=float, default=None)
    rank.add_argument("--beta-cvr", type=float, default=None)
    rank.add_argument("--z", type=float, default=None)
    rank.add_argument("--strategy", default="efficiency")
    rank.add_argument("--action-types", default="", help="Comma-separated purchase action priority.")

    top = sub.add_parser("top", help="Print top creatives as JSON")
    top.add_argument("--days", type=int, default=7)
    top.add_argument("--limit", type=int, default=500)
    top.add_argument("--strategy", default="profit")
    top.add_argument("--action-types", default="")

    ingest = sub.add_parser("ingest", help="Fetch, score and optionally persist insights")
    ingest.add_argument("--days", type=int, default=21)
    ingest.add_argument("--limit", type=int, default=1000)
    ingest.add_argument("--persist", action="store_true")
    ingest.add_argument("--dry-run", action="store_true", help="Score only; never write to the store.")
    ingest.add_argument("--batch-size", type=int, default=None)
    ingest.add_argument("--breakdowns", default="")
    ingest.add_argument("--action-types", default="")

    sub.add_parser("init-db", help="Create the metrics table if missing")
    return parser.parse_args(argv)


def _client(config: AppConfig) -> MetaClient:
    return MetaClient(AccountAuth(config.ad_account_id, config.access_token), ClientConfig.from_app_config(config))


def _print(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run(args: argparse.Namespace, config: AppConfig) -> int:
    clock = FixedClock.from_env()
    if args.command == "serve":
        import uvicorn

        from adaptive.api import create_app

        uvicorn.run(create_app(config), host=args.host, port=args.port, log_config=None)
        return 0

    if args.command == "init-db":
        store = create_metrics_store(config)
        if not isinstance(store, SqlMetricsStore):
            raise ConfigError("init-db needs DATABASE_URL pointing at a SQL database")
        store.ensure_schema()
        logger.info("Metrics table %s ready", store.table)
        return 0

    client = _client(config)
    if args.command == "rank":
        _print(pipeline.run_ranked(
            config,
            client,
            days=args.days,
            limit=args.limit,
            smoothing=not args.no_smoothing,
            lcb=args.lcb,
            alpha_ctr=args.alpha_ctr,
            beta_ctr=args.beta_ctr,
            alpha_cvr=args.alpha_cvr,
            beta_cvr=args.beta_cvr,
            z=args.z,
            strategy=args.strategy,
            action_types=parse_csv(args.action_types),
            clock=clock,
        ))
        return 0

    if args.command == "top":
        _print(pipeline.run_top_creatives(
            config,
            client,
            days=args.days,
            limit=args.limit,
            strategy=args.strategy,
            action_types=parse_csv(args.action_types),
            clock=clock,
        ))
        return 0

    if args.command == "ingest":
        persist = args.persist and not args.dry_run
        if args.persist and args.dry_run:
            logger.info("Dry run: scoring only, nothing will be written")
        store = create_metrics_store(config) if persist else None
        result = pipeline.run_ingest(
            config,
            client,
            store,
            days=args.days,
            limit=args.limit,
            persist=persist,
            breakdowns=parse_csv(args.breakdowns),
            action_types=parse_csv(args.action_types),
            batch_size=args.batch_size,
            clock=clock,
        )
        logger.info(
            "Ingest %s..%s: %d rows, persisted=%d db=%s",
            result["since"], result["until"], result["count"], result["persisted"], result["db"],
        )
        _print(result)
        return 1 if result["db"] == "error" else 0

    raise ConfigError(f"unknown command {args.command!r}")


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level)
    try:
        config = AppConfig.from_env(args.settings)
        if args.log_level is None:
            logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))
        return run(args, config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e.message)
        return 2
    except (UpstreamError, PersistenceError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
