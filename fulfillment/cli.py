from __future__ import annotations

import argparse
import json

from sqlalchemy import select

from fulfillment.core.logging import configure_logging
from fulfillment.demo import seed_default_scenario
from fulfillment.persistence.models import LoadingSheetModel, OrderModel, StockMovementModel
from fulfillment.persistence.pg import init_db, session_scope
from fulfillment.reconciliation.rules import run_minimum_reconciliation


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fulfillment & Dispatch Engine CLI")
    parser.add_argument("--log-level", default=None)
    top = parser.add_subparsers(dest="command", required=True)

    top.add_parser("init-db", help="Create database tables")

    demo = top.add_parser("demo", help="Demo data operations")
    demo_sub = demo.add_subparsers(dest="demo_command", required=True)
    demo_sub.add_parser("seed", help="Seed the default fulfillment scenario (idempotent)")

    top.add_parser("verify", help="Run consistency checks over ledger, orders and loads")
    return parser


def _print(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _seed_demo() -> int:
    init_db()
    with session_scope() as session:
        _print(seed_default_scenario(session))
    return 0


def _verify() -> int:
    init_db()
    with session_scope() as session:
        results = run_minimum_reconciliation(
            movements=session.scalars(select(StockMovementModel).order_by(StockMovementModel.id.asc())),
            orders=session.scalars(select(OrderModel)).all(),
            loads=session.scalars(select(LoadingSheetModel)).all(),
        )
    _print([{"rule": item.rule, "passed": item.passed, "detail": item.detail} for item in results])
    return 0 if all(item.passed for item in results) else 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "init-db":
        init_db()
        return 0
    if args.command == "demo" and args.demo_command == "seed":
        return _seed_demo()
    if args.command == "verify":
        return _verify()

    parser.error("unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
