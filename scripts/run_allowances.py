#!/usr/bin/env python3
"""
run_allowances.py - Pay every allowance that is due.

Intended for a platform timer (cron, systemd, container scheduler). The same
batch is available to parents through POST /api/allowance/run.

Usage examples:
  python scripts/run_allowances.py
  python scripts/run_allowances.py --family-id 3
  python scripts/run_allowances.py --as-of 2024-01-08T00:00:00 --json
  python scripts/run_allowances.py --env-file /path/to/.env --migrate

Flags:
  --env-file PATH
    Load environment variables from PATH (default: .env).
  --family-id ID
    Only process children in this family.
  --as-of ISO
    Treat ISO (naive UTC or with offset) as the current time.
  --migrate
    Run migrations before processing.
  --json
    Print the run totals as JSON.
"""
import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
DEFAULT_ENV_PATH = ".env"


def LoadEnvFile(EnvPath: str) -> None:
    if not EnvPath:
        return
    if not os.path.exists(EnvPath):
        if EnvPath == DEFAULT_ENV_PATH:
            return
        raise RuntimeError(f"Env file not found: {EnvPath}")
    load_dotenv(dotenv_path=EnvPath)


def ParseAsOf(Value: str | None) -> datetime | None:
    if not Value:
        return None
    try:
        return datetime.fromisoformat(Value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid --as-of value: {Value}") from exc


def ParseArgs() -> argparse.Namespace:
    Parser = argparse.ArgumentParser(description="Pay every allowance that is due.")
    Parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_PATH,
        help=f"Path to .env file (default: {DEFAULT_ENV_PATH}).",
    )
    Parser.add_argument("--family-id", type=int, help="Only process this family.")
    Parser.add_argument("--as-of", type=ParseAsOf, help="Override the current time (ISO 8601).")
    Parser.add_argument("--migrate", action="store_true", help="Run migrations first.")
    Parser.add_argument("--json", action="store_true", help="Print totals as JSON.")
    return Parser.parse_args()


def BuildSummary(Result) -> dict:
    return {
        "Processed": Result.Processed,
        "Paid": Result.Paid,
        "Failed": Result.Failed,
        "ExpiredChallenges": Result.ExpiredChallenges,
        "FailedChildIds": Result.FailedChildIds,
        "Payments": [
            {
                "ChildId": Payment.ChildId,
                "Amount": str(Payment.Amount),
                "SavingsTransferred": str(Payment.SavingsTransferred),
                "GoalTransferred": str(Payment.GoalTransferred),
            }
            for Payment in Result.Payments
        ],
    }


def Main() -> int:
    Args = ParseArgs()
    LoadEnvFile(Args.env_file)

    if str(BACKEND_DIR) not in sys.path:
        sys.path.insert(0, str(BACKEND_DIR))

    from app.core.logging import setup_logging
    from app.core.migrations import RunMigrations
    from app.db import BuildUserConnectionUrl, CreateEngineForUrl
    from app.modules.allowance.services.allowance_service import ProcessPendingAllowances
    from app.services.schedules import ToNaiveUtc
    from sqlalchemy.orm import sessionmaker

    setup_logging()
    logger = logging.getLogger("app.allowance.cli")

    if Args.migrate:
        RunMigrations()

    Engine = CreateEngineForUrl(BuildUserConnectionUrl(), pooled=False)
    Session = sessionmaker(bind=Engine, autocommit=False, autoflush=False)
    Db = Session()
    try:
        Result = ProcessPendingAllowances(
            Db,
            as_of=ToNaiveUtc(Args.as_of) if Args.as_of else None,
            family_id=Args.family_id,
        )
    except Exception:
        logger.exception("allowance run aborted")
        return 1
    finally:
        Db.close()
        Engine.dispose()

    Summary = BuildSummary(Result)
    if Args.json:
        print(json.dumps(Summary, indent=2))
    else:
        print(
            f"Processed {Summary['Processed']}, paid {Summary['Paid']}, "
            f"failed {Summary['Failed']}, expired challenges {Summary['ExpiredChallenges']}"
        )
    return 1 if Result.Failed else 0


if __name__ == "__main__":
    raise SystemExit(Main())
