"""
Run a bulk AWB reconciliation against FanCourier tracking.

Usage: python scripts/run_reconciliation.py [--type manual|scheduled]
"""
import asyncio
import argparse
import json
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.models import SyncStatus, SyncType
from app.models.base import init_db
from app.services.reconciliation_service import ReconciliationService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Bulk AWB status sync")
    parser.add_argument("--type", choices=["manual", "scheduled"], default="manual",
                        help="Run type recorded on the sync session")
    args = parser.parse_args(argv)

    init_db()
    result = asyncio.run(ReconciliationService().run_bulk(SyncType(args.type.upper())))
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 1 if result.get("status") == SyncStatus.FAILED.value else 0


if __name__ == "__main__":
    sys.exit(main())
