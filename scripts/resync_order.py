"""
Resync the AWB status of one order with FanCourier.

Usage: python scripts/resync_order.py ORDER_ID
"""
import asyncio
import argparse
import json
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.models import SyncStatus
from app.models.base import init_db
from app.services.reconciliation_service import ReconciliationService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Resync one order's AWB")
    parser.add_argument("order_id", type=int)
    args = parser.parse_args(argv)

    init_db()
    result = asyncio.run(ReconciliationService().run_single(args.order_id))
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result.get("status") == SyncStatus.COMPLETED.value else 1


if __name__ == "__main__":
    sys.exit(main())
