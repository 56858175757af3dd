"""
Backfill missing postal codes from the FanCourier street nomenclature.
Runs directly (not through the API) to avoid HTTP timeouts.

Prints a JSON summary {total, updated, skipped, errors}. Exits with 1 when
more than half of the processed orders errored.

Usage: python scripts/backfill_postal_codes.py [--limit 500] [--all]
"""
import asyncio
import argparse
import json
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import get_settings
from app.models.base import init_db
from app.services.postal_code_service import PostalCodeService, backfill_exit_code

settings = get_settings()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backfill order postal codes")
    parser.add_argument("--limit", type=int, default=settings.backfill_default_limit,
                        help="Max orders to process")
    parser.add_argument("--all", action="store_true",
                        help="Re-check every order, not only those missing a postal code")
    parser.add_argument("--details", action="store_true",
                        help="Include per-order details in the output")
    return parser.parse_args(argv)


def main(argv=None, service: PostalCodeService = None) -> int:
    args = parse_args(argv)
    init_db()
    service = service or PostalCodeService()

    summary = asyncio.run(service.backfill_postal_codes(limit=args.limit, only_missing=not args.all))

    output = {k: summary[k] for k in ("total", "updated", "skipped", "errors")}
    if args.details:
        output["details"] = summary["details"]
    print(json.dumps(output, ensure_ascii=False, indent=2))
    return backfill_exit_code(summary)


if __name__ == "__main__":
    sys.exit(main())
