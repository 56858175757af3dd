"""
Postal Code Service
Finds Romanian postal codes in the FanCourier street nomenclature and
writes them back onto orders.
"""
import asyncio
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp
from sqlalchemy import func, or_

from app.config import get_settings
from app.connectors.fancourier_connector import CourierCredentials, FanCourierConnector
from app.exceptions import AWBSyncError
from app.models import Order
from app.models.base import SessionLocal
from app.services.credential_resolver import resolve_tenant
from app.utils.address_matching import (
    best_match,
    extract_street_name,
    fold_diacritics,
    match_street,
    normalize_locality,
)
from app.utils.logger import log

settings = get_settings()

POSTAL_CODE_PATTERN = re.compile(r"^\d{6}$")
CAPITAL_COUNTY = "Bucuresti"

_SECTOR_PATTERN = re.compile(r"\bsector(?:ul)?\s*(\d)\b", re.IGNORECASE)
_ROMANIA_NAMES = {"romania", "ro", "rou"}


@dataclass
class PostalCodeMatch:
    postal_code: str
    county: str
    locality: str
    street: Optional[str] = None
    locality_corrected: bool = False


def is_valid_postal_code(value: Optional[str]) -> bool:
    return bool(value and POSTAL_CODE_PATTERN.match(value.strip()))


def is_romanian_destination(country: Optional[str]) -> bool:
    """Blank country counts as Romania (domestic-only storefronts leave it empty)."""
    if not country:
        return True
    return fold_diacritics(country).strip().lower() in _ROMANIA_NAMES


def canonicalize_capital(county: Optional[str], city: Optional[str]) -> Tuple[str, str]:
    """
    Bucharest districts arrive as county="Sector 3", city="Bucuresti" or the
    other way round. FanCourier wants county="Bucuresti", locality="Sector 3".
    """
    county = (county or "").strip()
    city = (city or "").strip()
    for value in (county, city):
        match = _SECTOR_PATTERN.search(fold_diacritics(value))
        if match:
            return CAPITAL_COUNTY, f"Sector {match.group(1)}"
    return county, city


@dataclass
class LocalityStreets:
    """Nomenclature streets (with a postal code) of one resolved locality"""
    county: str
    locality: str
    streets: List[Dict[str, Any]]
    locality_corrected: bool = False


def _with_codes(streets: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [s for s in streets if (s.get("cod_postal") or "").strip()]


class PostalCodeResolver:
    """resolve(county, city, street) against one courier's nomenclature"""

    def __init__(self, courier):
        self.courier = courier

    async def resolve_locality(self, county: Optional[str], city: Optional[str]) -> Optional[LocalityStreets]:
        """
        Streets that carry a postal code for the locality, trying the literal
        name first and the best fuzzy match in the county second.

        Courier errors propagate; they are not the same as "not found".
        """
        county, locality = canonicalize_capital(county, city)
        if not county or not locality:
            return None

        streets = _with_codes(await self.courier.get_streets(county, locality))
        if streets:
            return LocalityStreets(county, locality, streets)

        localities = await self.courier.get_localities(county)
        found = best_match(locality, localities, key=lambda l: l.get("localitate") or "")
        if not found:
            log.debug(f"No locality matching '{locality}' in county '{county}'")
            return None
        candidate, score = found
        matched_name = candidate.get("localitate")
        if matched_name == locality:
            return None
        log.debug(f"Locality '{locality}' matched '{matched_name}' (score {score:.2f})")

        streets = _with_codes(await self.courier.get_streets(county, matched_name))
        if not streets:
            return None
        return LocalityStreets(
            county,
            matched_name,
            streets,
            locality_corrected=normalize_locality(matched_name) != normalize_locality(locality),
        )

    @staticmethod
    def match_address(nomenclature: LocalityStreets, street: Optional[str] = None) -> PostalCodeMatch:
        """Code of the matching street, else the first street with a code."""
        found = None
        if street:
            found = match_street(street, nomenclature.streets, key=lambda s: s.get("strada") or "")
        chosen = found or nomenclature.streets[0]
        return PostalCodeMatch(
            postal_code=chosen["cod_postal"].strip(),
            county=nomenclature.county,
            locality=nomenclature.locality,
            street=chosen.get("strada") if found else None,
            locality_corrected=nomenclature.locality_corrected,
        )

    async def resolve(
        self, county: Optional[str], city: Optional[str], street: Optional[str] = None
    ) -> Optional[PostalCodeMatch]:
        """Postal code for an address, or None when the nomenclature has nothing usable."""
        nomenclature = await self.resolve_locality(county, city)
        if nomenclature is None:
            return None
        return self.match_address(nomenclature, street)


def _needs_postal_code_filter():
    return or_(
        Order.shipping_zip.is_(None),
        Order.shipping_zip == "",
        func.length(Order.shipping_zip) != 6,
    )


class PostalCodeService:
    """Single-order lookup and batch backfill of order postal codes"""

    def __init__(
        self,
        session_factory=SessionLocal,
        courier_factory: Callable[[CourierCredentials], Any] = FanCourierConnector,
    ):
        self.session_factory = session_factory
        self.courier_factory = courier_factory
        self._resolvers: Dict[Any, PostalCodeResolver] = {}

    def _resolver_for(self, order: Order) -> PostalCodeResolver:
        tenant = resolve_tenant(order)
        if tenant.company.id not in self._resolvers:
            self._resolvers[tenant.company.id] = PostalCodeResolver(self.courier_factory(tenant.credentials))
        return self._resolvers[tenant.company.id]

    @staticmethod
    def _apply_match(order: Order, match: PostalCodeMatch) -> None:
        order.shipping_zip = match.postal_code
        if match.locality_corrected:
            order.shipping_city = match.locality

    async def lookup_and_update_postal_code(self, order_id: int) -> Dict[str, Any]:
        """Find and store the postal code of one order."""
        db = self.session_factory()
        try:
            order = db.query(Order).filter(Order.id == order_id).first()
            if not order:
                return {"success": False, "error": f"Order {order_id} not found"}

            if is_valid_postal_code(order.shipping_zip):
                return {"success": True, "skipped": True, "reason": "Order already has a valid postal code",
                        "postal_code": order.shipping_zip}
            if not is_romanian_destination(order.shipping_country):
                return {"success": True, "skipped": True, "reason": f"Non-Romanian destination ({order.shipping_country})"}

            try:
                resolver = self._resolver_for(order)
                match = await resolver.resolve(
                    order.shipping_province,
                    order.shipping_city,
                    extract_street_name(order.shipping_address1) or None,
                )
            except (AWBSyncError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                return {"success": False, "error": str(e)}

            if not match:
                return {"success": False, "error": "Postal code not found in the FanCourier nomenclature"}

            self._apply_match(order, match)
            db.commit()
            log.info(f"Order {order.display_number}: postal code {match.postal_code}")
            return {
                "success": True,
                "skipped": False,
                "postal_code": match.postal_code,
                "city_corrected": match.locality if match.locality_corrected else None,
            }
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def backfill_postal_codes(
        self,
        limit: Optional[int] = None,
        only_missing: bool = True,
    ) -> Dict[str, Any]:
        """
        Fill postal codes for up to `limit` orders, newest first.

        Locality nomenclature is cached per (county, locality) for the run;
        streets are matched per order. Not-found and lookup failures both
        count as errors.
        """
        limit = limit or settings.backfill_default_limit
        summary = {"total": 0, "updated": 0, "skipped": 0, "errors": 0, "details": []}
        cache: Dict[str, Optional[LocalityStreets]] = {}

        db = self.session_factory()
        try:
            query = db.query(Order)
            if only_missing:
                query = query.filter(_needs_postal_code_filter())
            orders: List[Order] = query.order_by(Order.created_at.desc()).limit(limit).all()
            summary["total"] = len(orders)
            log.info(f"Postal code backfill: {len(orders)} orders (only_missing={only_missing})")

            for index, order in enumerate(orders, start=1):
                detail = {"order_id": order.id, "order_number": order.display_number}

                if not is_romanian_destination(order.shipping_country):
                    summary["skipped"] += 1
                    detail.update(status="skipped", reason="non-Romanian destination")
                elif not order.shipping_province or not order.shipping_city:
                    summary["skipped"] += 1
                    detail.update(status="skipped", reason="missing county or city")
                else:
                    await self._backfill_one(db, order, cache, summary, detail)

                summary["details"].append(detail)

                if index % settings.backfill_pause_every == 0 and index < len(orders):
                    await asyncio.sleep(settings.backfill_pause_seconds)

            log.info(
                f"Postal code backfill done: updated={summary['updated']} "
                f"skipped={summary['skipped']} errors={summary['errors']}"
            )
            return summary
        finally:
            db.close()

    async def _backfill_one(self, db, order: Order, cache, summary, detail) -> None:
        county, locality = canonicalize_capital(order.shipping_province, order.shipping_city)
        cache_key = f"{normalize_locality(county)}|{normalize_locality(locality)}"

        try:
            if cache_key in cache:
                nomenclature = cache[cache_key]
            else:
                nomenclature = await self._resolver_for(order).resolve_locality(county, locality)
                cache[cache_key] = nomenclature
        except Exception as e:
            summary["errors"] += 1
            detail.update(status="error", error=str(e))
            log.warning(f"Postal code lookup failed for order {order.display_number}: {e}")
            return

        if nomenclature is None:
            summary["errors"] += 1
            detail.update(status="not_found")
            return

        # Streets are cached per locality; the street itself is matched per order
        match = PostalCodeResolver.match_address(
            nomenclature, extract_street_name(order.shipping_address1) or None
        )

        try:
            self._apply_match(order, match)
            db.commit()
        except Exception as e:
            db.rollback()
            summary["errors"] += 1
            detail.update(status="error", error=str(e))
            log.error(f"Failed to save postal code for order {order.display_number}: {e}")
            return

        summary["updated"] += 1
        detail.update(status="updated", postal_code=match.postal_code)


def backfill_exit_code(summary: Dict[str, Any]) -> int:
    """Non-zero when more than half of the processed orders errored."""
    total = summary.get("total") or 0
    return 1 if total and summary.get("errors", 0) > total / 2 else 0
