"""
Postal code lookup and backfill endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from app.services.postal_code_service import PostalCodeService
from app.utils.logger import log

router = APIRouter(prefix="/postal-codes", tags=["postal-codes"])


def get_postal_code_service() -> PostalCodeService:
    return PostalCodeService()


@router.post("/orders/{order_id}")
async def lookup_postal_code(
    order_id: int,
    service: PostalCodeService = Depends(get_postal_code_service),
):
    """Find and store the postal code for one order"""
    result = await service.lookup_and_update_postal_code(order_id)
    if not result.get("success"):
        status_code = 404 if (result.get("error") or "") == f"Order {order_id} not found" else 422
        raise HTTPException(status_code=status_code, detail=result.get("error"))
    return result


@router.post("/backfill")
async def backfill_postal_codes(
    limit: int = Query(500, ge=1, le=5000),
    only_missing: bool = Query(True),
    service: PostalCodeService = Depends(get_postal_code_service),
):
    """Fill missing postal codes in batch"""
    try:
        return await service.backfill_postal_codes(limit=limit, only_missing=only_missing)
    except Exception as e:
        log.error(f"Postal code backfill error: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
