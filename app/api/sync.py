"""
AWB tracking sync endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from app.models import SyncType
from app.services.reconciliation_service import ReconciliationService
from app.services.sync_logger import get_sync_history, get_sync_log_details
from app.utils.logger import log

router = APIRouter(prefix="/sync", tags=["sync"])


def get_reconciliation_service() -> ReconciliationService:
    return ReconciliationService()


@router.post("/awb")
async def sync_all_awbs(service: ReconciliationService = Depends(get_reconciliation_service)):
    """
    Reconcile every trackable AWB with FanCourier.

    Returns the finalized sync session summary.
    """
    log.info("Manual AWB sync requested")
    return await service.run_bulk(SyncType.MANUAL)


@router.post("/awb/orders/{order_id}")
async def resync_order(
    order_id: int,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Resync the AWB of a single order"""
    return await service.run_single(order_id)


@router.get("/history")
def sync_history(limit: int = Query(20, ge=1, le=200)):
    """Recent sync sessions, newest first"""
    return {"sessions": get_sync_history(limit)}


@router.get("/history/{sync_log_id}")
def sync_log_details(sync_log_id: int):
    """One sync session with its full audit trail"""
    details = get_sync_log_details(sync_log_id)
    if details is None:
        raise HTTPException(status_code=404, detail=f"Sync session {sync_log_id} not found")
    return details
