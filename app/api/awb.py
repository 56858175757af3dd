"""
AWB endpoints: create (single and bulk), inspect, delete
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session
from typing import List, Optional

from app.models import AWB
from app.models.base import get_db
from app.services.awb_service import AWBOptions, AWBService
from app.services.awb_status import format_status_for_display
from app.utils.logger import log

router = APIRouter(prefix="/awb", tags=["awb"])


class AWBOptionsRequest(BaseModel):
    service_type: Optional[str] = None
    payment_type: Optional[str] = None
    weight: Optional[float] = None
    packages: Optional[int] = None
    cash_on_delivery: Optional[float] = None
    declared_value: Optional[float] = None
    observation: Optional[str] = None

    def to_options(self) -> AWBOptions:
        return AWBOptions(**self.model_dump())


class BulkCreateRequest(BaseModel):
    order_ids: List[int]
    options: Optional[AWBOptionsRequest] = None


def get_awb_service() -> AWBService:
    return AWBService()


def _awb_to_dict(awb: AWB) -> dict:
    return {
        "id": awb.id,
        "order_id": awb.order_id,
        "company_id": awb.company_id,
        "awb_number": awb.awb_number,
        "service_type": awb.service_type,
        "payment_type": awb.payment_type,
        "weight": awb.weight,
        "packages": awb.packages,
        "cash_on_delivery": float(awb.cash_on_delivery) if awb.cash_on_delivery is not None else None,
        "declared_value": float(awb.declared_value) if awb.declared_value is not None else None,
        "current_status": awb.current_status,
        "current_status_date": awb.current_status_date.isoformat() if awb.current_status_date else None,
        "status": format_status_for_display(awb.status_code),
        "error_message": awb.error_message,
        "is_collected": awb.is_collected,
        "history": [
            {
                "status": h.status,
                "status_date": h.status_date.isoformat() if h.status_date else None,
                "location": h.location,
                "description": h.description,
            }
            for h in awb.status_history
        ],
    }


@router.post("/orders/{order_id}")
async def create_awb(
    order_id: int,
    request: Optional[AWBOptionsRequest] = None,
    service: AWBService = Depends(get_awb_service),
):
    """Create the FanCourier AWB for one order"""
    options = request.to_options() if request else None
    try:
        result = await service.create_awb_for_order(order_id, options)
    except Exception as e:
        log.error(f"Error creating AWB for order {order_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not result.get("success"):
        status_code = 404 if (result.get("error") or "") == f"Order {order_id} not found" else 400
        raise HTTPException(status_code=status_code, detail=result)
    return result


@router.post("/bulk")
async def create_awbs_bulk(
    request: BulkCreateRequest,
    service: AWBService = Depends(get_awb_service),
):
    """Create AWBs for several orders; individual failures are reported, not raised"""
    options = request.options.to_options() if request.options else None
    return await service.create_awbs_for_orders(request.order_ids, options)


@router.get("/orders/{order_id}/eligibility")
def check_eligibility(order_id: int, service: AWBService = Depends(get_awb_service)):
    """Whether a new AWB may be created for the order"""
    return service.can_create_awb(order_id)


@router.get("/{awb_id}")
def get_awb(awb_id: int, db: Session = Depends(get_db)):
    """AWB with current status and history"""
    awb = db.query(AWB).filter(AWB.id == awb_id).first()
    if not awb:
        raise HTTPException(status_code=404, detail=f"AWB {awb_id} not found")
    return _awb_to_dict(awb)


@router.delete("/{awb_id}")
async def delete_awb(awb_id: int, service: AWBService = Depends(get_awb_service)):
    """Delete at FanCourier and mark deleted locally"""
    try:
        result = await service.delete_awb(awb_id)
    except Exception as e:
        log.error(f"Error deleting AWB {awb_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if not result.get("success"):
        status_code = 404 if (result.get("error") or "") == f"AWB {awb_id} not found" else 400
        raise HTTPException(status_code=status_code, detail=result.get("error"))
    return result
