"""
Company courier account endpoints
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.connectors.fancourier_connector import FanCourierConnector
from app.exceptions import ConfigurationError
from app.models import Company
from app.models.base import get_db
from app.services.credential_resolver import get_credentials

router = APIRouter(prefix="/companies", tags=["companies"])


def get_courier_factory():
    return FanCourierConnector


@router.post("/{company_id}/test-courier")
async def test_courier_connection(
    company_id: int,
    db: Session = Depends(get_db),
    courier_factory=Depends(get_courier_factory),
):
    """Log in with the company's FanCourier account and list its services"""
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise HTTPException(status_code=404, detail=f"Company {company_id} not found")

    try:
        credentials = get_credentials(company)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    result = await courier_factory(credentials).validate_connection()
    return {"company_id": company.id, "company_name": company.name, **result}
