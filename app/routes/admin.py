import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.permissions import require
from app.database import get_db
from app.dependencies.principal import Principal, get_principal
from app.services import ad_billing, freight_lifecycle, notifications, reputation
from app.services.outbox import dispatch_outbox
from app.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class StatusPayload(BaseModel):
    status: str
    approve_featured: bool = False


class PaymentStatusPayload(BaseModel):
    status: str


class CreditPayload(BaseModel):
    user_id: int
    amount: float
    note: Optional[str] = None


class VerifyPayload(BaseModel):
    is_verified: bool
    days: Optional[int] = Field(default=None, ge=1)


class PricingPayload(BaseModel):
    prices: Dict[str, float]


class PurgePayload(BaseModel):
    days: Optional[int] = Field(default=None, ge=0)


@router.post("/freights/{freight_id}/status")
def change_freight_status(
    freight_id: int,
    payload: StatusPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.change_status(
        db, principal, freight_id, payload.status, payload.approve_featured
    )
    data["dispatch"] = dispatch_outbox(db, messages)
    return ok(data, f"Freight moved to {data['status']}.")


@router.post("/freights/{freight_id}/payment-status")
def change_payment_status(
    freight_id: int,
    payload: PaymentStatusPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data = freight_lifecycle.update_payment_status(db, principal, freight_id, payload.status)
    return ok(data, f"Payment updated to {data['payment_status']}.")


@router.post("/credits")
def add_credits(
    payload: CreditPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(ad_billing.add_credits(db, principal, payload.user_id, payload.amount, payload.note), "Credits added.")


@router.post("/users/{user_id}/verify")
def verify_user(
    user_id: int,
    payload: VerifyPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(reputation.set_verified(db, principal, user_id, payload.is_verified, payload.days))


@router.put("/pricing")
def save_pricing(
    payload: PricingPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(ad_billing.save_pricing(db, principal, payload.prices), "Prices updated.")


@router.post("/notifications/purge")
def purge_notifications(
    payload: PurgePayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    require(principal, "user.verify")
    return ok({"deleted": notifications.clean_old(db, payload.days)})
