from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies.principal import Principal, get_principal
from app.services import ad_billing, reputation
from app.services.outbox import dispatch_outbox
from app.utils.responses import ok

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfilePayload(BaseModel):
    name: Optional[str] = None
    whatsapp: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    city: Optional[str] = None
    bio: Optional[str] = None
    vehicle_type: Optional[str] = None
    body_type: Optional[str] = None
    preferred_region: Optional[str] = None
    push_token: Optional[str] = None


@router.patch("/me")
def update_profile(
    payload: ProfilePayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = reputation.update_profile(db, principal, payload.model_dump(exclude_none=True))
    dispatch_outbox(db, messages)
    return ok(data, "Profile updated.")


@router.delete("/me")
def delete_account(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok(reputation.soft_delete_account(db, principal), "Account deactivated.")


@router.get("/me/credits")
def my_credits(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok(ad_billing.credit_history(db, principal))


@router.get("/{user_id}/credits")
def user_credits(
    user_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(ad_billing.credit_history(db, principal, user_id))


class ReviewPayload(BaseModel):
    freight_id: Optional[int] = None
    rating: Optional[int] = None
    comment: Optional[str] = None


@router.post("/{user_id}/reviews")
def submit_review(
    user_id: int,
    payload: ReviewPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = reputation.submit_review(db, principal, user_id, payload.model_dump())
    dispatch_outbox(db, messages)
    return ok(data, "Review submitted.")


@router.get("/{user_id}/reviews")
def list_reviews(user_id: int, db: Session = Depends(get_db)) -> JSONResponse:
    return ok(reputation.list_reviews(db, user_id))
