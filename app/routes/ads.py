import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies.pricing import get_pricing
from app.dependencies.principal import Principal, get_optional_principal, get_principal
from app.services import ad_billing
from app.services.pricing import PricingSnapshot
from app.utils.responses import ok, request_meta

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ads", tags=["ads"])


class ImpressionPayload(BaseModel):
    ad_ids: List[Any] = Field(default_factory=list)


class AdEventPayload(BaseModel):
    id: Optional[Any] = None
    event_type: str = "CLICK"


class AdPayload(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    destination_url: Optional[str] = None
    position: Optional[str] = None
    location_city: Optional[str] = None
    location_state: Optional[str] = None
    status: Optional[str] = None
    expires_at: Optional[str] = None
    house: bool = False


@router.get("")
def find(
    position: str = Query(default=""),
    state: str = Query(default=""),
    city: str = Query(default=""),
    search: str = Query(default=""),
    limit: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> JSONResponse:
    ads = ad_billing.find_ads(db, position=position, state=state, city=city, search=search, limit=limit)
    return ok(ads)


@router.post("/impressions")
def impressions(
    payload: ImpressionPayload,
    pricing: PricingSnapshot = Depends(get_pricing),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(ad_billing.serve_ads(db, payload.ad_ids, pricing))


@router.post("/events")
def record_event(
    payload: AdEventPayload,
    request: Request,
    pricing: PricingSnapshot = Depends(get_pricing),
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    result = ad_billing.record_event(
        db,
        payload.id,
        payload.event_type,
        pricing,
        user_id=principal.id if principal else None,
        meta=request_meta(request),
    )
    return ok(result)


@router.get("/mine")
def mine(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok(ad_billing.list_ads(db, principal))


@router.post("")
def create(
    payload: AdPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(ad_billing.save_ad(db, principal, payload.model_dump(exclude_none=True)), "Ad saved.", status_code=201)


@router.put("/{ad_id}")
def update(
    ad_id: int,
    payload: AdPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    values = payload.model_dump(exclude_unset=True, exclude_none=True)
    return ok(ad_billing.save_ad(db, principal, values, ad_id=ad_id), "Ad saved.")


@router.post("/{ad_id}/toggle")
def toggle(ad_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok(ad_billing.toggle_ad(db, principal, ad_id))


@router.delete("/{ad_id}")
def delete(ad_id: int, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok(ad_billing.delete_ad(db, principal, ad_id), "Ad removed.")


@router.get("/{ad_id}/performance")
def performance(
    ad_id: int,
    days: int = Query(default=30, ge=1, le=365),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(ad_billing.performance_report(db, principal, ad_id, days))
