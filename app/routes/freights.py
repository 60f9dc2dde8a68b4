import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies.principal import Principal, get_optional_principal, get_principal
from app.services import freight_lifecycle
from app.services.outbox import dispatch_outbox
from app.utils.responses import ok, request_meta

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/freights", tags=["freights"])


class FreightPayload(BaseModel):
    origin_city: Optional[str] = None
    origin_state: Optional[str] = None
    dest_city: Optional[str] = None
    dest_state: Optional[str] = None
    product: Optional[str] = None
    weight: Optional[float] = None
    price: Optional[float] = None
    vehicle_type: Optional[str] = None
    body_type: Optional[str] = None
    description: Optional[str] = None
    whatsapp: Optional[str] = None
    is_featured: Optional[bool] = None


class AssignPayload(BaseModel):
    driver_id: int


class EventPayload(BaseModel):
    event_type: str = "VIEW"


@router.get("")
def list_public(
    search: str = Query(default=""),
    page: int = Query(default=1, ge=1),
    per_page: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> JSONResponse:
    result = freight_lifecycle.list_freights(db, search=search, page=page, per_page=per_page)
    return JSONResponse({"success": True, "data": result["items"], "meta": result["meta"]})


@router.get("/mine")
def list_mine(
    status: Optional[str] = Query(default=None),
    search: str = Query(default=""),
    page: int = Query(default=1, ge=1),
    per_page: Optional[int] = Query(default=None, ge=1),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    result = freight_lifecycle.list_freights(
        db, search=search, page=page, per_page=per_page, owner_id=principal.id, status=status
    )
    return JSONResponse({"success": True, "data": result["items"], "meta": result["meta"]})


@router.get("/summary")
def summary(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok(freight_lifecycle.owner_summary(db, principal))


@router.get("/leads")
def leads(
    freight_id: Optional[int] = Query(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    return ok(freight_lifecycle.interested_drivers(db, principal, freight_id))


@router.get("/slug/{slug}")
def detail_by_slug(slug: str, db: Session = Depends(get_db)) -> JSONResponse:
    return ok(freight_lifecycle.get_freight(db, slug=slug))


@router.get("/{freight_id}")
def detail(freight_id: int, db: Session = Depends(get_db)) -> JSONResponse:
    return ok(freight_lifecycle.get_freight(db, freight_id=freight_id))


@router.post("")
def create(
    payload: FreightPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.create_freight(db, principal, payload.model_dump(exclude_none=True))
    dispatch_outbox(db, messages)
    message = "Freight published." if data["status"] == "OPEN" else "Freight submitted for review."
    return ok(data, message, status_code=201)


@router.patch("/{freight_id}")
def update(
    freight_id: int,
    payload: FreightPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.update_freight(
        db, principal, freight_id, payload.model_dump(exclude_unset=True, exclude_none=True)
    )
    dispatch_outbox(db, messages)
    return ok(data, "Freight updated.")


@router.delete("/{freight_id}")
def delete(
    freight_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.soft_delete(db, principal, freight_id)
    dispatch_outbox(db, messages)
    return ok(data, "Freight removed.")


@router.post("/{freight_id}/assign")
def assign(
    freight_id: int,
    payload: AssignPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.assign_driver(db, principal, freight_id, payload.driver_id)
    dispatch_outbox(db, messages)
    return ok(data, "Driver assigned.")


@router.post("/{freight_id}/finish")
def finish(
    freight_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.finish_freight(db, principal, freight_id)
    dispatch_outbox(db, messages)
    return ok(data, "Freight finished.")


@router.post("/{freight_id}/confirm-payment")
def confirm_payment(
    freight_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    data, messages = freight_lifecycle.confirm_payment(db, principal, freight_id)
    dispatch_outbox(db, messages)
    return ok(data, "Payment confirmed.")


@router.post("/{freight_id}/events")
def log_event(
    freight_id: int,
    payload: EventPayload,
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    recorded = freight_lifecycle.log_event(
        db,
        freight_id,
        "FREIGHT",
        payload.event_type,
        user_id=principal.id if principal else None,
        meta=request_meta(request),
    )
    return JSONResponse({"success": recorded})
