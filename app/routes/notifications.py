from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.database import get_db
from app.dependencies.principal import Principal, get_principal
from app.services import notifications
from app.utils.responses import ok

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("")
def inbox(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=notifications.INBOX_LIMIT, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    items = notifications.list_notifications(db, principal.id, unread_only=unread_only, limit=limit)
    return ok({"unread_count": notifications.unread_count(db, principal.id), "notifications": items})


@router.get("/unread-count")
def unread_count(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    """Badge count; does not mark anything read."""
    return ok({"unread_count": notifications.unread_count(db, principal.id)})


@router.post("/{notification_id}/read")
def mark_read(
    notification_id: int,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> JSONResponse:
    if not notifications.mark_read(db, notification_id, principal.id):
        raise NotFoundError("Notification not found.")
    return ok({"id": notification_id, "is_read": True})


@router.post("/read-all")
def mark_all_read(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> JSONResponse:
    return ok({"updated": notifications.mark_all_read(db, principal.id)})
