"""Freight lifecycle: posting, editing, moderation, assignment and completion.

Every mutation runs inside ``transaction()`` and returns ``(data, outbox)``.
The caller dispatches the outbox only after the commit, so a failing
notification channel can never undo a freight write.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings as core_settings
from app.core.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from app.core.permissions import is_admin, require, require_owner_or_admin
from app.database import transaction
from app.repositories import freight_repo, user_repo
from app.services import freight_states as states
from app.services import outbox, reputation
from app.services.content_filter import digits_only, format_phone, is_content_clean, strip_tags
from app.services.outbox import OutboxMessage
from app.services.slugs import freight_slug_base, with_suffix
from app.utils.timeutils import as_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BODY = "Qualquer"
IDENTITY_FIELDS = ("product", "origin_city", "dest_city")
TEXT_FIELDS = (
    "origin_city",
    "origin_state",
    "dest_city",
    "dest_state",
    "product",
    "vehicle_type",
    "body_type",
    "description",
    "whatsapp",
)
NOT_AVAILABLE = "Freight is no longer available."
MAX_AMOUNT = Decimal("9999999999.99")  # NUMERIC(12, 2)


def _money(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value if value not in (None, "") else 0))
        if not amount.is_finite() or amount > MAX_AMOUNT:
            raise ValidationError("Weight and price must be numeric.")
        return max(amount, Decimal("0")).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        raise ValidationError("Weight and price must be numeric.")


def _clean_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Normalise the writable freight fields present in ``payload``."""
    values: dict[str, Any] = {}
    for field in TEXT_FIELDS:
        if field not in payload or payload[field] is None:
            continue
        value = str(payload[field]).strip()
        if field in ("origin_state", "dest_state"):
            value = value.upper()[:2]
        elif field == "description":
            value = strip_tags(value)
        elif field == "whatsapp":
            value = digits_only(value)
        elif field in ("vehicle_type", "body_type"):
            value = value or DEFAULT_BODY
        values[field] = value

    for field in ("weight", "price"):
        if field in payload and payload[field] is not None:
            values[field] = _money(payload[field])
    return values


def _unique_slug(db: Session, product: str, origin_city: str, dest_city: str, exclude_id: int | None = None) -> str:
    base = freight_slug_base(product, origin_city, dest_city)
    for _ in range(max(core_settings.SLUG_MAX_ATTEMPTS, 1)):
        candidate = with_suffix(base)
        if not freight_repo.slug_exists(db, candidate, exclude_id):
            return candidate
    logger.error("slug generation exhausted base=%s", base)
    raise InternalError("Could not generate a unique link for this freight.")


def _load_for_update(db: Session, freight_id: int) -> dict[str, Any]:
    if not freight_id:
        raise ValidationError("Freight id is required.")
    freight = freight_repo.get_freight(db, freight_id)
    if not freight:
        raise NotFoundError("Freight not found.")
    return freight


def _audit(db: Session, freight_id: int, event_type: str, user_id: int | None, now: datetime) -> None:
    freight_repo.insert_click_log(
        db,
        target_id=freight_id,
        target_type="FREIGHT",
        event_type=event_type,
        user_id=user_id,
        now=now,
    )


def _finish(
    db: Session, freight: Mapping[str, Any], actor_id: int | None, now: datetime, status: str = states.FINISHED
) -> list[OutboxMessage]:
    if not freight_repo.mark_finished(db, freight["id"], now, status):
        raise ConflictError("Freight must be in progress to be finished.")
    _audit(db, freight["id"], "DELIVERED", actor_id, now)
    return reputation.refresh_driver_standing(db, freight.get("assigned_driver_id"))


# ---------------------------------------------------------------------------
# Posting and editing
# ---------------------------------------------------------------------------

def create_freight(db: Session, principal, payload: Mapping[str, Any]) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.create")

    values = _clean_fields(payload)
    if not values.get("origin_city") or not values.get("dest_city") or not values.get("product"):
        raise ValidationError("Origin, destination and product are required.")

    owner = user_repo.get_user(db, principal.id)
    if not owner:
        raise AuthenticationError()
    admin = is_admin(principal)
    if not admin and (owner.get("document_status") or "").lower() != "approved":
        raise AuthorizationError("Documents must be approved before posting freights.")

    now = utcnow()
    last = as_utc(freight_repo.last_post_at(db, principal.id))
    cooldown = timedelta(seconds=core_settings.FREIGHT_POST_COOLDOWN_SECONDS)
    if last and now - last < cooldown:
        wait = int((cooldown - (now - last)).total_seconds()) + 1
        raise RateLimitError(f"Wait {wait} seconds before posting another freight.", retry_after=wait)

    if not is_content_clean(values.get("product"), values.get("description")):
        raise ValidationError("Content rejected by the moderation filter.")

    featured = bool(payload.get("is_featured") or payload.get("featured"))
    status = states.OPEN if admin or owner.get("is_verified") else states.PENDING
    days = core_settings.FEATURED_FREIGHT_EXPIRY_DAYS if featured else core_settings.FREIGHT_EXPIRY_DAYS
    expires_at = now + timedelta(days=days)

    with transaction(db, "freight.create"):
        slug = _unique_slug(db, values["product"], values["origin_city"], values["dest_city"])
        freight = freight_repo.insert_freight(
            db,
            {
                "user_id": principal.id,
                "origin_city": values["origin_city"],
                "origin_state": values.get("origin_state", ""),
                "dest_city": values["dest_city"],
                "dest_state": values.get("dest_state", ""),
                "product": values["product"],
                "weight": values.get("weight", Decimal("0.00")),
                "price": values.get("price", Decimal("0.00")),
                "vehicle_type": values.get("vehicle_type") or DEFAULT_BODY,
                "body_type": values.get("body_type") or DEFAULT_BODY,
                "description": values.get("description", ""),
                "whatsapp": values.get("whatsapp") or digits_only(owner.get("whatsapp")),
                "status": status,
                "slug": slug,
                "is_featured": featured,
                "expires_at": expires_at,
                "payment_status": "PENDING",
                "created_at": now,
                "updated_at": now,
            },
        )
        freight_id = freight.id

    messages = [outbox.match(freight_id)] if status == states.OPEN else []
    logger.info("freight created id=%s owner=%s status=%s", freight_id, principal.id, status)
    return {"id": freight_id, "slug": slug, "status": status, "expires_at": expires_at.isoformat()}, messages


def update_freight(
    db: Session, principal, freight_id: int, payload: Mapping[str, Any]
) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.update")
    now = utcnow()

    with transaction(db, "freight.update"):
        current = _load_for_update(db, freight_id)
        require_owner_or_admin(principal, current["user_id"])
        if states.is_terminal(current["status"]):
            raise ConflictError("Finished or closed freights cannot be edited.")

        values = _clean_fields(payload)
        for field in IDENTITY_FIELDS:
            if field in values and not values[field]:
                raise ValidationError("Origin, destination and product are required.")

        merged = {**current, **values}
        if not is_content_clean(merged.get("product"), merged.get("description")):
            raise ValidationError("Content rejected by the moderation filter.")

        slug_changed = any(
            field in values and values[field] != (current.get(field) or "") for field in IDENTITY_FIELDS
        )
        if slug_changed:
            values["slug"] = _unique_slug(
                db, merged["product"], merged["origin_city"], merged["dest_city"], exclude_id=freight_id
            )

        freight_repo.update_columns(db, freight_id, values, now)

    slug = values.get("slug", current["slug"])
    logger.info("freight updated id=%s fields=%s slug_changed=%s", freight_id, sorted(values), slug_changed)
    return {"id": freight_id, "slug": slug, "status": current["status"], "slug_changed": slug_changed}, []


def soft_delete(db: Session, principal, freight_id: int) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.delete")
    now = utcnow()

    with transaction(db, "freight.soft_delete"):
        current = freight_repo.get_freight(db, freight_id, include_deleted=True)
        if not current or current.get("deleted_at") is not None:
            raise NotFoundError("Freight not found or already removed.")
        require_owner_or_admin(principal, current["user_id"])
        if states.normalise(current["status"]) not in states.DELETABLE:
            raise ConflictError("Only pending or open freights can be removed.")

        freight_repo.update_columns(db, freight_id, {"deleted_at": now, "status": states.CLOSED}, now)
        _audit(db, freight_id, "SOFT_DELETE", principal.id, now)

    logger.info("freight soft-deleted id=%s by=%s", freight_id, principal.id)
    return {"id": freight_id, "status": states.CLOSED}, []


# ---------------------------------------------------------------------------
# Assignment and completion
# ---------------------------------------------------------------------------

def assign_driver(
    db: Session, principal, freight_id: int, driver_id: int
) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.assign")
    if not driver_id:
        raise ValidationError("Driver id is required.")
    now = utcnow()

    with transaction(db, "freight.assign_driver"):
        driver = user_repo.get_user(db, driver_id)
        if not driver or (driver.get("role") or "").upper() != "DRIVER":
            raise NotFoundError("Driver not found.")

        locked = freight_repo.lock_freight(db, freight_id)
        if locked is None:
            raise NotFoundError("Freight not found.")
        require_owner_or_admin(principal, locked.user_id)
        if locked.status != states.OPEN:
            raise ConflictError(NOT_AVAILABLE)
        if not freight_repo.claim_for_driver(db, freight_id, driver_id, now):
            raise ConflictError(NOT_AVAILABLE)
        _audit(db, freight_id, "ASSIGNED", driver_id, now)
        slug = locked.slug
        product = locked.product

    messages = [
        outbox.notify(
            driver_id,
            "Carga Confirmada! 🚛",
            f"Você foi selecionado para o frete de {product}.",
            type="match",
            priority="high",
            action_url=f"/freight/details/{slug}",
            metadata={"freight_id": freight_id},
        )
    ]
    logger.info("driver assigned freight_id=%s driver_id=%s by=%s", freight_id, driver_id, principal.id)
    return {"id": freight_id, "status": states.IN_PROGRESS, "assigned_driver_id": driver_id}, messages


def finish_freight(db: Session, principal, freight_id: int) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.finish")
    now = utcnow()

    with transaction(db, "freight.finish"):
        current = _load_for_update(db, freight_id)
        allowed = (
            is_admin(principal)
            or int(current["user_id"]) == int(principal.id)
            or (current.get("assigned_driver_id") and int(current["assigned_driver_id"]) == int(principal.id))
        )
        if not allowed:
            raise AuthorizationError("Only the owner or the assigned driver can finish this freight.")
        if current["status"] != states.IN_PROGRESS:
            raise ConflictError("Freight must be in progress to be finished.")
        messages = _finish(db, current, principal.id, now)

    logger.info("freight finished id=%s by=%s", freight_id, principal.id)
    return {"id": freight_id, "status": states.FINISHED, "finished_at": now.isoformat()}, messages


def confirm_payment(db: Session, principal, freight_id: int) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.confirm_payment")
    now = utcnow()
    messages: list[OutboxMessage] = []

    with transaction(db, "freight.confirm_payment"):
        current = _load_for_update(db, freight_id)
        require_owner_or_admin(principal, current["user_id"])
        if current["status"] in (states.CLOSED, states.DELETED):
            raise ConflictError("Closed freights cannot be paid.")

        status = current["status"]
        if current.get("payment_status") != "PAID":
            freight_repo.update_columns(db, freight_id, {"payment_status": "PAID"}, now)
            _audit(db, freight_id, "PAYMENT_PAID", principal.id, now)
        if status == states.IN_PROGRESS:
            messages = _finish(db, current, principal.id, now)
            status = states.FINISHED

    logger.info("payment confirmed freight_id=%s status=%s", freight_id, status)
    return {"id": freight_id, "payment_status": "PAID", "status": status}, messages


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------

def change_status(
    db: Session, principal, freight_id: int, status: str, approve_featured: bool = False
) -> tuple[dict[str, Any], list[OutboxMessage]]:
    require(principal, "freight.moderate")
    target = states.normalise(status)
    if target not in states.ALL_STATUSES:
        raise ValidationError("Unknown freight status.")
    now = utcnow()

    with transaction(db, "freight.change_status"):
        current = _load_for_update(db, freight_id)
        if target == states.IN_PROGRESS and current["status"] != states.IN_PROGRESS:
            raise ConflictError("Freights start only through driver assignment.")
        if not states.can_transition(current["status"], target, override=True):
            raise ConflictError(f"Cannot move a {current['status']} freight to {target}.")

        messages: list[OutboxMessage] = []
        if target in states.COMPLETED:
            if approve_featured:
                freight_repo.update_columns(db, freight_id, {"is_featured": True}, now)
            messages = _finish(db, current, principal.id, now, status=target)
        else:
            values: dict[str, Any] = {"status": target}
            if approve_featured:
                values["is_featured"] = True
            if target in (states.CLOSED, states.DELETED):
                values["deleted_at"] = now
            if target in (states.PENDING, states.OPEN):
                values["assigned_driver_id"] = None
            freight_repo.update_columns(db, freight_id, values, now)
            _audit(db, freight_id, f"STATUS_{target}", principal.id, now)

    if current["status"] == states.PENDING and target == states.OPEN:
        messages = [
            outbox.notify(
                current["user_id"],
                "Frete Online!",
                "Seu anúncio foi aprovado.",
                action_url=f"/freight/details/{current['slug']}",
                metadata={"freight_id": freight_id},
            ),
            outbox.match(freight_id),
        ]
    logger.info("freight status id=%s %s -> %s by=%s", freight_id, current["status"], target, principal.id)
    return {"id": freight_id, "status": target}, messages


def update_payment_status(db: Session, principal, freight_id: int, status: str) -> dict[str, Any]:
    require(principal, "freight.payment_status")
    target = states.normalise(status)
    if target not in states.PAYMENT_STATUSES:
        raise ValidationError("Invalid payment status.")
    now = utcnow()

    with transaction(db, "freight.payment_status"):
        _load_for_update(db, freight_id)
        freight_repo.update_columns(db, freight_id, {"payment_status": target}, now)
        _audit(db, freight_id, f"PAYMENT_{target}", principal.id, now)

    return {"id": freight_id, "payment_status": target}


# ---------------------------------------------------------------------------
# Reads and metrics
# ---------------------------------------------------------------------------

def log_event(
    db: Session,
    target_id: int,
    target_type: str,
    event_type: str = "VIEW",
    user_id: int | None = None,
    meta: Mapping[str, Any] | None = None,
) -> bool:
    """Record an interaction and bump the matching counter; never raises."""
    target_type = (target_type or "").upper()
    event_type = (event_type or "VIEW").upper()
    if target_type not in freight_repo.TARGET_TYPES or not target_id:
        return False
    meta = meta or {}

    try:
        with transaction(db, "freight.log_event"):
            freight_repo.bump_counter(db, target_type, event_type, target_id)
            freight_repo.insert_click_log(
                db,
                target_id=target_id,
                target_type=target_type,
                event_type=event_type,
                user_id=user_id,
                ip_address=meta.get("ip"),
                user_agent=meta.get("user_agent"),
                referer_url=meta.get("referer"),
                now=utcnow(),
            )
    except Exception:
        logger.warning("log_event failed target=%s/%s event=%s", target_type, target_id, event_type, exc_info=True)
        return False
    return True


def get_freight(db: Session, *, freight_id: int | None = None, slug: str | None = None) -> dict[str, Any]:
    row = freight_repo.get_detail(db, freight_id=freight_id, slug=slug)
    if not row:
        raise NotFoundError("Freight not found.")
    expires_at = as_utc(row.get("expires_at"))
    row["display_phone"] = format_phone(row.get("whatsapp") or row.get("owner_whatsapp"))
    row["is_expired"] = bool(expires_at and expires_at < utcnow())
    return serialize(row)


def list_freights(
    db: Session,
    *,
    search: str = "",
    page: int = 1,
    per_page: int | None = None,
    owner_id: int | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    per_page = per_page or core_settings.FREIGHT_DEFAULT_PER_PAGE
    per_page = min(max(int(per_page), 1), core_settings.FREIGHT_MAX_PER_PAGE)
    page = max(int(page or 1), 1)
    result = freight_repo.list_paginated(
        db,
        search=search,
        page=page,
        per_page=per_page,
        owner_id=owner_id,
        status=states.normalise(status) or None,
    )
    result["items"] = [serialize(item) for item in result["items"]]
    return result


def interested_drivers(db: Session, principal, freight_id: int | None = None) -> list[dict[str, Any]]:
    require(principal, "freight.leads")
    company_id = None if is_admin(principal) else principal.id
    if freight_id is not None:
        freight = _load_for_update(db, freight_id)
        require_owner_or_admin(principal, freight["user_id"])
    rows = freight_repo.interested_drivers(db, company_id, freight_id)
    for row in rows:
        row["rating"] = round(float(row.get("rating") or 0), 1)
        row["last_interest_at"] = isoformat(row.get("last_interest_at"))
    return rows


def owner_summary(db: Session, principal) -> dict[str, Any]:
    require(principal, "freight.leads")
    totals = freight_repo.owner_summary(db, principal.id)
    views = int(totals.get("views") or 0)
    leads = int(totals.get("leads") or 0)
    totals = {key: int(value or 0) for key, value in totals.items()}
    totals["conversion_rate"] = round(leads / views * 100, 2) if views else 0.0
    return totals


def serialize(row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    for key in ("weight", "price", "owner_rating", "rating_avg"):
        if data.get(key) is not None:
            data[key] = float(data[key])
    for key in ("is_featured", "owner_verified"):
        if key in data and data[key] is not None:
            data[key] = bool(data[key])
    for key in ("expires_at", "created_at", "updated_at", "deleted_at", "finished_at", "last_interaction_at"):
        if key in data:
            data[key] = isoformat(data[key])
    return data
