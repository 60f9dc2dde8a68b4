"""Ad ranking and credit metering.

Ranking: city match 100, else state match 50, else 10; owners with a
positive balance get +200, so funded ads always outrank unfunded ones.
Ties rotate randomly.

Billing: every served or clicked event is priced from the injected
``PricingSnapshot`` and debited with a guarded UPDATE (``credit_balance >=
cost``), so a balance never goes negative. When the owner cannot cover an
event the ad is paused in the same transaction. House ads (no owner) are
never billed.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from app.core.config import settings as core_settings
from app.core.errors import (
    AuthenticationError,
    AuthorizationError,
    BillingUnavailableError,
    InsufficientBalanceError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from app.core.permissions import is_admin, require, require_owner_or_admin
from app.database import transaction
from app.repositories import ad_repo, freight_repo
from app.services.content_filter import is_content_clean, strip_tags
from app.services.pricing import EVENT_TYPES, PricingSnapshot, pricing_provider, setting_key
from app.utils.timeutils import as_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

RECHARGE = "RECHARGE"
CONSUMPTION = "CONSUMPTION"
STATUS_COMPLETED = "completed"
STATUS_INSUFFICIENT = "insufficient_funds"

AD_STATUSES = frozenset({"active", "paused", "rejected"})
VIEW_EVENTS = frozenset({"VIEW", "VIEW_DETAILS"})
CLICK_EVENTS = frozenset({"CLICK", "WHATSAPP_CLICK"})


def _money(value: Any) -> Decimal:
    amount = Decimal(str(value)).quantize(Decimal("0.01"))
    if not amount.is_finite():
        raise InvalidOperation(f"non-finite amount: {value!r}")
    return amount


def _serialize_ad(row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    data["is_deleted"] = bool(data.get("is_deleted"))
    for key in ("expires_at", "created_at"):
        if key in data:
            data[key] = isoformat(data[key])
    if "priority" in data and data["priority"] is not None:
        data["priority"] = int(data["priority"])
    return data


# ---------------------------------------------------------------------------
# Ranking and metering
# ---------------------------------------------------------------------------

def find_ads(
    db: Session,
    position: str = "",
    state: str = "",
    city: str = "",
    search: str = "",
    limit: int | None = None,
) -> list[dict[str, Any]]:
    limit = core_settings.AD_DEFAULT_LIMIT if not limit else limit
    limit = min(max(int(limit), 1), core_settings.AD_MAX_LIMIT)
    rows = ad_repo.find_ads(
        db,
        now=utcnow(),
        position=(position or "").strip(),
        state=state,
        city=city,
        search=(search or "").strip(),
        limit=limit,
    )
    return [_serialize_ad(row) for row in rows]


def _charge(db: Session, ad: Mapping[str, Any], event_type: str, cost: Decimal, now) -> bool:
    """Debit the owner for one event; returns False when the balance cannot cover it."""
    if ad.get("user_id") is None or cost <= 0:
        return True
    if ad_repo.debit_owner(db, ad["id"], cost):
        ad_repo.insert_transaction(
            db,
            user_id=ad["user_id"],
            ad_id=ad["id"],
            amount=-cost,
            kind=CONSUMPTION,
            event_type=event_type,
            status=STATUS_COMPLETED,
            now=now,
        )
        return True
    return False


def serve_ads(db: Session, ad_ids: Iterable[Any], pricing: PricingSnapshot) -> dict[str, Any]:
    """Record one impression per ad and bill the VIEW price."""
    ids = list(OrderedDict.fromkeys(int(ad_id) for ad_id in ad_ids if str(ad_id).strip().isdigit()))
    if not ids:
        raise ValidationError("ID ausente")

    cost = pricing.cost_for("VIEW") or Decimal("0")
    now = utcnow()
    served: list[int] = []
    charged: list[int] = []
    paused: list[int] = []

    try:
        with transaction(db, "ads.serve"):
            for ad_id in ids:
                ad = ad_repo.get_ad(db, ad_id)
                if not ad or ad["status"] != "active":
                    continue
                if not ad_repo.increment_counter(db, ad_id, "views_count"):
                    continue
                served.append(ad_id)
                freight_repo.insert_click_log(db, target_id=ad_id, target_type="AD", event_type="VIEW", now=now)
                if ad.get("user_id") is None or cost <= 0:
                    continue
                if _charge(db, ad, "VIEW", cost, now):
                    charged.append(ad_id)
                else:
                    ad_repo.set_status(db, ad_id, "paused")
                    paused.append(ad_id)
    except InternalError as exc:
        raise BillingUnavailableError() from exc

    for ad_id in paused:
        logger.info("ad paused for insufficient balance ad_id=%s", ad_id)
    return {"served": served, "charged": charged, "paused": paused, "cost": float(cost)}


def record_event(
    db: Session,
    ad_id: Any,
    event_type: str,
    pricing: PricingSnapshot,
    user_id: int | None = None,
    meta: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Count one interaction on an ad and bill it.

    When the owner cannot pay, the counter still moves, the ledger gets a
    zero-amount ``insufficient_funds`` entry, the ad is paused and the caller
    receives ``InsufficientBalanceError`` after the commit.
    """
    if ad_id in (None, "") or not str(ad_id).strip().isdigit():
        raise ValidationError("ID ausente")
    ad_id = int(ad_id)
    event_type = (event_type or "CLICK").strip().upper()
    cost = pricing.cost_for(event_type)
    if cost is None:
        raise ValidationError("Unknown event type.", event_type=event_type)

    meta = meta or {}
    now = utcnow()
    column = "views_count" if event_type in VIEW_EVENTS else "clicks_count"

    try:
        with transaction(db, "ads.record_event"):
            ad = ad_repo.get_ad(db, ad_id)
            if not ad:
                raise NotFoundError("Ad not found.")
            ad_repo.increment_counter(db, ad_id, column)
            freight_repo.insert_click_log(
                db,
                target_id=ad_id,
                target_type="AD",
                event_type=event_type,
                user_id=user_id,
                ip_address=meta.get("ip"),
                user_agent=meta.get("user_agent"),
                referer_url=meta.get("referer"),
                now=now,
            )
            paid = _charge(db, ad, event_type, cost, now)
            if not paid:
                ad_repo.insert_transaction(
                    db,
                    user_id=ad["user_id"],
                    ad_id=ad_id,
                    amount=Decimal("0.00"),
                    kind=CONSUMPTION,
                    event_type=event_type,
                    status=STATUS_INSUFFICIENT,
                    note=f"unbilled {event_type} cost={cost}",
                    now=now,
                )
                ad_repo.set_status(db, ad_id, "paused")
    except InternalError as exc:
        raise BillingUnavailableError() from exc

    if not paid:
        logger.info("ad paused on %s ad_id=%s cost=%s", event_type, ad_id, cost)
        raise InsufficientBalanceError(ad_id=ad_id, paused=True)

    charged = cost if ad.get("user_id") is not None else Decimal("0")
    return {"ad_id": ad_id, "event_type": event_type, "charged": float(charged)}


# ---------------------------------------------------------------------------
# Ad management
# ---------------------------------------------------------------------------

def _clean_ad_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in ad_repo.AD_COLUMNS:
        if field not in payload or payload[field] is None:
            continue
        value = payload[field]
        if field == "expires_at":
            try:
                values[field] = as_utc(value) if value else None
            except (TypeError, ValueError, AttributeError):
                raise ValidationError("Invalid expiry date.")
            continue
        value = str(value).strip()
        if field == "description":
            value = strip_tags(value)
        elif field == "category":
            value = value.upper() or "OUTROS"
        elif field == "status":
            value = value.lower()
            if value not in AD_STATUSES:
                raise ValidationError("Invalid ad status.")
        values[field] = value
    return values


def save_ad(db: Session, principal, payload: Mapping[str, Any], ad_id: int | None = None) -> dict[str, Any]:
    require(principal, "ad.manage")
    values = _clean_ad_fields(payload)
    if values.get("status") == "rejected" and not is_admin(principal):
        raise AuthorizationError("Only moderators can reject ads.")
    if not is_content_clean(values.get("title"), values.get("description")):
        raise ValidationError("Content rejected by the moderation filter.")

    with transaction(db, "ads.save"):
        if ad_id is None:
            if not values.get("title"):
                raise ValidationError("Title is required.")
            house = bool(payload.get("house")) and is_admin(principal)
            ad = ad_repo.insert_ad(
                db,
                {
                    "user_id": None if house else principal.id,
                    "title": values["title"],
                    "category": values.get("category", "OUTROS"),
                    "description": values.get("description", ""),
                    "image_url": values.get("image_url", ""),
                    "destination_url": values.get("destination_url", ""),
                    "position": values.get("position") or "sidebar",
                    "location_city": values.get("location_city", ""),
                    "location_state": values.get("location_state", ""),
                    "status": values.get("status", "active"),
                    "expires_at": values.get("expires_at"),
                    "views_count": 0,
                    "clicks_count": 0,
                    "is_deleted": False,
                    "created_at": utcnow(),
                },
            )
            ad_id = ad.id
        else:
            current = ad_repo.get_ad(db, ad_id)
            if not current:
                raise NotFoundError("Ad not found.")
            require_owner_or_admin(principal, current.get("user_id"))
            if "title" in values and not values["title"]:
                raise ValidationError("Title is required.")
            ad_repo.update_ad(db, ad_id, values)

    logger.info("ad saved id=%s by=%s", ad_id, principal.id)
    return {"id": ad_id}


def toggle_ad(db: Session, principal, ad_id: int) -> dict[str, Any]:
    require(principal, "ad.manage")
    with transaction(db, "ads.toggle"):
        current = ad_repo.get_ad(db, ad_id)
        if not current:
            raise NotFoundError("Ad not found.")
        require_owner_or_admin(principal, current.get("user_id"))
        status = "paused" if current["status"] == "active" else "active"
        if current["status"] == "rejected" and not is_admin(principal):
            raise AuthorizationError("Rejected ads can only be reactivated by moderators.")
        ad_repo.set_status(db, ad_id, status)
    return {"id": ad_id, "status": status}


def delete_ad(db: Session, principal, ad_id: int) -> dict[str, Any]:
    require(principal, "ad.manage")
    with transaction(db, "ads.delete"):
        current = ad_repo.get_ad(db, ad_id)
        if not current:
            raise NotFoundError("Ad not found.")
        require_owner_or_admin(principal, current.get("user_id"))
        ad_repo.soft_delete(db, ad_id)
    logger.info("ad deleted id=%s by=%s", ad_id, principal.id)
    return {"id": ad_id, "status": "rejected"}


def list_ads(db: Session, principal) -> list[dict[str, Any]]:
    require(principal, "ad.manage")
    owner = None if is_admin(principal) else principal.id
    return [_serialize_ad(row) for row in ad_repo.list_owner_ads(db, owner)]


def performance_report(db: Session, principal, ad_id: int, days: int = 30) -> list[dict[str, Any]]:
    require(principal, "ad.manage")
    ad = ad_repo.get_ad(db, ad_id, include_deleted=True)
    if not ad:
        raise NotFoundError("Ad not found.")
    require_owner_or_admin(principal, ad.get("user_id"))

    since = utcnow() - timedelta(days=max(int(days), 1))
    per_day: dict[str, dict[str, Any]] = {}
    for event in ad_repo.ad_events_since(db, ad_id, since):
        created = as_utc(event["created_at"])
        day = created.date().isoformat()
        bucket = per_day.setdefault(day, {"day": day, "views": 0, "clicks": 0})
        if event["event_type"] in VIEW_EVENTS:
            bucket["views"] += 1
        elif event["event_type"] in CLICK_EVENTS:
            bucket["clicks"] += 1
    return [per_day[day] for day in sorted(per_day)]


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------

def add_credits(db: Session, principal, user_id: int, amount: Any, note: str | None = None) -> dict[str, Any]:
    require(principal, "credits.grant")
    try:
        amount = _money(amount)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("Amount must be numeric.")
    if amount <= 0:
        raise ValidationError("Amount must be positive.")

    now = utcnow()
    with transaction(db, "credits.add"):
        if not ad_repo.credit_user(db, user_id, amount):
            raise NotFoundError("User not found.")
        ad_repo.insert_transaction(db, user_id=user_id, amount=amount, kind=RECHARGE, note=note, now=now)
        resumed = ad_repo.resume_paused_ads(db, user_id, now)
        balance = ad_repo.get_balance(db, user_id)

    logger.info("credits added user_id=%s amount=%s resumed_ads=%s by=%s", user_id, amount, resumed, principal.id)
    return {"user_id": user_id, "balance": float(balance or 0), "resumed_ads": resumed}


def credit_history(db: Session, principal, user_id: int | None = None) -> dict[str, Any]:
    if principal is None:
        raise AuthenticationError()
    target = principal.id if user_id is None else int(user_id)
    require_owner_or_admin(principal, target)
    entries = ad_repo.list_transactions(db, target)
    for entry in entries:
        entry["amount"] = float(entry["amount"] or 0)
        entry["created_at"] = isoformat(entry["created_at"])
    balance = ad_repo.get_balance(db, target)
    return {"user_id": target, "balance": float(balance or 0), "transactions": entries}


def save_pricing(db: Session, principal, prices: Mapping[str, Any]) -> dict[str, float]:
    require(principal, "credits.grant")
    now = utcnow()
    saved: dict[str, float] = {}
    with transaction(db, "pricing.save"):
        for event_type, raw in prices.items():
            event_type = str(event_type).upper()
            try:
                value = _money(raw)
            except (InvalidOperation, ValueError, TypeError):
                raise ValidationError("Prices must be numeric.", event_type=event_type)
            if value < 0 or event_type not in EVENT_TYPES:
                raise ValidationError("Invalid price entry.", event_type=event_type)
            ad_repo.save_setting(db, setting_key(event_type), str(value), now)
            saved[event_type] = float(value)
    pricing_provider.invalidate()
    return saved
