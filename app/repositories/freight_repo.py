"""
Freight repository: reads and writes for freights and their click_logs.
Raw SQL via text() except the assignment row lock, which goes through the ORM
so the FOR UPDATE clause is emitted only where the dialect supports it.
"""
import logging
import math
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.database import text_ts
from app.models.freight import Freight
from app.models.ledger import ClickLog

logger = logging.getLogger(__name__)

TARGET_TYPES = frozenset({"FREIGHT", "AD", "LISTING", "WA_GROUP"})
COUNTER_TABLES = {"FREIGHT": "freights", "AD": "ads"}
CLICK_EVENTS = frozenset({"WHATSAPP_CLICK", "SHARE", "CONTACT_INIT"})

UPDATABLE_COLUMNS = (
    "origin_city",
    "origin_state",
    "dest_city",
    "dest_state",
    "product",
    "weight",
    "price",
    "vehicle_type",
    "body_type",
    "description",
    "whatsapp",
    "slug",
    "status",
    "is_featured",
    "expires_at",
    "payment_status",
    "deleted_at",
    "finished_at",
    "assigned_driver_id",
)
TIMESTAMP_COLUMNS = ("expires_at", "deleted_at", "finished_at", "updated_at")

SEARCH_COLUMNS = (
    "f.product",
    "f.origin_city",
    "f.origin_state",
    "f.dest_city",
    "f.dest_state",
    "f.vehicle_type",
    "f.body_type",
    "f.description",
)


# ---------------------------------------------------------------------------
# Single-row reads
# ---------------------------------------------------------------------------

def get_freight(db: Session, freight_id: int, *, include_deleted: bool = False) -> dict[str, Any] | None:
    deleted_filter = "" if include_deleted else "AND deleted_at IS NULL"
    row = db.execute(
        text(f"SELECT * FROM freights WHERE id = :id {deleted_filter}"),
        {"id": freight_id},
    ).mappings().first()
    return dict(row) if row else None


def lock_freight(db: Session, freight_id: int) -> Freight | None:
    return (
        db.query(Freight)
        .filter(Freight.id == freight_id, Freight.deleted_at.is_(None))
        .with_for_update()
        .populate_existing()
        .first()
    )


def get_detail(db: Session, *, freight_id: int | None = None, slug: str | None = None) -> dict[str, Any] | None:
    if freight_id is None and not slug:
        return None
    where = "f.id = :key" if freight_id is not None else "f.slug = :key"
    row = db.execute(
        text(
            f"""
            SELECT f.*,
                   u.name AS owner_name,
                   u.whatsapp AS owner_whatsapp,
                   u.avatar_url AS owner_avatar,
                   u.rating_avg AS owner_rating,
                   u.is_verified AS owner_verified
            FROM freights f
            JOIN users u ON u.id = f.user_id
            WHERE {where}
              AND f.deleted_at IS NULL
            """
        ),
        {"key": freight_id if freight_id is not None else slug.strip()},
    ).mappings().first()
    return dict(row) if row else None


def slug_exists(db: Session, slug: str, exclude_id: int | None = None) -> bool:
    row = db.execute(
        text("SELECT id FROM freights WHERE slug = :slug AND (:exclude_id IS NULL OR id <> :exclude_id)"),
        {"slug": slug, "exclude_id": exclude_id},
    ).first()
    return row is not None


def last_post_at(db: Session, user_id: int) -> Any:
    return db.execute(
        text("SELECT MAX(created_at) FROM freights WHERE user_id = :user_id"),
        {"user_id": user_id},
    ).scalar()


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def insert_freight(db: Session, values: dict[str, Any]) -> Freight:
    freight = Freight(**values)
    db.add(freight)
    db.flush()
    return freight


def update_columns(db: Session, freight_id: int, values: dict[str, Any], now: datetime) -> int:
    changes = {key: value for key, value in values.items() if key in UPDATABLE_COLUMNS}
    if not changes:
        return 0
    changes["updated_at"] = now
    assignments = ", ".join(f"{column} = :{column}" for column in changes)
    stamps = [column for column in changes if column in TIMESTAMP_COLUMNS]
    result = db.execute(
        text_ts(f"UPDATE freights SET {assignments} WHERE id = :freight_id", *stamps),
        {**changes, "freight_id": freight_id},
    )
    return result.rowcount


def claim_for_driver(db: Session, freight_id: int, driver_id: int, now: datetime) -> int:
    """Guarded OPEN -> IN_PROGRESS; returns 0 when another writer got there first."""
    result = db.execute(
        text_ts(
            """
            UPDATE freights
            SET assigned_driver_id = :driver_id,
                status = 'IN_PROGRESS',
                updated_at = :now
            WHERE id = :freight_id
              AND status = 'OPEN'
              AND deleted_at IS NULL
            """,
            "now",
        ),
        {"driver_id": driver_id, "freight_id": freight_id, "now": now},
    )
    return result.rowcount


def mark_finished(db: Session, freight_id: int, now: datetime, status: str = "FINISHED") -> int:
    result = db.execute(
        text_ts(
            """
            UPDATE freights
            SET status = :status,
                finished_at = :now,
                updated_at = :now
            WHERE id = :freight_id
              AND status = 'IN_PROGRESS'
            """,
            "now",
        ),
        {"freight_id": freight_id, "now": now, "status": status},
    )
    return result.rowcount


def insert_click_log(
    db: Session,
    *,
    target_id: int,
    target_type: str,
    event_type: str,
    user_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    referer_url: str | None = None,
    now: datetime | None = None,
) -> None:
    db.add(
        ClickLog(
            user_id=user_id if user_id and int(user_id) > 0 else None,
            target_id=target_id,
            target_type=target_type,
            event_type=event_type,
            ip_address=(ip_address or None),
            user_agent=(user_agent or "")[:255] or None,
            referer_url=(referer_url or "")[:255] or None,
            created_at=now,
        )
    )
    db.flush()


def bump_counter(db: Session, target_type: str, event_type: str, target_id: int) -> bool:
    table = COUNTER_TABLES.get(target_type)
    if event_type == "VIEW":
        column = "views_count"
    elif event_type in CLICK_EVENTS:
        column = "clicks_count"
    else:
        return False
    if not table:
        return False
    result = db.execute(
        text(f"UPDATE {table} SET {column} = {column} + 1 WHERE id = :id"),
        {"id": target_id},
    )
    return result.rowcount > 0


# ---------------------------------------------------------------------------
# Listings and dashboards
# ---------------------------------------------------------------------------

def _search_clause(search: str, params: dict[str, Any]) -> str:
    tokens = [token for token in search.lower().split() if len(token) >= 2]
    params["term_like"] = f"%{search.lower()}%"
    if not tokens:
        return (
            " AND (LOWER(f.product) LIKE :term_like"
            " OR LOWER(f.origin_state) LIKE :term_like"
            " OR LOWER(f.dest_state) LIKE :term_like)"
        )

    token_clauses = []
    for index, token in enumerate(tokens):
        key = f"tok_{index}"
        params[key] = f"%{token}%"
        columns = " OR ".join(f"LOWER(COALESCE({column}, '')) LIKE :{key}" for column in SEARCH_COLUMNS)
        token_clauses.append(f"({columns})")

    return (
        " AND ("
        f"({' AND '.join(token_clauses)})"
        " OR LOWER(f.product) LIKE :term_like"
        " OR LOWER(f.origin_city) LIKE :term_like"
        " OR LOWER(u.name) LIKE :term_like"
        ")"
    )


def list_paginated(
    db: Session,
    *,
    search: str = "",
    page: int = 1,
    per_page: int = 15,
    owner_id: int | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if owner_id is not None:
        where = " WHERE f.deleted_at IS NULL AND f.user_id = :owner_id"
        params["owner_id"] = owner_id
        if status:
            where += " AND f.status = :status"
            params["status"] = status
        order = "f.created_at DESC, f.id DESC"
    else:
        where = " WHERE f.deleted_at IS NULL AND f.status = 'OPEN'"
        order = "f.is_featured DESC, f.id DESC"

    search = (search or "").strip()
    if search:
        where += _search_clause(search, params)

    total_items = int(
        db.execute(
            text(f"SELECT COUNT(*) FROM freights f LEFT JOIN users u ON u.id = f.user_id {where}"),
            params,
        ).scalar()
        or 0
    )

    rows = db.execute(
        text(
            f"""
            SELECT f.*,
                   u.name AS company_name,
                   u.avatar_url AS avatar_url,
                   (SELECT COUNT(*) FROM click_logs cl
                     WHERE cl.target_id = f.id AND cl.target_type = 'FREIGHT'
                       AND cl.event_type = 'WHATSAPP_CLICK') AS total_leads,
                   (SELECT COUNT(*) FROM click_logs cl
                     WHERE cl.target_id = f.id AND cl.target_type = 'FREIGHT'
                       AND cl.event_type IN ('VIEW', 'VIEW_DETAILS')) AS total_views,
                   (SELECT COUNT(*) FROM click_logs cl
                     WHERE cl.target_id = f.id AND cl.target_type = 'FREIGHT'
                       AND cl.event_type = 'CARD_CLICK') AS total_clicks,
                   (SELECT MAX(cl.created_at) FROM click_logs cl
                     WHERE cl.target_id = f.id AND cl.target_type = 'FREIGHT') AS last_interaction_at
            FROM freights f
            LEFT JOIN users u ON u.id = f.user_id
            {where}
            ORDER BY {order}
            LIMIT :limit OFFSET :offset
            """
        ),
        {**params, "limit": per_page, "offset": (page - 1) * per_page},
    ).mappings().all()

    return {
        "items": [dict(row) for row in rows],
        "meta": {
            "total_items": total_items,
            "total_pages": max(math.ceil(total_items / per_page), 1),
            "current_page": page,
            "per_page": per_page,
        },
    }


def interested_drivers(db: Session, company_id: int | None, freight_id: int | None = None) -> list[dict[str, Any]]:
    params: dict[str, Any] = {}
    filters = ""
    if company_id is not None:
        filters += " AND f.user_id = :company_id"
        params["company_id"] = company_id
    if freight_id is not None:
        filters += " AND f.id = :freight_id"
        params["freight_id"] = freight_id

    rows = db.execute(
        text(
            f"""
            SELECT u.id AS driver_id,
                   u.name AS driver_name,
                   u.whatsapp AS driver_whatsapp,
                   u.rating_avg AS rating,
                   u.avatar_url,
                   u.vehicle_type,
                   f.id AS freight_id,
                   f.product,
                   f.origin_city,
                   f.dest_city,
                   COUNT(cl.id) AS interactions,
                   MAX(cl.created_at) AS last_interest_at
            FROM click_logs cl
            JOIN users u ON u.id = cl.user_id
            JOIN freights f ON f.id = cl.target_id
            WHERE cl.target_type = 'FREIGHT'
              AND u.role = 'DRIVER'
              {filters}
            GROUP BY u.id, u.name, u.whatsapp, u.rating_avg, u.avatar_url, u.vehicle_type,
                     f.id, f.product, f.origin_city, f.dest_city
            ORDER BY last_interest_at DESC
            """
        ),
        params,
    ).mappings().all()
    return [dict(row) for row in rows]


def owner_summary(db: Session, user_id: int) -> dict[str, Any]:
    totals = db.execute(
        text(
            """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(CASE WHEN status = 'OPEN' THEN 1 ELSE 0 END), 0) AS open,
                   COALESCE(SUM(CASE WHEN status = 'PENDING' THEN 1 ELSE 0 END), 0) AS pending,
                   COALESCE(SUM(CASE WHEN status = 'IN_PROGRESS' THEN 1 ELSE 0 END), 0) AS in_progress,
                   COALESCE(SUM(views_count), 0) AS views,
                   COALESCE(SUM(clicks_count), 0) AS clicks
            FROM freights
            WHERE user_id = :user_id AND deleted_at IS NULL
            """
        ),
        {"user_id": user_id},
    ).mappings().first()
    leads = db.execute(
        text(
            """
            SELECT COUNT(*)
            FROM click_logs cl
            JOIN freights f ON f.id = cl.target_id
            WHERE cl.target_type = 'FREIGHT'
              AND cl.event_type = 'WHATSAPP_CLICK'
              AND f.user_id = :user_id
              AND f.deleted_at IS NULL
            """
        ),
        {"user_id": user_id},
    ).scalar()
    return {**dict(totals), "leads": int(leads or 0)}
