"""
Ad repository: ranked ad selection, counters, guarded credit debits and the
credit ledger.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.database import text_ts
from app.models.ad import Ad
from app.models.ledger import CreditTransaction

logger = logging.getLogger(__name__)

PLATFORM_CATEGORY = "PLATAFORMA"
CREDIT_BOOST = 200
CITY_SCORE = 100
STATE_SCORE = 50
BASE_SCORE = 10

AD_COLUMNS = (
    "title",
    "category",
    "description",
    "image_url",
    "destination_url",
    "position",
    "location_city",
    "location_state",
    "status",
    "expires_at",
)


def find_ads(
    db: Session,
    *,
    now: datetime,
    position: str = "",
    state: str = "",
    city: str = "",
    search: str = "",
    limit: int = 5,
) -> list[dict[str, Any]]:
    params: dict[str, Any] = {
        "city": (city or "").strip().upper(),
        "state": (state or "").strip().upper(),
        "now": now,
        "limit": limit,
    }
    filters = ""
    if position:
        filters += " AND a.position = :position"
        params["position"] = position
    if search:
        filters += (
            " AND (LOWER(a.title) LIKE :search"
            " OR LOWER(a.category) LIKE :search"
            " OR LOWER(COALESCE(a.description, '')) LIKE :search"
            " OR a.category = :platform)"
        )
        params["search"] = f"%{search.strip().lower()}%"
        params["platform"] = PLATFORM_CATEGORY

    rows = db.execute(
        text_ts(
            f"""
            SELECT a.*,
                   COALESCE(a.destination_url, '') AS link_url,
                   (CASE
                        WHEN :city <> '' AND COALESCE(a.location_city, '') <> ''
                             AND UPPER(a.location_city) = :city THEN {CITY_SCORE}
                        WHEN :state <> '' AND COALESCE(a.location_state, '') <> ''
                             AND UPPER(a.location_state) = :state THEN {STATE_SCORE}
                        ELSE {BASE_SCORE}
                    END
                    + CASE WHEN COALESCE(u.credit_balance, 0) > 0 THEN {CREDIT_BOOST} ELSE 0 END
                   ) AS priority
            FROM ads a
            LEFT JOIN users u ON u.id = a.user_id
            WHERE a.is_deleted = FALSE
              AND a.status = 'active'
              AND (a.expires_at IS NULL OR a.expires_at >= :now)
              {filters}
            ORDER BY priority DESC, RANDOM()
            LIMIT :limit
            """,
            "now",
        ),
        params,
    ).mappings().all()
    return [dict(row) for row in rows]


def get_ad(db: Session, ad_id: int, *, include_deleted: bool = False) -> dict[str, Any] | None:
    deleted_filter = "" if include_deleted else "AND is_deleted = FALSE"
    row = db.execute(
        text(f"SELECT * FROM ads WHERE id = :id {deleted_filter}"),
        {"id": ad_id},
    ).mappings().first()
    return dict(row) if row else None


def list_owner_ads(db: Session, user_id: int | None) -> list[dict[str, Any]]:
    owner_filter = "" if user_id is None else "AND user_id = :user_id"
    rows = db.execute(
        text(f"SELECT * FROM ads WHERE is_deleted = FALSE {owner_filter} ORDER BY id DESC"),
        {"user_id": user_id},
    ).mappings().all()
    return [dict(row) for row in rows]


def increment_counter(db: Session, ad_id: int, column: str) -> int:
    if column not in ("views_count", "clicks_count"):
        raise ValueError(f"unknown ad counter: {column}")
    result = db.execute(
        text(f"UPDATE ads SET {column} = {column} + 1 WHERE id = :id"),
        {"id": ad_id},
    )
    return result.rowcount


def debit_owner(db: Session, ad_id: int, cost: Decimal) -> int:
    """Guarded debit of the ad owner's balance; 0 rows means insufficient funds."""
    result = db.execute(
        text(
            """
            UPDATE users
            SET credit_balance = credit_balance - :cost
            WHERE id = (SELECT user_id FROM ads WHERE id = :ad_id)
              AND credit_balance >= :cost
            """
        ),
        {"cost": cost, "ad_id": ad_id},
    )
    return result.rowcount


def credit_user(db: Session, user_id: int, amount: Decimal) -> int:
    result = db.execute(
        text("UPDATE users SET credit_balance = credit_balance + :amount WHERE id = :id AND deleted_at IS NULL"),
        {"amount": amount, "id": user_id},
    )
    return result.rowcount


def get_balance(db: Session, user_id: int) -> Decimal | None:
    value = db.execute(
        text("SELECT credit_balance FROM users WHERE id = :id"),
        {"id": user_id},
    ).scalar()
    return None if value is None else Decimal(str(value))


def set_status(db: Session, ad_id: int, status: str) -> int:
    result = db.execute(
        text("UPDATE ads SET status = :status WHERE id = :id AND is_deleted = FALSE"),
        {"status": status, "id": ad_id},
    )
    return result.rowcount


def resume_paused_ads(db: Session, user_id: int, now: datetime) -> int:
    result = db.execute(
        text_ts(
            """
            UPDATE ads
            SET status = 'active'
            WHERE user_id = :user_id
              AND status = 'paused'
              AND is_deleted = FALSE
              AND (expires_at IS NULL OR expires_at >= :now)
            """,
            "now",
        ),
        {"user_id": user_id, "now": now},
    )
    return result.rowcount


def insert_ad(db: Session, values: dict[str, Any]) -> Ad:
    ad = Ad(**values)
    db.add(ad)
    db.flush()
    return ad


def update_ad(db: Session, ad_id: int, values: dict[str, Any]) -> int:
    changes = {key: value for key, value in values.items() if key in AD_COLUMNS}
    if not changes:
        return 0
    assignments = ", ".join(f"{column} = :{column}" for column in changes)
    stamps = ["expires_at"] if "expires_at" in changes else []
    result = db.execute(
        text_ts(f"UPDATE ads SET {assignments} WHERE id = :ad_id AND is_deleted = FALSE", *stamps),
        {**changes, "ad_id": ad_id},
    )
    return result.rowcount


def soft_delete(db: Session, ad_id: int) -> int:
    result = db.execute(
        text("UPDATE ads SET is_deleted = TRUE, status = 'rejected' WHERE id = :id AND is_deleted = FALSE"),
        {"id": ad_id},
    )
    return result.rowcount


def insert_transaction(
    db: Session,
    *,
    user_id: int,
    amount: Decimal,
    kind: str,
    now: datetime,
    ad_id: int | None = None,
    event_type: str | None = None,
    status: str = "completed",
    note: str | None = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        user_id=user_id,
        ad_id=ad_id,
        amount=amount,
        kind=kind,
        event_type=event_type,
        status=status,
        note=note,
        created_at=now,
    )
    db.add(entry)
    db.flush()
    return entry


def list_transactions(db: Session, user_id: int, limit: int = 100) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT id, ad_id, amount, kind, event_type, status, note, created_at
            FROM credit_transactions
            WHERE user_id = :user_id
            ORDER BY created_at DESC, id DESC
            LIMIT :limit
            """
        ),
        {"user_id": user_id, "limit": limit},
    ).mappings().all()
    return [dict(row) for row in rows]


def ad_events_since(db: Session, ad_id: int, since: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text_ts(
            """
            SELECT event_type, created_at
            FROM click_logs
            WHERE target_type = 'AD'
              AND target_id = :ad_id
              AND created_at >= :since
            ORDER BY created_at
            """,
            "since",
        ),
        {"ad_id": ad_id, "since": since},
    ).mappings().all()
    return [dict(row) for row in rows]


def load_settings(db: Session, prefix: str) -> dict[str, str]:
    rows = db.execute(
        text("SELECT setting_key, setting_value FROM site_settings WHERE setting_key LIKE :prefix"),
        {"prefix": f"{prefix}%"},
    ).mappings().all()
    return {row["setting_key"]: row["setting_value"] for row in rows}


def save_setting(db: Session, key: str, value: str, now: datetime) -> None:
    result = db.execute(
        text_ts("UPDATE site_settings SET setting_value = :value, updated_at = :now WHERE setting_key = :key", "now"),
        {"key": key, "value": value, "now": now},
    )
    if result.rowcount == 0:
        db.execute(
            text_ts(
                "INSERT INTO site_settings (setting_key, setting_value, updated_at) VALUES (:key, :value, :now)",
                "now",
            ),
            {"key": key, "value": value, "now": now},
        )
