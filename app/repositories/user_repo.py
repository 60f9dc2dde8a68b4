"""
User repository: profile, reputation and verification columns on users.
"""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.database import text_ts
from app.models.review import Review

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = (
    "name",
    "whatsapp",
    "phone",
    "avatar_url",
    "city",
    "bio",
    "vehicle_type",
    "body_type",
    "preferred_region",
    "push_token",
)


def get_user(db: Session, user_id: int, *, include_deleted: bool = False) -> dict[str, Any] | None:
    deleted_filter = "" if include_deleted else "AND deleted_at IS NULL"
    row = db.execute(
        text(f"SELECT * FROM users WHERE id = :id {deleted_filter}"),
        {"id": user_id},
    ).mappings().first()
    return dict(row) if row else None


def review_stats(db: Session, user_id: int) -> tuple[int, float]:
    row = db.execute(
        text(
            """
            SELECT COUNT(*) AS total, COALESCE(AVG(rating), 0) AS average
            FROM reviews
            WHERE target_id = :user_id AND target_type = 'USER'
            """
        ),
        {"user_id": user_id},
    ).mappings().first()
    return int(row["total"] or 0), float(row["average"] or 0)


def set_rating(db: Session, user_id: int, average: float, count: int) -> None:
    db.execute(
        text("UPDATE users SET rating_avg = :average, rating_count = :count WHERE id = :id"),
        {"average": round(average, 2), "count": count, "id": user_id},
    )


def set_verified_flag(
    db: Session,
    user_id: int,
    flag: bool,
    now: datetime,
    verified_until: datetime | None = None,
) -> int:
    result = db.execute(
        text_ts(
            """
            UPDATE users
            SET is_verified = :flag,
                verified_until = :verified_until,
                updated_at = :now
            WHERE id = :id
            """,
            "verified_until",
            "now",
        ),
        {"flag": flag, "verified_until": verified_until, "now": now, "id": user_id},
    )
    return result.rowcount


def update_profile_columns(db: Session, user_id: int, values: dict[str, Any], now: datetime) -> int:
    changes = {key: value for key, value in values.items() if key in PROFILE_COLUMNS}
    if not changes:
        return 0
    assignments = ", ".join(f"{column} = :{column}" for column in changes)
    result = db.execute(
        text_ts(f"UPDATE users SET {assignments}, updated_at = :now WHERE id = :user_id AND deleted_at IS NULL", "now"),
        {**changes, "now": now, "user_id": user_id},
    )
    return result.rowcount


def soft_delete(db: Session, user_id: int, marker: str, now: datetime) -> int:
    result = db.execute(
        text_ts(
            """
            UPDATE users
            SET status = 'inactive',
                email = email || :email_marker,
                slug = CASE WHEN slug IS NULL THEN NULL ELSE slug || :slug_marker END,
                push_token = NULL,
                deleted_at = :now,
                updated_at = :now
            WHERE id = :id AND deleted_at IS NULL
            """,
            "now",
        ),
        {"email_marker": f".deleted.{marker}", "slug_marker": f"-deleted-{marker}", "now": now, "id": user_id},
    )
    return result.rowcount


def review_exists(db: Session, reviewer_id: int, target_id: int, freight_id: int) -> bool:
    row = db.execute(
        text(
            """
            SELECT id FROM reviews
            WHERE reviewer_id = :reviewer_id AND target_id = :target_id AND freight_id = :freight_id
            """
        ),
        {"reviewer_id": reviewer_id, "target_id": target_id, "freight_id": freight_id},
    ).first()
    return row is not None


def insert_review(
    db: Session,
    *,
    reviewer_id: int,
    target_id: int,
    freight_id: int,
    rating: int,
    comment: str | None,
    now: datetime,
) -> int:
    review = Review(
        reviewer_id=reviewer_id,
        target_id=target_id,
        freight_id=freight_id,
        target_type="USER",
        rating=rating,
        comment=comment,
        created_at=now,
    )
    db.add(review)
    db.flush()
    return review.id


def list_reviews(db: Session, target_id: int) -> list[dict[str, Any]]:
    rows = db.execute(
        text(
            """
            SELECT r.id, r.reviewer_id, u.name AS reviewer_name, r.freight_id,
                   r.rating, r.comment, r.created_at
            FROM reviews r
            LEFT JOIN users u ON u.id = r.reviewer_id
            WHERE r.target_id = :target_id AND r.target_type = 'USER'
            ORDER BY r.created_at DESC, r.id DESC
            """
        ),
        {"target_id": target_id},
    ).mappings().all()
    return [dict(row) for row in rows]
