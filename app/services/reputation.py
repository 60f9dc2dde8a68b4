"""Driver/company reputation and the verification badge.

The badge is derived: 20 points for each filled profile field (name,
whatsapp, avatar, city, bio); it is granted at 80 points or with at least
five reviews averaging 4.5+. A moderator grant with a future
``verified_until`` is never revoked by the recompute.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings as core_settings
from app.core.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from app.core.permissions import require
from app.database import transaction
from app.repositories import freight_repo, user_repo
from app.services import outbox
from app.services.content_filter import digits_only, is_content_clean, strip_tags
from app.services.outbox import OutboxMessage
from app.utils.timeutils import as_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

PROFILE_POINT_FIELDS = ("name", "whatsapp", "avatar_url", "city", "bio")
POINTS_PER_FIELD = 20
DEFAULT_OVERRIDE_DAYS = 365
MIN_RATING = 1
MAX_RATING = 5
ALREADY_REVIEWED = "You have already reviewed this service."
RATING_RANGE = "Rating must be a whole number from 1 to 5."


def profile_points(user: Mapping[str, Any]) -> int:
    return sum(POINTS_PER_FIELD for field in PROFILE_POINT_FIELDS if (user.get(field) or "").strip())


def deserves_badge(user: Mapping[str, Any]) -> bool:
    if profile_points(user) >= core_settings.VERIFICATION_POINTS_THRESHOLD:
        return True
    count = int(user.get("rating_count") or 0)
    average = float(user.get("rating_avg") or 0)
    return count >= core_settings.VERIFICATION_MIN_REVIEWS and average >= core_settings.VERIFICATION_MIN_RATING


def refresh_reputation(db: Session, user_id: int) -> dict[str, Any]:
    count, average = user_repo.review_stats(db, user_id)
    user_repo.set_rating(db, user_id, average, count)
    return {"rating_avg": round(average, 2), "rating_count": count}


def run_verification(db: Session, user_id: int, now: datetime | None = None) -> tuple[dict[str, Any], list[OutboxMessage]]:
    """Recompute the badge for one user; does not commit."""
    now = now or utcnow()
    user = user_repo.get_user(db, user_id)
    if not user:
        raise NotFoundError("User not found.")

    points = profile_points(user)
    deserved = deserves_badge(user)
    current = bool(user.get("is_verified"))
    override_until = as_utc(user.get("verified_until"))
    messages: list[OutboxMessage] = []

    if deserved and not current:
        user_repo.set_verified_flag(db, user_id, True, now, override_until)
        messages.append(
            outbox.notify(user_id, "🎉 Perfil Verificado!", "Selo de confiança ativado.", type="system")
        )
        logger.info("verification granted user_id=%s points=%s", user_id, points)
    elif not deserved and current and not (override_until and override_until > now):
        user_repo.set_verified_flag(db, user_id, False, now, None)
        logger.info("verification revoked user_id=%s points=%s", user_id, points)

    is_verified = deserved or (current and bool(override_until and override_until > now))
    return {"is_verified": is_verified, "score": points}, messages


def refresh_driver_standing(db: Session, user_id: int | None) -> list[OutboxMessage]:
    if not user_id:
        return []
    refresh_reputation(db, user_id)
    if not user_repo.get_user(db, user_id):
        return []
    _, messages = run_verification(db, user_id)
    return messages


def submit_review(
    db: Session, principal, target_id: int, payload: Mapping[str, Any]
) -> tuple[dict[str, Any], list[OutboxMessage]]:
    """Record one rating per reviewer, target and freight, then refresh the target's standing."""
    if principal is None:
        raise AuthenticationError()
    try:
        freight_id = int(payload.get("freight_id") or 0)
    except (TypeError, ValueError, OverflowError):
        freight_id = 0
    if freight_id <= 0:
        raise ValidationError("Freight id is required.")
    raw_rating = payload.get("rating")
    try:
        rating = int(raw_rating)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(RATING_RANGE)
    if isinstance(raw_rating, float) and raw_rating != rating:
        raise ValidationError(RATING_RANGE)
    if not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(RATING_RANGE)
    if int(target_id) == principal.id:
        raise ValidationError("You cannot review yourself.")

    comment = strip_tags(str(payload.get("comment") or "").strip()) or None
    if not is_content_clean(comment):
        raise ValidationError("Content rejected by the moderation filter.")

    now = utcnow()
    with transaction(db, "user.submit_review"):
        if not user_repo.get_user(db, target_id):
            raise NotFoundError("User not found.")
        if not freight_repo.get_freight(db, freight_id, include_deleted=True):
            raise NotFoundError("Freight not found.")
        if user_repo.review_exists(db, principal.id, target_id, freight_id):
            raise ConflictError(ALREADY_REVIEWED)
        try:
            review_id = user_repo.insert_review(
                db,
                reviewer_id=principal.id,
                target_id=target_id,
                freight_id=freight_id,
                rating=rating,
                comment=comment,
                now=now,
            )
        except IntegrityError:
            raise ConflictError(ALREADY_REVIEWED)
        standing = refresh_reputation(db, target_id)
        verification, messages = run_verification(db, target_id, now)

    logger.info("review submitted target_id=%s freight_id=%s rating=%s by=%s", target_id, freight_id, rating, principal.id)
    return {"id": review_id, "target_id": int(target_id), **standing, **verification}, messages


def list_reviews(db: Session, target_id: int) -> dict[str, Any]:
    reviews = user_repo.list_reviews(db, target_id)
    for review in reviews:
        review["created_at"] = isoformat(review["created_at"])
    return {"reviews": reviews, "count": len(reviews)}



def update_profile(db: Session, principal, payload: Mapping[str, Any]) -> tuple[dict[str, Any], list[OutboxMessage]]:
    if principal is None:
        raise AuthenticationError()

    values: dict[str, Any] = {}
    for field in user_repo.PROFILE_COLUMNS:
        if field not in payload or payload[field] is None:
            continue
        value = str(payload[field]).strip()
        if field == "bio":
            value = strip_tags(value)
        elif field in ("whatsapp", "phone"):
            value = digits_only(value)
        elif field == "preferred_region":
            value = value.upper()
        values[field] = value

    if "name" in values and not values["name"]:
        raise ValidationError("Name cannot be empty.")
    if not is_content_clean(values.get("bio"), values.get("name")):
        raise ValidationError("Content rejected by the moderation filter.")

    now = utcnow()
    with transaction(db, "user.update_profile"):
        if not user_repo.get_user(db, principal.id):
            raise NotFoundError("User not found.")
        user_repo.update_profile_columns(db, principal.id, values, now)
        verification, messages = run_verification(db, principal.id, now)

    return {"updated": sorted(values), **verification}, messages


def set_verified(db: Session, principal, user_id: int, flag: bool, days: int | None = None) -> dict[str, Any]:
    require(principal, "user.verify")
    now = utcnow()
    until = now + timedelta(days=days or DEFAULT_OVERRIDE_DAYS) if flag else None
    with transaction(db, "user.set_verified"):
        if not user_repo.set_verified_flag(db, user_id, bool(flag), now, until):
            raise NotFoundError("User not found.")
    logger.info("verification override user_id=%s flag=%s by=%s", user_id, flag, principal.id)
    return {"user_id": user_id, "is_verified": bool(flag), "verified_until": until.isoformat() if until else None}


def soft_delete_account(db: Session, principal) -> dict[str, Any]:
    if principal is None:
        raise AuthenticationError()
    now = utcnow()
    with transaction(db, "user.soft_delete"):
        if not user_repo.soft_delete(db, principal.id, str(int(now.timestamp())), now):
            raise NotFoundError("User not found.")
    logger.info("account deactivated user_id=%s", principal.id)
    return {"user_id": principal.id, "status": "inactive"}
