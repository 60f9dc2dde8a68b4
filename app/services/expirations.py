"""Daily expiry reminders for ads, featured freights and verification badges."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.database import text_ts
from app.services import notifications
from app.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

AD_NOTICE_DAYS = 3
FEATURED_NOTICE_DAYS = 2
VERIFIED_NOTICE_DAYS = 5


def _window(now: datetime, days: int) -> dict[str, datetime]:
    start = now + timedelta(days=days)
    return {"start": start, "end": start + timedelta(days=1)}


def expiring_ads(db: Session, now: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text_ts(
            """
            SELECT id, user_id, title
            FROM ads
            WHERE status = 'active'
              AND is_deleted = FALSE
              AND user_id IS NOT NULL
              AND expires_at >= :start AND expires_at < :end
            """,
            "start",
            "end",
        ),
        _window(now, AD_NOTICE_DAYS),
    ).mappings().all()
    return [dict(row) for row in rows]


def expiring_featured_freights(db: Session, now: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text_ts(
            """
            SELECT id, user_id, product, slug
            FROM freights
            WHERE is_featured = TRUE
              AND deleted_at IS NULL
              AND expires_at >= :start AND expires_at < :end
            """,
            "start",
            "end",
        ),
        _window(now, FEATURED_NOTICE_DAYS),
    ).mappings().all()
    return [dict(row) for row in rows]


def expiring_verifications(db: Session, now: datetime) -> list[dict[str, Any]]:
    rows = db.execute(
        text_ts(
            """
            SELECT id, name
            FROM users
            WHERE is_verified = TRUE
              AND deleted_at IS NULL
              AND verified_until >= :start AND verified_until < :end
            """,
            "start",
            "end",
        ),
        _window(now, VERIFIED_NOTICE_DAYS),
    ).mappings().all()
    return [dict(row) for row in rows]


def check_expirations(db: Session, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    sent = {"ads": 0, "freights": 0, "verifications": 0}

    for ad in expiring_ads(db, now):
        if notifications.send(
            db,
            ad["user_id"],
            "Seu anúncio está vencendo!",
            f"O banner '{ad['title']}' expira em {AD_NOTICE_DAYS} dias. Renove agora para não perder sua posição.",
        ):
            sent["ads"] += 1

    for freight in expiring_featured_freights(db, now):
        if notifications.send(
            db,
            freight["user_id"],
            "Destaque de Frete expirando!",
            f"O frete para '{freight['product']}' deixará de ser destaque em 48h. Renove para continuar no topo!",
            action_url=f"/freight/details/{freight['slug']}",
        ):
            sent["freights"] += 1

    for user in expiring_verifications(db, now):
        if notifications.send(
            db,
            user["id"],
            "Seu Selo Pro vai expirar",
            f"Sua verificação vence em {VERIFIED_NOTICE_DAYS} dias. Mantenha seu perfil com credibilidade máxima.",
        ):
            sent["verifications"] += 1

    logger.info("expiration reminders sent=%s", sent)
    return sent
