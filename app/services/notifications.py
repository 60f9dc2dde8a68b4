"""In-app notifications with best-effort Telegram and push fan-out.

Only the database insert decides the result of ``send``; the external
channels log and move on when they fail.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import requests
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings as core_settings
from app.database import text_ts
from app.models.notification import Notification
from app.utils.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)

ALERT_PRIORITY = "high"
ALERT_TYPE = "match"
INBOX_LIMIT = 50


def send(
    db: Session,
    user_id: int,
    title: str,
    message: str,
    type: str = "system",
    priority: str = "medium",
    action_url: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    stored = _store(db, user_id, title, message, type, priority, action_url, metadata)

    if priority == ALERT_PRIORITY or type == ALERT_TYPE:
        send_telegram_alert(
            f"<b>[NOTIFICAÇÃO]</b>\nTipo: {type}\nPara User ID: {user_id}\n{title}\n{message}"
        )

    send_push(db, user_id, title, message, action_url)
    return stored


def _store(db, user_id, title, message, type, priority, action_url, metadata) -> bool:
    try:
        db.add(
            Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                priority=priority,
                action_url=action_url,
                notification_metadata=metadata,
                is_read=False,
                created_at=utcnow(),
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("notification insert failed user_id=%s title=%s", user_id, title)
        return False
    return True


def send_telegram_alert(message: str) -> bool:
    token = core_settings.TELEGRAM_BOT_TOKEN
    chat_id = core_settings.TELEGRAM_CHAT_ID
    if not token or not chat_id:
        return False

    url = f"{core_settings.TELEGRAM_API_BASE.rstrip('/')}/bot{token}/sendMessage"
    try:
        response = requests.post(
            url,
            json={"chat_id": chat_id, "parse_mode": "HTML", "text": message},
            timeout=max(int(core_settings.OUTBOUND_TIMEOUT_SECONDS or 5), 1),
        )
    except requests.RequestException as exc:
        logger.warning("telegram alert failed: %s", exc)
        return False
    except Exception as exc:
        logger.warning("telegram alert failed unexpectedly: %s", exc)
        return False

    if response.status_code < 200 or response.status_code >= 300:
        logger.warning("telegram alert rejected status=%s", response.status_code)
        return False
    return True


def send_push(db: Session, user_id: int, title: str, message: str, action_url: str | None = None) -> bool:
    try:
        token = db.execute(
            text("SELECT push_token FROM users WHERE id = :id AND push_token IS NOT NULL"),
            {"id": user_id},
        ).scalar()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("push skipped user_id=%s: %s", user_id, exc)
        return False

    if not token or not core_settings.PUSH_API_URL:
        return False

    headers = {"Content-Type": "application/json"}
    if core_settings.PUSH_API_KEY:
        headers["Authorization"] = f"Bearer {core_settings.PUSH_API_KEY}"

    try:
        response = requests.post(
            core_settings.PUSH_API_URL,
            json={"token": token, "title": title, "message": message, "url": action_url},
            headers=headers,
            timeout=max(int(core_settings.OUTBOUND_TIMEOUT_SECONDS or 5), 1),
        )
    except Exception as exc:
        logger.warning("push failed user_id=%s: %s", user_id, exc)
        return False
    return 200 <= response.status_code < 300


# ── Inbox ──────────────────────────────────────────────────────────────────────

def _serialize(row: Notification) -> dict[str, Any]:
    return {
        "id": row.id,
        "title": row.title,
        "message": row.message,
        "type": row.type,
        "priority": row.priority,
        "action_url": row.action_url,
        "metadata": row.notification_metadata,
        "is_read": bool(row.is_read),
        "created_at": isoformat(row.created_at),
    }


def list_notifications(db: Session, user_id: int, *, unread_only: bool = False, limit: int = INBOX_LIMIT) -> list[dict]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    rows = query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    return [_serialize(row) for row in rows]


def unread_count(db: Session, user_id: int) -> int:
    count = db.execute(
        text("SELECT COUNT(*) FROM notifications WHERE user_id = :user_id AND is_read = FALSE"),
        {"user_id": user_id},
    ).scalar()
    return int(count or 0)


def mark_read(db: Session, notification_id: int, user_id: int) -> bool:
    result = db.execute(
        text("UPDATE notifications SET is_read = TRUE WHERE id = :id AND user_id = :user_id"),
        {"id": notification_id, "user_id": user_id},
    )
    db.commit()
    return result.rowcount > 0


def mark_all_read(db: Session, user_id: int) -> int:
    result = db.execute(
        text("UPDATE notifications SET is_read = TRUE WHERE user_id = :user_id AND is_read = FALSE"),
        {"user_id": user_id},
    )
    db.commit()
    return result.rowcount


def clean_old(db: Session, days: int | None = None) -> int:
    """Delete read notifications older than ``days``."""
    days = core_settings.NOTIFICATION_RETENTION_DAYS if days is None else days
    cutoff = utcnow() - timedelta(days=max(int(days), 0))
    result = db.execute(
        text_ts("DELETE FROM notifications WHERE is_read = TRUE AND created_at < :cutoff", "cutoff"),
        {"cutoff": cutoff},
    )
    db.commit()
    logger.info("notifications purged count=%s older_than_days=%s", result.rowcount, days)
    return result.rowcount
