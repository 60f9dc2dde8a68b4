"""Side effects collected during a mutation and run after its commit.

Lifecycle operations return a list of ``OutboxMessage``; the route commits
first and then hands the list to ``dispatch_outbox``. Dispatch never raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.services import matching, notifications

logger = logging.getLogger(__name__)

NOTIFY = "notify"
MATCH = "match"


@dataclass(frozen=True)
class OutboxMessage:
    kind: str
    user_id: int | None = None
    title: str = ""
    message: str = ""
    type: str = "system"
    priority: str = "medium"
    action_url: str | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)
    freight_id: int | None = None


def notify(
    user_id: int,
    title: str,
    message: str,
    *,
    type: str = "system",
    priority: str = "medium",
    action_url: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> OutboxMessage:
    return OutboxMessage(
        kind=NOTIFY,
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        priority=priority,
        action_url=action_url,
        metadata=metadata,
    )


def match(freight_id: int) -> OutboxMessage:
    return OutboxMessage(kind=MATCH, freight_id=freight_id)


def _load_freight(db: Session, freight_id: int) -> dict[str, Any] | None:
    row = db.execute(
        text(
            """
            SELECT id, slug, product, vehicle_type, body_type, origin_state, status
            FROM freights
            WHERE id = :id AND deleted_at IS NULL
            """
        ),
        {"id": freight_id},
    ).mappings().first()
    return dict(row) if row else None


def dispatch_outbox(db: Session, messages: list[OutboxMessage] | None) -> dict[str, int]:
    delivered = 0
    failed = 0
    for msg in messages or []:
        try:
            if msg.kind == NOTIFY:
                ok = notifications.send(
                    db,
                    msg.user_id,
                    msg.title,
                    msg.message,
                    type=msg.type,
                    priority=msg.priority,
                    action_url=msg.action_url,
                    metadata=msg.metadata,
                )
            elif msg.kind == MATCH:
                freight = _load_freight(db, msg.freight_id)
                ok = freight is not None
                if freight:
                    matching.trigger_matches(db, freight)
            else:
                logger.warning("outbox: unknown message kind=%s", msg.kind)
                ok = False
        except Exception:
            logger.exception("outbox: dispatch failed kind=%s", msg.kind)
            db.rollback()
            ok = False

        if ok:
            delivered += 1
        else:
            failed += 1
    return {"delivered": delivered, "failed": failed}
