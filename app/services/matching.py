"""Freight-to-driver matching.

A driver is a candidate when their vehicle and body type both equal the
freight's, or when their preferred region is the freight's origin state.
Each candidate is notified independently; one failed send never stops the
rest of the batch.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.config import settings as core_settings
from app.services import notifications

logger = logging.getLogger(__name__)

MATCH_TITLE = "Carga compatível!"


def find_compatible_drivers(
    db: Session,
    vehicle_type: str | None,
    body_type: str | None,
    origin_state: str | None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    limit = core_settings.MATCH_CANDIDATE_LIMIT if limit is None else limit
    rows = db.execute(
        text(
            """
            SELECT id, name, push_token
            FROM users
            WHERE role = 'DRIVER'
              AND deleted_at IS NULL
              AND (
                    (vehicle_type = :vehicle_type AND body_type = :body_type)
                 OR preferred_region = :origin_state
              )
            ORDER BY id
            LIMIT :limit
            """
        ),
        {
            "vehicle_type": vehicle_type,
            "body_type": body_type,
            "origin_state": (origin_state or "").upper(),
            "limit": max(int(limit), 0),
        },
    ).mappings().all()
    return [dict(row) for row in rows]


def trigger_matches(db: Session, freight: Mapping[str, Any]) -> dict[str, int]:
    drivers = find_compatible_drivers(
        db,
        freight.get("vehicle_type"),
        freight.get("body_type"),
        freight.get("origin_state"),
    )

    notified = 0
    failed = 0
    slug = freight.get("slug")
    for driver in drivers:
        try:
            ok = notifications.send(
                db,
                int(driver["id"]),
                MATCH_TITLE,
                f"Nova carga de {freight.get('product')} disponível.",
                type="match",
                action_url=f"/freight/details/{slug}" if slug else None,
                metadata={"freight_id": freight.get("id")},
            )
        except Exception:
            logger.exception("match notify failed freight_id=%s driver_id=%s", freight.get("id"), driver["id"])
            failed += 1
            continue
        if ok:
            notified += 1
        else:
            failed += 1

    logger.info(
        "matches triggered freight_id=%s candidates=%s notified=%s failed=%s",
        freight.get("id"), len(drivers), notified, failed,
    )
    return {"candidates": len(drivers), "notified": notified, "failed": failed}
