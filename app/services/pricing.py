"""Per-event ad prices.

Prices live in ``site_settings`` under ``ad_cost_<event>`` keys, falling back
to the configured defaults. Billing never reads the table directly: it is
handed an immutable ``PricingSnapshot``, refreshed at most every
``PRICING_REFRESH_SECONDS``.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Mapping

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings as core_settings
from app.repositories import ad_repo

logger = logging.getLogger(__name__)

SETTING_PREFIX = "ad_cost_"
EVENT_TYPES = ("VIEW", "VIEW_DETAILS", "CLICK", "WHATSAPP_CLICK")


def setting_key(event_type: str) -> str:
    return f"{SETTING_PREFIX}{event_type.lower()}"


def _price(value) -> Decimal:
    price = Decimal(str(value)).quantize(Decimal("0.01"))
    if not price.is_finite():
        raise InvalidOperation(f"non-finite price: {value!r}")
    return price


@dataclass(frozen=True)
class PricingSnapshot:
    costs: Mapping[str, Decimal]
    loaded_at: float = field(default_factory=time.time)

    def cost_for(self, event_type: str) -> Decimal | None:
        return self.costs.get((event_type or "").upper())


def default_snapshot() -> PricingSnapshot:
    return PricingSnapshot(
        MappingProxyType(
            {
                "VIEW": _price(core_settings.AD_COST_VIEW),
                "VIEW_DETAILS": _price(core_settings.AD_COST_VIEW_DETAILS),
                "CLICK": _price(core_settings.AD_COST_CLICK),
                "WHATSAPP_CLICK": _price(core_settings.AD_COST_WHATSAPP_CLICK),
            }
        )
    )


def load_snapshot(db: Session) -> PricingSnapshot:
    costs = dict(default_snapshot().costs)
    stored = ad_repo.load_settings(db, SETTING_PREFIX)
    for event_type in EVENT_TYPES:
        raw = stored.get(setting_key(event_type))
        if raw in (None, ""):
            continue
        try:
            value = _price(raw)
        except (InvalidOperation, ValueError):
            logger.warning("pricing: ignoring invalid %s=%r", setting_key(event_type), raw)
            continue
        if value < 0:
            logger.warning("pricing: ignoring negative %s=%r", setting_key(event_type), raw)
            continue
        costs[event_type] = value
    return PricingSnapshot(MappingProxyType(costs))


class PricingProvider:
    def __init__(self, ttl_s: int | None = None) -> None:
        self._ttl_s = max(int(ttl_s if ttl_s is not None else core_settings.PRICING_REFRESH_SECONDS), 0)
        self._lock = threading.Lock()
        self._snapshot: PricingSnapshot | None = None

    def get(self, db: Session) -> PricingSnapshot:
        with self._lock:
            snapshot = self._snapshot
            if snapshot is not None and time.time() - snapshot.loaded_at < self._ttl_s:
                return snapshot
            try:
                snapshot = load_snapshot(db)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning("pricing: refresh failed, keeping previous prices: %s", exc)
                return self._snapshot or default_snapshot()
            self._snapshot = snapshot
            return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None


pricing_provider = PricingProvider()
