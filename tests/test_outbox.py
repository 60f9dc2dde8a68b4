"""Tests for post-commit side effects in app/services/outbox.py

Run with:  pytest tests/test_outbox.py -v
"""
from sqlalchemy import text

from app.models.notification import Notification
from app.services import matching, notifications, outbox
from app.services.outbox import OutboxMessage, dispatch_outbox
from tests.factories import add_user


def _insert_freight(db, owner_id, **overrides):
    values = {
        "user_id": owner_id,
        "origin_city": "Cascavel",
        "origin_state": "PR",
        "dest_city": "Paranaguá",
        "dest_state": "PR",
        "product": "Milho",
        "vehicle_type": "Carreta",
        "body_type": "Graneleiro",
        "status": "OPEN",
        "slug": "milho-de-cascavel-para-paranagua-000001",
        "deleted_at": None,
    }
    values.update(overrides)
    db.execute(
        text(
            """
            INSERT INTO freights (user_id, origin_city, origin_state, dest_city, dest_state, product,
                                  weight, price, vehicle_type, body_type, status, slug, is_featured,
                                  payment_status, views_count, clicks_count, deleted_at)
            VALUES (:user_id, :origin_city, :origin_state, :dest_city, :dest_state, :product,
                    0, 0, :vehicle_type, :body_type, :status, :slug, FALSE,
                    'PENDING', 0, 0, :deleted_at)
            """
        ),
        values,
    )
    db.commit()
    return db.execute(text("SELECT id FROM freights WHERE slug = :slug"), {"slug": values["slug"]}).scalar()


def test_helpers_build_messages():
    msg = outbox.notify(3, "Título", "Corpo", priority="high", metadata={"a": 1})
    assert msg.kind == "notify"
    assert (msg.user_id, msg.priority, msg.type) == (3, "high", "system")
    assert outbox.match(9) == OutboxMessage(kind="match", freight_id=9)


def test_dispatch_notify_and_match(db):
    company = add_user(db, role="COMPANY")
    driver = add_user(db, role="DRIVER", vehicle_type="Carreta", body_type="Graneleiro")
    freight_id = _insert_freight(db, company.id)

    result = dispatch_outbox(
        db,
        [
            outbox.notify(company.id, "Frete Online!", "Seu anúncio foi aprovado."),
            outbox.match(freight_id),
        ],
    )
    assert result == {"delivered": 2, "failed": 0}
    titles = {(row.user_id, row.title) for row in db.query(Notification).all()}
    assert titles == {(company.id, "Frete Online!"), (driver.id, "Carga compatível!")}


def test_dispatch_never_raises(db, monkeypatch):
    company = add_user(db, role="COMPANY")
    deleted_id = _insert_freight(db, company.id, slug="removido-000002", deleted_at="2026-01-01 00:00:00")

    def boom(*args, **kwargs):
        raise RuntimeError("matching down")

    live_id = _insert_freight(db, company.id, slug="vivo-000003")
    monkeypatch.setattr(matching, "trigger_matches", boom)

    result = dispatch_outbox(
        db,
        [
            outbox.match(deleted_id),
            outbox.match(live_id),
            OutboxMessage(kind="carrier-pigeon"),
            outbox.notify(company.id, "Ainda chega", "ok"),
        ],
    )
    assert result == {"delivered": 1, "failed": 3}
    assert db.query(Notification).count() == 1


def test_dispatch_counts_failed_inserts(db, monkeypatch):
    monkeypatch.setattr(notifications, "send", lambda *args, **kwargs: False)
    assert dispatch_outbox(db, [outbox.notify(1, "x", "y")]) == {"delivered": 0, "failed": 1}
    assert dispatch_outbox(db, None) == {"delivered": 0, "failed": 0}
