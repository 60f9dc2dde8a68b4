"""Tests for freight-to-driver matching in app/services/matching.py

Run with:  pytest tests/test_matching.py -v
"""
from datetime import datetime, timezone

from app.models.notification import Notification
from app.services import matching, notifications
from tests.factories import add_user

FREIGHT = {
    "id": 42,
    "slug": "soja-de-cascavel-para-paranagua-a1b2c3",
    "product": "Soja",
    "vehicle_type": "Carreta",
    "body_type": "Graneleiro",
    "origin_state": "PR",
}


def _drivers(db):
    return {
        "exact": add_user(db, role="DRIVER", vehicle_type="Carreta", body_type="Graneleiro", preferred_region="SP"),
        "region": add_user(db, role="DRIVER", vehicle_type="Truck", body_type="Baú", preferred_region="PR"),
        "half": add_user(db, role="DRIVER", vehicle_type="Carreta", body_type="Baú", preferred_region="SC"),
        "company": add_user(db, role="COMPANY", vehicle_type="Carreta", body_type="Graneleiro", preferred_region="PR"),
        "gone": add_user(
            db,
            role="DRIVER",
            vehicle_type="Carreta",
            body_type="Graneleiro",
            deleted_at=datetime.now(timezone.utc),
        ),
    }


def test_candidates_match_vehicle_and_body_or_region(db):
    people = _drivers(db)
    found = matching.find_compatible_drivers(db, "Carreta", "Graneleiro", "pr")
    assert [row["id"] for row in found] == [people["exact"].id, people["region"].id]


def test_candidate_limit(db):
    _drivers(db)
    assert len(matching.find_compatible_drivers(db, "Carreta", "Graneleiro", "PR", limit=1)) == 1


def test_trigger_matches_notifies_each_candidate(db):
    people = _drivers(db)
    result = matching.trigger_matches(db, FREIGHT)
    assert result == {"candidates": 2, "notified": 2, "failed": 0}

    rows = db.query(Notification).order_by(Notification.user_id).all()
    assert [row.user_id for row in rows] == sorted([people["exact"].id, people["region"].id])
    assert all(row.title == "Carga compatível!" for row in rows)
    assert all(row.type == "match" for row in rows)
    assert rows[0].message == "Nova carga de Soja disponível."
    assert rows[0].action_url == f"/freight/details/{FREIGHT['slug']}"
    assert rows[0].notification_metadata == {"freight_id": 42}


def test_one_failed_send_does_not_stop_the_batch(db, monkeypatch):
    people = _drivers(db)
    real_send = notifications.send
    calls = []

    def flaky(db, user_id, *args, **kwargs):
        calls.append(user_id)
        if user_id == people["exact"].id:
            raise RuntimeError("push gateway exploded")
        return real_send(db, user_id, *args, **kwargs)

    monkeypatch.setattr(notifications, "send", flaky)
    result = matching.trigger_matches(db, FREIGHT)

    assert result == {"candidates": 2, "notified": 1, "failed": 1}
    assert calls == [people["exact"].id, people["region"].id]
    assert db.query(Notification).filter(Notification.user_id == people["region"].id).count() == 1


def test_no_candidates(db):
    result = matching.trigger_matches(db, {**FREIGHT, "vehicle_type": "Bitrem", "origin_state": "AM"})
    assert result == {"candidates": 0, "notified": 0, "failed": 0}
