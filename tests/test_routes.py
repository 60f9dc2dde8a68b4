"""HTTP-level tests: envelope, status codes and post-commit dispatch.

Run with:  pytest tests/test_routes.py -v
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from app.database import get_db
from app.dependencies.pricing import get_pricing
from app.main import app
from app.models.notification import Notification
from app.repositories import freight_repo
from app.services.pricing import default_snapshot
from tests.factories import add_ad, add_freight, add_user

FREIGHT = {
    "origin_city": "Cascavel",
    "origin_state": "PR",
    "dest_city": "Santos",
    "dest_state": "SP",
    "product": "Milho",
    "weight": 30,
    "price": 3800,
    "vehicle_type": "Carreta",
    "body_type": "Graneleiro",
}


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pricing] = default_snapshot
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(user):
    return {"X-User-Id": str(user.id)}


def test_create_requires_identity(client):
    response = client.post("/api/freights", json=FREIGHT)
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Authentication required."}


def test_driver_cannot_post(client, db):
    driver = add_user(db, role="DRIVER")
    response = client.post("/api/freights", json=FREIGHT, headers=_as(driver))
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_malformed_body_is_400(client, db):
    company = add_user(db, role="COMPANY")
    response = client.post("/api/freights", json={**FREIGHT, "price": "caro"}, headers=_as(company))
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid or missing data."


def test_freight_flow_over_http(client, db):
    company = add_user(db, role="COMPANY", is_verified=True)
    driver = add_user(db, role="DRIVER", vehicle_type="Carreta", body_type="Graneleiro")

    created = client.post("/api/freights", json=FREIGHT, headers=_as(company))
    assert created.status_code == 201
    body = created.json()
    assert body["success"] is True
    assert body["message"] == "Freight published."
    freight_id = body["data"]["id"]
    # matching ran after the commit
    assert db.query(Notification).filter(Notification.user_id == driver.id).count() == 1

    public = client.get("/api/freights", params={"search": "milho"}).json()
    assert [item["id"] for item in public["data"]] == [freight_id]
    assert public["meta"]["total_items"] == 1

    by_slug = client.get(f"/api/freights/slug/{body['data']['slug']}").json()
    assert by_slug["data"]["price"] == 3800.0

    assigned = client.post(f"/api/freights/{freight_id}/assign", json={"driver_id": driver.id}, headers=_as(company))
    assert assigned.json()["data"]["status"] == "IN_PROGRESS"

    again = client.post(f"/api/freights/{freight_id}/assign", json={"driver_id": driver.id}, headers=_as(company))
    assert again.status_code == 409
    assert again.json()["message"] == "Freight is no longer available."

    finished = client.post(f"/api/freights/{freight_id}/finish", headers=_as(driver))
    assert finished.json()["data"]["status"] == "FINISHED"
    assert client.post(f"/api/freights/{freight_id}/finish", headers=_as(driver)).status_code == 409

    titles = {row.title for row in db.query(Notification).filter(Notification.user_id == driver.id)}
    assert titles == {"Carga compatível!", "Carga Confirmada! 🚛"}


def test_cooldown_reports_retry_after(client, db):
    company = add_user(db, role="COMPANY")
    assert client.post("/api/freights", json=FREIGHT, headers=_as(company)).status_code == 201
    response = client.post("/api/freights", json=FREIGHT, headers=_as(company))
    assert response.status_code == 429
    assert response.json()["details"]["retry_after"] > 0


def test_unknown_freight_is_404(client):
    response = client.get("/api/freights/999")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_moderation_endpoint(client, db):
    company = add_user(db, role="COMPANY")
    admin = add_user(db, role="ADMIN")
    freight_id = client.post("/api/freights", json=FREIGHT, headers=_as(company)).json()["data"]["id"]

    assert client.post(
        f"/api/admin/freights/{freight_id}/status", json={"status": "OPEN"}, headers=_as(company)
    ).status_code == 403

    response = client.post(f"/api/admin/freights/{freight_id}/status", json={"status": "OPEN"}, headers=_as(admin))
    data = response.json()["data"]
    assert data["status"] == "OPEN"
    assert data["dispatch"] == {"delivered": 2, "failed": 0}

    inbox = client.get("/api/notifications", headers=_as(company)).json()["data"]
    assert inbox["unread_count"] == 1
    assert inbox["notifications"][0]["title"] == "Frete Online!"


def test_ad_click_soft_failure_is_200(client, db):
    advertiser = add_user(db, role="ADVERTISER", credit_balance=Decimal("1.00"))
    ad = add_ad(db, user_id=advertiser.id)

    served = client.post("/api/ads/impressions", json={"ad_ids": [ad.id]})
    assert served.status_code == 200
    assert served.json()["data"]["charged"] == [ad.id]

    response = client.post("/api/ads/events", json={"id": ad.id, "event_type": "CLICK"})
    assert response.status_code == 200
    assert response.json()["success"] is False
    status = db.execute(text("SELECT status FROM ads WHERE id = :id"), {"id": ad.id}).scalar()
    assert status == "paused"

    missing = client.post("/api/ads/events", json={"event_type": "CLICK"})
    assert missing.status_code == 400
    assert missing.json()["message"] == "ID ausente"


def test_ads_listing_and_credits(client, db):
    advertiser = add_user(db, role="ADVERTISER")
    admin = add_user(db, role="ADMIN")
    add_ad(db, user_id=advertiser.id, status="paused", location_city="Curitiba")

    assert client.get("/api/ads", params={"city": "Curitiba"}).json()["data"] == []
    granted = client.post(
        "/api/admin/credits", json={"user_id": advertiser.id, "amount": 50}, headers=_as(admin)
    ).json()["data"]
    assert granted["resumed_ads"] == 1

    ads = client.get("/api/ads", params={"city": "Curitiba"}).json()["data"]
    assert len(ads) == 1
    assert ads[0]["priority"] == 300

    history = client.get("/api/users/me/credits", headers=_as(advertiser)).json()["data"]
    assert history["balance"] == 50.0


def test_notification_endpoints(client, db):
    user = add_user(db)
    for title in ("Um", "Dois"):
        db.add(Notification(user_id=user.id, title=title, message="x", is_read=False))
    db.commit()

    assert client.get("/api/notifications/unread-count", headers=_as(user)).json()["data"] == {"unread_count": 2}
    first_id = db.query(Notification).first().id
    assert client.post(f"/api/notifications/{first_id}/read", headers=_as(user)).status_code == 200
    assert client.post("/api/notifications/9999/read", headers=_as(user)).status_code == 404
    assert client.post("/api/notifications/read-all", headers=_as(user)).json()["data"] == {"updated": 1}


def test_deleted_account_loses_access(client, db):
    user = add_user(db, role="COMPANY")
    assert client.delete("/api/users/me", headers=_as(user)).status_code == 200
    assert client.get("/api/freights/summary", headers=_as(user)).status_code == 401


@pytest.mark.parametrize("price", ["NaN", "1e999999", "-inf"])
def test_non_finite_price_is_rejected(client, db, price):
    company = add_user(db, role="COMPANY")
    response = client.post("/api/freights", json={**FREIGHT, "price": price}, headers=_as(company))
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert db.execute(text("SELECT COUNT(*) FROM freights")).scalar() == 0


def test_freight_events_only_touch_freights(client, db):
    company = add_user(db, role="COMPANY")
    freight = add_freight(db, user_id=company.id)
    ad = add_ad(db, id=freight.id)

    response = client.post(f"/api/freights/{freight.id}/events", json={"event_type": "WHATSAPP_CLICK", "target_type": "AD"})
    assert response.json() == {"success": True}
    assert freight_repo.get_freight(db, freight.id)["clicks_count"] == 1
    ad_counts = db.execute(text("SELECT views_count, clicks_count FROM ads WHERE id = :id"), {"id": ad.id}).one()
    assert tuple(ad_counts) == (0, 0)
    logged = db.execute(text("SELECT target_type FROM click_logs WHERE target_id = :id"), {"id": freight.id}).scalars()
    assert list(logged) == ["FREIGHT"]


def test_review_endpoints(client, db):
    company = add_user(db, role="COMPANY", name="Transportes Sul")
    driver = add_user(db, role="DRIVER")
    freight = add_freight(db, user_id=company.id, status="FINISHED", assigned_driver_id=driver.id)
    review = {"freight_id": freight.id, "rating": 5, "comment": "Entrega no prazo"}

    assert client.post(f"/api/users/{driver.id}/reviews", json=review).status_code == 401
    created = client.post(f"/api/users/{driver.id}/reviews", json=review, headers=_as(company))
    assert created.status_code == 200
    assert created.json()["data"]["rating_count"] == 1

    duplicate = client.post(f"/api/users/{driver.id}/reviews", json=review, headers=_as(company))
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "You have already reviewed this service."
    out_of_range = client.post(
        f"/api/users/{driver.id}/reviews", json={**review, "rating": 9}, headers=_as(company)
    )
    assert out_of_range.status_code == 400

    listed = client.get(f"/api/users/{driver.id}/reviews").json()["data"]
    assert listed["count"] == 1
    assert listed["reviews"][0]["comment"] == "Entrega no prazo"
