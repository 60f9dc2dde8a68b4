"""Tests for reputation and the verification badge in app/services/reputation.py

Run with:  pytest tests/test_reputation.py -v
"""
from datetime import timedelta

import pytest

from app.core.errors import AuthenticationError, AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models.review import Review
from app.repositories import user_repo
from app.services import reputation
from app.utils.timeutils import utcnow
from tests.factories import add_freight, add_user, principal_for

FULL_PROFILE = {
    "name": "Maria Transportes",
    "whatsapp": "(41) 99999-0000",
    "avatar_url": "https://cdn.example.com/a.png",
    "city": "Curitiba",
    "bio": "Vinte anos de estrada",
}


@pytest.mark.parametrize("profile,points", [
    ({}, 0),
    ({"name": "Ana"}, 20),
    ({"name": "Ana", "city": "  "}, 20),
    (FULL_PROFILE, 100),
])
def test_profile_points(profile, points):
    assert reputation.profile_points(profile) == points


@pytest.mark.parametrize("user,expected", [
    ({"name": "A", "whatsapp": "1", "city": "C", "bio": "B"}, True),
    ({"name": "A", "rating_count": 5, "rating_avg": 4.5}, True),
    ({"name": "A", "rating_count": 4, "rating_avg": 5.0}, False),
    ({"name": "A", "rating_count": 9, "rating_avg": 4.4}, False),
])
def test_deserves_badge(user, expected):
    assert reputation.deserves_badge(user) is expected


def test_complete_profile_grants_badge_and_notifies(db):
    user = add_user(db, role="DRIVER", name="Maria")
    data, messages = reputation.update_profile(db, principal_for(user), {**FULL_PROFILE, "preferred_region": "pr"})

    assert data["is_verified"] is True
    assert data["score"] == 100
    stored = user_repo.get_user(db, user.id)
    assert stored["is_verified"]
    assert stored["whatsapp"] == "41999990000"
    assert stored["preferred_region"] == "PR"
    assert [m.title for m in messages] == ["🎉 Perfil Verificado!"]

    # already verified: no second notification
    _, messages = reputation.update_profile(db, principal_for(user), {"city": "Londrina"})
    assert messages == []


def test_badge_revoked_when_profile_emptied(db):
    user = add_user(db, role="DRIVER", is_verified=True, **FULL_PROFILE)
    data, _ = reputation.update_profile(db, principal_for(user), {"bio": "", "avatar_url": ""})
    assert data["is_verified"] is False
    assert not user_repo.get_user(db, user.id)["is_verified"]


def test_moderator_override_survives_recompute(db):
    admin = add_user(db, role="ADMIN")
    user = add_user(db, role="DRIVER", name="Sem Perfil")
    result = reputation.set_verified(db, principal_for(admin), user.id, True, days=30)
    assert result["is_verified"] is True

    data, _ = reputation.run_verification(db, user.id)
    db.commit()
    assert data["is_verified"] is True
    assert user_repo.get_user(db, user.id)["is_verified"]

    # once the override lapses the recompute may revoke it
    data, _ = reputation.run_verification(db, user.id, now=utcnow() + timedelta(days=31))
    assert data["is_verified"] is False


def test_reviews_feed_rating_and_badge(db):
    driver = add_user(db, role="DRIVER", name="Zé")
    company = add_user(db, role="COMPANY")
    for rating in (5, 5, 4, 5, 5):
        db.add(Review(reviewer_id=company.id, target_id=driver.id, rating=rating))
    db.commit()

    messages = reputation.refresh_driver_standing(db, driver.id)
    db.commit()
    stored = user_repo.get_user(db, driver.id)
    assert stored["rating_count"] == 5
    assert float(stored["rating_avg"]) == 4.8
    assert stored["is_verified"]
    assert len(messages) == 1


def test_refresh_driver_standing_without_driver(db):
    assert reputation.refresh_driver_standing(db, None) == []


def test_update_profile_validation(db):
    user = add_user(db)
    with pytest.raises(ValidationError):
        reputation.update_profile(db, principal_for(user), {"name": "  "})
    with pytest.raises(ValidationError):
        reputation.update_profile(db, principal_for(user), {"bio": "isso é golpe"})
    with pytest.raises(AuthenticationError):
        reputation.update_profile(db, None, {"city": "X"})


def test_set_verified_is_admin_only(db):
    user = add_user(db)
    with pytest.raises(AuthorizationError):
        reputation.set_verified(db, principal_for(user), user.id, True)


def test_soft_delete_account_frees_email(db):
    user = add_user(db, email="fulano@example.com", slug="fulano")
    reputation.soft_delete_account(db, principal_for(user))

    assert user_repo.get_user(db, user.id) is None
    stored = user_repo.get_user(db, user.id, include_deleted=True)
    assert stored["status"] == "inactive"
    assert stored["email"].startswith("fulano@example.com.deleted.")
    assert stored["slug"].startswith("fulano-deleted-")
    add_user(db, email="fulano@example.com")


# ---------------------------------------------------------------------------
# submit_review / list_reviews
# ---------------------------------------------------------------------------

@pytest.fixture
def delivery(db):
    company = add_user(db, role="COMPANY", name="Transportes Sul")
    driver = add_user(db, role="DRIVER", name="Zé")
    freight = add_freight(db, user_id=company.id, status="FINISHED", assigned_driver_id=driver.id)
    return company, driver, freight


def test_submit_review_updates_rating_in_same_call(db, delivery):
    company, driver, freight = delivery
    data, messages = reputation.submit_review(
        db, principal_for(company), driver.id, {"freight_id": freight.id, "rating": 4, "comment": "<b>Pontual</b>"}
    )

    assert data["rating_count"] == 1
    assert data["rating_avg"] == 4.0
    assert messages == []
    stored = user_repo.get_user(db, driver.id)
    assert stored["rating_count"] == 1
    assert float(stored["rating_avg"]) == 4.0

    listed = reputation.list_reviews(db, driver.id)
    assert listed["count"] == 1
    assert listed["reviews"][0]["comment"] == "Pontual"
    assert listed["reviews"][0]["reviewer_name"] == "Transportes Sul"


def test_duplicate_review_conflicts_and_keeps_rating(db, delivery):
    company, driver, freight = delivery
    reputation.submit_review(db, principal_for(company), driver.id, {"freight_id": freight.id, "rating": 5})

    with pytest.raises(ConflictError) as exc:
        reputation.submit_review(db, principal_for(company), driver.id, {"freight_id": freight.id, "rating": 1})
    assert exc.value.message == reputation.ALREADY_REVIEWED
    assert db.query(Review).count() == 1
    assert float(user_repo.get_user(db, driver.id)["rating_avg"]) == 5.0


def test_same_reviewer_may_rate_another_freight(db, delivery):
    company, driver, freight = delivery
    second = add_freight(db, user_id=company.id, status="FINISHED", assigned_driver_id=driver.id)
    reputation.submit_review(db, principal_for(company), driver.id, {"freight_id": freight.id, "rating": 5})
    data, _ = reputation.submit_review(db, principal_for(company), driver.id, {"freight_id": second.id, "rating": 3})
    assert data["rating_count"] == 2
    assert data["rating_avg"] == 4.0


@pytest.mark.parametrize("rating", [0, 6, -1, 4.5, "cinco", None, float("inf")])
def test_review_rating_must_be_one_to_five(db, delivery, rating):
    company, driver, freight = delivery
    with pytest.raises(ValidationError):
        reputation.submit_review(db, principal_for(company), driver.id, {"freight_id": freight.id, "rating": rating})
    assert db.query(Review).count() == 0


def test_review_requires_freight_and_identity(db, delivery):
    company, driver, freight = delivery
    with pytest.raises(AuthenticationError):
        reputation.submit_review(db, None, driver.id, {"freight_id": freight.id, "rating": 5})
    with pytest.raises(ValidationError):
        reputation.submit_review(db, principal_for(company), driver.id, {"rating": 5})
    with pytest.raises(ValidationError):
        reputation.submit_review(db, principal_for(driver), driver.id, {"freight_id": freight.id, "rating": 5})
    with pytest.raises(NotFoundError):
        reputation.submit_review(db, principal_for(company), driver.id, {"freight_id": 9999, "rating": 5})
    with pytest.raises(NotFoundError):
        reputation.submit_review(db, principal_for(company), 9999, {"freight_id": freight.id, "rating": 5})


def test_fifth_strong_review_grants_the_badge(db, delivery):
    company, driver, _ = delivery
    messages = []
    for _ in range(5):
        freight = add_freight(db, user_id=company.id, status="FINISHED", assigned_driver_id=driver.id)
        _, messages = reputation.submit_review(
            db, principal_for(company), driver.id, {"freight_id": freight.id, "rating": 5}
        )
    assert user_repo.get_user(db, driver.id)["is_verified"]
    assert [m.title for m in messages] == ["🎉 Perfil Verificado!"]
