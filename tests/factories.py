"""Row factories shared by the test modules."""
import itertools
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from app.models.ad import Ad
from app.models.freight import Freight
from app.models.user import User

_emails = itertools.count(1)
_slugs = itertools.count(1)


def add_user(db, **kwargs):
    defaults = dict(
        name="Usuário Teste",
        email=f"user{next(_emails)}@example.com",
        role="COMPANY",
        status="active",
        is_verified=False,
        document_status="approved",
        rating_avg=0,
        rating_count=0,
        credit_balance=Decimal("0"),
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(kwargs)
    user = User(**defaults)
    db.add(user)
    db.commit()
    return user


def add_ad(db, **kwargs):
    defaults = dict(
        title="Pneus Curitiba",
        category="PNEUS",
        description="Pneus para caminhão",
        position="sidebar",
        status="active",
        views_count=0,
        clicks_count=0,
        is_deleted=False,
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(kwargs)
    ad = Ad(**defaults)
    db.add(ad)
    db.commit()
    return ad


def add_freight(db, **kwargs):
    defaults = dict(
        origin_city="Cascavel",
        origin_state="PR",
        dest_city="Santos",
        dest_state="SP",
        product="Milho",
        weight=Decimal("30"),
        price=Decimal("3800"),
        status="OPEN",
        slug=f"milho-cascavel-santos-{next(_slugs)}",
        created_at=datetime.now(timezone.utc),
    )
    defaults.update(kwargs)
    freight = Freight(**defaults)
    db.add(freight)
    db.commit()
    return freight


def principal_for(user):
    return SimpleNamespace(
        id=user.id,
        role=user.role,
        name=user.name,
        is_verified=bool(user.is_verified),
        document_status=user.document_status,
    )
