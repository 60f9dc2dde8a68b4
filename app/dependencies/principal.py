"""Resolve the calling user from the ``X-User-Id`` header.

Token issuance lives upstream; by the time a request reaches this service the
gateway has already authenticated the caller and forwards the user id.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.errors import AuthenticationError
from app.database import get_db


@dataclass(frozen=True)
class Principal:
    id: int
    role: str
    name: str = ""
    is_verified: bool = False
    document_status: str = "pending"


def load_principal(db: Session, user_id: int) -> Principal | None:
    row = db.execute(
        text(
            """
            SELECT id, role, name, is_verified, document_status
            FROM users
            WHERE id = :id AND deleted_at IS NULL
            """
        ),
        {"id": user_id},
    ).mappings().first()
    if not row:
        return None
    return Principal(
        id=int(row["id"]),
        role=(row["role"] or "").upper(),
        name=row["name"] or "",
        is_verified=bool(row["is_verified"]),
        document_status=row["document_status"] or "pending",
    )


def get_optional_principal(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(default=None),
) -> Principal | None:
    if not x_user_id or not x_user_id.strip().isdigit():
        return None
    return load_principal(db, int(x_user_id))


def get_principal(principal: Principal | None = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise AuthenticationError()
    return principal
