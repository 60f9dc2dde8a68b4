"""Central role policy.

Every guarded operation names an action; the table below is the single place
that decides which roles may attempt it. Ownership is checked separately by
``require_owner_or_admin`` once the target row is loaded.
"""
from __future__ import annotations

from app.core.errors import AuthenticationError, AuthorizationError

DRIVER = "DRIVER"
COMPANY = "COMPANY"
ADVERTISER = "ADVERTISER"
ADMIN = "ADMIN"

ROLES = frozenset({DRIVER, COMPANY, ADVERTISER, ADMIN})

POLICY: dict[str, frozenset[str]] = {
    "freight.create": frozenset({COMPANY, ADMIN}),
    "freight.update": frozenset({COMPANY, ADMIN}),
    "freight.delete": frozenset({COMPANY, ADMIN}),
    "freight.assign": frozenset({COMPANY, ADMIN}),
    "freight.confirm_payment": frozenset({COMPANY, ADMIN}),
    "freight.finish": frozenset({DRIVER, COMPANY, ADMIN}),
    "freight.leads": frozenset({COMPANY, ADMIN}),
    "freight.moderate": frozenset({ADMIN}),
    "freight.payment_status": frozenset({ADMIN}),
    "ad.manage": frozenset({ADVERTISER, COMPANY, ADMIN}),
    "credits.grant": frozenset({ADMIN}),
    "user.verify": frozenset({ADMIN}),
}


def is_allowed(action: str, role: str | None) -> bool:
    allowed = POLICY.get(action)
    if allowed is None:
        raise KeyError(f"unknown action: {action}")
    return (role or "").upper() in allowed


def require(principal, action: str) -> None:
    if principal is None:
        raise AuthenticationError()
    if not is_allowed(action, principal.role):
        raise AuthorizationError("Permission denied for this profile.", action=action)


def is_admin(principal) -> bool:
    return principal is not None and (principal.role or "").upper() == ADMIN


def require_owner_or_admin(principal, owner_id: int | None) -> None:
    if principal is None:
        raise AuthenticationError()
    if is_admin(principal):
        return
    if owner_id is None or int(owner_id) != int(principal.id):
        raise AuthorizationError("You do not own this record.")
