"""Merchant-scoped access control for dashboard routes.

A dashboard user acts on a merchant only through a merchant_members row.
Roles are ordered viewer < staff < manager < owner: viewers read, staff
run the booking lifecycle (status changes, reschedules, payment retries).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, HTTPException, Query

from reservio.api.auth import CurrentUser, get_current_user
from reservio.infra.db import txn

ROLE_LEVELS = {"viewer": 0, "staff": 1, "manager": 2, "owner": 3}


@dataclass
class MerchantRoleContext:
    user: CurrentUser
    merchant_id: str
    role: str


def role_satisfies(role: str | None, min_role: str) -> bool:
    """Whether role is at least min_role (unknown roles never are)."""
    if role not in ROLE_LEVELS:
        return False
    return ROLE_LEVELS[role] >= ROLE_LEVELS[min_role]


def _get_user_role_for_merchant(user_id: str, merchant_id: str) -> str | None:
    with txn(read_only=True) as cur:
        cur.execute(
            "SELECT role FROM merchant_members WHERE user_id = %s AND merchant_id = %s",
            (user_id, merchant_id),
        )
        row = cur.fetchone()
    return row[0] if row else None


def require_merchant_role(min_role: str) -> Callable[..., MerchantRoleContext]:
    """Dependency factory: caller must hold min_role on ?merchant_id=.

    Raises:
        ValueError: At import time, for a role name outside ROLE_LEVELS.
    """
    if min_role not in ROLE_LEVELS:
        raise ValueError(f"Invalid role: {min_role}")

    def dependency(
        merchant_id: str = Query(..., description="Merchant ID"),
        user: CurrentUser = Depends(get_current_user),
    ) -> MerchantRoleContext:
        role = _get_user_role_for_merchant(user.id, merchant_id)
        if role is None:
            raise HTTPException(status_code=403, detail="No access to merchant")
        if not role_satisfies(role, min_role):
            raise HTTPException(status_code=403, detail="Insufficient role")
        return MerchantRoleContext(user=user, merchant_id=merchant_id, role=role)

    return dependency
