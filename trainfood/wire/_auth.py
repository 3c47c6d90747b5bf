"""
Caller identity, as forwarded by the upstream auth layer.

The gateway in front of this service verifies the session and sets
``X-User-Id`` and ``X-User-Role``; nothing here checks credentials.
"""

from typing import Annotated

from fastapi import Header, HTTPException

from trainfood.orders import Principal, Role


def current_principal(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> Principal:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="authentication required")
    try:
        role = Role((x_user_role or Role.CUSTOMER.value).strip().lower())
    except ValueError:
        raise HTTPException(status_code=403, detail=f"unknown role {x_user_role!r}")
    return Principal(user_id=x_user_id, role=role)


__all__ = ("current_principal",)
