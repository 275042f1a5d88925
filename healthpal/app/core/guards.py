"""
Role guards for the HealthPal endpoints.

Roles come from the token claims checked by get_current_user. Ownership
rules (beneficiary of a sponsorship, party to a consultation) are enforced
in the domain services, not here.
"""

from typing import Iterable
from fastapi import Depends, HTTPException, status
from healthpal.app.models.enums import UserRole
from healthpal.app.core.dependencies import get_current_user


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def role_of(current_user: dict) -> UserRole:
    try:
        return UserRole(current_user.get("role"))
    except ValueError:
        raise _forbidden("Invalid role in token")


def require_role(allowed_roles: Iterable[UserRole]):
    """
    Dependency factory: only the listed roles get through.

        current_user: dict = Depends(require_role([UserRole.DONOR]))
    """
    allowed = frozenset(allowed_roles)
    label = ", ".join(sorted(r.value for r in allowed))

    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        if role_of(current_user) not in allowed:
            raise _forbidden(f"Access denied. Required role: {label}")
        return current_user

    return role_checker


def is_admin(current_user: dict) -> bool:
    return current_user.get("role") == UserRole.ADMIN.value
