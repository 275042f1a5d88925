"""
Request-scoped dependencies: the authenticated caller and the objects the
application factory put on app.state.
"""

from typing import Optional
from fastapi import BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from healthpal.app.core.jwt import decode_access_token
from healthpal.app.core.redis_client import get_redis
from healthpal.app.core.token_revocation import is_token_revoked
from healthpal.app.db.session import get_db
from healthpal.app.models.user import User
from healthpal.app.services.notification_service import NotificationDispatcher

bearer_scheme = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis)
) -> dict:
    """
    Resolve the bearer token to its claims (sub, user_id, role, jti, exp)
    plus the raw token under "token".

    Rejects bad or expired tokens, tokens revoked by logout and accounts
    that were deleted or deactivated after the token was issued.
    """
    token = credentials.credentials
    claims = decode_access_token(token)
    if claims is None:
        raise _unauthorized("Could not validate credentials")

    if await is_token_revoked(redis_client, claims):
        raise _unauthorized("Token has been revoked")

    user = await db.get(User, claims["user_id"])
    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    return {**claims, "token": token}


def get_settings(request: Request):
    return request.app.state.settings


def get_payment_gateway(request: Request):
    return request.app.state.payment_gateway


def get_dispatcher(request: Request, background_tasks: BackgroundTasks) -> NotificationDispatcher:
    """Notifications scheduled here run after the response, i.e. after the ledger commit."""
    return NotificationDispatcher(
        request.app.state.db,
        request.app.state.notifier,
        request.app.state.settings.adapter_timeout_seconds,
        background_tasks.add_task,
    )


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None
