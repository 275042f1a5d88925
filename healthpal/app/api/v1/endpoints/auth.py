"""
Authentication API endpoints.

Provides register, login, logout and user info endpoints for the terminal
client and other callers.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from healthpal.app.db.session import get_db
from healthpal.app.models.user import User
from healthpal.app.models.enums import UserRole
from healthpal.app.schemas.auth import UserRegister, UserLogin, TokenResponse, UserResponse
from healthpal.app.core.security import get_password_hash, verify_password
from healthpal.app.core.jwt import create_access_token, user_claims
from healthpal.app.core.dependencies import get_current_user, client_ip
from healthpal.app.core.redis_client import get_redis
from healthpal.app.core.token_revocation import revoke_token
from healthpal.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_claims(user.email, user.id, user.role.value)),
        token_type="bearer",
        user_id=user.id,
        full_name=user.full_name,
        email=user.email,
        role=user.role,
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    user_data: UserRegister,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Register a new user.

    - ADMIN role cannot be created via API.
    - Email must be unique (409 otherwise).
    """
    if user_data.role == UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin users cannot be registered via API"
        )

    email = user_data.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )

    new_user = User(
        full_name=user_data.full_name.strip(),
        email=email,
        phone=user_data.phone,
        hashed_password=get_password_hash(user_data.password),
        role=user_data.role,
        is_active=True,
    )
    db.add(new_user)
    try:
        await db.flush()
    except IntegrityError:
        # Lost a race with a concurrent registration
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered"
        )

    await log_event(
        db,
        AuditAction.USER_REGISTERED,
        actor_id=new_user.id,
        actor_email=new_user.email,
        entity_type="user",
        entity_id=new_user.id,
        metadata={"role": new_user.role.value},
        ip_address=client_ip(request),
    )
    await db.refresh(new_user)

    return _token_response(new_user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Login user and return JWT token.

    Logs successful and failed login attempts for security monitoring.
    """
    email = credentials.email.lower()
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(credentials.password, user.hashed_password):
        await log_event(
            db,
            AuditAction.LOGIN_FAILED,
            actor_id=user.id if user else None,
            actor_email=email,
            metadata={"reason": "Invalid password" if user else "User not found"},
            ip_address=client_ip(request),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        await log_event(
            db,
            AuditAction.LOGIN_FAILED,
            actor_id=user.id,
            actor_email=user.email,
            metadata={"reason": "Account is inactive"},
            ip_address=client_ip(request),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account"
        )

    await log_event(
        db,
        AuditAction.LOGIN_SUCCESS,
        actor_id=user.id,
        actor_email=user.email,
        ip_address=client_ip(request),
    )

    return _token_response(user)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Get current authenticated user information.

    Requires valid JWT token in Authorization header.
    """
    user = await db.get(User, current_user.get("user_id"))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return UserResponse.model_validate(user)


@router.post("/logout")
async def logout(
    request: Request,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis)
):
    """Revoke the presented token; later requests with it get 401."""
    revoked = await revoke_token(redis_client, current_user)
    if not revoked:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not revoke token, please retry"
        )

    await log_event(
        db,
        AuditAction.TOKEN_REVOKED,
        actor_id=current_user["user_id"],
        actor_email=current_user.get("sub"),
        ip_address=client_ip(request),
    )
    return {"status": "success", "message": "Logged out"}
