"""
Access tokens for the API and the terminal client.

Every token carries the account email as `sub` plus `user_id` and `role`, so
role guards can run without a database round trip. A random `jti` keeps two
logins in the same second from producing the same token, which matters once
one of them is revoked on logout.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from healthpal.app.core.config import settings

REQUIRED_CLAIMS = ("sub", "user_id", "role", "jti", "exp")


def user_claims(email: str, user_id: int, role: str) -> Dict[str, Any]:
    return {"sub": email, "user_id": user_id, "role": role}


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    claims = dict(data)
    claims.update({
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "jti": uuid.uuid4().hex,
    })
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature and expiry. Returns None for anything unusable,
    including a well-signed token that lacks one of the identity claims.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if any(payload.get(claim) in (None, "") for claim in REQUIRED_CLAIMS):
        return None
    return payload
