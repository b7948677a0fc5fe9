"""
JWT token utilities for actor authentication.

Tokens carry the actor identity (user_id) and role that the delivery
endpoints authorize against.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from delivery_backend.app.core.config import settings
from delivery_backend.app.models.enums import UserRole


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload to encode (should include: sub, user_id, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_actor_token(user_id: int, role: UserRole, username: Optional[str] = None) -> str:
    """Mint a token for a sender, driver or admin actor."""
    return create_access_token(data={
        "sub": username or f"{role.value.lower()}-{user_id}",
        "user_id": user_id,
        "role": role.value,
    })


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Returns:
        Decoded payload if the signature and expiry are valid, None otherwise
    """
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
