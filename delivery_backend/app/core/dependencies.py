"""
Dependencies for FastAPI routes.

JWT authentication for protected routes and construction of the delivery
lifecycle service.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from delivery_backend.app.core.jwt import decode_access_token
from delivery_backend.app.db.session import get_db
from delivery_backend.app.domain.delivery.events import DeliveryEventPublisher, get_event_publisher
from delivery_backend.app.domain.delivery.lifecycle_service import DeliveryLifecycleService
from delivery_backend.app.domain.delivery.repository import DeliveryRepository

# HTTP Bearer security scheme. auto_error is disabled so a missing header
# surfaces as 401 rather than FastAPI's default 403.
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Checks:
    1. A bearer token is present
    2. Token signature and expiry are valid
    3. Payload carries an actor id

    Returns:
        Decoded token payload (sub, user_id, role)

    Raises:
        HTTPException: 401 if authentication fails for any reason
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_delivery_service(
    db: AsyncSession = Depends(get_db),
    publisher: DeliveryEventPublisher = Depends(get_event_publisher),
) -> DeliveryLifecycleService:
    """
    FastAPI dependency building the lifecycle engine for one request.

    The repository is bound to the request's session; the publisher is
    process-wide so its background sends outlive the request.
    """
    return DeliveryLifecycleService(DeliveryRepository(db), publisher)
