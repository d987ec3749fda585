"""
FastAPI Dependencies - Authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from premium_entitlements.config import Settings, get_settings
from premium_entitlements.db.repository import EntitlementRepository, UsersRepository
from premium_entitlements.db.session import get_write_db
from premium_entitlements.exceptions import AuthenticationError
from premium_entitlements.services.developer_token import DeveloperTokenProvider
from premium_entitlements.services.entitlement_resolver import EntitlementService
from premium_entitlements.services.notification_processor import NotificationProcessor
from premium_entitlements.services.receipt_client import AppleReceiptClient
from premium_entitlements.services.signature_verifier import JwsSignatureVerifier

logger = get_logger(__name__)

# ============================================================================
# User JWT Authentication
# ============================================================================


@dataclass(frozen=True)
class AuthenticatedUser:
    """Authenticated user identity from the session access token."""

    user_id: UUID
    email: str | None = None


# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str, settings: Settings) -> AuthenticatedUser:
    """
    Verify an HS256 session token and extract the user.

    Raises:
        AuthenticationError: Token is expired, malformed, or has no UUID subject
    """
    options = {"verify_aud": settings.auth_jwt_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=["HS256"],
            audience=settings.auth_jwt_audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid token") from exc

    subject = payload.get("sub")
    try:
        user_id = UUID(str(subject))
    except ValueError as exc:
        raise AuthenticationError("Token subject is not a user id") from exc

    email = payload.get("email")
    return AuthenticatedUser(user_id=user_id, email=email if isinstance(email, str) else None)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """
    FastAPI dependency to validate the bearer token from the Authorization header.

    Accepts: Authorization: Bearer {access_token}

    Raises:
        HTTPException 401 if no token or invalid token
        HTTPException 500 if AUTH_JWT_SECRET is not configured
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not settings.auth_jwt_secret:
        logger.error("auth_jwt_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        )

    try:
        return decode_access_token(credentials.credentials, settings)
    except AuthenticationError as exc:
        logger.warning("user_token_rejected", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


# ============================================================================
# Services
# ============================================================================


async def get_repository(db: AsyncSession = Depends(get_write_db)) -> EntitlementRepository:
    """Entitlement repository bound to the request's write session."""
    return UsersRepository(db)


async def get_entitlement_service(
    repository: EntitlementRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> EntitlementService:
    """Entitlement service for the premium-status endpoint."""
    return EntitlementService(repository, AppleReceiptClient.from_settings(settings))


# Singleton developer token provider (shared across all webhook requests)
_developer_token_provider: DeveloperTokenProvider | None = None


def get_developer_token_provider(
    settings: Settings = Depends(get_settings),
) -> DeveloperTokenProvider | None:
    """Get the process-wide developer token provider, or None when no key is configured."""
    global _developer_token_provider

    if _developer_token_provider is None:
        _developer_token_provider = DeveloperTokenProvider.from_settings(settings)

    return _developer_token_provider


async def get_notification_processor(
    repository: EntitlementRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
    token_provider: DeveloperTokenProvider | None = Depends(get_developer_token_provider),
) -> NotificationProcessor:
    """Notification processor for the App Store webhook."""
    verifier = JwsSignatureVerifier.from_settings(settings, token_provider=token_provider)
    return NotificationProcessor(verifier, repository, settings)
