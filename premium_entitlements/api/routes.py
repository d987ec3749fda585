"""
API Routes - FastAPI endpoints for premium entitlements.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from premium_entitlements.api.dependencies import (
    AuthenticatedUser,
    get_current_user,
    get_entitlement_service,
    get_notification_processor,
    get_repository,
)
from premium_entitlements.config import ConfigurationError
from premium_entitlements.db.repository import EntitlementRepository
from premium_entitlements.db.session import get_read_db
from premium_entitlements.exceptions import (
    ExpiredEntitlementError,
    MissingExpirationError,
    NoActiveSubscriptionError,
    ReceiptStatusError,
    RepositoryError,
    SignatureInvalidError,
    UpstreamUnavailableError,
    ValidationError,
)
from premium_entitlements.models.api import (
    DeleteAccountResponse,
    HealthResponse,
    NotificationAck,
    PremiumStatusRequest,
    PremiumStatusResponse,
)
from premium_entitlements.models.domain import to_iso_millis
from premium_entitlements.services.entitlement_resolver import EntitlementService
from premium_entitlements.services.notification_processor import NotificationProcessor

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Premium status (bearer auth)
# =============================================================================


@router.post("/v1/premium/status", response_model=PremiumStatusResponse)
async def set_premium_status(
    request: PremiumStatusRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    service: EntitlementService = Depends(get_entitlement_service),
) -> PremiumStatusResponse:
    """
    Grant premium from an App Store receipt, or clear it.

    ``isPremium=false`` clears every premium field. ``isPremium=true``
    requires ``receiptData`` and ``productId`` and is only granted once Apple
    confirms an unexpired subscription.
    """
    try:
        if not request.is_premium:
            await service.set_entitlement(user.user_id, False)
            return PremiumStatusResponse(is_premium=False)

        resolved = await service.verify_entitlement(
            user_id=user.user_id,
            receipt_data=request.receipt_data,
            product_id=request.product_id,
            now=datetime.now(UTC),
            transaction_id=request.transaction_id,
            app_account_token=request.app_account_token,
        )

    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    except ConfigurationError as exc:
        logger.error("premium_status_not_configured", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Receipt verification is not configured",
        ) from exc

    except UpstreamUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Unable to reach Apple verification service",
        ) from exc

    except (ReceiptStatusError, NoActiveSubscriptionError, MissingExpirationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message
        ) from exc

    except ExpiredEntitlementError as exc:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=exc.message) from exc

    except RepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update premium status",
        ) from exc

    return PremiumStatusResponse(
        is_premium=True,
        product_id=resolved.product_id,
        transaction_id=resolved.transaction_id,
        environment=resolved.environment,
        expires_at=to_iso_millis(resolved.expires_at),
    )


# =============================================================================
# App Store Server Notifications V2
# =============================================================================


@router.post("/v1/iap/notifications", response_model=NotificationAck)
async def apple_notification_webhook(
    request: Request,
    processor: NotificationProcessor = Depends(get_notification_processor),
) -> NotificationAck:
    """
    Handle App Store Server Notifications V2.

    Responds 200 for every notification whose signature verifies so that Apple
    stops retrying. Signature failures answer 401; unreachable key endpoints
    answer 503 so that Apple retries later.
    """
    body = await request.body()

    try:
        outcome = await processor.process(body, now=datetime.now(UTC))

    except ValidationError as exc:
        logger.warning("apple_notification_malformed", error=exc.message)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc

    except SignatureInvalidError as exc:
        logger.error("apple_notification_signature_invalid", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid notification signature",
        ) from exc

    except UpstreamUnavailableError as exc:
        logger.error("apple_notification_keys_unavailable", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to verify notification",
        ) from exc

    except RepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Notification processing failed",
        ) from exc

    return NotificationAck(message=outcome.message)


# =============================================================================
# Account
# =============================================================================


@router.delete("/v1/users/me", response_model=DeleteAccountResponse)
async def delete_account(
    user: AuthenticatedUser = Depends(get_current_user),
    repository: EntitlementRepository = Depends(get_repository),
) -> DeleteAccountResponse:
    """Delete the authenticated user's account and entitlement record."""
    try:
        await repository.delete_user(user.user_id)
    except RepositoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete account",
        ) from exc
    return DeleteAccountResponse()


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
