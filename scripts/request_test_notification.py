#!/usr/bin/env python3
"""
Request an App Store test notification.

Asks Apple to send a TEST notification to the webhook configured in App Store
Connect. The webhook verifies its signature like any other notification.

Usage:
    python3 scripts/request_test_notification.py

Requires APPLE_KEY_ID, APPLE_ISSUER_ID, APPLE_PRIVATE_KEY, APPLE_BUNDLE_ID and
APPLE_ENVIRONMENT (sandbox or production) in the environment.
"""

import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from premium_entitlements.config import ConfigurationError, settings
from premium_entitlements.exceptions import UpstreamUnavailableError
from premium_entitlements.services.app_store_server import AppStoreServerClient

logger = structlog.get_logger()


async def main() -> int:
    try:
        client = AppStoreServerClient.from_settings(settings)
        token = await client.request_test_notification()
    except ConfigurationError as exc:
        logger.error("test_notification_not_configured", error=str(exc))
        return 1
    except UpstreamUnavailableError as exc:
        logger.error("test_notification_request_failed", error=exc.message)
        return 1

    print(f"Test notification requested ({settings.apple_environment}): {token}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
