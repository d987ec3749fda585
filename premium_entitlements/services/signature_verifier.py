"""
JWS Signature Verifier - validates App Store signed payloads.

Verification flow:
1. Split the compact token into header.payload.signature
2. Fetch the production public-key set (optionally with a developer bearer token)
3. Try every candidate key until one verifies the signature over header.payload
4. Only if production fails, repeat against the sandbox key set

A payload is trusted only after step 3 or 4 succeeds.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any

import httpx
import jwt
from structlog import get_logger

from premium_entitlements.config import Settings
from premium_entitlements.exceptions import (
    SignatureInvalidError,
    UpstreamUnavailableError,
    ValidationError,
)
from premium_entitlements.observability.metrics import metrics
from premium_entitlements.services.developer_token import DeveloperTokenProvider

logger = get_logger(__name__)

# Asymmetric algorithms only; "none" and HMAC are never accepted from a header
SUPPORTED_ALGORITHMS = frozenset({"ES256", "ES384", "RS256"})


def base64url_decode(segment: str) -> bytes:
    """Decode base64url-encoded data, restoring stripped padding."""
    padding = "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(segment + padding)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Signed payload is not valid base64url") from exc


def split_compact_jws(token: str) -> tuple[str, str, str]:
    """Split a compact JWS into its three segments."""
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise ValidationError("Signed payload must have three segments")
    return parts[0], parts[1], parts[2]


def _decode_json_segment(segment: str) -> dict[str, Any]:
    try:
        decoded = json.loads(base64url_decode(segment))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Signed payload segment is not JSON") from exc
    if not isinstance(decoded, dict):
        raise ValidationError("Signed payload segment must be a JSON object")
    return decoded


def decode_jws_header(token: str) -> dict[str, Any]:
    """Decode the protected header of a compact JWS without verifying it."""
    header, _, _ = split_compact_jws(token)
    return _decode_json_segment(header)


def decode_jws_payload(token: str) -> dict[str, Any]:
    """Decode the payload of a compact JWS without verifying it."""
    _, payload, _ = split_compact_jws(token)
    return _decode_json_segment(payload)


@dataclass(frozen=True)
class VerifiedPayload:
    """A payload whose signature matched a key from ``key_set``."""

    key_set: str  # "production" or "sandbox"
    key_id: str | None
    payload: dict[str, Any]


class JwsSignatureVerifier:
    """Verifies compact JWS tokens against Apple's rotating key sets."""

    def __init__(
        self,
        production_jwks_url: str,
        sandbox_jwks_url: str,
        token_provider: DeveloperTokenProvider | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.key_set_urls: tuple[tuple[str, str], ...] = (
            ("production", production_jwks_url),
            ("sandbox", sandbox_jwks_url),
        )
        self.token_provider = token_provider
        self.timeout = timeout

    @classmethod
    def from_settings(
        cls, settings: Settings, token_provider: DeveloperTokenProvider | None = None
    ) -> "JwsSignatureVerifier":
        """Build a verifier from application settings, reusing ``token_provider`` when given."""
        if token_provider is None:
            token_provider = DeveloperTokenProvider.from_settings(settings)
        return cls(
            production_jwks_url=settings.apple_jwks_production_url,
            sandbox_jwks_url=settings.apple_jwks_sandbox_url,
            token_provider=token_provider,
            timeout=settings.apple_http_timeout_seconds,
        )

    async def verify(self, token: str) -> VerifiedPayload:
        """
        Verify ``token`` against the production key set, then the sandbox key set.

        Raises:
            ValidationError: The token is not a well-formed compact JWS
            SignatureInvalidError: Both key sets were fetched and no key verifies
            UpstreamUnavailableError: A key set could not be fetched and the other did not verify
        """
        header = decode_jws_header(token)
        algorithm = str(header.get("alg", "ES256"))
        key_id = header.get("kid")
        if algorithm not in SUPPORTED_ALGORITHMS:
            metrics.signature_failures_total.inc()
            raise SignatureInvalidError(f"Unsupported algorithm {algorithm}")

        unreachable: list[UpstreamUnavailableError] = []
        for key_set, url in self.key_set_urls:
            try:
                keys = await self._fetch_keys(url)
            except UpstreamUnavailableError as exc:
                logger.warning("jwks_fetch_failed", key_set=key_set, url=url, error=exc.message)
                unreachable.append(exc)
                continue

            payload = self._verify_with_keys(token, keys, algorithm, key_id)
            if payload is not None:
                logger.info("jws_signature_verified", key_set=key_set, key_id=key_id)
                return VerifiedPayload(key_set=key_set, key_id=key_id, payload=payload)

            logger.info("jws_signature_not_verified", key_set=key_set, key_id=key_id)

        if unreachable:
            raise unreachable[0]

        metrics.signature_failures_total.inc()
        raise SignatureInvalidError("No production or sandbox key verifies the payload")

    async def _fetch_keys(self, url: str) -> list[dict[str, Any]]:
        """GET a JWKS document and return its ``keys`` list."""
        headers = {"Accept": "application/json"}
        if self.token_provider is not None:
            headers["Authorization"] = f"Bearer {self.token_provider.get_token()}"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as exc:
            metrics.record_upstream_error("apple_jwks")
            raise UpstreamUnavailableError("apple_jwks", str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            metrics.record_upstream_error("apple_jwks")
            raise UpstreamUnavailableError(
                "apple_jwks", f"HTTP {response.status_code}", status_code=response.status_code
            )

        try:
            document = response.json()
        except ValueError as exc:
            metrics.record_upstream_error("apple_jwks")
            raise UpstreamUnavailableError("apple_jwks", "Key set is not JSON") from exc

        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            return []
        return [key for key in keys if isinstance(key, dict)]

    @staticmethod
    def _verify_with_keys(
        token: str,
        keys: list[dict[str, Any]],
        algorithm: str,
        key_id: str | None,
    ) -> dict[str, Any] | None:
        """Return the verified payload for the first key that matches, else None."""
        candidates = [key for key in keys if key.get("kid") == key_id] if key_id else keys
        for key_data in candidates:
            try:
                signing_key = jwt.PyJWK(key_data, algorithm=algorithm)
                payload = jwt.PyJWS().decode(token, key=signing_key.key, algorithms=[algorithm])
            except jwt.PyJWTError as exc:
                logger.debug("jws_candidate_key_rejected", kid=key_data.get("kid"), error=str(exc))
                continue

            try:
                decoded = json.loads(payload)
            except json.JSONDecodeError:
                return None
            return decoded if isinstance(decoded, dict) else None
        return None
