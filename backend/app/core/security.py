"""Webhook signature verification and the request dependency that enforces it"""
import hashlib
import hmac
import string
from typing import Optional

from fastapi import HTTPException, Request

from app.core.config import settings
from app.core.exceptions import ConfigurationError, SignatureVerificationError
from app.core.logging import security_logger
from app.core.metrics import webhook_signature_failures_counter

_HEX_DIGITS = frozenset(string.hexdigits)
_SHA256_HEX_LENGTH = hashlib.sha256().digest_size * 2


class WebhookSignatureVerifier:
    """HMAC-SHA256 verifier for webhook request bodies

    The secret is injected once at construction; an empty secret is a
    configuration error, not a per-request failure.
    """

    def __init__(self, secret: str):
        if not secret or not secret.strip():
            raise ConfigurationError("WEBHOOK_SECRET must be configured")
        self._secret = secret.encode("utf-8")

    def compute_signature(self, body: bytes) -> str:
        """Hex HMAC-SHA256 of the exact body bytes"""
        return hmac.new(self._secret, body, hashlib.sha256).hexdigest()

    def check(self, body: bytes, signature: Optional[str]) -> Optional[str]:
        """Return None when the signature is authentic, otherwise a failure reason

        Reasons: "missing", "malformed", "length", "mismatch". Never raises.
        """
        if not signature:
            return "missing"
        signature = signature.strip()
        if not signature or not all(c in _HEX_DIGITS for c in signature):
            return "malformed"
        expected = self.compute_signature(body)
        if len(signature) != _SHA256_HEX_LENGTH:
            # Still run the comparison so a short header costs the same as a wrong one
            hmac.compare_digest(expected, expected)
            return "length"
        if not hmac.compare_digest(expected, signature.lower()):
            return "mismatch"
        return None

    def verify(self, body: bytes, signature: Optional[str]) -> bool:
        return self.check(body, signature) is None


def build_signature_verifier() -> WebhookSignatureVerifier:
    """Build the verifier from settings (raises ConfigurationError when the secret is missing)"""
    return WebhookSignatureVerifier(settings.WEBHOOK_SECRET)


def get_signature_verifier(request: Request) -> WebhookSignatureVerifier:
    verifier = getattr(request.app.state, "signature_verifier", None)
    if verifier is None:
        # Only reachable when the app was started without its lifespan
        verifier = build_signature_verifier()
        request.app.state.signature_verifier = verifier
    return verifier


def authenticate_webhook(verifier: WebhookSignatureVerifier, body: bytes, signature: Optional[str]) -> None:
    """Raise SignatureVerificationError unless the signature matches the body"""
    reason = verifier.check(body, signature)
    if reason is not None:
        raise SignatureVerificationError(f"Invalid webhook signature ({reason})", reason=reason)


async def require_webhook_signature(request: Request) -> bytes:
    """Dependency: verify the signature header against the raw body, return the body bytes

    The returned bytes are the ones that must be parsed downstream; they are
    never re-serialized before verification.
    """
    body = await request.body()
    signature = request.headers.get(settings.WEBHOOK_SIGNATURE_HEADER)
    verifier = get_signature_verifier(request)

    try:
        authenticate_webhook(verifier, body, signature)
    except SignatureVerificationError as e:
        webhook_signature_failures_counter.labels(reason=e.reason).inc()
        security_logger.warning(
            f"Webhook signature rejected - Reason: {e.reason}, "
            f"IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(401, "Invalid webhook signature")

    return body
