"""Webhook signature verification.

Signatures are always computed over the raw request bytes. Re-serializing a
parsed body can change its bytes and invalidate an otherwise valid signature.
"""

import hashlib
import hmac
from typing import Optional

from ..logging import get_logger

logger = get_logger(__name__)

GITHUB_SIGNATURE_PREFIX = "sha256="


def sign(payload: bytes, secret: str, prefix: str = GITHUB_SIGNATURE_PREFIX) -> str:
    """Compute the signature header value for a payload."""
    digest = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return f"{prefix}{digest}"


class HmacSignatureValidator:
    """Validates ``<prefix><hex hmac-sha256>`` signature headers."""

    def __init__(self, prefix: str = GITHUB_SIGNATURE_PREFIX):
        self.prefix = prefix

    def validate(self, payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
        """
        Verify a webhook signature.

        Args:
            payload: Raw request body
            signature: Signature header value, e.g. ``sha256=<hex>``
            secret: Shared webhook secret

        Returns:
            True if signature is valid. Malformed input is a validation
            failure and never raises.
        """
        if not secret or not isinstance(signature, str) or not isinstance(payload, (bytes, bytearray)):
            return False

        if not signature.startswith(self.prefix):
            logger.warning("signature_prefix_rejected", expected_prefix=self.prefix)
            return False

        received = signature[len(self.prefix):].encode("utf-8", errors="replace")
        computed = sign(bytes(payload), secret, prefix="").encode("ascii")

        # compare_digest never stops at the first differing byte.
        return hmac.compare_digest(computed, received)


class TokenSignatureValidator:
    """Validates providers that send the shared secret itself as a token header."""

    def validate(self, payload: bytes, token: Optional[str], secret: Optional[str]) -> bool:
        if not secret or not isinstance(token, str) or not token:
            return False

        return hmac.compare_digest(
            token.encode("utf-8", errors="replace"),
            secret.encode("utf-8"),
        )


_default_validator = HmacSignatureValidator()


def validate(payload: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Verify a ``sha256=`` HMAC signature header against a shared secret."""
    return _default_validator.validate(payload, signature, secret)
