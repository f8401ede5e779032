# signatures.py — Webhook HMAC signature verification
import hmac
import hashlib
import logging
from typing import Optional

logger = logging.getLogger("taskforge.webhooks")

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature a provider sends for ``raw_body``."""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(raw_body: bytes, signature_header: Optional[str], secret: str) -> bool:
    """Check a provider signature against the raw, unparsed request body.

    Fails closed: a missing header, an empty secret or any error while
    computing the digest all yield ``False``.
    """
    if not signature_header or not secret:
        return False
    try:
        expected = compute_signature(raw_body, secret)
        return hmac.compare_digest(
            expected.encode("ascii"), signature_header.strip().encode("ascii")
        )
    except (TypeError, ValueError, UnicodeError) as e:
        logger.warning(f"Signature check failed: {e}")
        return False
