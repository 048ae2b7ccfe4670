"""FastSpring webhook signature verification.

FastSpring signs legacy order notifications by sorting every parameter name,
concatenating the values in that order, appending the store's private key and
taking the MD5 hex digest. The digest arrives as ``security_request_hash``.
"""
import hashlib
import hmac
import logging
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = "security_request_hash"


def _param_value(value: Any) -> str:
    # Empty/missing values contribute nothing to the signed string
    if value is None or value is False or value == "":
        return ""
    if value is True:
        return "true"
    if isinstance(value, (int, float)) and value == 0:
        return ""
    return str(value)


def compute_signature(params: Mapping[str, Any], private_key: str) -> str:
    """Digest FastSpring expects for ``params`` (the signature field itself is ignored)."""
    data = "".join(
        _param_value(params.get(key))
        for key in sorted(params.keys())
        if key != SIGNATURE_FIELD
    )
    data += private_key
    return hashlib.md5(data.encode("utf-8")).hexdigest()


def verify_webhook_signature(params: Mapping[str, Any], private_key: Optional[str]) -> bool:
    """Return True only when the supplied hash matches. Never raises."""
    try:
        if not private_key:
            return False
        received = params.get(SIGNATURE_FIELD)
        if not isinstance(received, str) or not received:
            return False
        expected = compute_signature(params, private_key)
        return hmac.compare_digest(expected.encode("ascii"), received.encode("utf-8"))
    except Exception as e:
        logger.error(f"Error verifying webhook signature: {e}")
        return False
