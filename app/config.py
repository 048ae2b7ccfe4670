import os
import json
import logging
import firebase_admin
from firebase_admin import credentials

from app.core.settings import settings

logger = logging.getLogger(__name__)


def _load_credentials():
    inline = os.environ.get("FIREBASE_CERT_JSON")
    if inline:
        try:
            return credentials.Certificate(json.loads(inline))
        except (ValueError, TypeError) as e:
            logger.warning(f"FIREBASE_CERT_JSON is not a usable service account: {e}")

    path = settings.firebase_cert_path
    if path and os.path.exists(path):
        return credentials.Certificate(path)
    return None


def init_firebase() -> bool:
    """Initialize the Firebase admin SDK used to verify ID tokens on admin and tenant routes.

    Inline JSON (FIREBASE_CERT_JSON) wins over the key file at FIREBASE_CERT_PATH.
    Returns False when neither is present; the webhook still works, but every
    bearer token will then be rejected with 401.
    """
    if firebase_admin._apps:
        return True

    try:
        cert = _load_credentials()
    except (ValueError, OSError) as e:
        logger.warning(f"Failed to load Firebase credentials from {settings.firebase_cert_path}: {e}")
        cert = None

    if cert is None:
        logger.warning("No Firebase credentials found; authenticated billing routes will reject all tokens")
        return False

    firebase_admin.initialize_app(cert)
    return True
