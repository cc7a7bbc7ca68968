"""Request signing for the exchange REST API.

The signing key rotates every 30 seconds of the expiry timestamp:

    K         = HMAC-SHA256(secret, floor(expires_ms / 30000))   (hex)
    signature = HMAC-SHA256(K, payload)                          (hex)

The payload is the literal query string for GET requests and the exact
JSON body bytes for POST requests.
"""

import hashlib
import hmac
import time
from typing import Optional, Union

SIGNING_WINDOW_MS = 30_000

HEADER_API_KEY = "X-CS-APIKEY"
HEADER_SIGNATURE = "X-CS-SIGN"
HEADER_EXPIRES = "X-CS-EXPIRES"


def current_expires_ms() -> int:
    """Current time in milliseconds, used as the request expiry stamp."""
    return int(time.time() * 1000)


def derive_signing_key(secret: str, expires_ms: int) -> str:
    """Derive the per-window signing key (hex)."""
    window = str(expires_ms // SIGNING_WINDOW_MS)
    return hmac.new(secret.encode(), window.encode(), hashlib.sha256).hexdigest()


def sign_payload(secret: str, expires_ms: int, payload: Union[str, bytes]) -> str:
    """Sign a request payload.

    Args:
        secret: API secret
        expires_ms: Millisecond expiry timestamp sent in X-CS-EXPIRES
        payload: Query string or serialized JSON body

    Returns:
        Hex signature for X-CS-SIGN
    """
    if isinstance(payload, str):
        payload = payload.encode()
    key = derive_signing_key(secret, expires_ms)
    return hmac.new(key.encode(), payload, hashlib.sha256).hexdigest()


def build_auth_headers(
    api_key: str,
    secret: str,
    payload: Union[str, bytes],
    expires_ms: Optional[int] = None,
) -> dict[str, str]:
    """Build authentication headers for one request."""
    if expires_ms is None:
        expires_ms = current_expires_ms()
    return {
        HEADER_API_KEY: api_key,
        HEADER_SIGNATURE: sign_payload(secret, expires_ms, payload),
        HEADER_EXPIRES: str(expires_ms),
    }
