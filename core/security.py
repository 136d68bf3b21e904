import base64
import hashlib
import hmac

from core.config import settings


def _b64u_encode(data: bytes) -> str:
    """Base64-URL encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def sign_gateway_request(body: bytes, secret: str | None = None) -> str:
    """
    Sign a request body the way the API gateway does.

    Args:
        body: Raw request body bytes
        secret: Override for the shared secret (defaults to settings)

    Returns:
        Base64-URL encoded HMAC-SHA256 signature
    """
    key = (secret or settings.gateway_secret).encode()
    return _b64u_encode(hmac.new(key, body, hashlib.sha256).digest())


def verify_gateway_signature(body: bytes, signature: str) -> bool:
    """Verify HMAC-SHA256 signature of request body."""
    return hmac.compare_digest(sign_gateway_request(body), signature or "")
