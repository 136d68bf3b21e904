"""Authentication and authorization utilities for API."""

import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from core.config import settings
from core.security import verify_gateway_signature

# HTTPBasic security for internal endpoints
_security = HTTPBasic()


async def admin_basic_auth(credentials: HTTPBasicCredentials = Depends(_security)) -> str:
    """
    Validate HTTP Basic Auth credentials for internal endpoints.

    Raises:
        HTTPException: If credentials are invalid
    """
    if credentials.username != settings.admin_user or credentials.password != settings.admin_pass:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return str(credentials.username)


async def gateway_auth(request: Request) -> uuid.UUID:
    """
    Authenticate gateway->API requests using HMAC signature.

    Expects headers:
    - X-User-Id: UUID of the user acting on the match
    - X-Gateway-Signature: HMAC-SHA256 signature of request body

    Returns:
        Acting user id

    Raises:
        HTTPException: If authentication fails
    """
    user_id_str = request.headers.get("X-User-Id")
    signature = request.headers.get("X-Gateway-Signature")

    if not user_id_str or not signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing auth headers (X-User-Id, X-Gateway-Signature)",
        )

    body = await request.body()

    if not verify_gateway_signature(body, signature):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        return uuid.UUID(user_id_str)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid X-User-Id format") from None
