"""
Clerk session token verification.

Clerk issues short-lived session JWTs (``__session`` cookie or Bearer header).
They are verified locally with python-jose against the instance's PEM public key
(RS256) configured in CLERK_JWT_KEY; HS* algorithms are accepted for shared-secret
setups such as tests.
"""
import time
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from core.config import settings

SESSION_COOKIE_NAME = "__session"


def decode_session_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a Clerk session token.

    Checks signature, expiry, not-before and, when configured, the authorized
    party (``azp``) claim.

    Args:
        token: Raw JWT string

    Returns:
        Decoded claims if valid, None otherwise
    """
    if not token or not settings.clerk_jwt_key:
        return None

    try:
        claims = jwt.decode(
            token,
            settings.clerk_jwt_key,
            algorithms=[settings.clerk_jwt_algorithm],
            options={"verify_aud": False}
        )
    except JWTError:
        return None

    if not claims.get("sub"):
        return None

    # python-jose only checks "nbf" when present; Clerk always sets it
    nbf = claims.get("nbf")
    if nbf is not None and nbf > time.time() + 5:
        return None

    parties = settings.authorized_parties
    if parties and claims.get("azp") not in parties:
        return None

    return claims


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token part of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
