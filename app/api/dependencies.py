"""
Dependency injection functions for FastAPI.
Provides database sessions and Clerk session authentication dependencies.
"""
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from db.database import SessionLocal
from db.repository import Repository
from db.models import User
from core.audit_logger import audit_logger
from core.security import SESSION_COOKIE_NAME, decode_session_token, extract_bearer_token


def get_db() -> Generator[Session, None, None]:
    """
    Dependency that provides a database session.
    Automatically closes the session when request completes.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def resolve_session_user(token: Optional[str], db: Session) -> Optional[User]:
    """
    Map a Clerk session token to the local user it belongs to.

    Shared by the REST dependency and the relay handshake. Returns None
    instead of raising so each caller can reject in its own protocol.
    """
    claims = decode_session_token(token) if token else None
    if not claims:
        return None
    return Repository(db).get_user_by_clerk_id(claims["sub"])


def _request_token(request: Request) -> Optional[str]:
    return extract_bearer_token(request.headers.get("Authorization")) or request.cookies.get(SESSION_COOKIE_NAME)


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Clerk session authentication dependency.

    Accepts the token from ``Authorization: Bearer`` or the ``__session``
    cookie, verifies it and loads the matching local user.

    Raises:
        HTTPException: 401 if the token is missing or invalid, or the Clerk
            user has not been synced locally yet
    """
    client_ip = request.client.host if request.client else None
    token = _request_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    claims = decode_session_token(token)
    if not claims:
        audit_logger.log_token_invalid(client_ip, "Invalid or expired session token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = Repository(db).get_user_by_clerk_id(claims["sub"])
    if not user:
        audit_logger.log_unknown_identity(claims["sub"], client_ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return user

