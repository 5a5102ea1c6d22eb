"""
Password hashing and JWT bearer authentication.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import JWT_ALGORITHM, JWT_ISSUER, Settings, get_settings
from errors import Unauthorized
from schemas import Identity

# bcrypt only looks at the first 72 bytes of a password.
_BCRYPT_MAX_BYTES = 72

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: str, email: str, username: str, settings: Settings,
                        now: Optional[datetime] = None) -> str:
    """Sign a token carrying the user's identity claims."""
    issued_at = now or datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(hours=settings.jwt_expires_hours)
    payload = {
        "user_id": user_id,
        "email": email,
        "username": username,
        "exp": expires_at,
        "iat": issued_at,
        "nbf": issued_at,
        "iss": JWT_ISSUER,
        "sub": user_id,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=JWT_ALGORITHM)
    logging.debug(f"Generated JWT for user {email}, expires at {expires_at.isoformat()}")
    return token


def decode_access_token(token: str, settings: Settings) -> Identity:
    """Verify signature, algorithm, expiry and issuer; return the caller's identity."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Invalid or expired token", "token has expired")
    except jwt.InvalidTokenError as e:
        logging.warning(f"JWT validation failed: {e}")
        raise Unauthorized("Invalid or expired token", str(e))

    return Identity(
        user_id=claims["sub"],
        email=claims.get("email", ""),
        username=claims.get("username", ""),
    )


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Identity:
    """FastAPI dependency resolving the `Authorization: Bearer <token>` header."""
    # HTTPBearer yields nothing for a missing header as well as for a non-bearer scheme.
    if credentials is None:
        raise Unauthorized("Authorization header required", "expected 'Bearer <token>'")

    identity = decode_access_token(credentials.credentials, settings)
    logging.debug(f"User {identity.email} (ID: {identity.user_id}) authenticated.")
    return identity
