"""
Authentication Module
Handles JWT token creation and verification for API security.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
import hashlib
import hmac
import logging

import jwt
from pydantic import BaseModel
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from config import HomeGuardConfig, SystemMode

logger = logging.getLogger("HomeGuardAuth")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")

INSECURE_DEMO_JWT_SECRET = "insecure-change-me-for-production"


class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    username: Union[str, None] = None
    is_admin: bool = False


def verify_password(plain_password: str, stored_password: str) -> bool:
    """
    Check a password against the configured one.

    The configured value may be plain text or ``sha256$<hexdigest>``.
    """
    if stored_password.startswith("sha256$"):
        expected = "sha256$" + hashlib.sha256(plain_password.encode("utf-8")).hexdigest()
        return hmac.compare_digest(expected, stored_password)

    return hmac.compare_digest(plain_password.encode("utf-8"), stored_password.encode("utf-8"))


def get_password_hash(password: str) -> str:
    return "sha256$" + hashlib.sha256(password.encode("utf-8")).hexdigest()


def _secret_key(config: HomeGuardConfig) -> str:
    if config.api.jwt_secret_key:
        return config.api.jwt_secret_key
    if config.system.mode == SystemMode.PRODUCTION:
        raise RuntimeError("JWT_SECRET_KEY must be set when HOMEGUARD_MODE=PRODUCTION")
    return INSECURE_DEMO_JWT_SECRET


def create_access_token(
    data: dict,
    config: HomeGuardConfig,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data
        config: Configuration (secret key, algorithm, default lifetime)
        expires_delta: Optional expiration time

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=config.api.jwt_expiration_hours)
    )
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, _secret_key(config), algorithm=config.api.jwt_algorithm)


def decode_access_token(token: str, config: HomeGuardConfig) -> TokenData:
    """
    Raises:
        jwt.PyJWTError: If the token is invalid or expired
    """
    payload = jwt.decode(token, _secret_key(config), algorithms=[config.api.jwt_algorithm])
    username = payload.get("sub")
    if username is None:
        raise jwt.InvalidTokenError("Token has no subject")
    return TokenData(username=username, is_admin=bool(payload.get("adm", False)))


async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)) -> TokenData:
    """
    Validate and return the current user from the bearer token.

    Raises:
        HTTPException: If token is invalid
    """
    config: HomeGuardConfig = request.app.state.system.config

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        return decode_access_token(token, config)
    except jwt.PyJWTError:
        raise credentials_exception
    except RuntimeError as e:
        logger.error(str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server authentication is not configured"
        )


def require_admin(current_user: TokenData = Depends(get_current_user)) -> TokenData:
    """Only the configured admin account may change rules or approve actions."""
    if current_user.is_admin:
        return current_user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Admin privileges required",
    )
