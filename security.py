"""
Authentication and role guard

Tokens are stateless HS256 JWTs carried in the `token` cookie. Handlers declare
who may call them with `Depends(require_roles("seller"))`; the guard verifies
the token, loads the user and checks the role.
"""

import random
from datetime import timedelta
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Request, Response
from passlib.context import CryptContext

from config import Settings, get_settings
from database import Database, get_db, utcnow
from errors import AuthenticationError, AuthorizationError

logger = structlog.get_logger(__name__)

TOKEN_COOKIE = "token"
ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def generate_verify_code() -> str:
    """Six digit one-time code."""
    return str(random.SystemRandom().randint(100000, 999999))


def create_token(user: dict, settings: Settings) -> str:
    now = utcnow()
    payload = {
        "id": user["_id"],
        "email": user["email"],
        "role": user["role"],
        "iat": now,
        "exp": now + timedelta(days=settings.token_ttl_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: Optional[str], settings: Settings) -> dict:
    if not token:
        raise AuthenticationError("No token found")
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("token_rejected", reason=str(e))
        raise AuthenticationError("Invalid token")
    if not claims.get("id"):
        raise AuthenticationError("Invalid token")
    return claims


def set_token_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        max_age=settings.token_ttl_days * 24 * 60 * 60,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def clear_token_cookie(response: Response, settings: Settings) -> None:
    response.set_cookie(
        key=TOKEN_COOKIE,
        value="",
        max_age=0,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def public_user(user: dict) -> dict:
    return {
        "id": user["_id"],
        "name": user["name"],
        "email": user["email"],
        "role": user["role"],
        "profile_picture": user.get("profile_picture", ""),
        "address": user.get("address"),
        "phone_number": user.get("phone_number", ""),
    }


# Dependencies

def get_current_user(request: Request, db: Database = Depends(get_db),
                     settings: Settings = Depends(get_settings)) -> dict:
    claims = decode_token(request.cookies.get(TOKEN_COOKIE), settings)
    user = db.get_document_by_id("user", claims["id"])
    if not user:
        raise AuthenticationError("User not found")
    return user


def get_optional_user(request: Request, db: Database = Depends(get_db),
                      settings: Settings = Depends(get_settings)) -> Optional[dict]:
    token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        return None
    try:
        return get_current_user(request, db, settings)
    except AuthenticationError:
        return None


def require_roles(*roles: str):
    allowed = frozenset(roles)

    def guard(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in allowed:
            raise AuthorizationError("Unauthorized access")
        return user

    return guard


require_customer = require_roles("customer")
require_seller = require_roles("seller")
require_admin = require_roles("admin")
