"""Request authentication: bearer JWTs for users, shared secrets for operators."""

import hmac
import logging
from typing import Any, Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from cardmarket.config import Settings
from cardmarket.database import get_db
from cardmarket.errors import AuthenticationError, RateLimitError
from cardmarket.models import User

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def parse_auth_header(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def decode_token(token: str, settings: Settings) -> Optional[dict[str, Any]]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        return None


def _secret_matches(candidate: Optional[str], secret: str) -> bool:
    return bool(secret) and bool(candidate) and hmac.compare_digest(candidate, secret)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    """Resolve the bearer token's ``sub`` to a user, creating the row on first sight."""
    token = parse_auth_header(request.headers.get("authorization"))
    if token is None:
        raise AuthenticationError("Unauthorized")
    claims = decode_token(token, settings)
    if not claims or not claims.get("sub"):
        raise AuthenticationError("Invalid or expired token")

    user_id = str(claims["sub"])
    user = db.get(User, user_id)
    if user is None:
        email = claims.get("email")
        username = claims.get("name") or (email.split("@")[0] if email else user_id)
        user = User(id=user_id, username=username, email=email)
        db.add(user)
        db.commit()
        logger.info(f"Registered user {user_id} from token claims")
    return user


def _is_admin_request(request: Request, db: Session, settings: Settings) -> bool:
    if _secret_matches(request.headers.get("x-admin-secret"), settings.admin_secret):
        return True
    token = parse_auth_header(request.headers.get("authorization"))
    if token is None:
        return False
    if _secret_matches(token, settings.admin_secret):
        return True
    claims = decode_token(token, settings)
    if claims and claims.get("sub"):
        user = db.get(User, str(claims["sub"]))
        return bool(user and user.is_admin)
    return False


def require_admin(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> None:
    if not _is_admin_request(request, db, settings):
        raise AuthenticationError("Unauthorized")


def require_cron_or_admin(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Scheduled callers send ``x-cron-secret``; operators use the admin credentials."""
    if _secret_matches(request.headers.get("x-cron-secret"), settings.cron_secret):
        return
    token = parse_auth_header(request.headers.get("authorization"))
    if _secret_matches(token, settings.cron_secret):
        return
    if not _is_admin_request(request, db, settings):
        raise AuthenticationError("Unauthorized")


def enforce_offer_rate_limit(request: Request, user: User = Depends(get_current_user)) -> User:
    settings = request.app.state.settings
    allowed, retry_after = request.app.state.rate_limiter.check(
        f"offers:create:u:{user.id}",
        settings.offer_rate_limit,
        settings.offer_rate_window_seconds,
    )
    if not allowed:
        logger.warning(f"Offer rate limit hit for user {user.id}")
        raise RateLimitError("Too many offers. Please wait before trying again.", retry_after=retry_after)
    return user
