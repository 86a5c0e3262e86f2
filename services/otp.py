"""One-time password-reset codes kept in Redis.

Two keys per issued code, both with the same TTL:
``otp:user:<id>`` holds the current code for a user (so a new code replaces
the old one) and ``otp:code:<code>`` maps the code back to the user, which
is how ``verify-otp`` and ``reset-password`` find it without an identifier.
"""
import logging
import secrets
from typing import Optional

import redis

from core.config import settings
from models.user import User

logger = logging.getLogger(__name__)

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)

OTP_USER_PREFIX = "otp:user:"
OTP_CODE_PREFIX = "otp:code:"
OTP_LAST_SENT_PREFIX = "otp:last:"


def _generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def issue_reset_code(user: User) -> Optional[str]:
    """Store a fresh code for ``user``; returns None while the resend window is open."""
    last_key = f"{OTP_LAST_SENT_PREFIX}{user.id}"
    if settings.OTP_RESEND_INTERVAL_SECONDS > 0 and redis_client.exists(last_key):
        logger.info("Reset code for user %s throttled", user.id)
        return None

    # Invalidate the previous code, if any
    previous = redis_client.get(f"{OTP_USER_PREFIX}{user.id}")
    if previous:
        redis_client.delete(f"{OTP_CODE_PREFIX}{previous}")

    code = _generate_code()
    while redis_client.exists(f"{OTP_CODE_PREFIX}{code}"):
        code = _generate_code()

    redis_client.setex(f"{OTP_USER_PREFIX}{user.id}", settings.OTP_TTL_SECONDS, code)
    redis_client.setex(f"{OTP_CODE_PREFIX}{code}", settings.OTP_TTL_SECONDS, str(user.id))
    if settings.OTP_RESEND_INTERVAL_SECONDS > 0:
        redis_client.setex(last_key, settings.OTP_RESEND_INTERVAL_SECONDS, "1")
    return code


def peek_code(code: str) -> Optional[int]:
    """User id the code belongs to, without consuming it."""
    user_id = redis_client.get(f"{OTP_CODE_PREFIX}{code}")
    return int(user_id) if user_id else None


def consume_code(code: str) -> Optional[int]:
    user_id = peek_code(code)
    if user_id is None:
        return None
    redis_client.delete(f"{OTP_CODE_PREFIX}{code}")
    redis_client.delete(f"{OTP_USER_PREFIX}{user_id}")
    return user_id


def revoke_code(code: str) -> None:
    consume_code(code)
