"""Email verification code generation."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

CODE_MIN = 100000
CODE_MAX = 999999
DEFAULT_CODE_TTL = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class VerificationCode:
    code: str
    expires_at: datetime


def generate_verification_code(
    now: datetime | None = None, ttl: timedelta = DEFAULT_CODE_TTL
) -> VerificationCode:
    """Draw a uniform 6-digit code and compute when it stops being accepted.

    Codes are not unique across accounts; lookups are always scoped to one
    account, so collisions are harmless.
    """
    issued_at = now or datetime.now(timezone.utc)
    value = CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1)
    return VerificationCode(code=str(value), expires_at=issued_at + ttl)


def is_code_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    """Codes are usable up to and including ``expires_at``."""
    return (now or datetime.now(timezone.utc)) > expires_at
