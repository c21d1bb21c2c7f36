"""Utilities for issuing and validating session JWTs."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from ..config import Settings
from ..domain.account import Account, SessionClaims

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ["sub", "iss", "iat", "exp"]


class SessionTokenIssuer:
    """Sign account claims into self-contained session tokens and read them back.

    The claims are a snapshot taken at issuance; later changes to the account
    (for example toggling ``is_accepting_messages``) are not reflected until a
    new token is issued.
    """

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.session_secret
        self._issuer = settings.session_issuer
        self._ttl_seconds = settings.session_ttl_seconds

    def issue(self, account: Account, now: int | None = None) -> tuple[str, int]:
        """Create a signed JWT representing an authenticated account.

        Parameters
        ----------
        account:
            The authenticated account whose attributes are embedded as claims.
        now:
            Optional epoch seconds used for ``iat``; defaults to the current time.

        Returns
        -------
        tuple[str, int]
            A tuple containing the encoded JWT string and its TTL (in seconds).
        """
        issued_at = int(time.time()) if now is None else now
        claims = SessionClaims.from_account(account)
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": claims.account_id,
            "username": claims.username,
            "is_verified": claims.is_verified,
            "is_accepting_messages": claims.is_accepting_messages,
            "iat": issued_at,
            "exp": issued_at + self._ttl_seconds,
        }
        token = jwt.encode(payload, self._secret, algorithm=_ALGORITHM)
        return token, self._ttl_seconds

    def decode(self, token: str | None) -> SessionClaims | None:
        """Verify a token and return its claims, or ``None`` when it is not valid.

        Signature, issuer and expiry are all checked; tokens missing any of the
        account claims are rejected as well.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                options={"require": _REQUIRED_CLAIMS},
            )
        except jwt.PyJWTError as exc:
            logger.debug("rejected session token: %s", exc)
            return None

        try:
            return SessionClaims(
                account_id=str(payload["sub"]),
                username=str(payload["username"]),
                is_verified=bool(payload["is_verified"]),
                is_accepting_messages=bool(payload["is_accepting_messages"]),
            )
        except KeyError as exc:
            logger.debug("session token missing claim %s", exc)
            return None
