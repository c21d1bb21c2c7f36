"""Account service orchestrating registration, verification, sign-in and the mailbox."""

from __future__ import annotations

import functools
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, TypeVar

from prometheus_client import Counter
from pydantic import BaseModel, ValidationError

from .account import Account, Message, SessionClaims
from .contracts import (
    AccountStore,
    DuplicateKeyError,
    EmailSender,
    RegisterInput,
    SendMessageInput,
    SignInInput,
    StoreError,
    VerifyInput,
)
from .outcomes import Failure, FailureKind, Outcome, Success
from ..security.codes import DEFAULT_CODE_TTL, generate_verification_code, is_code_expired
from ..security.passwords import PasswordHasher
from ..security.tokens import SessionTokenIssuer

logger = logging.getLogger(__name__)

REGISTRATIONS = Counter(
    "whisperbox_registrations_total", "Registration attempts by result", ["result"]
)
VERIFICATIONS = Counter(
    "whisperbox_verifications_total", "Verification code submissions by result", ["result"]
)
SIGN_IN_FAILURES = Counter(
    "whisperbox_sign_in_failures_total", "Rejected sign-in attempts by internal reason", ["reason"]
)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"
UNAVAILABLE_MESSAGE = "Service temporarily unavailable, please try again"

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(slots=True)
class SessionGrant:
    """Session token handed to a client after a successful sign-in."""

    token: str
    expires_in: int
    claims: SessionClaims


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fingerprint(identifier: str) -> str:
    """Short stable digest so rejected identifiers can be correlated without logging them."""
    return hashlib.sha256(identifier.lower().encode("utf-8")).hexdigest()[:12]


def _coerce(model: type[ModelT], payload: ModelT | Mapping[str, Any]) -> ModelT | Failure:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = f"{location}: {first['msg']}" if location else first["msg"]
        return Failure(FailureKind.validation_error, detail)


def _store_guarded(method: Callable[..., Outcome[Any]]) -> Callable[..., Outcome[Any]]:
    """Report store outages as ``dependency_failure`` instead of raising."""

    @functools.wraps(method)
    def wrapper(self: "AccountService", *args: Any, **kwargs: Any) -> Outcome[Any]:
        try:
            return method(self, *args, **kwargs)
        except StoreError as exc:
            logger.error("account store unavailable during %s: %s", method.__name__, exc)
            return Failure(FailureKind.dependency_failure, UNAVAILABLE_MESSAGE)

    return wrapper


class AccountService:
    """Account workflows backed by an ``AccountStore``.

    Every public method returns ``Success`` or ``Failure``; input given as a
    plain mapping is validated before the store is touched.
    """

    def __init__(
        self,
        repository: AccountStore,
        *,
        hasher: PasswordHasher,
        token_issuer: SessionTokenIssuer,
        email_sender: EmailSender,
        code_ttl: timedelta = DEFAULT_CODE_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store dependencies used to orchestrate persistence, hashing and token issuance."""
        self._repository = repository
        self._hasher = hasher
        self._token_issuer = token_issuer
        self._email_sender = email_sender
        self._code_ttl = code_ttl
        self._clock = clock

    @_store_guarded
    def register(self, payload: RegisterInput | Mapping[str, Any]) -> Outcome[Account]:
        """Create an account, or refresh the credentials of an unverified one, then email a code.

        Re-registering an unverified email overwrites the password hash and the
        code but keeps the username, flag and mailbox. A failed email send is
        reported even though the account write has already been committed.
        """
        data = _coerce(RegisterInput, payload)
        if isinstance(data, Failure):
            return data

        if self._repository.find_by_username_verified(data.username) is not None:
            REGISTRATIONS.labels(result="username_taken").inc()
            return Failure(FailureKind.username_taken, "Username is already taken")

        now = self._clock()
        issued = generate_verification_code(now=now, ttl=self._code_ttl)
        existing = self._repository.find_by_email(data.email)

        if existing is not None:
            if existing.is_verified:
                REGISTRATIONS.labels(result="email_taken").inc()
                return Failure(FailureKind.email_taken, "User already exists with this email")
            existing.password_hash = self._hasher.hash(data.password)
            existing.verify_code = issued.code
            existing.verify_code_expiry = issued.expires_at
            self._repository.update(existing)
            account = existing
            result = "reissued"
        else:
            account = Account(
                account_id=str(uuid.uuid4()),
                username=data.username,
                email=data.email,
                password_hash=self._hasher.hash(data.password),
                verify_code=issued.code,
                verify_code_expiry=issued.expires_at,
                is_verified=False,
                is_accepting_messages=True,
                messages=[],
                created_at=now,
            )
            try:
                self._repository.insert(account)
            except DuplicateKeyError as exc:
                logger.info("concurrent registration collided on %s", exc.field_name)
                REGISTRATIONS.labels(result="email_taken").inc()
                return Failure(FailureKind.email_taken, "User already exists with this email")
            result = "created"

        logger.info("account %s %s, sending verification email", account.account_id, result)
        sent = self._email_sender.send(account.email, account.username, issued.code)
        if not sent.success:
            logger.warning("verification email for account %s failed: %s", account.account_id, sent.message)
            REGISTRATIONS.labels(result="email_failed").inc()
            return Failure(FailureKind.dependency_failure, sent.message)

        REGISTRATIONS.labels(result=result).inc()
        return Success(account, "User registered successfully. Please verify your account.")

    @_store_guarded
    def verify(self, payload: VerifyInput | Mapping[str, Any]) -> Outcome[Account]:
        """Consume a verification code; expiry is checked before the code value."""
        data = _coerce(VerifyInput, payload)
        if isinstance(data, Failure):
            return data

        account = self._repository.find_by_identifier(data.identifier)
        if account is None:
            VERIFICATIONS.labels(result="not_found").inc()
            return Failure(FailureKind.not_found, "User not found")
        if account.is_verified:
            VERIFICATIONS.labels(result="already_verified").inc()
            return Failure(FailureKind.already_verified, "Account is already verified")
        if is_code_expired(account.verify_code_expiry, self._clock()):
            VERIFICATIONS.labels(result="code_expired").inc()
            return Failure(
                FailureKind.code_expired,
                "Verification code has expired. Please sign up again to get a new code",
            )
        if data.code != account.verify_code:
            VERIFICATIONS.labels(result="code_mismatch").inc()
            return Failure(FailureKind.code_mismatch, "Incorrect verification code")

        holder = self._repository.find_by_username_verified(account.username)
        if holder is not None and holder.account_id != account.account_id:
            VERIFICATIONS.labels(result="username_taken").inc()
            return Failure(FailureKind.username_taken, "Username is already taken")

        account.is_verified = True
        try:
            self._repository.update(account)
        except DuplicateKeyError:
            VERIFICATIONS.labels(result="username_taken").inc()
            return Failure(FailureKind.username_taken, "Username is already taken")

        logger.info("account %s verified", account.account_id)
        VERIFICATIONS.labels(result="verified").inc()
        return Success(account, "Account verified successfully")

    @_store_guarded
    def authenticate(self, payload: SignInInput | Mapping[str, Any]) -> Outcome[Account]:
        """Check an identifier/password pair without writing anything.

        Unknown identifiers and wrong passwords share one external failure; the
        logs and metrics keep them apart.
        """
        data = _coerce(SignInInput, payload)
        if isinstance(data, Failure):
            return data

        account = self._repository.find_by_identifier(data.identifier)
        if account is None:
            logger.info("sign-in rejected: unknown identifier %s", _fingerprint(data.identifier))
            SIGN_IN_FAILURES.labels(reason="unknown_identifier").inc()
            return Failure(FailureKind.invalid_credentials, INVALID_CREDENTIALS_MESSAGE)
        if not account.is_verified:
            logger.info("sign-in rejected: account %s not verified", account.account_id)
            SIGN_IN_FAILURES.labels(reason="not_verified").inc()
            return Failure(FailureKind.not_verified, "Please verify your account before signing in")
        if not self._hasher.verify(data.password, account.password_hash):
            logger.info("sign-in rejected: password mismatch for account %s", account.account_id)
            SIGN_IN_FAILURES.labels(reason="password_mismatch").inc()
            return Failure(FailureKind.invalid_credentials, INVALID_CREDENTIALS_MESSAGE)
        return Success(account)

    def sign_in(self, payload: SignInInput | Mapping[str, Any]) -> Outcome[SessionGrant]:
        """Authenticate and, on success, issue a session token for the account."""
        outcome = self.authenticate(payload)
        if isinstance(outcome, Failure):
            return outcome
        grant = self.issue_session(outcome.value)
        logger.info("session issued for account %s", grant.claims.account_id)
        return Success(grant, "Signed in successfully")

    def issue_session(self, account: Account) -> SessionGrant:
        """Sign a fresh claims snapshot; used at sign-in and after the account changes."""
        token, expires_in = self._token_issuer.issue(account)
        return SessionGrant(token=token, expires_in=expires_in, claims=SessionClaims.from_account(account))

    def decode_session(self, token: str | None) -> SessionClaims | None:
        return self._token_issuer.decode(token)

    @_store_guarded
    def is_username_available(self, username: str) -> Outcome[bool]:
        """Report whether no verified account holds ``username``."""
        taken = self._repository.find_by_username_verified(username) is not None
        return Success(not taken, "Username is already taken" if taken else "Username is available")

    @_store_guarded
    def set_accepting_messages(self, account_id: str, accepting: bool) -> Outcome[Account]:
        account = self._repository.find_by_id(account_id)
        if account is None:
            return Failure(FailureKind.not_found, "User not found")
        account.is_accepting_messages = accepting
        self._repository.update(account)
        logger.info("account %s accepting messages set to %s", account_id, accepting)
        return Success(account, "Message acceptance status updated successfully")

    @_store_guarded
    def get_accepting_status(self, account_id: str) -> Outcome[bool]:
        account = self._repository.find_by_id(account_id)
        if account is None:
            return Failure(FailureKind.not_found, "User not found")
        return Success(account.is_accepting_messages)

    @_store_guarded
    def send_message(self, payload: SendMessageInput | Mapping[str, Any]) -> Outcome[Message]:
        """Append an anonymous message to a verified account's mailbox if it is accepting."""
        data = _coerce(SendMessageInput, payload)
        if isinstance(data, Failure):
            return data

        account = self._repository.find_by_username_verified(data.username)
        if account is None:
            return Failure(FailureKind.not_found, "User not found")
        if not account.is_accepting_messages:
            return Failure(FailureKind.not_accepting, "User is not accepting messages")

        message = Message(content=data.content, created_at=self._clock())
        account.messages.append(message)
        self._repository.update(account)
        logger.info("message delivered to account %s", account.account_id)
        return Success(message, "Message sent successfully")

    @_store_guarded
    def list_messages(self, account_id: str) -> Outcome[list[Message]]:
        """Return the mailbox newest first (messages are stored in arrival order)."""
        account = self._repository.find_by_id(account_id)
        if account is None:
            return Failure(FailureKind.not_found, "User not found")
        return Success(list(reversed(account.messages)))
