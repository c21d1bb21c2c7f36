from __future__ import annotations

import copy
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("PASSWORD_HASHER", "simple")

from whisperbox.config import Settings  # noqa: E402
from whisperbox.domain.account import Account  # noqa: E402
from whisperbox.domain.contracts import DuplicateKeyError, SendResult, StoreError  # noqa: E402
from whisperbox.domain.service import AccountService  # noqa: E402
from whisperbox.mail import LoggingEmailSender  # noqa: E402
from whisperbox.security.passwords import SimpleHasher  # noqa: E402
from whisperbox.security.tokens import SessionTokenIssuer  # noqa: E402


class FakeRepository:
    """In-memory account store mimicking the Postgres document semantics."""

    def __init__(self) -> None:
        self._accounts: dict[str, Account] = {}
        self.available = True
        self.writes = 0

    def _check(self) -> None:
        if not self.available:
            raise StoreError("connection refused")

    def _copy(self, account: Account | None) -> Account | None:
        return copy.deepcopy(account) if account is not None else None

    def find_by_username_verified(self, username: str):
        self._check()
        for account in self._accounts.values():
            if account.username == username and account.is_verified:
                return self._copy(account)
        return None

    def find_by_email(self, email: str):
        self._check()
        for account in self._accounts.values():
            if account.email == email:
                return self._copy(account)
        return None

    def find_by_id(self, account_id: str):
        self._check()
        return self._copy(self._accounts.get(account_id))

    def find_by_identifier(self, identifier: str):
        self._check()
        by_email = self.find_by_email(identifier)
        if by_email is not None:
            return by_email
        matches = [account for account in self._accounts.values() if account.username == identifier]
        if not matches:
            return None
        matches.sort(key=lambda a: (a.is_verified, a.updated_at), reverse=True)
        return self._copy(matches[0])

    def insert(self, account: Account) -> str:
        self._check()
        if any(existing.email == account.email for existing in self._accounts.values()):
            raise DuplicateKeyError("email")
        account.updated_at = datetime.now(timezone.utc)
        self._accounts[account.account_id] = copy.deepcopy(account)
        self.writes += 1
        return account.account_id

    def update(self, account: Account) -> None:
        self._check()
        if account.is_verified and any(
            other.username == account.username and other.is_verified and other.account_id != account.account_id
            for other in self._accounts.values()
        ):
            raise DuplicateKeyError("username")
        account.updated_at = datetime.now(timezone.utc)
        self._accounts[account.account_id] = copy.deepcopy(account)
        self.writes += 1

    def stored(self, account_id: str) -> Account:
        return self._accounts[account_id]


class FailingEmailSender:
    def __init__(self) -> None:
        self.attempts = 0

    def send(self, email: str, username: str, code: str) -> SendResult:
        self.attempts += 1
        return SendResult(success=False, message="Failed to send verification email")


class FrozenClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def settings() -> Settings:
    return Settings(
        session_secret="test-session-secret",
        session_issuer="whisperbox.test",
        session_ttl_seconds=3600,
        password_hasher="simple",
        rate_limit_requests=100,
        rate_limit_backend="memory",
    )


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def outbox() -> LoggingEmailSender:
    return LoggingEmailSender()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def issuer(settings: Settings) -> SessionTokenIssuer:
    return SessionTokenIssuer(settings)


@pytest.fixture
def service(repository, outbox, clock, issuer) -> AccountService:
    return AccountService(
        repository,
        hasher=SimpleHasher(),
        token_issuer=issuer,
        email_sender=outbox,
        clock=clock,
    )


@pytest.fixture
def verified_account(service, repository, outbox) -> Account:
    """Register and verify ``alice`` with password ``12345678``."""
    registered = service.register({"username": "alice", "email": "a@x.com", "password": "12345678"})
    code = outbox.outbox[-1][2]
    service.verify({"identifier": "alice", "code": code})
    return repository.stored(registered.value.account_id)
