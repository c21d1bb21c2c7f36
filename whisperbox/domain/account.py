from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Message:
    """An anonymous message delivered to an account's mailbox."""

    content: str
    created_at: datetime


@dataclass(slots=True)
class Account:
    """Aggregate root for a registered identity and its mailbox."""

    account_id: str
    username: str
    email: str
    password_hash: str
    verify_code: str
    verify_code_expiry: datetime
    is_verified: bool = False
    is_accepting_messages: bool = True
    messages: list[Message] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class SessionClaims:
    """Account attributes carried inside a session token."""

    account_id: str
    username: str
    is_verified: bool
    is_accepting_messages: bool

    @classmethod
    def from_account(cls, account: Account) -> "SessionClaims":
        return cls(
            account_id=account.account_id,
            username=account.username,
            is_verified=account.is_verified,
            is_accepting_messages=account.is_accepting_messages,
        )
