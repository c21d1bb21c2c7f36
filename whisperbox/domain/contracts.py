"""Domain-level request contracts and collaborator protocols shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .account import Account

USERNAME_PATTERN = r"^[a-zA-Z0-9]+$"
PASSWORD_MAX_BYTES = 72  # bcrypt rejects longer inputs


def _password_within_bcrypt_limit(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must not exceed {PASSWORD_MAX_BYTES} bytes when encoded")
    return value


class _Input(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class RegisterInput(_Input):
    """Validated inputs required to register (or re-register) an account."""

    username: str = Field(..., min_length=3, max_length=20, pattern=USERNAME_PATTERN)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _password_within_bcrypt_limit(value)


class VerifyInput(_Input):
    """A verification code submitted for the account named by ``identifier``."""

    identifier: str = Field(..., min_length=1, max_length=254)
    code: str = Field(..., pattern=r"^\d{6}$")


class SignInInput(_Input):
    """Login identifier (username or email) and raw password."""

    identifier: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=72)

    @field_validator("password")
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        return _password_within_bcrypt_limit(value)


class AcceptMessagesInput(_Input):
    accept_messages: bool


class SendMessageInput(_Input):
    """Anonymous message addressed to a username."""

    username: str = Field(..., min_length=3, max_length=20, pattern=USERNAME_PATTERN)
    content: str = Field(..., min_length=10, max_length=300)


class DuplicateKeyError(Exception):
    """Raised by a store when a write collides with a unique constraint."""

    def __init__(self, field_name: str) -> None:
        super().__init__(f"duplicate value for {field_name}")
        self.field_name = field_name


class StoreError(Exception):
    """Raised by a store when the backing database cannot complete a call."""


class AccountStore(Protocol):
    """Keyed document store over accounts."""

    def find_by_username_verified(self, username: str) -> Account | None: ...

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_identifier(self, identifier: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def insert(self, account: Account) -> str: ...

    def update(self, account: Account) -> None: ...


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome reported by an email sender."""

    success: bool
    message: str


class EmailSender(Protocol):
    def send(self, email: str, username: str, code: str) -> SendResult: ...
