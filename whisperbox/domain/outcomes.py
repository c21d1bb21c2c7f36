"""Typed workflow results returned across the service boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class FailureKind(str, Enum):
    validation_error = "validation_error"
    username_taken = "username_taken"
    email_taken = "email_taken"
    not_found = "not_found"
    already_verified = "already_verified"
    code_expired = "code_expired"
    code_mismatch = "code_mismatch"
    invalid_credentials = "invalid_credentials"
    not_verified = "not_verified"
    not_accepting = "not_accepting"
    rate_limited = "rate_limited"
    dependency_failure = "dependency_failure"


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    value: T
    message: str = "ok"

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Failure:
    """A single named failure; ``message`` is safe to show to API consumers."""

    kind: FailureKind
    message: str

    @property
    def ok(self) -> bool:
        return False


Outcome = Union[Success[T], Failure]
