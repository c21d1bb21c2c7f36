"""Row mapping and error translation of the Postgres account repository."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import psycopg
import pytest
from psycopg.errors import UniqueViolation

from whisperbox.domain.account import Account, Message
from whisperbox.domain.contracts import DuplicateKeyError, StoreError
from whisperbox.repository import AccountRepository

CREATED = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _constraint_violation(constraint: str) -> UniqueViolation:
    class _Violation(UniqueViolation):
        @property
        def diag(self):
            return SimpleNamespace(constraint_name=constraint)

    return _Violation(f"duplicate key value violates unique constraint {constraint!r}")


class StubCursor:
    def __init__(self, connection: "StubConnection") -> None:
        self._connection = connection

    def execute(self, query, params=None):
        self._connection.record(query, params)

    def fetchone(self):
        return self._connection.row


class StubConnection:
    def __init__(self, row=None, error: Exception | None = None) -> None:
        self.row = row
        self.error = error
        self.executed: list[tuple[str, object]] = []

    def record(self, query, params) -> None:
        self.executed.append((" ".join(query.split()), params))
        if self.error is not None:
            raise self.error

    def execute(self, query, params=None):
        self.record(query, params)

    @contextmanager
    def cursor(self, row_factory=None):
        yield StubCursor(self)


class StubPool:
    def __init__(self, connection: StubConnection) -> None:
        self._connection = connection

    @contextmanager
    def connection(self):
        yield self._connection


def _row(**overrides):
    row = {
        "account_id": "acc-1",
        "username": "alice",
        "email": "a@x.com",
        "password_hash": "simple$abc",
        "verify_code": "123456",
        "verify_code_expiry": CREATED + timedelta(hours=1),
        "is_verified": True,
        "is_accepting_messages": True,
        "messages": [
            {"content": "first message here", "created_at": CREATED.isoformat()},
            {"content": "second message here", "created_at": (CREATED + timedelta(minutes=5)).isoformat()},
        ],
        "created_at": CREATED,
        "updated_at": CREATED,
    }
    row.update(overrides)
    return row


def _account() -> Account:
    return Account(
        account_id="acc-1",
        username="alice",
        email="a@x.com",
        password_hash="simple$abc",
        verify_code="123456",
        verify_code_expiry=CREATED + timedelta(hours=1),
        messages=[Message(content="hello there friend", created_at=CREATED)],
        created_at=CREATED,
    )


def test_find_by_identifier_prefers_email_then_verified_then_recent():
    connection = StubConnection(row=_row())
    repository = AccountRepository(StubPool(connection))

    account = repository.find_by_identifier("alice")

    query, params = connection.executed[0]
    assert "WHERE email = %(identifier)s OR username = %(identifier)s" in query
    assert "ORDER BY (email = %(identifier)s) DESC, is_verified DESC, updated_at DESC LIMIT 1" in query
    assert params == {"identifier": "alice"}
    assert account.account_id == "acc-1"


def test_row_messages_become_message_objects_in_stored_order():
    repository = AccountRepository(StubPool(StubConnection(row=_row())))

    account = repository.find_by_id("acc-1")

    assert [m.content for m in account.messages] == ["first message here", "second message here"]
    assert account.messages[1].created_at == CREATED + timedelta(minutes=5)
    assert account.is_verified is True


def test_null_messages_column_maps_to_empty_mailbox():
    repository = AccountRepository(StubPool(StubConnection(row=_row(messages=None))))
    assert repository.find_by_email("a@x.com").messages == []


def test_missing_row_returns_none():
    repository = AccountRepository(StubPool(StubConnection(row=None)))
    assert repository.find_by_username_verified("ghost") is None


def test_update_serializes_mailbox_as_json_documents():
    connection = StubConnection()
    repository = AccountRepository(StubPool(connection))

    repository.update(_account())

    query, params = connection.executed[0]
    assert query.startswith("UPDATE accounts SET")
    assert params["account_id"] == "acc-1"
    assert params["messages"].obj == [{"content": "hello there friend", "created_at": CREATED.isoformat()}]
    assert params["updated_at"] is not None


@pytest.mark.parametrize(
    ("constraint", "field_name"),
    [
        ("accounts_email_key", "email"),
        ("accounts_verified_username_key", "username"),
        ("accounts_pkey", "account_id"),
        ("some_other_key", "some_other_key"),
    ],
)
def test_unique_violations_map_to_duplicate_field(constraint, field_name):
    repository = AccountRepository(StubPool(StubConnection(error=_constraint_violation(constraint))))

    with pytest.raises(DuplicateKeyError) as excinfo:
        repository.insert(_account())

    assert excinfo.value.field_name == field_name


def test_other_driver_errors_become_store_errors():
    error = psycopg.OperationalError("server closed the connection unexpectedly")
    repository = AccountRepository(StubPool(StubConnection(error=error)))

    with pytest.raises(StoreError):
        repository.find_by_identifier("alice")
