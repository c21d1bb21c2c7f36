"""Database repository for account documents."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

import psycopg
from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from .domain.account import Account, Message
from .domain.contracts import DuplicateKeyError, StoreError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    username TEXT NOT NULL,
    email TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    verify_code TEXT NOT NULL,
    verify_code_expiry TIMESTAMPTZ NOT NULL,
    is_verified BOOLEAN NOT NULL DEFAULT FALSE,
    is_accepting_messages BOOLEAN NOT NULL DEFAULT TRUE,
    messages JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS accounts_email_key ON accounts (email);

CREATE UNIQUE INDEX IF NOT EXISTS accounts_verified_username_key
    ON accounts (username) WHERE is_verified;

CREATE INDEX IF NOT EXISTS accounts_username_idx ON accounts (username);
"""

_COLUMNS = (
    "account_id, username, email, password_hash, verify_code, verify_code_expiry, "
    "is_verified, is_accepting_messages, messages, created_at, updated_at"
)

_CONSTRAINT_FIELDS = {
    "accounts_pkey": "account_id",
    "accounts_email_key": "email",
    "accounts_verified_username_key": "username",
}


class AccountRepository:
    """Postgres-backed account persistence; one row per account document."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @contextmanager
    def _connection(self) -> Iterator[psycopg.Connection]:
        """Borrow a pooled connection, translating driver errors into store errors."""
        try:
            with self._pool.connection() as conn:
                yield conn
        except UniqueViolation as exc:
            constraint = exc.diag.constraint_name or ""
            raise DuplicateKeyError(_CONSTRAINT_FIELDS.get(constraint, constraint or "unknown")) from exc
        except psycopg.Error as exc:
            raise StoreError(str(exc)) from exc

    def ensure_schema(self) -> None:
        """Create the accounts table and its unique indexes if they are missing."""
        with self._connection() as conn:
            conn.execute(SCHEMA_SQL)

    def find_by_username_verified(self, username: str) -> Account | None:
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM accounts WHERE username = %s AND is_verified",
            (username,),
        )

    def find_by_email(self, email: str) -> Account | None:
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM accounts WHERE email = %s",
            (email,),
        )

    def find_by_id(self, account_id: str) -> Account | None:
        return self._fetch_one(
            f"SELECT {_COLUMNS} FROM accounts WHERE account_id = %s",
            (account_id,),
        )

    def find_by_identifier(self, identifier: str) -> Account | None:
        """Resolve a login identifier that may be either an email or a username.

        An email match wins, then a verified username, then the most recently
        updated unverified account sharing that username.
        """
        return self._fetch_one(
            f"""
            SELECT {_COLUMNS}
            FROM accounts
            WHERE email = %(identifier)s OR username = %(identifier)s
            ORDER BY (email = %(identifier)s) DESC, is_verified DESC, updated_at DESC
            LIMIT 1
            """,
            {"identifier": identifier},
        )

    def insert(self, account: Account) -> str:
        """Persist a new account document, raising ``DuplicateKeyError`` on collisions."""
        now = datetime.now(timezone.utc)
        account.created_at = account.created_at or now
        account.updated_at = now
        with self._connection() as conn:
            conn.execute(
                f"""
                INSERT INTO accounts ({_COLUMNS})
                VALUES (%(account_id)s, %(username)s, %(email)s, %(password_hash)s,
                        %(verify_code)s, %(verify_code_expiry)s, %(is_verified)s,
                        %(is_accepting_messages)s, %(messages)s, %(created_at)s, %(updated_at)s)
                """,
                self._to_params(account),
            )
        return account.account_id

    def update(self, account: Account) -> None:
        """Replace the stored document for ``account.account_id`` (last write wins)."""
        account.updated_at = datetime.now(timezone.utc)
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE accounts
                SET username = %(username)s,
                    email = %(email)s,
                    password_hash = %(password_hash)s,
                    verify_code = %(verify_code)s,
                    verify_code_expiry = %(verify_code_expiry)s,
                    is_verified = %(is_verified)s,
                    is_accepting_messages = %(is_accepting_messages)s,
                    messages = %(messages)s,
                    updated_at = %(updated_at)s
                WHERE account_id = %(account_id)s
                """,
                self._to_params(account),
            )

    def _fetch_one(self, query: str, params: Any) -> Account | None:
        with self._connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        if not row:
            return None
        return self._map_record(row)

    def _to_params(self, account: Account) -> dict[str, Any]:
        return {
            "account_id": account.account_id,
            "username": account.username,
            "email": account.email,
            "password_hash": account.password_hash,
            "verify_code": account.verify_code,
            "verify_code_expiry": account.verify_code_expiry,
            "is_verified": account.is_verified,
            "is_accepting_messages": account.is_accepting_messages,
            "messages": Jsonb(
                [
                    {"content": message.content, "created_at": message.created_at.isoformat()}
                    for message in account.messages
                ]
            ),
            "created_at": account.created_at,
            "updated_at": account.updated_at,
        }

    def _map_record(self, row: dict[str, Any]) -> Account:
        """Convert a database row into the domain ``Account`` dataclass."""
        return Account(
            account_id=row["account_id"],
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            verify_code=row["verify_code"],
            verify_code_expiry=row["verify_code_expiry"],
            is_verified=row["is_verified"],
            is_accepting_messages=row["is_accepting_messages"],
            messages=[
                Message(content=item["content"], created_at=datetime.fromisoformat(item["created_at"]))
                for item in row["messages"] or []
            ],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
