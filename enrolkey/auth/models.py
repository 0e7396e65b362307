"""Database models for accounts.

Cassandra table definitions for:
- accounts: main account table
- accounts_by_username: lookup table (username is unique)

Note: Uses cassandra-driver directly (not ORM).
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4


ACCOUNTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.accounts (
    id UUID PRIMARY KEY,
    username TEXT,
    email TEXT,
    password_hash TEXT,
    auth TEXT,
    confirmed BOOLEAN,
    secret TEXT,
    firstname TEXT,
    lastname TEXT,
    profile_fields MAP<TEXT, TEXT>,
    deleted BOOLEAN,
    policy_agreed BOOLEAN,
    current_login TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
)
"""

ACCOUNTS_BY_USERNAME_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.accounts_by_username (
    username TEXT PRIMARY KEY,
    account_id UUID
)
"""

ACCOUNTS_EMAIL_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS accounts_email_idx ON {keyspace}.accounts (email)
"""

AUTH_TABLES_CQL = [
    ACCOUNTS_TABLE_CQL,
    ACCOUNTS_BY_USERNAME_TABLE_CQL,
    ACCOUNTS_EMAIL_INDEX_CQL,
]


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Account:
    """A registered account.

    Attributes:
        id: Unique identifier
        username: Unique login name
        email: Contact address, receives the confirmation email
        password_hash: Argon2id hash (never the plaintext)
        auth: Auth plugin that owns the account (e.g. "enrolkey")
        confirmed: Whether the confirmation link has been followed
        secret: Confirmation secret sent by email
        firstname / lastname: Display name parts
        profile_fields: Custom profile field values keyed by shortname
        deleted / policy_agreed: Flags initialised at signup
        current_login: Timestamp of the login established at signup
    """

    def __init__(
        self,
        username: str,
        email: str,
        password_hash: str = "",
        auth: str = "manual",
        id: UUID | None = None,
        confirmed: bool = False,
        secret: str = "",
        firstname: str = "",
        lastname: str = "",
        profile_fields: dict[str, str] | None = None,
        deleted: bool = False,
        policy_agreed: bool = False,
        current_login: datetime | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ):
        self.id = id or uuid4()
        self.username = username
        self.email = email.strip().lower()
        self.password_hash = password_hash
        self.auth = auth
        self.confirmed = confirmed
        self.secret = secret
        self.firstname = firstname
        self.lastname = lastname
        self.profile_fields = dict(profile_fields or {})
        self.deleted = deleted
        self.policy_agreed = policy_agreed
        self.current_login = ensure_utc_aware(current_login)
        self.created_at = ensure_utc_aware(created_at) or datetime.now(UTC)
        self.updated_at = ensure_utc_aware(updated_at)

    @classmethod
    def from_row(cls, row: Any) -> "Account":
        """Create Account instance from Cassandra row."""
        return cls(
            id=row.id,
            username=row.username,
            email=row.email,
            password_hash=row.password_hash,
            auth=row.auth,
            confirmed=bool(row.confirmed),
            secret=row.secret or "",
            firstname=row.firstname or "",
            lastname=row.lastname or "",
            profile_fields=dict(row.profile_fields) if row.profile_fields else {},
            deleted=bool(row.deleted),
            policy_agreed=bool(row.policy_agreed),
            current_login=row.current_login,
            created_at=row.created_at,
            updated_at=getattr(row, "updated_at", None),
        )

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip() or self.username

    def __repr__(self) -> str:
        return f"<Account {self.username} ({self.auth})>"
