# ruff: noqa: S608 - All CQL queries use keyspace from config, not user input
"""Account service layer.

Account provisioning for the signup flow:
- Creating accounts (hash password, persist, emit account_created)
- Lookups by username / id
- Password authentication
- Flipping the confirmed flag
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from enrolkey.auth.models import Account
from enrolkey.auth.security import (
    generate_confirm_secret,
    hash_password,
    verify_password,
)
from enrolkey.core.events import ACCOUNT_CREATED, DomainEvent, EventDispatcher
from enrolkey.core.logging import get_logger


if TYPE_CHECKING:
    from cassandra.cluster import Session


logger = get_logger(__name__)


# ==============================================================================
# Exceptions
# ==============================================================================


class DatabaseError(Exception):
    """Raised when a database operation fails.

    Wraps the underlying driver exception with a user-facing message while
    preserving the original error for logging.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error


class UsernameTakenError(Exception):
    """Raised when the requested username already exists."""

    def __init__(self, username: str):
        super().__init__("Username already exists")
        self.username = username


# ==============================================================================
# Account Service
# ==============================================================================


class AccountService:
    """Account provisioning backed by Cassandra."""

    def __init__(
        self,
        session: "Session",
        keyspace: str,
        events: EventDispatcher | None = None,
    ):
        """Initialize with Cassandra session.

        Args:
            session: Cassandra session with aexecute support
            keyspace: Target keyspace
            events: Dispatcher receiving account_created
        """
        self.session = session
        self.keyspace = keyspace
        self.events = events
        self._prepare_statements()

    def _prepare_statements(self) -> None:
        """Prepare CQL statements for efficient queries."""
        self._insert_account = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.accounts
            (id, username, email, password_hash, auth, confirmed, secret,
             firstname, lastname, profile_fields, deleted, policy_agreed,
             current_login, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)

        # Lightweight transaction claims the username
        self._claim_username = self.session.prepare(f"""
            INSERT INTO {self.keyspace}.accounts_by_username (username, account_id)
            VALUES (?, ?)
            IF NOT EXISTS
        """)

        self._release_username = self.session.prepare(f"""
            DELETE FROM {self.keyspace}.accounts_by_username
            WHERE username = ?
        """)

        self._get_by_id = self.session.prepare(f"""
            SELECT * FROM {self.keyspace}.accounts
            WHERE id = ?
        """)

        self._get_id_by_username = self.session.prepare(f"""
            SELECT account_id FROM {self.keyspace}.accounts_by_username
            WHERE username = ?
        """)

        self._set_confirmed = self.session.prepare(f"""
            UPDATE {self.keyspace}.accounts
            SET confirmed = ?, updated_at = ?
            WHERE id = ?
        """)

        self._update_password_hash = self.session.prepare(f"""
            UPDATE {self.keyspace}.accounts
            SET password_hash = ?, updated_at = ?
            WHERE id = ?
        """)

    # ==========================================================================
    # Lookups
    # ==========================================================================

    async def get_account_by_id(self, account_id: UUID) -> Account | None:
        """Find account by ID."""
        result = await self.session.aexecute(self._get_by_id, [account_id])
        row = result.one()
        return Account.from_row(row) if row else None

    async def get_account_by_username(self, username: str) -> Account | None:
        """Find account by exact username."""
        result = await self.session.aexecute(self._get_id_by_username, [username])
        row = result.one()
        if row is None:
            return None
        return await self.get_account_by_id(row.account_id)

    async def is_username_available(self, username: str) -> bool:
        return await self.get_account_by_username(username) is None

    # ==========================================================================
    # Provisioning
    # ==========================================================================

    async def create_account(
        self,
        username: str,
        password: str,
        email: str,
        auth: str,
        firstname: str = "",
        lastname: str = "",
        profile_fields: dict[str, str] | None = None,
    ) -> Account:
        """Create and persist a new, unconfirmed account.

        The password is hashed before anything is written. Either both the
        account row and its username claim are persisted, or neither is.

        Raises:
            UsernameTakenError: If the username is already claimed
            DatabaseError: If persisting fails
        """
        now = datetime.now(UTC)
        account = Account(
            username=username,
            email=email,
            password_hash=hash_password(password),
            auth=auth,
            confirmed=False,
            secret=generate_confirm_secret(),
            firstname=firstname,
            lastname=lastname,
            profile_fields=profile_fields,
            deleted=False,
            policy_agreed=False,
            current_login=now,
            created_at=now,
        )

        claimed = False
        try:
            result = await self.session.aexecute(
                self._claim_username, [account.username, account.id]
            )
            if not result.was_applied:
                raise UsernameTakenError(account.username)
            claimed = True

            await self.session.aexecute(
                self._insert_account,
                [
                    account.id,
                    account.username,
                    account.email,
                    account.password_hash,
                    account.auth,
                    account.confirmed,
                    account.secret,
                    account.firstname,
                    account.lastname,
                    account.profile_fields,
                    account.deleted,
                    account.policy_agreed,
                    account.current_login,
                    account.created_at,
                    account.updated_at,
                ],
            )
        except UsernameTakenError:
            logger.warning("account_username_taken", username=username)
            raise
        except Exception as e:
            logger.exception(
                "database_error_create_account",
                username=username,
                error=str(e),
                error_type=type(e).__name__,
            )
            if claimed:
                await self._release_claim(account.username)
            raise DatabaseError(
                "Could not create account. Please try again.",
                original_error=e,
            ) from e

        logger.info(
            "account_created",
            account_id=str(account.id),
            username=account.username,
            auth=account.auth,
            profile_field_count=len(account.profile_fields),
        )

        if self.events is not None:
            await self.events.dispatch(
                DomainEvent(
                    ACCOUNT_CREATED,
                    {"account_id": account.id, "username": account.username},
                )
            )

        return account

    async def _release_claim(self, username: str) -> None:
        try:
            await self.session.aexecute(self._release_username, [username])
        except Exception as e:
            # Leaves an orphan claim; the username stays unusable until cleaned up
            logger.exception(
                "database_error_release_username",
                username=username,
                error=str(e),
            )

    # ==========================================================================
    # Mutations
    # ==========================================================================

    async def set_confirmed(self, account_id: UUID, confirmed: bool = True) -> None:
        """Persist the confirmed flag.

        Raises:
            DatabaseError: If the update fails
        """
        try:
            await self.session.aexecute(
                self._set_confirmed, [confirmed, datetime.now(UTC), account_id]
            )
        except Exception as e:
            logger.exception(
                "database_error_set_confirmed",
                account_id=str(account_id),
                error=str(e),
            )
            raise DatabaseError(
                "Could not confirm account. Please try again.",
                original_error=e,
            ) from e

    async def authenticate(self, username: str, password: str) -> Account | None:
        """Return the account if the password is correct, else None.

        Transparently upgrades outdated password hashes.
        """
        account = await self.get_account_by_username(username)
        if account is None or account.deleted:
            return None

        is_valid, new_hash = verify_password(password, account.password_hash)
        if not is_valid:
            return None

        if new_hash:
            await self.session.aexecute(
                self._update_password_hash, [new_hash, datetime.now(UTC), account.id]
            )
            account.password_hash = new_hash
            logger.info("password_rehashed", account_id=str(account.id))

        return account
