"""Enrolment key authentication provider.

Self-registration where the signup form carries an enrolment key. Accounts
it creates are password accounts of auth type ``enrolkey`` that must be
confirmed by email; the key enrols the new account into every offer it
unlocks.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from enrolkey.auth.security import secrets_match
from enrolkey.core.events import ACCOUNT_CONFIRMED, DomainEvent, EventDispatcher
from enrolkey.core.logging import get_logger

from .schemas import ConfirmationStatus, SignupRequest
from .service import SignupResult, SignupService


if TYPE_CHECKING:
    from enrolkey.auth.service import AccountService
    from enrolkey.core.context import RequestContext


logger = get_logger(__name__)


class AuthProvider(Protocol):
    """Capability surface of a pluggable authentication method."""

    auth_type: str

    async def user_login(self, username: str, password: str) -> bool: ...

    def can_signup(self) -> bool: ...

    def can_change_password(self) -> bool: ...

    def can_reset_password(self) -> bool: ...

    def can_confirm(self) -> bool: ...

    def can_be_manually_set(self) -> bool: ...

    async def user_signup(
        self, request: SignupRequest, ctx: "RequestContext", notify: bool = True
    ) -> SignupResult: ...

    async def user_confirm(self, username: str, secret: str) -> ConfirmationStatus: ...

    def loginpage_hook(self, register_auth: str | None) -> str | None: ...

    def signup_form(self) -> type[SignupRequest]: ...


@dataclass(frozen=True)
class EnrolKeyAuthProvider:
    """Self-registration with an enrolment key."""

    accounts: "AccountService"
    signup: SignupService
    auth_type: str = "enrolkey"
    signup_url: str = "/login/signup"
    events: EventDispatcher | None = None

    async def user_login(self, username: str, password: str) -> bool:
        """True if the username and password work."""
        account = await self.accounts.authenticate(username, password)
        return account is not None

    def can_signup(self) -> bool:
        return True

    def can_change_password(self) -> bool:
        return True

    def can_reset_password(self) -> bool:
        return True

    def can_confirm(self) -> bool:
        return True

    def can_be_manually_set(self) -> bool:
        return True

    async def user_signup(
        self,
        request: SignupRequest,
        ctx: "RequestContext",
        notify: bool = True,
    ) -> SignupResult:
        """Sign up a new account ready for confirmation."""
        return await self.signup.user_signup(request, ctx, notify=notify)

    async def user_confirm(self, username: str, secret: str) -> ConfirmationStatus:
        """Confirm a registered account.

        Unknown users, accounts of another auth type and wrong secrets all
        yield ERROR. Re-confirming with the right secret is a no-op.

        Raises:
            DatabaseError: If persisting the confirmed flag fails
        """
        account = await self.accounts.get_account_by_username(username)

        if account is None:
            logger.info("confirm_unknown_user", username=username)
            return ConfirmationStatus.ERROR

        if account.auth != self.auth_type:
            logger.info(
                "confirm_wrong_auth_type",
                account_id=str(account.id),
                auth=account.auth,
            )
            return ConfirmationStatus.ERROR

        if not account.secret or not secrets_match(secret, account.secret):
            logger.warning("confirm_secret_mismatch", account_id=str(account.id))
            return ConfirmationStatus.ERROR

        if account.confirmed:
            return ConfirmationStatus.ALREADY_CONFIRMED

        await self.accounts.set_confirmed(account.id)
        logger.info("account_confirmed", account_id=str(account.id))

        if self.events is not None:
            await self.events.dispatch(
                DomainEvent(
                    ACCOUNT_CONFIRMED,
                    {"account_id": account.id, "username": account.username},
                )
            )

        return ConfirmationStatus.CONFIRMED

    def loginpage_hook(self, register_auth: str | None) -> str | None:
        """Signup instructions, when this provider handles self-registration."""
        if register_auth != self.auth_type:
            return None
        return (
            "To get full access to courses you need to create an account. "
            f"Sign up at {self.signup_url} and enter the enrolment key your "
            "course leader gave you; you will be enrolled in the matching courses "
            "once the account is created."
        )

    def signup_form(self) -> type[SignupRequest]:
        return SignupRequest
