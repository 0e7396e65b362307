"""Signup service layer.

Runs an enrolment key signup end to end:
1. Provision the account
2. Send the confirmation email (when notifying)
3. Log the new account in on the request context
4. Resolve the enrolment key and apply every admissible offer
5. Build the results view URL (when notifying)
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlencode
from uuid import UUID

from enrolkey.auth.security import create_access_token
from enrolkey.auth.service import DatabaseError
from enrolkey.core.logging import get_logger
from enrolkey.email.service import build_confirm_url
from enrolkey.enrolment.models import EnrolmentGrant, MatchedOffer, SelfEnrolmentOffer
from enrolkey.enrolment.service import EnrolmentError

from .schemas import SignupRequest


if TYPE_CHECKING:
    from enrolkey.auth.models import Account
    from enrolkey.config.settings import Settings
    from enrolkey.core.context import RequestContext
    from enrolkey.email.schemas import SendEmailResponse
    from enrolkey.enrolment.resolver import EnrolmentKeyResolver


logger = get_logger(__name__)


# ==============================================================================
# Collaborators
# ==============================================================================


class AccountProvisioner(Protocol):
    async def create_account(
        self,
        username: str,
        password: str,
        email: str,
        auth: str,
        firstname: str = "",
        lastname: str = "",
        profile_fields: dict[str, str] | None = None,
    ) -> "Account": ...


class EnrolmentApplier(Protocol):
    async def can_self_enrol(self, offer: SelfEnrolmentOffer, user_id: UUID) -> bool: ...

    async def apply_enrolment(
        self,
        offer: SelfEnrolmentOffer,
        secret_used: str,
        user_id: UUID,
        group_id: UUID | None = None,
    ) -> EnrolmentGrant: ...


class ConfirmationMailer(Protocol):
    async def send_confirmation_email(
        self,
        to: str,
        user_name: str,
        confirm_url: str,
        site_name: str,
    ) -> "SendEmailResponse": ...


# ==============================================================================
# Exceptions / Results
# ==============================================================================


class ConfirmationEmailError(Exception):
    """Raised when the confirmation email could not be sent.

    The account already exists when this is raised; it is not rolled back.
    """

    def __init__(self, account_id: UUID, reason: str | None = None):
        super().__init__("Could not send the confirmation email.")
        self.account_id = account_id
        self.reason = reason


@dataclass
class SignupResult:
    """Outcome of a signup."""

    account: "Account"
    applied_offer_ids: list[UUID] = field(default_factory=list)
    access_token: str | None = None
    redirect_url: str | None = None


# ==============================================================================
# Service
# ==============================================================================


class SignupService:
    """Enrolment key signup orchestration."""

    def __init__(
        self,
        accounts: AccountProvisioner,
        resolver: "EnrolmentKeyResolver",
        enrolments: EnrolmentApplier,
        settings: "Settings",
        mailer: ConfirmationMailer | None = None,
    ):
        """Initialize with collaborators.

        Args:
            accounts: Account provisioning
            resolver: Enrolment key resolver
            enrolments: Admission check and enrolment creation
            settings: Application settings (auth type, URLs, environment)
            mailer: Confirmation mailer; None when email is disabled
        """
        self.accounts = accounts
        self.resolver = resolver
        self.enrolments = enrolments
        self.settings = settings
        self.mailer = mailer

    async def user_signup(
        self,
        request: SignupRequest,
        ctx: "RequestContext",
        notify: bool = True,
    ) -> SignupResult:
        """Sign up a new account and apply the offers its enrolment key unlocks.

        Args:
            request: Signup form data (password in plaintext)
            ctx: Request context; logged in as the new account on success
            notify: Send the confirmation email and build the results URL

        Returns:
            SignupResult with the ids of the offers actually applied

        Raises:
            UsernameTakenError: If the username exists
            DatabaseError: If the account could not be persisted
            ConfirmationEmailError: If notifying and the email failed
        """
        account = await self.accounts.create_account(
            username=request.username,
            password=request.password,
            email=str(request.email),
            auth=self.settings.enrolkey_auth_type,
            firstname=request.firstname,
            lastname=request.lastname,
            profile_fields=request.profile_fields,
        )

        if notify:
            await self.send_confirmation(account)

        access_token = self._establish_session(account, ctx)

        matches = await self.resolver.resolve_offers(request.signup_token)
        applied = await self.apply_matched_offers(matches, account.id)

        redirect_url = self.build_results_url(applied) if notify else None

        logger.info(
            "signup_completed",
            account_id=str(account.id),
            username=account.username,
            matched_offers=len(matches),
            applied_offers=len(applied),
        )

        return SignupResult(
            account=account,
            applied_offer_ids=applied,
            access_token=access_token,
            redirect_url=redirect_url,
        )

    async def send_confirmation(self, account: "Account") -> None:
        """Email the confirmation link for ``account``.

        Raises:
            ConfirmationEmailError: If the mailer reports a failure
        """
        if self.mailer is None:
            logger.warning(
                "confirmation_email_disabled",
                account_id=str(account.id),
            )
            return

        confirm_url = build_confirm_url(
            self.settings.confirm_url_base, account.username, account.secret
        )
        response = await self.mailer.send_confirmation_email(
            to=account.email,
            user_name=account.full_name,
            confirm_url=confirm_url,
            site_name=self.settings.app_name,
        )

        if not response.success:
            logger.error(
                "confirmation_email_failed",
                account_id=str(account.id),
                error=response.error,
            )
            raise ConfirmationEmailError(account.id, response.error)

    def _establish_session(self, account: "Account", ctx: "RequestContext") -> str | None:
        """Log ``account`` in on ``ctx``; returns the access token if one was issued."""
        access_token = None
        if not self.settings.is_testing:
            access_token = create_access_token(
                {
                    "sub": str(account.id),
                    "username": account.username,
                    "auth": account.auth,
                }
            )

        ctx.login(
            user_id=account.id,
            username=account.username,
            email=account.email,
            site=self.settings.site_url,
            access_token=access_token,
        )
        return access_token

    async def apply_matched_offers(
        self,
        matches: list[MatchedOffer],
        user_id: UUID,
    ) -> list[UUID]:
        """Apply each admissible match; return ids of the offers applied.

        Offers are independent: a refusal or failure on one never stops the
        others, it only leaves that offer out of the result.
        """
        applied: list[UUID] = []

        for match in matches:
            offer = match.offer
            try:
                if not await self.enrolments.can_self_enrol(offer, user_id):
                    logger.info(
                        "self_enrol_skipped",
                        offer_id=str(offer.id),
                        scope=match.scope.value,
                    )
                    continue

                await self.enrolments.apply_enrolment(
                    offer,
                    match.secret_used,
                    user_id,
                    group_id=match.group_id,
                )
                applied.append(offer.id)

            except (EnrolmentError, DatabaseError) as e:
                logger.warning(
                    "self_enrol_failed",
                    offer_id=str(offer.id),
                    user_id=str(user_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            except Exception as e:
                logger.exception(
                    "self_enrol_unexpected_error",
                    offer_id=str(offer.id),
                    user_id=str(user_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return applied

    def build_results_url(self, offer_ids: list[UUID]) -> str:
        """Results view URL with the applied ids comma-joined."""
        ids = ",".join(str(offer_id) for offer_id in offer_ids)
        return f"{self.settings.results_view_path}?{urlencode({'ids': ids}, safe=',')}"
