"""Shared fixtures: test settings, in-memory repositories and fakes."""

import os


os.environ["ENVIRONMENT"] = "testing"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["LOG_REQUESTS"] = "false"

from unittest.mock import AsyncMock, MagicMock, Mock  # noqa: E402
from uuid import UUID  # noqa: E402

import pytest  # noqa: E402
from cassandra.cluster import Session  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from enrolkey.auth.models import Account  # noqa: E402
from enrolkey.auth.service import UsernameTakenError  # noqa: E402
from enrolkey.config import get_settings  # noqa: E402
from enrolkey.email.schemas import SendEmailResponse  # noqa: E402
from enrolkey.enrolment.models import (  # noqa: E402
    CourseGroup,
    EnrolmentGrant,
    SelfEnrolmentOffer,
)


get_settings.cache_clear()


# ==============================================================================
# In-memory collaborators
# ==============================================================================


class InMemoryOfferRepository:
    """CourseOfferRepository over a list, in insertion order."""

    def __init__(self, offers: list[SelfEnrolmentOffer] | None = None):
        self.offers = list(offers or [])

    def add(self, offer: SelfEnrolmentOffer) -> SelfEnrolmentOffer:
        self.offers.append(offer)
        return offer

    async def get(self, offer_id: UUID) -> SelfEnrolmentOffer | None:
        return next((o for o in self.offers if o.id == offer_id), None)

    async def find_by_password(self, password: str) -> list[SelfEnrolmentOffer]:
        return [o for o in self.offers if o.password == password]

    async def find_group_key_offers(self, course_id: UUID) -> list[SelfEnrolmentOffer]:
        return [o for o in self.offers if o.course_id == course_id and o.use_group_keys]


class InMemoryGroupRepository:
    """GroupSecretRepository over a list, in insertion order."""

    def __init__(self, groups: list[CourseGroup] | None = None):
        self.groups = list(groups or [])

    def add(self, group: CourseGroup) -> CourseGroup:
        self.groups.append(group)
        return group

    async def get(self, group_id: UUID) -> CourseGroup | None:
        return next((g for g in self.groups if g.id == group_id), None)

    async def find_by_enrolment_key(self, enrolment_key: str) -> list[CourseGroup]:
        return [g for g in self.groups if g.enrolment_key == enrolment_key]


class InMemoryAccounts:
    """Account store with the AccountService surface used by signup/confirm."""

    def __init__(self) -> None:
        self.by_username: dict[str, Account] = {}
        self.passwords: dict[str, str] = {}
        self.set_confirmed_calls: list[UUID] = []

    def add(self, account: Account, password: str = "") -> Account:
        self.by_username[account.username] = account
        self.passwords[account.username] = password
        return account

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
        if username in self.by_username:
            raise UsernameTakenError(username)
        account = Account(
            username=username,
            email=email,
            password_hash="hashed",
            auth=auth,
            secret="s3cret",
            firstname=firstname,
            lastname=lastname,
            profile_fields=profile_fields,
        )
        return self.add(account, password)

    async def get_account_by_username(self, username: str) -> Account | None:
        return self.by_username.get(username)

    async def set_confirmed(self, account_id: UUID, confirmed: bool = True) -> None:
        self.set_confirmed_calls.append(account_id)
        for account in self.by_username.values():
            if account.id == account_id:
                account.confirmed = confirmed

    async def authenticate(self, username: str, password: str) -> Account | None:
        account = self.by_username.get(username)
        if account is None or self.passwords.get(username) != password:
            return None
        return account


class RecordingEnrolments:
    """EnrolmentApplier that records calls.

    Offers whose id is in ``refused`` fail admission; offers in ``failing``
    raise the mapped exception from apply_enrolment.
    """

    def __init__(self) -> None:
        self.refused: set[UUID] = set()
        self.failing: dict[UUID, Exception] = {}
        self.checked: list[UUID] = []
        self.applied: list[tuple[UUID, str, UUID | None]] = []

    async def can_self_enrol(self, offer: SelfEnrolmentOffer, user_id: UUID) -> bool:
        self.checked.append(offer.id)
        return offer.id not in self.refused

    async def apply_enrolment(
        self,
        offer: SelfEnrolmentOffer,
        secret_used: str,
        user_id: UUID,
        group_id: UUID | None = None,
    ) -> EnrolmentGrant:
        if offer.id in self.failing:
            raise self.failing[offer.id]
        self.applied.append((offer.id, secret_used, group_id))
        return EnrolmentGrant(
            user_id=user_id,
            offer_id=offer.id,
            course_id=offer.course_id,
            group_id=group_id,
        )


class FakeMailer:
    def __init__(self, success: bool = True) -> None:
        self.success = success
        self.sent: list[dict[str, str]] = []

    async def send_confirmation_email(
        self,
        to: str,
        user_name: str,
        confirm_url: str,
        site_name: str,
    ) -> SendEmailResponse:
        self.sent.append(
            {"to": to, "user_name": user_name, "confirm_url": confirm_url}
        )
        if self.success:
            return SendEmailResponse(success=True, message_id="msg-1")
        return SendEmailResponse(success=False, error="Gmail API error: 500")


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def offer_repo() -> InMemoryOfferRepository:
    return InMemoryOfferRepository()


@pytest.fixture
def group_repo() -> InMemoryGroupRepository:
    return InMemoryGroupRepository()


@pytest.fixture
def accounts() -> InMemoryAccounts:
    return InMemoryAccounts()


@pytest.fixture
def enrolments() -> RecordingEnrolments:
    return RecordingEnrolments()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def mock_session() -> Mock:
    """Cassandra session with prepare() and aexecute() mocked."""
    session = Mock(spec=Session)
    session.prepare = Mock(side_effect=lambda cql: Mock(name="prepared", cql=cql))
    session.aexecute = AsyncMock()
    return session


def make_result(rows: list | None = None, was_applied: bool = True) -> MagicMock:
    """ResultSet stand-in supporting one(), iteration and was_applied."""
    rows = rows or []
    result = MagicMock()
    result.one = Mock(return_value=rows[0] if rows else None)
    result.__iter__.side_effect = lambda: iter(rows)
    result.was_applied = was_applied
    return result


@pytest.fixture
def result_factory():
    """Build fake ResultSets for aexecute return values."""
    return make_result


@pytest.fixture
def client() -> TestClient:
    from enrolkey.main import app

    return TestClient(app)
