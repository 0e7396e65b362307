"""Tests for signup orchestration."""

from uuid import uuid4

import pytest

from enrolkey.auth.service import DatabaseError, UsernameTakenError
from enrolkey.core.context import RequestContext
from enrolkey.enrolment.models import CourseGroup, SelfEnrolmentOffer
from enrolkey.enrolment.resolver import EnrolmentKeyResolver
from enrolkey.enrolment.service import InvalidEnrolmentKeyError
from enrolkey.signup.schemas import SignupRequest
from enrolkey.signup.service import ConfirmationEmailError, SignupService


def make_request(**overrides) -> SignupRequest:
    data = {
        "username": "Student1",
        "password": "Passw0rd!",
        "email": "student1@example.com",
        "signup_token": "k3y42",
        "firstname": "Ada",
        "lastname": "Lovelace",
    }
    data.update(overrides)
    return SignupRequest(**data)


@pytest.fixture
def service(accounts, offer_repo, group_repo, enrolments, mailer, settings) -> SignupService:
    return SignupService(
        accounts=accounts,
        resolver=EnrolmentKeyResolver(offers=offer_repo, groups=group_repo),
        enrolments=enrolments,
        settings=settings,
        mailer=mailer,
    )


class TestAccountProvisioning:
    """Account creation and session establishment."""

    @pytest.mark.asyncio
    async def test_creates_enrolkey_account(self, service, accounts) -> None:
        ctx = RequestContext()

        result = await service.user_signup(make_request(), ctx)

        account = accounts.by_username["student1"]
        assert result.account is account
        assert account.auth == "enrolkey"
        assert account.confirmed is False
        assert account.profile_fields == {}

    @pytest.mark.asyncio
    async def test_zero_matches_still_creates_account(self, service, accounts) -> None:
        result = await service.user_signup(make_request(signup_token="nope"), RequestContext())

        assert "student1" in accounts.by_username
        assert result.applied_offer_ids == []

    @pytest.mark.asyncio
    async def test_context_logged_in(self, service, settings) -> None:
        ctx = RequestContext()

        result = await service.user_signup(make_request(), ctx)

        assert ctx.logged_in is True
        assert ctx.user_id == result.account.id
        assert ctx.username == "student1"
        assert ctx.email == "student1@example.com"
        assert ctx.site == settings.site_url

    @pytest.mark.asyncio
    async def test_no_access_token_when_testing(self, service) -> None:
        ctx = RequestContext()

        result = await service.user_signup(make_request(), ctx)

        assert result.access_token is None
        assert ctx.access_token is None

    @pytest.mark.asyncio
    async def test_access_token_outside_testing(
        self, accounts, offer_repo, group_repo, enrolments, mailer, settings
    ) -> None:
        from enrolkey.auth.security import decode_access_token

        service = SignupService(
            accounts=accounts,
            resolver=EnrolmentKeyResolver(offers=offer_repo, groups=group_repo),
            enrolments=enrolments,
            settings=settings.model_copy(update={"environment": "development"}),
            mailer=mailer,
        )

        result = await service.user_signup(make_request(), RequestContext())

        payload = decode_access_token(result.access_token)
        assert payload["sub"] == str(result.account.id)
        assert payload["username"] == "student1"

    @pytest.mark.asyncio
    async def test_username_taken_propagates(self, service, enrolments) -> None:
        await service.user_signup(make_request(), RequestContext())

        with pytest.raises(UsernameTakenError):
            await service.user_signup(make_request(), RequestContext())


class TestConfirmationEmail:
    """Confirmation email on signup."""

    @pytest.mark.asyncio
    async def test_email_sent_with_confirm_link(self, service, mailer) -> None:
        await service.user_signup(make_request(), RequestContext())

        assert len(mailer.sent) == 1
        sent = mailer.sent[0]
        assert sent["to"] == "student1@example.com"
        assert sent["user_name"] == "Ada Lovelace"
        assert "username=student1" in sent["confirm_url"]
        assert "secret=s3cret" in sent["confirm_url"]

    @pytest.mark.asyncio
    async def test_no_email_without_notify(self, service, mailer) -> None:
        result = await service.user_signup(make_request(), RequestContext(), notify=False)

        assert mailer.sent == []
        assert result.redirect_url is None

    @pytest.mark.asyncio
    async def test_email_failure_aborts_after_account_creation(
        self, service, mailer, accounts, enrolments, offer_repo
    ) -> None:
        offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))
        mailer.success = False
        ctx = RequestContext()

        with pytest.raises(ConfirmationEmailError) as exc_info:
            await service.user_signup(make_request(), ctx)

        # Account kept, no login, no enrolment
        account = accounts.by_username["student1"]
        assert exc_info.value.account_id == account.id
        assert ctx.logged_in is False
        assert enrolments.checked == []
        assert enrolments.applied == []

    @pytest.mark.asyncio
    async def test_missing_mailer_skips_email(
        self, accounts, offer_repo, group_repo, enrolments, settings
    ) -> None:
        service = SignupService(
            accounts=accounts,
            resolver=EnrolmentKeyResolver(offers=offer_repo, groups=group_repo),
            enrolments=enrolments,
            settings=settings,
            mailer=None,
        )

        result = await service.user_signup(make_request(), RequestContext())

        assert result.account.username == "student1"


class TestOfferApplication:
    """Applying matched offers."""

    @pytest.mark.asyncio
    async def test_applies_course_and_group_matches(
        self, service, offer_repo, group_repo, enrolments
    ) -> None:
        c1, c3 = uuid4(), uuid4()
        offer_c1 = offer_repo.add(SelfEnrolmentOffer(course_id=c1, password="k3y42"))
        offer_c3 = offer_repo.add(SelfEnrolmentOffer(course_id=c3, use_group_keys=True))
        g7 = group_repo.add(CourseGroup(course_id=c3, enrolment_key="k3y42"))

        result = await service.user_signup(make_request(), RequestContext())

        assert result.applied_offer_ids == [offer_c1.id, offer_c3.id]
        assert enrolments.applied == [
            (offer_c1.id, "k3y42", None),
            (offer_c3.id, "k3y42", g7.id),
        ]

    @pytest.mark.asyncio
    async def test_refused_offer_skipped_others_applied(
        self, service, offer_repo, enrolments
    ) -> None:
        offers = [
            offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))
            for _ in range(3)
        ]
        enrolments.refused.add(offers[1].id)

        result = await service.user_signup(make_request(), RequestContext())

        assert enrolments.checked == [o.id for o in offers]
        assert result.applied_offer_ids == [offers[0].id, offers[2].id]

    @pytest.mark.asyncio
    async def test_apply_failures_do_not_abort(
        self, service, offer_repo, enrolments
    ) -> None:
        offers = [
            offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))
            for _ in range(4)
        ]
        enrolments.failing[offers[0].id] = InvalidEnrolmentKeyError("bad key")
        enrolments.failing[offers[1].id] = DatabaseError("write failed")
        enrolments.failing[offers[2].id] = RuntimeError("boom")

        result = await service.user_signup(make_request(), RequestContext())

        assert result.applied_offer_ids == [offers[3].id]

    @pytest.mark.asyncio
    async def test_redirect_url_lists_applied_ids(
        self, service, offer_repo, enrolments, settings
    ) -> None:
        first = offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))
        refused = offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))
        last = offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))
        enrolments.refused.add(refused.id)

        result = await service.user_signup(make_request(), RequestContext())

        assert result.redirect_url == (
            f"{settings.results_view_path}?ids={first.id},{last.id}"
        )

    @pytest.mark.asyncio
    async def test_redirect_url_with_no_enrolments(self, service, settings) -> None:
        result = await service.user_signup(make_request(signup_token="none"), RequestContext())

        assert result.redirect_url == f"{settings.results_view_path}?ids="
