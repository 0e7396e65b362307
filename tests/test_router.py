"""Tests for the enrolment key signup endpoints."""

from unittest.mock import AsyncMock, Mock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from enrolkey.auth.models import Account
from enrolkey.auth.service import DatabaseError
from enrolkey.enrolment.models import SelfEnrolmentOffer
from enrolkey.enrolment.resolver import EnrolmentKeyResolver
from enrolkey.signup.provider import EnrolKeyAuthProvider
from enrolkey.signup.service import SignupService


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def provider(accounts, offer_repo, group_repo, enrolments, mailer, settings):
    signup = SignupService(
        accounts=accounts,
        resolver=EnrolmentKeyResolver(offers=offer_repo, groups=group_repo),
        enrolments=enrolments,
        settings=settings,
        mailer=mailer,
    )
    return EnrolKeyAuthProvider(
        accounts=accounts,
        signup=signup,
        signup_url=settings.signup_path,
    )


@pytest.fixture
def enrolment_service(offer_repo) -> Mock:
    async def get_offers(ids):
        return [o for o in offer_repo.offers if o.id in ids]

    service = Mock()
    service.get_offers = AsyncMock(side_effect=get_offers)
    return service


@pytest.fixture
def api(provider, enrolment_service) -> TestClient:
    from enrolkey.main import app
    from enrolkey.signup.dependencies import (
        set_enrolment_service_getter,
        set_provider_getter,
    )

    set_provider_getter(lambda: provider)
    set_enrolment_service_getter(lambda: enrolment_service)

    return TestClient(app)


SIGNUP_BODY = {
    "username": "learner",
    "password": "Passw0rd!",
    "email": "learner@example.com",
    "signup_token": "k3y42",
    "firstname": "Ada",
    "lastname": "Lovelace",
}


# ==============================================================================
# Signup
# ==============================================================================


class TestSignupEndpoint:
    """POST /v1/auth/enrolkey/signup."""

    def test_signup_applies_offers(self, api, offer_repo, settings) -> None:
        offer = offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), password="k3y42"))

        response = api.post("/v1/auth/enrolkey/signup", json=SIGNUP_BODY)

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["username"] == "learner"
        assert data["applied_offer_ids"] == [str(offer.id)]
        assert data["redirect_url"] == f"{settings.results_view_path}?ids={offer.id}"
        assert data["access_token"] is None
        assert response.cookies.get(settings.auth_cookie_name) == "learner"

    def test_signup_without_notify(self, api, mailer) -> None:
        response = api.post("/v1/auth/enrolkey/signup?notify=false", json=SIGNUP_BODY)

        assert response.status_code == 201
        assert response.json()["redirect_url"] is None
        assert mailer.sent == []

    def test_duplicate_username(self, api, accounts) -> None:
        accounts.add(Account(username="learner", email="x@example.com"))

        response = api.post("/v1/auth/enrolkey/signup", json=SIGNUP_BODY)

        assert response.status_code == 409

    def test_email_failure_returns_noemail(self, api, mailer, accounts) -> None:
        mailer.success = False

        response = api.post("/v1/auth/enrolkey/signup", json=SIGNUP_BODY)

        assert response.status_code == 500
        assert "noemail" in response.json()["message"]
        assert "learner" in accounts.by_username

    def test_database_failure(self, api, accounts) -> None:
        accounts.create_account = AsyncMock(side_effect=DatabaseError("Could not create account."))

        response = api.post("/v1/auth/enrolkey/signup", json=SIGNUP_BODY)

        assert response.status_code == 503

    def test_missing_signup_token(self, api) -> None:
        body = {k: v for k, v in SIGNUP_BODY.items() if k != "signup_token"}

        response = api.post("/v1/auth/enrolkey/signup", json=body)

        assert response.status_code == 422
        assert response.json()["message"] == "Validation error"

    def test_invalid_email(self, api) -> None:
        response = api.post(
            "/v1/auth/enrolkey/signup", json={**SIGNUP_BODY, "email": "not-an-email"}
        )

        assert response.status_code == 422


# ==============================================================================
# Confirm / View / Login / Instructions
# ==============================================================================


class TestConfirmEndpoint:
    """GET /v1/auth/enrolkey/confirm."""

    def test_confirm(self, api, accounts) -> None:
        account = accounts.add(
            Account(username="learner", email="l@example.com", auth="enrolkey", secret="abc")
        )

        response = api.get(
            "/v1/auth/enrolkey/confirm", params={"username": "learner", "secret": "abc"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert account.confirmed is True

    def test_already_confirmed(self, api, accounts) -> None:
        accounts.add(
            Account(
                username="learner",
                email="l@example.com",
                auth="enrolkey",
                secret="abc",
                confirmed=True,
            )
        )

        response = api.get(
            "/v1/auth/enrolkey/confirm", params={"username": "learner", "secret": "abc"}
        )

        assert response.json()["status"] == "already_confirmed"

    def test_bad_secret(self, api, accounts) -> None:
        accounts.add(
            Account(username="learner", email="l@example.com", auth="enrolkey", secret="abc")
        )

        response = api.get(
            "/v1/auth/enrolkey/confirm", params={"username": "learner", "secret": "xyz"}
        )

        assert response.json()["status"] == "error"

    def test_missing_params(self, api) -> None:
        response = api.get("/v1/auth/enrolkey/confirm")

        assert response.status_code == 422


class TestViewEndpoint:
    """GET /v1/auth/enrolkey/view."""

    def test_lists_applied_offers(self, api, offer_repo) -> None:
        offer = offer_repo.add(SelfEnrolmentOffer(course_id=uuid4(), name="Chemistry"))

        response = api.get("/v1/auth/enrolkey/view", params={"ids": str(offer.id)})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["name"] == "Chemistry"

    def test_empty_ids(self, api) -> None:
        response = api.get("/v1/auth/enrolkey/view?ids=")

        assert response.status_code == 200
        assert response.json()["total"] == 0

    def test_invalid_ids(self, api) -> None:
        response = api.get("/v1/auth/enrolkey/view", params={"ids": "1,2"})

        assert response.status_code == 400


class TestLoginEndpoint:
    """POST /v1/auth/enrolkey/login."""

    def test_login(self, api, accounts, settings) -> None:
        accounts.add(Account(username="learner", email="l@example.com"), password="pw")

        response = api.post(
            "/v1/auth/enrolkey/login", json={"username": "learner", "password": "pw"}
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "username": "learner"}
        assert response.cookies.get(settings.auth_cookie_name) == "learner"

    def test_login_after_mixed_case_signup(self, api, settings) -> None:
        signup = api.post(
            "/v1/auth/enrolkey/signup", json={**SIGNUP_BODY, "username": " Learner "}
        )
        assert signup.status_code == 201
        assert signup.json()["username"] == "learner"

        response = api.post(
            "/v1/auth/enrolkey/login",
            json={"username": "Learner", "password": SIGNUP_BODY["password"]},
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "username": "learner"}
        assert response.cookies.get(settings.auth_cookie_name) == "learner"

    def test_login_wrong_password(self, api, accounts) -> None:
        accounts.add(Account(username="learner", email="l@example.com"), password="pw")

        response = api.post(
            "/v1/auth/enrolkey/login", json={"username": "learner", "password": "nope"}
        )

        assert response.status_code == 401


class TestInstructionsEndpoint:
    def test_instructions(self, api, settings) -> None:
        response = api.get("/v1/auth/enrolkey/instructions")

        assert response.status_code == 200
        data = response.json()
        assert data["signup_url"] == settings.signup_path
        assert settings.signup_path in data["instructions"]
