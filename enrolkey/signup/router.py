"""FastAPI router for enrolment key signup.

Endpoints:
- POST /v1/auth/enrolkey/signup (Public) - Sign up with an enrolment key
- GET /v1/auth/enrolkey/confirm (Public) - Follow the confirmation link
- GET /v1/auth/enrolkey/view (Public) - Offers applied at signup
- POST /v1/auth/enrolkey/login (Public) - Password login
- GET /v1/auth/enrolkey/instructions (Public) - Login page instructions
"""

from fastapi import APIRouter, HTTPException, Query, Response, status

from enrolkey.auth.service import DatabaseError, UsernameTakenError
from enrolkey.config.settings import get_settings

from .dependencies import (
    AuthProviderDep,
    EnrolmentServiceDep,
    RateLimitLogin,
    RateLimitSignup,
    RequestContextDep,
)
from .schemas import (
    ConfirmationStatus,
    ConfirmResponse,
    EnrolledOfferItem,
    InstructionsResponse,
    LoginRequest,
    LoginResponse,
    ResultsViewResponse,
    SignupRequest,
    SignupResponse,
    parse_offer_ids,
)
from .service import ConfirmationEmailError


NOEMAIL_MESSAGE = (
    "noemail: tried to send you an email but failed. "
    "Please contact the site administrator."
)

CONFIRM_MESSAGES = {
    ConfirmationStatus.CONFIRMED: "Your registration has been confirmed.",
    ConfirmationStatus.ALREADY_CONFIRMED: "Your account has already been confirmed.",
    ConfirmationStatus.ERROR: "Invalid confirmation data.",
}


router = APIRouter(
    prefix="/v1/auth/enrolkey",
    tags=["enrolkey"],
)


def _remember_username(response: Response, username: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=username,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite="lax",
    )


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Sign up with an enrolment key",
    description="Create an account and enrol it in every offer the enrolment key unlocks.",
)
async def signup(
    request: SignupRequest,
    response: Response,
    provider: AuthProviderDep,
    ctx: RequestContextDep,
    _rate_limit: RateLimitSignup,
    notify: bool = Query(True, description="Send confirmation email and build results URL"),
) -> SignupResponse:
    """Sign up a new account.

    This endpoint:
    1. Creates the account (unconfirmed)
    2. Emails the confirmation link
    3. Logs the account in
    4. Applies every offer the enrolment key unlocks
    """
    try:
        with ctx:
            result = await provider.user_signup(request, ctx, notify=notify)

    except UsernameTakenError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        ) from None

    except ConfirmationEmailError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=NOEMAIL_MESSAGE,
        ) from None

    except DatabaseError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        ) from None

    _remember_username(response, result.account.username)

    applied = len(result.applied_offer_ids)
    return SignupResponse(
        user_id=result.account.id,
        username=result.account.username,
        email=result.account.email,
        applied_offer_ids=result.applied_offer_ids,
        redirect_url=result.redirect_url,
        access_token=result.access_token,
        message=f"Account created. Enrolled via {applied} offer(s).",
    )


@router.get(
    "/confirm",
    response_model=ConfirmResponse,
    summary="Confirm account",
    description="Confirm a newly registered account with the emailed secret.",
)
async def confirm(
    provider: AuthProviderDep,
    username: str = Query(..., min_length=1),
    secret: str = Query(..., min_length=1),
) -> ConfirmResponse:
    """Follow a confirmation link."""
    try:
        result = await provider.user_confirm(username, secret)
    except DatabaseError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        ) from None

    return ConfirmResponse(
        status=result,
        username=username,
        message=CONFIRM_MESSAGES[result],
    )


@router.get(
    "/view",
    response_model=ResultsViewResponse,
    summary="Signup results",
    description="List the offers applied at signup.",
)
async def view_results(
    service: EnrolmentServiceDep,
    ids: str = Query("", description="Comma-separated offer ids"),
) -> ResultsViewResponse:
    """Results view the signup redirects to."""
    try:
        offer_ids = parse_offer_ids(ids)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid offer id",
        ) from None

    offers = await service.get_offers(offer_ids)
    items = [
        EnrolledOfferItem(offer_id=o.id, course_id=o.course_id, name=o.name)
        for o in offers
    ]

    if items:
        message = "You have been enrolled in the following courses."
    else:
        message = "Your account has been created, no course enrolments were made."

    return ResultsViewResponse(items=items, total=len(items), message=message)


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Password login",
)
async def login(
    request: LoginRequest,
    response: Response,
    provider: AuthProviderDep,
    _rate_limit: RateLimitLogin,
) -> LoginResponse:
    """Check a username and password."""
    if not await provider.user_login(request.username, request.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    _remember_username(response, request.username)
    return LoginResponse(success=True, username=request.username)


@router.get(
    "/instructions",
    response_model=InstructionsResponse,
    summary="Login page instructions",
)
async def instructions(provider: AuthProviderDep) -> InstructionsResponse:
    """Signup instructions shown on the login page."""
    settings = get_settings()
    text = provider.loginpage_hook(settings.register_auth)
    return InstructionsResponse(
        instructions=text,
        signup_url=provider.signup_url if text else None,
    )
