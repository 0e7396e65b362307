"""Enrolment key self-registration."""

from .provider import AuthProvider, EnrolKeyAuthProvider
from .router import router
from .schemas import ConfirmationStatus, SignupRequest
from .service import ConfirmationEmailError, SignupResult, SignupService


__all__ = [
    "AuthProvider",
    "ConfirmationEmailError",
    "ConfirmationStatus",
    "EnrolKeyAuthProvider",
    "SignupRequest",
    "SignupResult",
    "SignupService",
    "router",
]
