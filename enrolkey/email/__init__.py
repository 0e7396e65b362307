"""Email module for sending emails via Gmail API."""

from .schemas import EmailRecipient, SendEmailRequest, SendEmailResponse
from .service import EmailService, build_confirm_url


__all__ = [
    "EmailRecipient",
    "EmailService",
    "SendEmailRequest",
    "SendEmailResponse",
    "build_confirm_url",
]
