"""Email service using Gmail API with Service Account.

Uses domain-wide delegation to send emails on behalf of a Google Workspace user.
The service account must have domain-wide delegation enabled with scope
https://www.googleapis.com/auth/gmail.send.
"""

import base64
import html
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from enrolkey.core.logging import get_logger

from .schemas import EmailRecipient, SendEmailRequest, SendEmailResponse


if TYPE_CHECKING:
    from googleapiclient._apis.gmail.v1 import GmailResource


logger = get_logger(__name__)

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


def build_confirm_url(base_url: str, username: str, secret: str) -> str:
    """Confirmation link carrying username and confirmation secret."""
    return f"{base_url}?{urlencode({'username': username, 'secret': secret})}"


class EmailService:
    """Service for sending emails via Gmail API."""

    def __init__(
        self,
        credentials_path: str,
        sender_address: str,
        sender_name: str = "Enrolkey",
    ):
        """Initialize Gmail API service.

        Args:
            credentials_path: Path to service account JSON file
            sender_address: Email address to send from (must be in Google Workspace)
            sender_name: Display name for sender
        """
        self.credentials_path = credentials_path
        self.sender_address = sender_address
        self.sender_name = sender_name
        self._service: GmailResource | None = None

        if not Path(credentials_path).exists():
            logger.warning(
                "email_credentials_not_found",
                path=credentials_path,
                message="Gmail API will not be available",
            )

    def _get_service(self) -> "GmailResource":
        """Get or lazily create the Gmail API service.

        Raises:
            FileNotFoundError: If credentials file doesn't exist
        """
        if self._service is not None:
            return self._service

        credentials_file = Path(self.credentials_path)
        if not credentials_file.exists():
            msg = f"Credentials file not found: {self.credentials_path}"
            raise FileNotFoundError(msg)

        credentials = service_account.Credentials.from_service_account_file(
            str(credentials_file),
            scopes=GMAIL_SCOPES,
        )
        delegated_credentials = credentials.with_subject(self.sender_address)

        self._service = build(
            "gmail",
            "v1",
            credentials=delegated_credentials,
            cache_discovery=False,
        )
        logger.info("gmail_service_initialized", sender=self.sender_address)
        return self._service

    def _format_address(self, recipient: EmailRecipient) -> str:
        if recipient.name:
            return f"{recipient.name} <{recipient.email}>"
        return recipient.email

    def _create_message(self, request: SendEmailRequest) -> dict:
        """Create email message in Gmail API format ({'raw': base64url})."""
        message = MIMEMultipart("alternative")
        message["From"] = f"{self.sender_name} <{self.sender_address}>"
        message["To"] = ", ".join(self._format_address(r) for r in request.to)
        message["Subject"] = request.subject

        # Plain text first, then HTML (clients prefer the last part)
        if request.body_text:
            message.attach(MIMEText(request.body_text, "plain", "utf-8"))
        message.attach(MIMEText(request.body_html, "html", "utf-8"))

        raw_message = base64.urlsafe_b64encode(message.as_bytes()).decode("utf-8")
        return {"raw": raw_message}

    async def send_email(self, request: SendEmailRequest) -> SendEmailResponse:
        """Send an email via Gmail API.

        Never raises: failures come back as ``success=False``.
        """
        try:
            service = self._get_service()
            message = self._create_message(request)

            result = (
                service.users().messages().send(userId="me", body=message).execute()
            )

            logger.info(
                "email_sent",
                message_id=result.get("id"),
                to=[r.email for r in request.to],
                subject=request.subject[:50],
            )

            return SendEmailResponse(success=True, message_id=result.get("id"))

        except HttpError as e:
            logger.exception(
                "email_send_failed",
                error=str(e),
                to=[r.email for r in request.to],
            )
            return SendEmailResponse(success=False, error=f"Gmail API error: {e}")

        except FileNotFoundError as e:
            logger.error("email_credentials_missing", error=str(e))
            return SendEmailResponse(
                success=False,
                error="Email service not configured: credentials file missing",
            )

        except Exception as e:
            logger.exception("email_send_unexpected_error", error=str(e))
            return SendEmailResponse(success=False, error=f"Unexpected error: {e!s}")

    async def send_simple_email(
        self,
        to: str,
        subject: str,
        body_html: str,
        body_text: str | None = None,
        to_name: str | None = None,
    ) -> SendEmailResponse:
        """Send a single-recipient email."""
        request = SendEmailRequest(
            to=[EmailRecipient(email=to, name=to_name)],
            subject=subject,
            body_html=body_html,
            body_text=body_text,
        )
        return await self.send_email(request)

    async def send_confirmation_email(
        self,
        to: str,
        user_name: str,
        confirm_url: str,
        site_name: str,
    ) -> SendEmailResponse:
        """Send the account confirmation email.

        Args:
            to: Account email address
            user_name: Display name
            confirm_url: Link that confirms the account
            site_name: Site name used in subject and greeting
        """
        subject = f"{site_name}: account confirmation"
        safe_name = html.escape(user_name)
        safe_url = html.escape(confirm_url, quote=True)
        body_html = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <p>Hi {safe_name},</p>
            <p>A new account has been requested at <strong>{html.escape(site_name)}</strong>
            using your email address.</p>
            <p>To confirm your new account, please go to this web address:</p>
            <p><a href="{safe_url}">{safe_url}</a></p>
            <p>If you did not request this account you can ignore this email.</p>
        </body>
        </html>
        """
        body_text = f"""
Hi {user_name},

A new account has been requested at {site_name} using your email address.

To confirm your new account, please go to this web address:

{confirm_url}

If you did not request this account you can ignore this email.
        """

        return await self.send_simple_email(
            to=to,
            subject=subject,
            body_html=body_html,
            body_text=body_text,
            to_name=user_name,
        )
