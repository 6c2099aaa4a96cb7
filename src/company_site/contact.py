from __future__ import annotations

import html
import logging
from typing import Any, Callable, Dict, Optional

import resend
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from backend.analytics import AnalyticsService

from .configuration import EmailConfig
from .storage import SiteStore, utc_now

logger = logging.getLogger(__name__)


class EmailNotConfigured(RuntimeError):
    pass


class ContactSubmissionError(RuntimeError):
    pass


class ContactSubmission(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=255)
    subject: Optional[str] = Field(None, max_length=255)
    message: str = Field(..., min_length=1)
    lang: str = "en"


class EmailSender:
    """Outbound email through the Resend API."""

    def __init__(self, config: EmailConfig):
        self.config = config
        if config.enabled:
            resend.api_key = config.api_key

    def send(self, *, to_email: str, subject: str, html_body: str, reply_to: Optional[str] = None) -> Dict[str, Any]:
        if not self.config.enabled:
            raise EmailNotConfigured("Email not configured: missing RESEND_API_KEY / EMAIL_FROM / COMPANY_EMAIL")
        params: Dict[str, Any] = {
            "from": self.config.sender,
            "to": [to_email],
            "subject": subject,
            "html": html_body,
        }
        if reply_to:
            params["reply_to"] = reply_to
        return resend.Emails.send(params)


def _company_email_html(submission: ContactSubmission) -> str:
    return f"""
    <div style="font-family: ui-sans-serif, system-ui; line-height: 1.5;">
      <h2>New contact message</h2>
      <p><b>From:</b> {html.escape(submission.name)} &lt;{html.escape(submission.email)}&gt;</p>
      <p><b>Subject:</b> {html.escape(submission.subject or "(no subject)")}</p>
      <p style="white-space: pre-wrap;">{html.escape(submission.message)}</p>
    </div>
    """


def _confirmation_html(submission: ContactSubmission, company_name: str) -> str:
    return f"""
    <div style="font-family: ui-sans-serif, system-ui; line-height: 1.5;">
      <h2>Thank you for contacting {html.escape(company_name)}</h2>
      <p>Hi {html.escape(submission.name)},</p>
      <p>We received your message and will get back to you soon.</p>
      <p style="color:#64748b;font-size:12px;margin-top:16px;">Your message:</p>
      <p style="white-space: pre-wrap;color:#64748b;">{html.escape(submission.message)}</p>
    </div>
    """


class ContactService:
    def __init__(
        self,
        store: SiteStore,
        sender: EmailSender,
        analytics: Optional[AnalyticsService] = None,
        clock: Optional[Callable] = None,
    ) -> None:
        self.store = store
        self.sender = sender
        self.analytics = analytics
        self._clock = clock or utc_now

    def submit(self, submission: ContactSubmission, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Store the message, email the company, email a confirmation to the
        submitter, then track the submission.

        Raises :class:`ContactSubmissionError` when storing or either send
        fails; the message stays stored if only the emails failed.
        """

        try:
            record = self.store.insert(
                "contact_messages",
                {**submission.model_dump(), "created_at": self._clock()},
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to store contact message from %s: %s", submission.email, exc)
            raise ContactSubmissionError("Failed to save message") from exc

        company_name = self.sender.config.company_name
        try:
            self.sender.send(
                to_email=self.sender.config.company_email,
                subject=submission.subject or f"New message from {submission.name}",
                html_body=_company_email_html(submission),
                reply_to=submission.email,
            )
            self.sender.send(
                to_email=submission.email,
                subject=f"Thank You for Contacting {company_name}",
                html_body=_confirmation_html(submission, company_name),
            )
        except EmailNotConfigured:
            raise
        except Exception as exc:
            logger.warning("Failed to send contact emails for message %s: %s", record.get("id"), exc)
            raise ContactSubmissionError("Failed to send email") from exc

        if self.analytics:
            self.analytics.track_contact_submission(submission.model_dump(), user_id)
        return record
