"""SMTP email notifier.

Sends the three notifications the bug fixer produces:
- Validation request: proposal details with approve/reject buttons
- No-fix notice: why an issue was not fixed automatically
- Outcome: pull request link, or failure notice

smtplib is blocking, so each send runs in a worker thread. Failures of
the validation request propagate as NotificationError because the
approval step cannot happen without it; no-fix and outcome notices are
best-effort and only logged.
"""

import asyncio
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Optional

from src.bugfixer.github.models import Issue
from src.bugfixer.notifications import templates
from src.bugfixer.proposals.models import FixProposal

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when an email cannot be delivered.

    Attributes:
        subject: Subject of the undelivered message.
        cause: The underlying transport exception.
    """

    def __init__(self, subject: str, cause: Optional[Exception] = None):
        self.subject = subject
        self.cause = cause
        super().__init__(f"Failed to send email '{subject}': {cause}")


class EmailNotifier:
    """Delivers notification emails over SMTP.

    Attributes:
        host: SMTP server host.
        port: SMTP server port.
        secure: True for implicit TLS (SMTPS); otherwise STARTTLS when offered.
        username: SMTP login (empty disables authentication).
        sender: From address.
        recipient: To address.
        validation_url: Base URL for approve/reject links.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipient: str,
        validation_url: str,
        username: str = "",
        password: str = "",
        secure: bool = False,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.recipient = recipient
        self.validation_url = validation_url
        self.username = username
        self._password = password
        self.secure = secure
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.secure:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(
                self.host, self.port, timeout=self.timeout, context=context
            )
        else:
            smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls(context=context)
                smtp.ehlo()
        if self.username:
            smtp.login(self.username, self._password)
        return smtp

    def _send_sync(self, message: EmailMessage) -> None:
        with self._connect() as smtp:
            smtp.send_message(message)

    def _build_message(self, subject: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = self.recipient
        message.set_content("This message requires an HTML-capable mail client.")
        message.add_alternative(html, subtype="html")
        return message

    async def send(self, subject: str, html: str) -> None:
        """Send one HTML email.

        Raises:
            NotificationError: If connecting or sending fails.
        """
        message = self._build_message(subject, html)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Email delivery failed",
                extra={"subject": subject, "error": str(e), "error_type": type(e).__name__},
            )
            raise NotificationError(subject, e) from e

        logger.info("Email sent", extra={"subject": subject, "to": self.recipient})

    async def send_validation_request(self, proposal: FixProposal, repo_url: str) -> None:
        """Ask a human to approve or reject a proposal.

        Raises:
            NotificationError: If the email cannot be delivered.
        """
        await self.send(
            templates.validation_request_subject(proposal),
            templates.render_validation_request(proposal, repo_url, self.validation_url),
        )

    async def send_no_fix_notice(self, issue: Issue, repo_url: str, reason: str) -> bool:
        """Explain why no fix was proposed. Best-effort.

        Returns:
            True if the email was delivered.
        """
        try:
            await self.send(
                templates.no_fix_subject(issue),
                templates.render_no_fix_notice(issue, repo_url, reason),
            )
            return True
        except NotificationError:
            logger.warning(
                "No-fix notice not delivered",
                extra={"issue_number": issue.number},
            )
            return False

    async def send_outcome(
        self,
        proposal: FixProposal,
        pr_url: Optional[str],
        success: bool,
    ) -> bool:
        """Report the result of an approved proposal. Best-effort.

        Returns:
            True if the email was delivered.
        """
        try:
            await self.send(
                templates.outcome_subject(proposal, success),
                templates.render_outcome(proposal, pr_url, success),
            )
            return True
        except NotificationError:
            logger.warning(
                "Outcome notice not delivered",
                extra={"proposal_id": proposal.id, "success": success},
            )
            return False

    def _verify_sync(self) -> None:
        with self._connect() as smtp:
            smtp.noop()

    async def verify_connection(self) -> bool:
        """Check that the SMTP server accepts a connection and login."""
        try:
            await asyncio.to_thread(self._verify_sync)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(
                "SMTP connection check failed",
                extra={"host": self.host, "port": self.port, "error": str(e)},
            )
            return False
