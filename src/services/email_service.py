"""Email service for password reset delivery."""

import asyncio
from email.message import EmailMessage
from urllib.parse import quote

import structlog

from src.config import get_settings

logger = structlog.get_logger(__name__)

# Background send tasks, tracked so shutdown can drain them.
_pending_tasks: set[asyncio.Task] = set()


def schedule_email(coro) -> asyncio.Task:
    """Schedule a fire-and-forget email send.

    Creates an asyncio task, tracks it in the module-level set,
    and registers a cleanup callback.

    Args:
        coro: Coroutine to run in the background

    Returns:
        The created asyncio Task
    """
    task = asyncio.create_task(coro)
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
    return task


async def await_pending_emails(timeout: float = 5.0) -> None:
    """Wait for pending email tasks to finish.

    Called during application shutdown.

    Args:
        timeout: Maximum seconds to wait for pending tasks
    """
    if not _pending_tasks:
        return

    logger.info("draining_pending_emails", count=len(_pending_tasks))
    try:
        await asyncio.wait_for(
            asyncio.gather(*_pending_tasks, return_exceptions=True),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(
            "pending_emails_timeout",
            remaining=len(_pending_tasks),
            timeout=timeout,
        )


class EmailService:
    """Service for sending transactional emails over SMTP."""

    def __init__(self):
        self.settings = get_settings()

    def build_reset_link(self, token: str) -> str:
        return f"{self.settings.frontend_reset_url}?token={quote(token, safe='')}"

    def build_password_reset_message(self, to_email: str, token: str) -> EmailMessage:
        """Compose the reset email with plain-text and HTML parts."""
        link = self.build_reset_link(token)
        minutes = self.settings.password_reset_ttl_minutes

        message = EmailMessage()
        message["From"] = self.settings.mail_from
        message["To"] = to_email
        message["Subject"] = "Reset your password"
        message.set_content(
            "You asked to reset your password.\n"
            f"Use the link below (valid for {minutes} minutes):\n"
            f"{link}\n\n"
            "If you did not make this request, you can ignore this email."
        )
        message.add_alternative(
            "<p>You asked to reset your password.</p>"
            f'<p><a href="{link}">Reset your password</a> (valid for {minutes} minutes)</p>'
            "<p>If you did not make this request, you can ignore this email.</p>",
            subtype="html",
        )
        return message

    async def send_password_reset_email(self, to_email: str, token: str) -> bool:
        """Send a password reset link via SMTP.

        Returns True on success, False on failure. Failures are logged and
        never raised.
        """
        try:
            import aiosmtplib

            message = self.build_password_reset_message(to_email, token)

            await aiosmtplib.send(
                message,
                hostname=self.settings.smtp_host,
                port=self.settings.smtp_port,
                username=self.settings.smtp_username or None,
                password=self.settings.smtp_password or None,
                use_tls=self.settings.smtp_use_tls,
            )

            logger.info("password_reset_email_sent", to=to_email)
            return True

        except Exception as e:
            logger.error(
                "password_reset_email_failed",
                to=to_email,
                error=str(e),
            )
            return False
