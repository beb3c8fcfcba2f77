"""
============================================================================
Evaluation Desk v1.0.0
Notification Service - Registration Link E-mail
============================================================================

Reliability Level: L4 Best Effort
Input Constraints: MailConfig (delivery disabled when SMTP host is empty)
Side Effects: SMTP connection from a worker thread

MANDATE:
- Never blocks the event loop (smtplib runs in asyncio.to_thread)
- Delivery failures are raised to the caller; the webhook handler logs
  them and still answers success
- PRIVACY: the address is logged masked

ERROR CODES:
    - MAIL-001: SMTP delivery failed

============================================================================
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional

from services.desk_config import MailConfig

logger = logging.getLogger(__name__)


REGISTRATION_SUBJECT = "Complete seu Cadastro - Traders House"
SMTP_TIMEOUT_SECONDS = 20


class NotificationErrorCode:
    DELIVERY_FAILED = "MAIL-001"


class NotificationError(Exception):
    def __init__(self, message: str, error_code: str = NotificationErrorCode.DELIVERY_FAILED):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


def mask_email(address: str) -> str:
    """'joao.silva@example.com' -> 'j***@example.com'"""
    local, _, domain = (address or "").partition("@")
    if not domain:
        return "***"
    return f"{local[:1]}***@{domain}"


def render_registration_email(customer_name: str, registration_url: str) -> str:
    first_name = (customer_name or "").split(" ")[0] or "Trader"
    return (
        f"Olá, {first_name}!\n\n"
        "Recebemos a confirmação do seu pagamento. Para liberar a sua avaliação, "
        "complete o seu cadastro no link abaixo:\n\n"
        f"{registration_url}\n\n"
        "Se tiver qualquer dúvida, basta responder este e-mail.\n\n"
        "Equipe Traders House\n"
    )


class RegistrationMailer:
    """
    Sends the post-payment registration link.

    Example Usage:
        mailer = RegistrationMailer(config.mail)
        await mailer.send_registration_link("Maria Souza", "maria@x.com", url)
    """

    def __init__(self, config: MailConfig, smtp_factory: Optional[type] = None):
        self.config = config
        self._smtp_factory = smtp_factory

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def build_message(
        self,
        customer_name: str,
        customer_email: str,
        registration_url: str
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = REGISTRATION_SUBJECT
        message["From"] = self.config.sender
        message["To"] = customer_email
        message.set_content(render_registration_email(customer_name, registration_url))
        return message

    async def send_registration_link(
        self,
        customer_name: str,
        customer_email: str,
        registration_url: str
    ) -> bool:
        """
        Deliver the registration link.

        Returns:
            True when sent, False when mail delivery is disabled

        Raises:
            NotificationError: MAIL-001 on SMTP failure or a malformed header
        """
        if not self.enabled:
            logger.info(
                f"[MAIL] Delivery disabled, registration link not sent | "
                f"to={mask_email(customer_email)}"
            )
            return False

        try:
            message = self.build_message(customer_name, customer_email, registration_url)
        except ValueError as e:
            logger.error(
                f"[{NotificationErrorCode.DELIVERY_FAILED}] Registration e-mail not built | "
                f"to={mask_email(customer_email)} | error={e}"
            )
            raise NotificationError(f"Invalid message header: {e}") from e

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                f"[{NotificationErrorCode.DELIVERY_FAILED}] Registration e-mail failed | "
                f"to={mask_email(customer_email)} | error={e}"
            )
            raise NotificationError(f"SMTP delivery failed: {e}") from e

        logger.info(f"[MAIL] Registration link sent | to={mask_email(customer_email)}")
        return True

    def _deliver(self, message: EmailMessage) -> None:
        config = self.config
        if self._smtp_factory is not None:
            factory = self._smtp_factory
        else:
            factory = smtplib.SMTP_SSL if config.secure else smtplib.SMTP

        with factory(config.host, config.port, timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            if not config.secure and self._smtp_factory is None:
                smtp.ehlo()
                if smtp.has_extn("starttls"):
                    smtp.starttls()
                    smtp.ehlo()
            if config.user:
                smtp.login(config.user, config.password)
            smtp.send_message(message)


__all__ = [
    "NotificationErrorCode",
    "NotificationError",
    "RegistrationMailer",
    "REGISTRATION_SUBJECT",
    "mask_email",
]
