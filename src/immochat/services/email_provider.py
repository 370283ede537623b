"""
Outbound email for one-time codes

SMTPEmailProvider delivers mail when SMTP_HOST is configured; otherwise the
DevEmailProvider writes each message to the log so codes can be read locally.
"""
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from ..config import config
from ..db.models.otp import OTPPurpose
from ..logging_config import mask_email

logger = logging.getLogger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    html_body: str
    text_body: Optional[str] = None
    from_address: Optional[str] = None


class EmailProvider(ABC):
    @abstractmethod
    def send(self, message: EmailMessage) -> bool:
        """Deliver the message; False on any delivery failure"""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the provider has what it needs to deliver mail"""


class DevEmailProvider(EmailProvider):
    def send(self, message: EmailMessage) -> bool:
        logger.info(
            f"[dev mail, not sent] to={message.to} subject={message.subject!r}\n"
            f"{message.text_body or message.html_body}"
        )
        return True

    def is_available(self) -> bool:
        return True


class SMTPEmailProvider(EmailProvider):
    """STARTTLS delivery; connect, login and send are each bounded by `timeout` seconds"""

    def __init__(
        self,
        host: str,
        port: int,
        user: Optional[str],
        password: Optional[str],
        from_address: str,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.timeout = timeout

    def _mime(self, message: EmailMessage) -> MIMEMultipart:
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = message.from_address or self.from_address
        mime["To"] = message.to
        # Plain part first so clients prefer the HTML alternative
        if message.text_body:
            mime.attach(MIMEText(message.text_body, "plain", "utf-8"))
        mime.attach(MIMEText(message.html_body, "html", "utf-8"))
        return mime

    def send(self, message: EmailMessage) -> bool:
        recipient = mask_email(message.to)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(self._mime(message))
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery to {recipient} failed: {type(e).__name__}: {e}")
            return False

        logger.info(f"Mail '{message.subject}' delivered to {recipient}")
        return True

    def is_available(self) -> bool:
        return bool(self.host and self.port and self.from_address)


_email_provider: Optional[EmailProvider] = None


def get_email_provider() -> EmailProvider:
    """FastAPI dependency returning the process-wide provider"""
    global _email_provider

    if _email_provider is None:
        if not config.SMTP_HOST:
            logger.info("No SMTP_HOST configured; one-time codes are written to the log")
            _email_provider = DevEmailProvider()
        else:
            _email_provider = SMTPEmailProvider(
                host=config.SMTP_HOST,
                port=config.SMTP_PORT,
                user=config.SMTP_USER,
                password=config.SMTP_PASSWORD,
                from_address=config.SMTP_FROM_ADDRESS,
                timeout=config.EMAIL_TIMEOUT_SECONDS,
            )
            logger.info(f"Sending mail through {config.SMTP_HOST}:{config.SMTP_PORT}")

    return _email_provider


_OTP_SUBJECTS = {
    OTPPurpose.PASSWORD_RESET: "Your ImmoChat password reset code",
    OTPPurpose.PASSWORD_CHANGE: "Your ImmoChat password change code",
    OTPPurpose.EMAIL_VERIFICATION: "Your ImmoChat email verification code",
}

_OTP_ACTIONS = {
    OTPPurpose.PASSWORD_RESET: "reset your password",
    OTPPurpose.PASSWORD_CHANGE: "change your password",
    OTPPurpose.EMAIL_VERIFICATION: "verify your email address",
}

_OTP_HTML = """<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; color: #333; max-width: 560px; margin: 0 auto;">
  <h2>ImmoChat</h2>
  <p>Use this code to {action}:</p>
  <p style="font-size: 30px; font-weight: bold; letter-spacing: 6px; background: #f1f5f9; padding: 16px; text-align: center;">{code}</p>
  <p>The code is valid for {minutes} minutes and works once. Do not share it with anyone.</p>
  <p style="font-size: 12px; color: #777;">If you did not ask for this code you can ignore this email.</p>
</body>
</html>
"""

_OTP_TEXT = """ImmoChat

Use this code to {action}: {code}

The code is valid for {minutes} minutes and works once. Do not share it with anyone.
If you did not ask for this code you can ignore this email.
"""


def send_otp_email(provider: EmailProvider, email: str, code: str, purpose: OTPPurpose) -> bool:
    """Mail a one-time code; False when the provider could not deliver it"""
    fields = {
        "action": _OTP_ACTIONS[purpose],
        "code": code,
        "minutes": config.OTP_EXPIRE_MINUTES,
    }
    message = EmailMessage(
        to=email,
        subject=_OTP_SUBJECTS[purpose],
        html_body=_OTP_HTML.format(**fields),
        text_body=_OTP_TEXT.format(**fields),
    )
    return provider.send(message)
