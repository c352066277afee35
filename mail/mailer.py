"""
mail/mailer.py -- Transactional email dispatch.

SmtpMailer is built once in the application lifespan and injected into
AuthService. Lifecycle:

    mailer = SmtpMailer.from_settings(settings)
    mailer.verify()        # validate config, open + NOOP-check the connection
    mailer.send(to, TemplateKind.welcome, {"username": "alice"})   # -> bool

The SMTP connection is opened lazily, kept for the life of the process and
reopened when the server has dropped it. A lock serializes use of the shared
connection because FastAPI runs sync handlers in a thread pool.

send() never raises. It returns False on any delivery failure and logs the
cause; the caller decides how to report it. With no MAIL_HOST configured the
mailer runs in dev mode and logs the rendered message instead of sending it.

Recipient addresses are redacted in logs. Codes and links are never logged
outside dev mode.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
import threading
from email.message import EmailMessage
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("gatekeeper.mail")

_TEMPLATE_DIR = Path(__file__).parent / "templates"


class TemplateKind(str, Enum):
    verification = "verification"
    welcome = "welcome"
    password_reset = "password_reset"
    password_reset_success = "password_reset_success"


_SUBJECTS: dict[TemplateKind, str] = {
    TemplateKind.verification: "Verify Your Email Address Now",
    TemplateKind.welcome: "Welcome aboard",
    TemplateKind.password_reset: "Reset Your Password",
    TemplateKind.password_reset_success: "Password Reset Successful",
}


class Mailer(Protocol):
    def send(self, to: str, kind: TemplateKind, params: dict) -> bool: ...


def redact_email(address: str) -> str:
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class TemplateRenderer:
    """Renders the HTML body for each TemplateKind from mail/templates/<kind>.html."""

    def __init__(self, directory: Path = _TEMPLATE_DIR) -> None:
        self.env = Environment(
            loader=FileSystemLoader(str(directory)),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, kind: TemplateKind, params: dict) -> tuple[str, str]:
        """Return (subject, html_body)."""
        html = self.env.get_template(f"{kind.value}.html").render(**params)
        return _SUBJECTS[kind], html


class SmtpMailer:
    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        from_address: str = "",
        use_tls: bool = True,
        timeout: int = 30,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.timeout = timeout
        self.renderer = renderer or TemplateRenderer()
        self.ready = False
        self._conn: smtplib.SMTP | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpMailer:
        return cls(
            host=settings.mail_host,
            port=settings.mail_port,
            username=settings.mail_username,
            password=settings.mail_password,
            from_address=settings.mail_from_address,
            use_tls=settings.mail_use_tls,
            timeout=settings.mail_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_address)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def verify(self) -> bool:
        """Check the transport once at startup. Sets and returns self.ready.

        Dev mode is always ready. A failed check is logged, not raised: the
        service still starts, and every send reports failure until the server
        becomes reachable.
        """
        if not self.is_configured:
            logger.warning("MAIL_HOST not set -- emails will be logged, not sent")
            self.ready = True
            return True
        try:
            with self._lock:
                self._connection().noop()
        except (smtplib.SMTPException, OSError):
            logger.exception("Mail transport check failed (host=%s port=%d)", self.host, self.port)
            self.ready = False
            return False
        logger.info("Mail transport is configured and ready (host=%s)", self.host)
        self.ready = True
        return True

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                try:
                    self._conn.quit()
                except (smtplib.SMTPException, OSError):
                    pass  # connection already gone
                self._conn = None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def send(self, to: str, kind: TemplateKind, params: dict) -> bool:
        try:
            subject, html = self.renderer.render(kind, params)
        except TemplateError:
            logger.exception("Email template %s failed to render", kind.value)
            return False

        if not self.is_configured:
            logger.info("[dev mail] to=%s subject=%r params=%s", redact_email(to), subject, params)
            return True

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(html, subtype="html")

        try:
            with self._lock:
                self._deliver(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "Email %s to %s failed: %s: %s",
                kind.value,
                redact_email(to),
                type(exc).__name__,
                exc,
            )
            return False
        logger.info("Email %s sent to %s", kind.value, redact_email(to))
        return True

    def _deliver(self, msg: EmailMessage) -> None:
        try:
            self._connection().send_message(msg)
        except smtplib.SMTPServerDisconnected:
            # Idle connections are closed server-side; reopen once.
            self._conn = None
            self._connection().send_message(msg)

    def _connection(self) -> smtplib.SMTP:
        """Return the shared connection, opening it if needed. Caller holds the lock."""
        if self._conn is not None:
            return self._conn
        if self.use_tls:
            conn = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        else:
            conn = smtplib.SMTP_SSL(self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout)
        try:
            if self.use_tls:
                conn.starttls(context=ssl.create_default_context())
            if self.username and self.password:
                conn.login(self.username, self.password)
        except (smtplib.SMTPException, OSError):
            # Half-open connection: release the socket before reporting.
            conn.close()
            raise
        self._conn = conn
        return conn
