from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText

from flask import Flask

logger = logging.getLogger(__name__)


class MailError(RuntimeError):
    pass


@dataclass(frozen=True)
class MailMessage:
    subject: str
    body: str
    from_addr: str
    to_addrs: tuple[str, ...]


class Mailer:
    def send(self, message: MailMessage) -> None:
        raise NotImplementedError


@dataclass
class MemoryMailer(Mailer):
    """Keeps delivered messages in `outbox` (development and tests)."""

    outbox: list[MailMessage] = field(default_factory=list)

    def send(self, message: MailMessage) -> None:
        self.outbox.append(message)
        logger.info("Mail queued in memory outbox: to=%s subject=%r", ", ".join(message.to_addrs), message.subject)


@dataclass(frozen=True)
class SmtpMailer(Mailer):
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    timeout: float = 10.0

    def send(self, message: MailMessage) -> None:
        if not self.host:
            raise MailError("SMTP_HOST is not configured.")
        msg = MIMEText(message.body, "plain", "utf-8")
        msg["Subject"] = message.subject
        msg["From"] = message.from_addr
        msg["To"] = ", ".join(message.to_addrs)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(message.from_addr, list(message.to_addrs), msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise MailError(f"SMTP send failed: {e}") from e
        logger.info("Mail sent via SMTP: to=%s subject=%r", msg["To"], message.subject)


def init_mailer(app: Flask) -> Mailer:
    backend = (app.config.get("MAIL_BACKEND") or "memory").strip().lower()
    if backend == "smtp":
        mailer: Mailer = SmtpMailer(
            host=(app.config.get("SMTP_HOST") or "").strip(),
            port=int(app.config.get("SMTP_PORT") or 587),
            username=(app.config.get("SMTP_USERNAME") or "").strip(),
            password=app.config.get("SMTP_PASSWORD") or "",
            use_tls=bool(app.config.get("SMTP_USE_TLS", True)),
        )
    elif backend == "memory":
        mailer = MemoryMailer()
    else:
        raise MailError(f"Unknown MAIL_BACKEND: {backend!r}")
    app.extensions["mailer"] = mailer
    return mailer


def get_mailer(app: Flask) -> Mailer:
    return app.extensions["mailer"]
