from __future__ import annotations

import asyncio
import logging
import shlex
import smtplib
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import List, Optional, Tuple

from formrelay.core.config import settings
from formrelay.core.errors import DispatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailMessage:
    """A fully composed message; header values are already sanitized."""

    from_address: str
    to: Tuple[Tuple[str, str], ...]
    reply_to: str
    subject: str
    body_text: str
    headers: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def recipient_addresses(self) -> List[str]:
        return [address for address, _label in self.to]

    def to_email_message(self) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.from_address
        msg["To"] = ", ".join(formataddr((label, address)) for address, label in self.to)
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg["Subject"] = self.subject
        msg.set_content(self.body_text, charset="utf-8")
        return msg


class Mailer(ABC):
    """Hands a composed message to a transport; raises DispatchError on failure."""

    name: str = "mailer"

    @abstractmethod
    async def send(self, message: MailMessage) -> None:
        ...


class FileMailer(Mailer):
    """Development sink: writes a timestamped record instead of transmitting."""

    name = "file"

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)

    def _write(self, message: MailMessage) -> Path:
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S_%f")
        path = self.directory / f"mailer_log_{stamp}.txt"
        payload = message.body_text + "\n\nHeaders:\n" + "\n".join(message.headers) + "\n"
        path.write_text(payload, encoding="utf-8")
        return path

    async def send(self, message: MailMessage) -> None:
        try:
            path = await asyncio.to_thread(self._write, message)
        except OSError as exc:
            raise DispatchError(f"could not write mail record: {exc}") from exc
        logger.info("Contact message written to %s", path)


class SmtpMailer(Mailer):
    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        *,
        starttls: bool = False,
        implicit_tls: bool = False,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.starttls = starttls
        self.implicit_tls = implicit_tls
        self.username = username
        self.password = password
        self.timeout = timeout

    def _send_email_sync(self, message: MailMessage) -> None:
        smtp_class = smtplib.SMTP_SSL if self.implicit_tls else smtplib.SMTP
        with smtp_class(self.host, self.port, timeout=self.timeout) as server:
            if self.starttls and not self.implicit_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(
                message.to_email_message(),
                from_addr=message.from_address,
                to_addrs=message.recipient_addresses,
            )

    async def send(self, message: MailMessage) -> None:
        try:
            await asyncio.to_thread(self._send_email_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery via %s:%s failed: %s", self.host, self.port, exc)
            raise DispatchError(f"smtp delivery failed: {exc}") from exc


class SendmailMailer(Mailer):
    """Pipes the message to the system mail command (``sendmail -t -i``)."""

    name = "sendmail"

    def __init__(self, command: str, timeout: float = 30.0) -> None:
        self.command = shlex.split(command)
        self.timeout = timeout

    def _run(self, message: MailMessage) -> subprocess.CompletedProcess:
        return subprocess.run(
            self.command,
            input=message.to_email_message().as_bytes(),
            capture_output=True,
            timeout=self.timeout,
            check=False,
        )

    async def send(self, message: MailMessage) -> None:
        try:
            result = await asyncio.to_thread(self._run, message)
        except (OSError, subprocess.SubprocessError) as exc:
            raise DispatchError(f"mail command failed to run: {exc}") from exc
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", "replace").strip()
            logger.warning("Mail command exited with %s: %s", result.returncode, stderr)
            raise DispatchError(f"mail command exited with status {result.returncode}")


def build_mailer(mail) -> Mailer:
    """Transport for a ``MailSettings`` section of the contact document."""
    if mail.mode == "file":
        return FileMailer(mail.file_path)
    if mail.mode == "smtp":
        password = mail.password or settings.SMTP_PASSWORD
        return SmtpMailer(
            mail.host,
            mail.port,
            starttls=mail.starttls,
            implicit_tls=mail.implicit_tls,
            username=mail.username if mail.auth else None,
            password=password.get_secret_value() if (mail.auth and password) else None,
            timeout=mail.timeout,
        )
    return SendmailMailer(mail.sendmail_path)
