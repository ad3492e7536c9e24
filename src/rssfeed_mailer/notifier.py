"""Outbound mail delivery for RSS Feed Mailer."""

import html
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email import policy
from email.message import EmailMessage
from email.utils import formataddr

from rssfeed_mailer.errors import (
    NotifierAuthError,
    NotifierConnectError,
    TransportError,
)
from rssfeed_mailer.models import FetchedItem, ParsedFeed

logger = logging.getLogger(__name__)

DEFAULT_SMTP_PORT = 587
SMTP_TIMEOUT = 60


@dataclass
class Credentials:
    """SMTP login; the user doubles as the From address."""

    user: str
    password: str


@dataclass
class Notification:
    """A fully rendered message, ready to hand to a session."""

    from_name: str
    from_address: str
    subject: str
    html_body: str

    def to_email(self, recipient: str) -> EmailMessage:
        msg = EmailMessage(policy=policy.SMTP)
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = recipient
        msg["Subject"] = self.subject
        msg.set_content(self.html_body, subtype="html")
        return msg


def render_notification(feed: ParsedFeed, item: FetchedItem, sender: str) -> Notification:
    """Render a feed item as an HTML mail from the feed to ``sender``'s mailbox.

    Title and link are escaped; the item description is already HTML and
    is passed through.
    """
    link = html.escape(item.link or "")
    title = html.escape(item.title)
    body = (
        f'<h1><a href="{link}">{title}</a></h1>'
        f"{item.description or ''}"
        f'<p><a href="{link}">{link}</a></p>'
    )
    return Notification(
        from_name=_single_line(feed.title),
        from_address=sender,
        subject=_single_line(item.title),
        html_body=body,
    )


def _single_line(value: str) -> str:
    # Header values may not contain line breaks
    return " ".join(value.split())


class SmtpSession:
    """An authenticated SMTP connection reused for every mail of a run."""

    def __init__(self, client: smtplib.SMTP, server: str):
        self._client = client
        self.server = server

    def send(self, notification: Notification, recipient: str) -> None:
        """Hand one message to the server.

        Raises:
            TransportError: If the server refuses the message or the
                connection drops.
        """
        msg = notification.to_email(recipient)
        try:
            self._client.send_message(
                msg, from_addr=notification.from_address, to_addrs=[recipient]
            )
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(
                f"Failed to send message (server: {self.server!r}, subject: "
                f"{notification.subject!r}): {e}"
            ) from e

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.quit()
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Failed to close SMTP session cleanly (server: %r): %s", self.server, e)
            self._client.close()
        self._client = None

    def __enter__(self) -> "SmtpSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class DryRunSession:
    """Session used with --no-send: logs each message instead of mailing it."""

    def __init__(self):
        self.sent: list[tuple[Notification, str]] = []

    def send(self, notification: Notification, recipient: str) -> None:
        logger.info("Not sending: %r to %s", notification.subject, recipient)
        self.sent.append((notification, recipient))

    def close(self) -> None:
        pass

    def __enter__(self) -> "DryRunSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def connect(server: str, credentials: Credentials) -> SmtpSession:
    """Open an encrypted, authenticated SMTP session.

    Args:
        server: ``host:port`` of the SMTP server; the port defaults to 587.
        credentials: Login used for AUTH.

    Raises:
        NotifierConnectError: If the server is unreachable or STARTTLS fails.
        NotifierAuthError: If the server rejects the credentials.
    """
    host, _, port = server.partition(":")
    try:
        port_number = int(port) if port else DEFAULT_SMTP_PORT
    except ValueError:
        raise NotifierConnectError(f"Invalid SMTP server address: {server!r}")

    try:
        client = smtplib.SMTP(host, port_number, timeout=SMTP_TIMEOUT)
    except (smtplib.SMTPException, OSError) as e:
        raise NotifierConnectError(
            f"Failed to connect to SMTP server (server: {server!r}): {e}"
        ) from e

    try:
        try:
            client.starttls(context=ssl.create_default_context())
        except (smtplib.SMTPException, OSError) as e:
            raise NotifierConnectError(
                f"Failed to start TLS with SMTP server (server: {server!r}): {e}"
            ) from e

        try:
            client.login(credentials.user, credentials.password)
        except (smtplib.SMTPException, OSError) as e:
            raise NotifierAuthError(
                f"Failed to authenticate with SMTP server (server: {server!r}, "
                f"username: {credentials.user!r}, password: *****): {e}"
            ) from e
    except BaseException:
        client.close()
        raise

    logger.debug("Connected to SMTP server %s as %s", server, credentials.user)
    return SmtpSession(client, server)
