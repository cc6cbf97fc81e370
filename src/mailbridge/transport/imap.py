"""IMAP/SMTP mailbox transport.

Notes:
    ``imaplib`` and ``smtplib`` are synchronous. This transport wraps those
    calls using ``asyncio.to_thread`` so the engine can remain async-friendly.
"""

from __future__ import annotations

import asyncio
import imaplib
import os
import re
import smtplib
import socket
import ssl
from datetime import datetime

import structlog

from mailbridge.config import Settings
from mailbridge.exceptions import (
    AuthenticationError,
    DeliveryError,
    MailboxConnectionError,
    RateLimitError,
    TransportError,
)
from mailbridge.mail.building import build_mime_message
from mailbridge.models import (
    ConnectedAccount,
    DeliveryConfirmation,
    FetchRequest,
    OutgoingMail,
    RawMailItem,
)
from mailbridge.utils import retry_on_failure

logger = structlog.get_logger()

_UID_RE = re.compile(rb"UID (\d+)")
# RFC 5530 response codes, plus the non-standard one Gmail uses.
_IMAP_THROTTLE_RE = re.compile(r"\[(?:THROTTLED|LIMIT)\]", re.IGNORECASE)


def _imap_date(value: datetime) -> str:
    # IMAP SINCE takes a date in the form 01-Jan-2024 (English month names).
    months = "Jan Feb Mar Apr May Jun Jul Aug Sep Oct Nov Dec".split()
    return f"{value.day:02d}-{months[value.month - 1]}-{value.year}"


def _smtp_throttled(exc: smtplib.SMTPResponseException) -> bool:
    # Servers signal rate limits with a transient code and a 4.7.x enhanced status.
    error = exc.smtp_error
    text = error.decode(errors="replace") if isinstance(error, bytes) else str(error)
    return exc.smtp_code in (421, 450, 451) and text.lstrip().startswith("4.7.")


class ImapSmtpTransport:
    """Fetch via IMAP and send via SMTP.

    Only the configured mailbox (INBOX by default) is read.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the transport.

        Args:
            settings: Application settings. If None, uses default settings.
        """
        from mailbridge.config import get_settings

        self.settings = settings or get_settings()

    async def fetch_since(
        self, account: ConnectedAccount, request: FetchRequest
    ) -> list[RawMailItem]:
        """Fetch raw messages for an account.

        Raises:
            AuthenticationError: If the server rejects the credentials.
            MailboxConnectionError: If the server cannot be reached.
            RateLimitError: If the server throttles the account.
        """

        logger.info(
            "imap_fetch_started",
            account_id=account.id,
            after_uid=request.after_uid,
            since=request.since.isoformat() if request.since else None,
            max_count=request.max_count,
        )

        fetch = retry_on_failure(
            max_retries=self.settings.connect_retries,
            delay=self.settings.connect_retry_delay,
            retry_on=(MailboxConnectionError,),
        )(self._fetch)
        items = await fetch(account, request)

        logger.info("imap_fetch_completed", account_id=account.id, message_count=len(items))
        return items

    async def send(self, account: ConnectedAccount, mail: OutgoingMail) -> DeliveryConfirmation:
        """Send a message over SMTP.

        Raises:
            AuthenticationError: If the server rejects the credentials.
            MailboxConnectionError: If the server cannot be reached.
            DeliveryError: If the server refuses the message or every recipient.
            RateLimitError: If the server throttles the account.
        """

        logger.info(
            "smtp_send_started",
            account_id=account.id,
            message_id=mail.message_id,
            recipient_count=len(mail.recipients()),
        )
        confirmation = await asyncio.to_thread(self._send_sync, account, mail)
        logger.info(
            "smtp_send_completed",
            account_id=account.id,
            message_id=confirmation.message_id,
            rejected=confirmation.rejected,
        )
        return confirmation

    async def _fetch(self, account: ConnectedAccount, request: FetchRequest) -> list[RawMailItem]:
        return await asyncio.to_thread(self._fetch_sync, account, request)

    def _password(self, account: ConnectedAccount) -> str:
        if not account.password_env:
            raise AuthenticationError(f"No password configured for account {account.id}")
        password = os.environ.get(account.password_env)
        if password is None:
            raise AuthenticationError(
                f"Password environment variable {account.password_env} is not set"
            )
        return password

    def _open_imap(self, account: ConnectedAccount) -> imaplib.IMAP4:
        if not account.imap_host or not account.username:
            raise AuthenticationError("Missing IMAP credentials")

        port = account.imap_port or (993 if account.use_tls else 143)
        password = self._password(account)

        try:
            if account.use_tls:
                client: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                    account.imap_host,
                    port,
                    ssl_context=ssl.create_default_context(),
                    timeout=self.settings.imap_timeout,
                )
            else:
                client = imaplib.IMAP4(account.imap_host, port, timeout=self.settings.imap_timeout)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise MailboxConnectionError(f"IMAP connection failed: {exc}") from exc

        try:
            client.login(account.username, password)
        except imaplib.IMAP4.error as exc:
            self._safe_logout(client)
            if _IMAP_THROTTLE_RE.search(str(exc)):
                raise RateLimitError(f"IMAP login throttled: {exc}") from exc
            raise AuthenticationError(f"IMAP authentication failed: {exc}") from exc
        except OSError as exc:
            self._safe_logout(client)
            raise MailboxConnectionError(f"IMAP connection failed: {exc}") from exc
        return client

    def _fetch_sync(self, account: ConnectedAccount, request: FetchRequest) -> list[RawMailItem]:
        client = self._open_imap(account)
        try:
            status, _ = client.select(
                self.settings.imap_mailbox, readonly=not self.settings.mark_fetched_as_read
            )
            if status != "OK":
                raise TransportError(f"Cannot select mailbox {self.settings.imap_mailbox}")

            uids = self._search(client, request)
            items: list[RawMailItem] = []
            for uid in uids[: request.max_count]:
                item = self._fetch_one(client, uid)
                if item is None:
                    continue
                items.append(item)
                if self.settings.mark_fetched_as_read:
                    client.uid("STORE", str(uid), "+FLAGS", "(\\Seen)")
            return items
        except (OSError, imaplib.IMAP4.abort) as exc:
            raise MailboxConnectionError(f"IMAP connection lost: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            if _IMAP_THROTTLE_RE.search(str(exc)):
                raise RateLimitError(f"IMAP server throttled the account: {exc}") from exc
            raise TransportError(f"IMAP command failed: {exc}") from exc
        finally:
            self._safe_logout(client)

    def _search(self, client: imaplib.IMAP4, request: FetchRequest) -> list[int]:
        if request.after_uid is not None:
            criteria: tuple[str, ...] = ("UID", f"{request.after_uid + 1}:*")
        elif request.since is not None:
            criteria = ("SINCE", _imap_date(request.since))
        else:
            criteria = ("ALL",)

        status, data = client.uid("SEARCH", None, *criteria)
        if status != "OK":
            raise TransportError(f"IMAP search failed: {data!r}")

        raw = data[0] if data else b""
        uids = sorted(int(token) for token in (raw or b"").split())
        if request.after_uid is not None:
            # "n:*" always matches the highest UID, even when it is below n.
            uids = [uid for uid in uids if uid > request.after_uid]
        return uids

    def _fetch_one(self, client: imaplib.IMAP4, uid: int) -> RawMailItem | None:
        status, data = client.uid("FETCH", str(uid), "(UID FLAGS BODY.PEEK[])")
        if status != "OK" or not data:
            logger.warning("imap_fetch_message_failed", uid=uid, status=status)
            return None

        for part in data:
            if not isinstance(part, tuple) or len(part) < 2:
                continue
            meta, source = part[0], part[1]
            match = _UID_RE.search(meta)
            flags = [f.decode() for f in imaplib.ParseFlags(meta)]
            return RawMailItem(
                uid=int(match.group(1)) if match else uid,
                source=source,
                flags=flags,
            )
        return None

    def _send_sync(self, account: ConnectedAccount, mail: OutgoingMail) -> DeliveryConfirmation:
        if not account.smtp_host or not account.username:
            raise AuthenticationError("Missing SMTP credentials")

        port = account.smtp_port or 587
        password = self._password(account)
        msg = build_mime_message(mail)
        recipients = mail.recipients()

        try:
            if port == 465:
                server: smtplib.SMTP = smtplib.SMTP_SSL(
                    account.smtp_host,
                    port,
                    timeout=self.settings.smtp_timeout,
                    context=ssl.create_default_context(),
                )
            else:
                server = smtplib.SMTP(account.smtp_host, port, timeout=self.settings.smtp_timeout)
        except (OSError, smtplib.SMTPException) as exc:
            raise MailboxConnectionError(f"SMTP connection failed: {exc}") from exc

        try:
            if port != 465 and account.use_tls:
                server.starttls(context=ssl.create_default_context())
            server.login(account.username, password)
            refused = server.send_message(msg, from_addr=account.email_address, to_addrs=recipients)
        except smtplib.SMTPAuthenticationError as exc:
            raise AuthenticationError(f"SMTP authentication failed: {exc}") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise DeliveryError(f"All recipients refused: {list(exc.recipients)}") from exc
        except smtplib.SMTPResponseException as exc:
            if _smtp_throttled(exc):
                raise RateLimitError(f"SMTP server throttled the account: {exc}") from exc
            if isinstance(exc, (smtplib.SMTPSenderRefused, smtplib.SMTPDataError)):
                raise DeliveryError(f"Failed to send email: {exc}") from exc
            raise TransportError(f"Failed to send email: {exc}") from exc
        except (OSError, smtplib.SMTPServerDisconnected, socket.timeout) as exc:
            raise MailboxConnectionError(f"SMTP connection lost: {exc}") from exc
        except smtplib.SMTPException as exc:
            raise TransportError(f"Failed to send email: {exc}") from exc
        finally:
            try:
                server.quit()
            except (OSError, smtplib.SMTPException):
                server.close()

        rejected = sorted(refused)
        return DeliveryConfirmation(
            message_id=mail.message_id,
            accepted=[r for r in recipients if r not in refused],
            rejected=rejected,
        )

    @staticmethod
    def _safe_logout(client: imaplib.IMAP4) -> None:
        try:
            client.logout()
        except (OSError, imaplib.IMAP4.error) as exc:
            logger.debug("imap_logout_failed", error=str(exc))
