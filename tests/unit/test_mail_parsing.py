"""Unit tests for raw message parsing and outgoing message building."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mailbridge.exceptions import MessageParseError
from mailbridge.mail import build_mime_message, generate_message_id, parse_raw_message
from mailbridge.mail.parsing import parse_message_ids
from mailbridge.models import EmailAddress, OutgoingMail


class TestParseMessageIds:
    """Test suite for parse_message_ids."""

    def test_angle_bracketed_ids_in_order(self) -> None:
        """Test that ids are extracted in header order."""
        assert parse_message_ids("<a@x> <b@x>\t<c@x>") == ["<a@x>", "<b@x>", "<c@x>"]

    def test_whitespace_fallback(self) -> None:
        """Test ids without brackets fall back to whitespace splitting."""
        assert parse_message_ids("a@x b@x") == ["a@x", "b@x"]

    def test_empty(self) -> None:
        """Test that a missing header yields no ids."""
        assert parse_message_ids(None) == []
        assert parse_message_ids("") == []

    def test_bracket_only_tokens_dropped(self) -> None:
        """Test that empty ids such as <> are not treated as identities."""
        assert parse_message_ids("<>") == []
        assert parse_message_ids(" <> <<>> ") == []


class TestParseRawMessage:
    """Test suite for parse_raw_message."""

    def test_headers_and_body(self, raw_message) -> None:
        """Test parsing of a simple message."""
        parsed = parse_raw_message(
            raw_message(
                "<m2@example.com>",
                cc="Carol <carol@example.com>",
                reply_to="replies@example.com",
                in_reply_to="<m1@example.com>",
                references=["<root@example.com>", "<m1@example.com>"],
            )
        )

        assert parsed.message_id == "<m2@example.com>"
        assert parsed.in_reply_to == "<m1@example.com>"
        assert parsed.references == ["<root@example.com>", "<m1@example.com>"]
        assert parsed.sender == EmailAddress(address="alice@example.com", name="Alice")
        assert [a.address for a in parsed.to] == ["me@example.com"]
        assert parsed.cc == [EmailAddress(address="carol@example.com", name="Carol")]
        assert parsed.reply_to == EmailAddress(address="replies@example.com")
        assert parsed.subject == "Project Update"
        assert parsed.date == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert parsed.text is not None and parsed.text.strip() == "Hello there"
        assert parsed.html is None

    def test_html_alternative(self, raw_message) -> None:
        """Test that both text and HTML parts are collected."""
        parsed = parse_raw_message(raw_message(html="<p>Hello <b>there</b></p>"))

        assert parsed.text is not None and "Hello there" in parsed.text
        assert parsed.html is not None and "<b>there</b>" in parsed.html

    def test_folded_references(self) -> None:
        """Test that a References header folded over lines is unfolded."""
        source = (
            b"From: alice@example.com\r\n"
            b"To: me@example.com\r\n"
            b"Subject: Folded\r\n"
            b"Message-ID: <m3@example.com>\r\n"
            b"References: <a@example.com>\r\n"
            b"\t<b@example.com>\r\n"
            b" <c@example.com>\r\n"
            b"\r\n"
            b"body\r\n"
        )

        parsed = parse_raw_message(source)

        assert parsed.references == ["<a@example.com>", "<b@example.com>", "<c@example.com>"]

    def test_missing_message_id_and_date(self, raw_message) -> None:
        """Test that absent headers come back as None."""
        parsed = parse_raw_message(raw_message(None, date=None))

        assert parsed.message_id is None
        assert parsed.date is None

    def test_empty_message_id_is_missing(self) -> None:
        """Test that Message-ID: <> parses as no id."""
        parsed = parse_raw_message(b"Message-ID: <>\r\nSubject: hi\r\n\r\nbody\r\n")

        assert parsed.message_id is None

    def test_unknown_zone_date_is_utc(self) -> None:
        """Test that a -0000 date is read as UTC."""
        source = (
            b"From: alice@example.com\r\n"
            b"Message-ID: <m4@example.com>\r\n"
            b"Date: Fri, 01 Mar 2024 10:00:00 -0000\r\n"
            b"\r\n"
            b"body\r\n"
        )

        parsed = parse_raw_message(source)

        assert parsed.date == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_encoded_subject(self) -> None:
        """Test decoding of RFC 2047 encoded subjects."""
        source = (
            b"From: alice@example.com\r\n"
            b"Message-ID: <m5@example.com>\r\n"
            b"Subject: =?utf-8?q?Caf=C3=A9_plans?=\r\n"
            b"\r\n"
            b"body\r\n"
        )

        assert parse_raw_message(source).subject == "Café plans"

    def test_attachment_metadata(self, raw_message) -> None:
        """Test that attachments are described but not kept."""
        from email import message_from_bytes, policy

        msg = message_from_bytes(raw_message(), policy=policy.default)
        msg.add_attachment(b"%PDF-1.4 data", maintype="application", subtype="pdf", filename="report.pdf")

        parsed = parse_raw_message(msg.as_bytes())

        assert len(parsed.attachments) == 1
        attachment = parsed.attachments[0]
        assert attachment.filename == "report.pdf"
        assert attachment.content_type == "application/pdf"
        assert attachment.size == len(b"%PDF-1.4 data")
        assert attachment.is_inline is False
        assert parsed.text is not None and "Hello there" in parsed.text

    def test_empty_source_raises(self) -> None:
        """Test that empty input is a parse error."""
        with pytest.raises(MessageParseError):
            parse_raw_message(b"")


class TestBuildMimeMessage:
    """Test suite for outgoing message rendering."""

    def test_threading_headers(self) -> None:
        """Test that reply headers and recipients are rendered."""
        mail = OutgoingMail(
            message_id="<out@example.com>",
            sender=EmailAddress(address="me@example.com", name="Me"),
            to=[EmailAddress(address="alice@example.com")],
            cc=[EmailAddress(address="carol@example.com")],
            bcc=[EmailAddress(address="hidden@example.com")],
            subject="Re: Project Update",
            body_text="Sounds good",
            in_reply_to="<m1@example.com>",
            references=["<root@example.com>", "<m1@example.com>"],
        )

        msg = build_mime_message(mail, date=datetime(2024, 3, 2, tzinfo=timezone.utc))

        assert msg["Message-ID"] == "<out@example.com>"
        assert msg["In-Reply-To"] == "<m1@example.com>"
        assert msg["References"] == "<root@example.com> <m1@example.com>"
        assert msg["Subject"] == "Re: Project Update"
        assert "alice@example.com" in msg["To"]
        assert "carol@example.com" in msg["Cc"]
        assert msg["Bcc"] is None
        assert msg.get_content().strip() == "Sounds good"

    def test_rendered_message_parses_back(self) -> None:
        """Test that our own output is readable by the parser."""
        mail = OutgoingMail(
            message_id="<out@example.com>",
            sender=EmailAddress(address="me@example.com"),
            to=[EmailAddress(address="alice@example.com")],
            subject="Hello",
            body_text="Plain",
            body_html="<p>Rich</p>",
        )

        parsed = parse_raw_message(build_mime_message(mail).as_bytes())

        assert parsed.message_id == "<out@example.com>"
        assert parsed.text is not None and parsed.text.strip() == "Plain"
        assert parsed.html is not None and "Rich" in parsed.html

    def test_generate_message_id_uses_domain(self) -> None:
        """Test that generated ids are bracketed and carry the sender domain."""
        message_id = generate_message_id("me@mail.example.org")

        assert message_id.startswith("<")
        assert message_id.endswith("@mail.example.org>")
        assert generate_message_id("me@mail.example.org") != message_id
