"""Tests for the forwarded alert email parser."""

import base64
import logging
from decimal import Decimal

import pytest

from ledger_intake.errors import CompletionUnavailableError
from ledger_intake.parsers.csv_parser import CsvParser
from ledger_intake.parsers.email_parser import (
    EmailAttachment,
    EmailContent,
    EmailParser,
    detect_bank,
    looks_like_bank_alert,
    strip_html,
)
from ledger_intake.parsers.pdf_parser import PdfParser

ALERT_REPLY = {
    "transactions": [
        {
            "date": "2025-01-10",
            "amount": -5000,
            "description": "POS PURCHASE - NETFLIX",
            "merchant": "Netflix",
            "isRecurring": True,
            "type": "debit",
            "confidence": 0.95,
        }
    ],
    "bankName": "GTBank",
    "currency": "NGN",
}

CSV_ATTACHMENT = "date,amount,description\n2025-01-11,-1200,UBER TRIP\n2025-01-12,-800,BOLT RIDE\n"


@pytest.fixture
def parser(fake_client) -> EmailParser:
    return EmailParser(fake_client, CsvParser(), PdfParser(fake_client))


def _email(**overrides) -> EmailContent:
    fields = {
        "from_address": "alerts@gtbank.com",
        "to": ["intake-abc12345@import.ledger-intake.app"],
        "subject": "GTBank Debit Alert",
    }
    fields.update(overrides)
    return EmailContent(**fields)


def _csv_attachment() -> EmailAttachment:
    return EmailAttachment(
        filename="statement.csv",
        content_type="text/csv",
        content=base64.b64encode(CSV_ATTACHMENT.encode()).decode(),
    )


class TestHelpers:
    """Tests for alert detection and text cleanup."""

    def test_alert_detection(self, alert_text):
        assert looks_like_bank_alert("", alert_text)
        assert looks_like_bank_alert("Credit Alert", "")
        assert looks_like_bank_alert("", "₦ 12,000 was sent")
        assert not looks_like_bank_alert("Lunch on Friday?", "Are you free at noon?")

    def test_strip_html(self):
        html = "<html><style>p {color: red}</style><p>Debit&nbsp;Alert</p><script>x()</script><b>NGN 500</b></html>"
        assert strip_html(html) == "Debit&nbsp;Alert NGN 500"

    def test_detect_bank(self):
        assert detect_bank(_email()) == "GTBank"
        assert detect_bank(_email(from_address="noreply@uba.com", subject="Alert")) == "UBA"
        assert detect_bank(_email(from_address="me@example.com", subject="Fwd")) is None

    def test_from_dict(self):
        email = EmailContent.from_dict(
            {
                "from": "alerts@kuda.com",
                "to": "intake-abc12345@import.ledger-intake.app",
                "subject": None,
                "text": "Debit alert",
                "attachments": [
                    {"filename": "a.csv", "content_type": "text/csv", "content": "ZGF0ZQ=="}
                ],
            }
        )
        assert email.to == ["intake-abc12345@import.ledger-intake.app"]
        assert email.subject == ""
        assert email.attachments[0].decode() == b"date"


class TestEmailParser:
    """Tests for merging body and attachment sources."""

    def test_alert_body(self, parser, fake_client, model_reply, alert_text):
        fake_client.generate.return_value = model_reply(ALERT_REPLY)
        result = parser.parse(_email(text=alert_text))

        assert len(result.transactions) == 1
        assert result.transactions[0].amount == Decimal("-5000")
        assert result.bank_name == "GTBank"

        message = fake_client.generate.call_args.args[0][0]["content"]
        assert "GTBank Debit Alert" in message
        assert "POS PURCHASE - NETFLIX" in message

    def test_html_body_used_when_no_text(self, parser, fake_client, model_reply):
        fake_client.generate.return_value = model_reply(ALERT_REPLY)
        parser.parse(_email(html="<p>Debit Alert</p><p>NGN 5,000.00</p>"))

        message = fake_client.generate.call_args.args[0][0]["content"]
        assert "<p>" not in message
        assert "Debit Alert" in message

    def test_non_alert_body_skips_model(self, parser, fake_client):
        result = parser.parse(_email(subject="Dinner", text="See you at eight."))

        assert result.transactions == []
        fake_client.generate.assert_not_called()

    def test_csv_attachment(self, parser, fake_client):
        result = parser.parse(_email(subject="Statement", text="", attachments=[_csv_attachment()]))

        assert [t.amount for t in result.transactions] == [Decimal("-1200"), Decimal("-800")]
        fake_client.generate.assert_not_called()

    def test_failed_body_does_not_lose_attachment(self, parser, fake_client, alert_text, caplog):
        fake_client.generate.side_effect = CompletionUnavailableError("down")
        with caplog.at_level(logging.WARNING):
            result = parser.parse(_email(text=alert_text, attachments=[_csv_attachment()]))

        assert len(result.transactions) == 2
        assert "Email body parsing failed" in caplog.text
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Email parsing failed: AI parsing failed")

    def test_malformed_body_reply_kept_in_errors(self, parser, fake_client, model_reply, alert_text):
        fake_client.generate.return_value = model_reply({"bankName": "GTBank"})

        result = parser.parse(_email(text=alert_text))

        assert result.transactions == []
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Email parsing failed: ")
        assert "missing the transactions array" in result.errors[0]

    def test_bad_attachment_logged(self, parser, caplog):
        broken = EmailAttachment(
            filename="broken.csv",
            content_type="text/csv",
            content=base64.b64encode(b"foo,bar\n1,2\n").decode(),
        )
        with caplog.at_level(logging.WARNING):
            result = parser.parse(_email(subject="Statement", attachments=[broken]))

        assert result.transactions == []
        assert "broken.csv" in caplog.text
        assert result.errors[0].startswith("broken.csv: CSV parsing failed")

    def test_unsupported_attachment_skipped(self, parser):
        image = EmailAttachment(filename="logo.png", content_type="image/png", content="AAAA")
        assert parser.parse_attachment(image) is None

    def test_bank_detected_from_sender(self, parser):
        email = _email(
            from_address="statements@zenithbank.com",
            subject="Statement",
            attachments=[_csv_attachment()],
        )
        result = parser.parse(email)
        assert result.bank_name == "Zenith Bank"
