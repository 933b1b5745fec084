"""Prompt templates for model-assisted parsing.

Every prompt asks for the same ``ParseResult`` JSON shape so that one
boundary parser (``parsers.model_output``) validates all of them.
Prompts are versioned so stored results can be traced to the wording used.
"""

from __future__ import annotations

from dataclasses import dataclass

# v1.0: Statement, screenshot and alert-email prompts share one output shape
PROMPT_VERSION = "v1.0"

JSON_ONLY = "Return ONLY valid JSON, no other text."


@dataclass
class StatementPrompt:
    """Prompt template for bank statement text (PDF text layer).

    Attributes:
        version: Prompt version.
        system_prompt: System message setting model behavior.
        user_template: Template for user message with placeholders.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You are a financial transaction parser specializing in African bank statements.

Your task is to extract transactions from bank statement text and return structured JSON.

Supported banks (Nigeria): GTBank, Access Bank, First Bank, Zenith Bank, UBA,
Kuda, Opay, Moniepoint.

Respond in JSON format:
{
    "transactions": [
        {
            "date": "YYYY-MM-DD",
            "amount": -5000.00,
            "description": "original description",
            "merchant": "extracted merchant name or null",
            "isRecurring": false,
            "type": "debit"
        }
    ],
    "bankName": "detected bank name or null",
    "accountNumber": "last 4 digits or null",
    "currency": "NGN",
    "statementPeriod": {"start": "YYYY-MM-DD", "end": "YYYY-MM-DD"}
}

Rules:
1. Debits (money out) have NEGATIVE amounts, credits (money in) POSITIVE amounts
2. Parse dates to YYYY-MM-DD regardless of input format
3. Extract merchant names from descriptions where possible
4. Flag recurring patterns (subscriptions, regular transfers)
5. Nigerian Naira (NGN) is the default currency
6. Ignore balance rows, only extract transactions
7. If uncertain about a field, use null"""

    user_template: str = """Parse the following bank statement text and extract all transactions.
{bank_line}

{json_only}

Bank Statement Text:
---
{text}
---"""

    def format_user_message(self, text: str, bank_name: str | None = None) -> str:
        """Format the user message with the statement text.

        Args:
            text: Extracted (and already truncated) statement text.
            bank_name: Bank hint from the uploader, if any.

        Returns:
            Formatted user message.
        """
        bank_line = f"Bank: {bank_name}" if bank_name else "Detect the bank from the content."
        return self.user_template.format(bank_line=bank_line, json_only=JSON_ONLY, text=text)


@dataclass
class ScreenshotPrompt:
    """Prompt template for mobile banking screenshots."""

    version: str = PROMPT_VERSION

    system_prompt: str = """You are an OCR specialist for African mobile banking screenshots.

Your task is to read banking app screenshots and extract all visible transactions.

Common apps: GTBank Mobile, Access More, FirstMobile, Zenith Mobile, UBA Mobile,
Kuda, Opay, Moniepoint.

Respond in JSON format:
{
    "transactions": [
        {
            "date": "YYYY-MM-DD",
            "amount": -2500.00,
            "description": "text from screenshot",
            "merchant": "merchant name or null",
            "isRecurring": false,
            "type": "debit",
            "confidence": 0.9
        }
    ],
    "appName": "detected app name or null",
    "currency": "NGN",
    "errors": ["any issues reading parts of the image"]
}

Rules:
1. Debits = NEGATIVE amounts, credits = POSITIVE amounts
2. Parse dates to YYYY-MM-DD
3. Include a confidence score (0.0-1.0) for each transaction
4. If text is unclear, add a note to the errors array
5. Treat a receipt image as a single transaction
6. For SMS alert screenshots, extract the transaction details"""

    def format_user_message(self, image_count: int) -> str:
        if image_count == 1:
            subject = "this banking screenshot"
        else:
            subject = f"these {image_count} banking screenshots"
        return f"Analyze {subject} and extract all visible transactions.\n\n{JSON_ONLY}"


@dataclass
class EmailAlertPrompt:
    """Prompt template for forwarded bank alert emails."""

    version: str = PROMPT_VERSION

    system_prompt: str = """You are an email parser for African bank transaction alerts.

Your task is to extract transaction details from forwarded bank alert emails
(GTBank, Access Bank, Zenith Bank, UBA, Kuda, Opay alerts).

Respond in JSON format:
{
    "transactions": [
        {
            "date": "YYYY-MM-DD",
            "amount": -5000.00,
            "description": "from email",
            "merchant": "recipient/sender name",
            "isRecurring": false,
            "type": "debit",
            "reference": "transaction reference if available"
        }
    ],
    "bankName": "detected bank",
    "accountNumber": "last 4 digits",
    "currency": "NGN"
}

Rules:
1. Debits = NEGATIVE, credits = POSITIVE
2. Parse any date format to YYYY-MM-DD
3. Extract transaction reference numbers if present
4. Distinguish "Debit Alert" from "Credit Alert" emails
5. Look for amount patterns such as NGN 5,000.00 or N5000"""

    user_template: str = """Parse this bank alert email and extract the transaction details.

Subject: {subject}

Body:
---
{body}
---

{json_only}"""

    def format_user_message(self, subject: str, body: str) -> str:
        return self.user_template.format(
            subject=subject or "(no subject)", body=body, json_only=JSON_ONLY
        )
