"""Test fixtures and utilities."""

import io
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from ledger_intake.config import Config, ImportConfig, LLMConfig, StorageConfig
from ledger_intake.events import WILDCARD, DomainEvent, EventBus
from ledger_intake.llm.client import CompletionClient, CompletionResponse, CompletionUsage
from ledger_intake.services import ImportService, InlineDispatcher
from ledger_intake.state_store import StateStore
from ledger_intake.storage import LocalFileStorage

# Sample statement text as it comes out of a PDF text layer
SAMPLE_STATEMENT_LINES = [
    "Guaranty Trust Bank - Account Statement",
    "Account Number: 0123456789",
    "Period: 01-Jan-2025 to 31-Jan-2025",
    "",
    "Date         Description                          Debit       Credit",
    "10-Jan-2025  POS PURCHASE - NETFLIX               5,000.00",
    "12-Jan-2025  TRANSFER TO JOHN DOE                 20,000.00",
    "15-Jan-2025  SALARY JANUARY                                   450,000.00",
]

SAMPLE_ALERT_TEXT = """Dear Customer,

Debit Alert
Amount: NGN 5,000.00
Description: POS PURCHASE - NETFLIX
Balance: NGN 120,000.00

Thank you for banking with GTBank.
"""


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store."""
    return StateStore(temp_db)


@pytest.fixture
def storage(tmp_path) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "uploads")


@pytest.fixture
def config(tmp_path, temp_db) -> Config:
    """Config pointing every path into tmp_path."""
    return Config(
        llm=LLMConfig(enabled=True, ollama_url="http://ollama.test"),
        imports=ImportConfig(),
        storage=StorageConfig(upload_dir=tmp_path / "uploads"),
        state_db_path=temp_db,
    )


@pytest.fixture
def model_reply() -> Callable[[Any], CompletionResponse]:
    """Build a completion response; dicts are JSON-encoded."""

    def _reply(content: Any) -> CompletionResponse:
        text = content if isinstance(content, str) else json.dumps(content)
        return CompletionResponse(
            content=text,
            usage=CompletionUsage(prompt_tokens=100, completion_tokens=50),
            stop_reason="stop",
            model="test-model",
        )

    return _reply


@pytest.fixture
def fake_client() -> MagicMock:
    """Completion client double; tests set generate/generate_with_vision replies."""
    client = MagicMock(spec=CompletionClient)
    client.is_enabled = True
    return client


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    """Render text lines into a PDF with a real text layer."""

    def _make_pdf(*pages: list[str]) -> bytes:
        buffer = io.BytesIO()
        pdf = canvas.Canvas(buffer, pagesize=A4)
        for lines in pages or ([],):
            y = 800
            for line in lines:
                pdf.drawString(40, y, line)
                y -= 16
            pdf.showPage()
        pdf.save()
        return buffer.getvalue()

    return _make_pdf


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def published(events) -> list[DomainEvent]:
    """Every event published on the ``events`` bus."""
    received: list[DomainEvent] = []
    events.subscribe(WILDCARD, received.append)
    return received


@pytest.fixture
def service(config, fake_client, events) -> ImportService:
    """Import service that processes jobs inline."""
    svc = ImportService.from_config(
        config, dispatcher=InlineDispatcher(), client=fake_client, events=events
    )
    yield svc
    svc.close()


@pytest.fixture
def statement_lines() -> list[str]:
    """Sample statement text lines."""
    return list(SAMPLE_STATEMENT_LINES)


@pytest.fixture
def alert_text() -> str:
    """Sample forwarded debit alert body."""
    return SAMPLE_ALERT_TEXT
