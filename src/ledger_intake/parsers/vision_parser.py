"""
Screenshot parser.

Sends mobile banking screenshots, receipts or SMS alert captures to the
vision model in one multimodal call. Every row carries a confidence; rows
under the floor are dropped before normalization.
"""

import logging
from collections.abc import Sequence

from ..errors import CompletionError, VisionError
from ..llm.client import CompletionClient, VisionImage
from ..llm.prompts import ScreenshotPrompt
from ..schemas.transactions import ParseResult
from .model_output import load_parse_result

logger = logging.getLogger(__name__)

MIME_ALIASES = {
    "image/png": "image/png",
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/gif": "image/gif",
    "image/webp": "image/webp",
}

MAX_IMAGE_BYTES = 20 * 1024 * 1024
DEFAULT_CONFIDENCE = 0.5


def prepare_image(image: VisionImage, index: int) -> VisionImage:
    """Validate one image and canonicalize its MIME type."""
    mime_type = MIME_ALIASES.get((image.mime_type or "").lower())
    if mime_type is None:
        raise VisionError(
            f"Image {index + 1} has unsupported type: {image.mime_type}. "
            "Supported: PNG, JPEG, GIF, WebP"
        )
    if not image.data:
        raise VisionError(f"Image {index + 1} is empty")
    if len(image.data) > MAX_IMAGE_BYTES:
        raise VisionError(
            f"Image {index + 1} is too large ({len(image.data) / 1024 / 1024:.2f}MB). Maximum: 20MB"
        )
    return VisionImage(data=image.data, mime_type=mime_type)


class VisionParser:
    """Model-assisted screenshot parsing."""

    def __init__(
        self,
        client: CompletionClient,
        confidence_floor: float = 0.3,
        max_tokens: int = 4096,
        default_currency: str = "NGN",
    ):
        self.client = client
        self.confidence_floor = confidence_floor
        self.max_tokens = max_tokens
        self.default_currency = default_currency
        self.prompt = ScreenshotPrompt()

    def parse(self, images: Sequence[VisionImage]) -> ParseResult:
        """
        Parse one or more screenshots.

        Raises:
            VisionError: Invalid image, model unavailable or malformed output.
        """
        prepared = [prepare_image(image, i) for i, image in enumerate(images)]
        if not prepared:
            raise VisionError("No valid images to process")

        if not self.client.is_enabled:
            raise VisionError("AI service is not available. Please try again later.")

        try:
            response = self.client.generate_with_vision(
                self.prompt.format_user_message(len(prepared)),
                prepared,
                max_tokens=self.max_tokens,
                system_prompt=self.prompt.system_prompt,
            )
        except CompletionError as e:
            raise VisionError(f"AI vision parsing failed: {e}") from e

        result = load_parse_result(
            response.content,
            VisionError,
            bank_key="appName",
            default_currency=self.default_currency,
            confidence_floor=self.confidence_floor,
            default_confidence=DEFAULT_CONFIDENCE,
        )
        if result.errors:
            logger.warning("Vision OCR warnings: %s", "; ".join(result.errors))

        logger.info(
            "Vision parsed %d transactions from %d images", len(result.transactions), len(prepared)
        )
        return result
