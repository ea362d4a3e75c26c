from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

import pytesseract
from PIL import Image

from .normalizer import NormalizedImage

logger = logging.getLogger(__name__)

Recognizer = Callable[[Image.Image], str]

DISPLAY_LIMIT = 180


class OCRFailure(Exception):
    NO_TEXT_FOUND = "no_text_found"
    ENGINE_ERROR = "engine_error"

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass(frozen=True)
class RecognizedText:
    text: str

    @property
    def display_text(self) -> str:
        return self.text[:DISPLAY_LIMIT]


def tesseract_recognize(image: Image.Image) -> str:
    return pytesseract.image_to_string(image, lang="eng")


class TextExtractor:
    def __init__(self, recognizer: Recognizer | None = None) -> None:
        self._recognize = recognizer or tesseract_recognize

    def extract(self, image: NormalizedImage) -> RecognizedText:
        try:
            raw = self._recognize(image.image)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError, RuntimeError) as exc:
            logger.warning(f"OCR engine failed: {exc}")
            raise OCRFailure(OCRFailure.ENGINE_ERROR, str(exc) or "OCR engine error") from exc
        text = " ".join((raw or "").split())
        if not text:
            raise OCRFailure(OCRFailure.NO_TEXT_FOUND, "No text found in image.")
        logger.info(f"OCR text extracted: {len(text)} chars")
        return RecognizedText(text=text)
