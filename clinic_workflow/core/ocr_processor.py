"""
OCR Processor - Image-to-text collaborator for scanned bills and receipts

Responsibilities:
- Validate image file existence and format
- Recognise text with Tesseract
- Normalise whitespace
- Report mean word confidence (0-100)
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict

import pytesseract
from PIL import Image, UnidentifiedImageError

from clinic_workflow.contracts import OcrResult
from clinic_workflow.errors import RecognitionFailure

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_FORMATS = (".png", ".jpg", ".jpeg", ".gif", ".bmp", ".tiff", ".webp")


def is_supported_image(file_path) -> bool:
    return Path(file_path).suffix.lower() in SUPPORTED_IMAGE_FORMATS


def clean_extracted_text(raw_text: str) -> str:
    """Collapse runs of spaces per line and drop blank lines"""
    if not raw_text or not isinstance(raw_text, str):
        return ""
    lines = (re.sub(r"[ \t]+", " ", line).strip() for line in raw_text.splitlines())
    return "\n".join(line for line in lines if line)


def assess_text_quality(text: str, confidence: float) -> Dict[str, Any]:
    """
    Rough quality grade for OCR output.

    Bands: poor < 70 <= fair < 85 <= good < 95 <= excellent
    """
    if confidence < 70:
        quality = "poor"
    elif confidence < 85:
        quality = "fair"
    elif confidence < 95:
        quality = "good"
    else:
        quality = "excellent"

    return {
        "confidence": confidence,
        "length": len(text),
        "word_count": len(text.split()),
        "has_numbers": bool(re.search(r"\d", text)),
        "quality": quality,
    }


class OCRProcessor:
    """Extract text from images with Tesseract"""

    def __init__(self, language: str = "eng"):
        self.language = language
        logger.info(f"OCR Processor initialized (language={language})")

    def extract_text(self, image_path) -> OcrResult:
        """
        Recognise text in one image.

        Raises:
            RecognitionFailure: Missing, unsupported or unreadable image,
                or no text recognised
        """
        path = Path(image_path)
        if not path.is_file():
            raise RecognitionFailure(f"Image file not found: {image_path}")
        if not is_supported_image(path):
            raise RecognitionFailure(
                f"Unsupported image format: {path.suffix}. "
                f"Supported: {', '.join(SUPPORTED_IMAGE_FORMATS)}"
            )

        logger.info(f"Processing image with OCR: {path.name}")

        try:
            with Image.open(path) as image:
                image.load()
                data = pytesseract.image_to_data(
                    image, lang=self.language, output_type=pytesseract.Output.DICT
                )
                raw_text = pytesseract.image_to_string(image, lang=self.language)
        except (UnidentifiedImageError, OSError) as e:
            raise RecognitionFailure(f"Unreadable image {path.name}: {e}") from e

        text = clean_extracted_text(raw_text)
        if not text:
            raise RecognitionFailure(f"No text recognised in {path.name}")

        # Tesseract reports -1 for non-word boxes
        word_confidences = [float(c) for c in data.get("conf", []) if float(c) >= 0]
        confidence = sum(word_confidences) / len(word_confidences) if word_confidences else 0.0

        logger.info(f"OCR completed: {len(text)} characters, confidence {confidence:.2f}%")
        return OcrResult(text=text, confidence=round(confidence, 2))
