"""Local text extraction for identity document images.

PyMuPDF reads the text layer of PDF uploads; images and scanned PDF pages go
through Tesseract via Pillow. Used by the offline vision service when no
vision API is configured.
"""

from __future__ import annotations

import io
import logging
import shutil
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}
PDF_CONTENT_TYPE = "application/pdf"
TESSERACT_LANG = "eng"
PDF_RENDER_DPI = 300


def _configure_tesseract() -> None:
    """Point pytesseract at the configured binary, or leave PATH lookup in place."""
    import pytesseract

    from app.core.config import settings

    if settings.TESSERACT_CMD:
        if shutil.which(settings.TESSERACT_CMD):
            pytesseract.pytesseract.tesseract_cmd = settings.TESSERACT_CMD
            logger.info("Tesseract binary configured: %s", settings.TESSERACT_CMD)
        else:
            logger.warning(
                "TESSERACT_CMD %s not found; using PATH lookup", settings.TESSERACT_CMD
            )


_configure_tesseract()


def tesseract_available() -> bool:
    import pytesseract

    return shutil.which(pytesseract.pytesseract.tesseract_cmd) is not None


@dataclass
class ExtractionResult:
    """Text pulled out of one uploaded document."""

    text: str
    page_count: int = 0
    extraction_method: str = "none"
    warnings: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def extract_text(content: bytes, content_type: str) -> ExtractionResult:
    """Route extraction by content type."""
    if content_type == PDF_CONTENT_TYPE:
        return extract_text_from_pdf(content)
    if content_type in IMAGE_CONTENT_TYPES:
        return extract_text_from_image(content)
    return ExtractionResult(
        text="",
        extraction_method="unsupported",
        warnings=[f"Unsupported content type: {content_type}"],
    )


def extract_text_from_pdf(content: bytes) -> ExtractionResult:
    import fitz  # PyMuPDF

    try:
        doc = fitz.open(stream=content, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        return ExtractionResult(
            text="", extraction_method="error", warnings=[f"Failed to open PDF: {exc}"]
        )

    with doc:
        pages_text = [
            page.get_text("text").strip()
            for page in doc
            if page.get_text("text").strip()
        ]

    if pages_text:
        return ExtractionResult(
            text="\n\n".join(pages_text),
            page_count=len(pages_text),
            extraction_method="pymupdf_text_layer",
        )

    # Scanned document without a text layer.
    return _ocr_pdf_pages(content)


def extract_text_from_image(content: bytes) -> ExtractionResult:
    from PIL import Image, UnidentifiedImageError

    try:
        image = Image.open(io.BytesIO(content))
        if image.mode not in ("L", "RGB"):
            image = image.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        return ExtractionResult(
            text="", extraction_method="error", warnings=[f"Failed to open image: {exc}"]
        )

    return _ocr_image(image)


def _ocr_image(image: object) -> ExtractionResult:
    import pytesseract

    try:
        text = pytesseract.image_to_string(image, lang=TESSERACT_LANG).strip()
    except pytesseract.TesseractNotFoundError:
        logger.warning("Tesseract OCR is not installed")
        return ExtractionResult(
            text="",
            extraction_method="ocr_unavailable",
            warnings=["Tesseract OCR is not installed"],
        )
    except pytesseract.TesseractError as exc:
        logger.warning("Tesseract OCR failed: %s", exc)
        return ExtractionResult(
            text="", extraction_method="error", warnings=[f"OCR failed: {exc}"]
        )

    if not text:
        return ExtractionResult(
            text="",
            extraction_method="tesseract_ocr",
            warnings=["Tesseract returned empty text"],
        )
    return ExtractionResult(text=text, page_count=1, extraction_method="tesseract_ocr")


def _ocr_pdf_pages(content: bytes) -> ExtractionResult:
    import fitz  # PyMuPDF
    from PIL import Image

    all_text: list[str] = []
    warnings: list[str] = []
    zoom = PDF_RENDER_DPI / 72

    with fitz.open(stream=content, filetype="pdf") as doc:
        for page in doc:
            pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
            result = _ocr_image(Image.open(io.BytesIO(pix.tobytes("png"))))
            if result.text:
                all_text.append(result.text)
            warnings.extend(result.warnings)
            if result.extraction_method == "ocr_unavailable":
                break

    full_text = "\n\n".join(all_text)
    if not full_text:
        warnings.append("No text could be extracted from scanned PDF")
    return ExtractionResult(
        text=full_text,
        page_count=len(all_text),
        extraction_method="tesseract_ocr_pdf" if full_text else "ocr_unavailable",
        warnings=warnings,
    )
