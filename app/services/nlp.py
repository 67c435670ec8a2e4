"""Identity field parsing for text read off identity documents.

Regex rules only. Recognises the document type, the document number for
that type, the holder's name, birth and expiry dates and nationality.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime

from app.models import DocumentType


@dataclass
class ExtractedIdentity:
    """Identity fields found in document text. Unknown values stay ``None``."""

    document_type: str | None = None
    document_type_confidence: float = 0.0
    document_number: str | None = None
    full_name: str | None = None
    date_of_birth: date | None = None
    expiry_date: date | None = None
    nationality: str | None = None
    dates: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pattern definitions
# ---------------------------------------------------------------------------

_DOCUMENT_NUMBER_PATTERNS: dict[str, str] = {
    DocumentType.NATIONAL_ID.value: r"\b\d{8,10}\b",
    DocumentType.DRIVERS_LICENSE.value: r"\b[A-Z]{1,2}\d{6,9}\b",
    DocumentType.PNG_PASSPORT.value: r"\b[A-Z]\d{7,8}\b",
    DocumentType.INTERNATIONAL_PASSPORT.value: r"\b[A-Z]\d{7,8}\b",
}

_DATE_PATTERN = r"\b(\d{1,2}[./\-]\d{1,2}[./\-]\d{4}|\d{4}-\d{1,2}-\d{1,2})\b"

_LABELLED_NAME_PATTERNS = [
    r"(?:full\s+)?name[ \t]*:[ \t]*(.+)",
    r"(?:surname|given\s+names?)[ \t]*:[ \t]*(.+)",
]
_LABELLED_DOB_PATTERN = (
    r"(?:date\s+of\s+birth|birth\s+date|d\.?o\.?b\.?)\s*[:\-]?\s*"
    r"(\d{1,2}[./\-]\d{1,2}[./\-]\d{4}|\d{4}-\d{1,2}-\d{1,2})"
)
_LABELLED_EXPIRY_PATTERN = (
    r"(?:date\s+of\s+expiry|expiry\s+date|expires|valid\s+until)\s*[:\-]?\s*"
    r"(\d{1,2}[./\-]\d{1,2}[./\-]\d{4}|\d{4}-\d{1,2}-\d{1,2})"
)
_NATIONALITY_PATTERN = r"nationality[ \t]*:[ \t]*([A-Za-z ]+)"

_TITLE_CASE_NAME = re.compile(r"^[A-Z][a-z]+(?: [A-Z][a-z]+){1,3}$")
_UPPER_CASE_NAME = re.compile(r"^[A-Z]+(?: [A-Z]+){1,3}$")

# Upper-case header lines that look like names but are not.
_NON_NAME_LINES = {
    "PAPUA NEW GUINEA",
    "NATIONAL ID",
    "NATIONAL IDENTITY CARD",
    "IDENTITY CARD",
    "DRIVER LICENSE",
    "DRIVERS LICENSE",
    "DRIVER LICENCE",
    "DRIVERS LICENCE",
}


def detect_document_type(text: str) -> tuple[str | None, float]:
    """Guess the document type from its wording. Returns ``(type, confidence)``."""
    lowered = text.lower()
    if "national id" in lowered or "identity card" in lowered or re.search(r"\bnid\b", lowered):
        return DocumentType.NATIONAL_ID.value, 0.9
    if "driver" in lowered or "license" in lowered or "licence" in lowered:
        return DocumentType.DRIVERS_LICENSE.value, 0.9
    if "passport" in lowered:
        if "papua" in lowered or "new guinea" in lowered or re.search(r"\bpng\b", lowered):
            return DocumentType.PNG_PASSPORT.value, 0.9
        return DocumentType.INTERNATIONAL_PASSPORT.value, 0.8
    return None, 0.1


def parse_identity_fields(text: str, document_type: str | None = None) -> ExtractedIdentity:
    """Extract identity fields from OCR text.

    ``document_type`` selects the document number pattern; when omitted the
    type detected from the text is used.
    """
    if not text or not text.strip():
        return ExtractedIdentity(document_type=document_type)

    detected_type, type_confidence = detect_document_type(text)
    result = ExtractedIdentity(
        document_type=document_type or detected_type,
        document_type_confidence=1.0 if document_type else type_confidence,
    )
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    number_pattern = _DOCUMENT_NUMBER_PATTERNS.get(result.document_type or "")
    if number_pattern:
        for line in lines:
            match = re.search(number_pattern, line)
            if match:
                result.document_number = match.group()
                break

    result.full_name = _find_name(text, lines)

    result.dates = _dedupe(re.findall(_DATE_PATTERN, text))
    parsed_dates = sorted(d for d in (parse_date_flexible(s) for s in result.dates) if d)

    dob_match = re.search(_LABELLED_DOB_PATTERN, text, re.IGNORECASE)
    expiry_match = re.search(_LABELLED_EXPIRY_PATTERN, text, re.IGNORECASE)
    result.date_of_birth = parse_date_flexible(dob_match.group(1)) if dob_match else None
    result.expiry_date = parse_date_flexible(expiry_match.group(1)) if expiry_match else None

    # Unlabelled documents: earliest date is the birth date, latest the expiry.
    if result.date_of_birth is None and parsed_dates:
        result.date_of_birth = parsed_dates[0]
    if result.expiry_date is None and len(parsed_dates) > 1:
        result.expiry_date = parsed_dates[-1]

    nationality_match = re.search(_NATIONALITY_PATTERN, text, re.IGNORECASE)
    if nationality_match:
        result.nationality = nationality_match.group(1).strip().title()
    elif result.document_type == DocumentType.PNG_PASSPORT.value:
        result.nationality = "Papua New Guinea"

    return result


def parse_date_flexible(date_str: str) -> date | None:
    """Parse DD.MM.YYYY, DD/MM/YYYY, DD-MM-YYYY or YYYY-MM-DD. ``None`` if unparseable."""
    date_str = date_str.strip()
    if not date_str:
        return None
    for fmt in ("%d.%m.%Y", "%d/%m/%Y", "%d-%m-%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue
    return None


def _find_name(text: str, lines: list[str]) -> str | None:
    for pattern in _LABELLED_NAME_PATTERNS:
        match = re.search(pattern, text, re.IGNORECASE)
        if match and match.group(1).strip():
            return _title_case(match.group(1).strip())

    for line in lines:
        if line.upper() in _NON_NAME_LINES:
            continue
        if _TITLE_CASE_NAME.match(line):
            return line
        if _UPPER_CASE_NAME.match(line):
            return _title_case(line)
    return None


def _title_case(value: str) -> str:
    return " ".join(word.capitalize() for word in value.split())


def _dedupe(items: list[str]) -> list[str]:
    """Remove duplicates while preserving order."""
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        normalized = item.strip().lower()
        if normalized not in seen:
            seen.add(normalized)
            result.append(item.strip())
    return result
