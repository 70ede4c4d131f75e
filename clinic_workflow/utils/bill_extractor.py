"""
Bill field extraction from OCR text.

Pure text-to-fields function: no I/O, no model calls. Patterns are tried
in order and the first match wins. Fields that no pattern matches are
left as empty strings.
"""

import re

from clinic_workflow.contracts import BillInfo

_HOSPITAL_KEYWORDS = re.compile(
    r"\b(hospital|hospitals|medical|clinic|healthcare|centre|center)\b", re.IGNORECASE
)

_AMOUNT_PATTERNS = (
    re.compile(r"Total\s*Amount[:\s]*Rs\.?\s*([0-9,]+(?:\.[0-9]{2})?)", re.IGNORECASE),
    re.compile(r"Total[:\s]*Rs\.?\s*([0-9,]+(?:\.[0-9]{2})?)", re.IGNORECASE),
    re.compile(r"Amount[:\s]*Rs\.?\s*([0-9,]+(?:\.[0-9]{2})?)", re.IGNORECASE),
    re.compile(r"Rs\.?\s*([0-9,]+(?:\.[0-9]{2})?)", re.IGNORECASE),
)

_DATE_PATTERNS = (
    re.compile(r"Date[:\s]*([0-9]{1,2}[-/][A-Za-z]{3}[-/][0-9]{4})", re.IGNORECASE),
    re.compile(r"Date[:\s]*([0-9]{1,2}[-/][0-9]{1,2}[-/][0-9]{4})", re.IGNORECASE),
    re.compile(r"\b([0-9]{1,2}[-/][A-Za-z]{3}[-/][0-9]{4})\b"),
    re.compile(r"\b([0-9]{1,2}[-/][0-9]{1,2}[-/][0-9]{4})\b"),
)

_BILL_NUMBER_PATTERNS = (
    re.compile(r"Bill\s*No\.?[:\s]*([A-Z0-9-]+)", re.IGNORECASE),
    re.compile(r"Invoice\s*No\.?[:\s]*([A-Z0-9-]+)", re.IGNORECASE),
    re.compile(r"Receipt\s*No\.?[:\s]*([A-Z0-9-]+)", re.IGNORECASE),
)

_PATIENT_PATTERNS = (
    re.compile(r"Patient(?:\s*Name)?[ \t]*[:\-][ \t]*([A-Za-z][A-Za-z .]*)", re.IGNORECASE),
    re.compile(r"\bName[ \t]*[:\-][ \t]*([A-Za-z][A-Za-z .]*)", re.IGNORECASE),
)


def _first_match(patterns, text: str) -> str:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return ""


def _hospital_name(text: str) -> str:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    for line in lines:
        if _HOSPITAL_KEYWORDS.search(line):
            return line
    # First line of a bill is usually the letterhead
    return lines[0] if lines else ""


def extract_bill_info(ocr_text: str) -> BillInfo:
    """
    Extract bill fields from OCR text.

    Examples:
        >>> info = extract_bill_info("Apollo Hospitals\\nBill No: APL-2025-001234\\n"
        ...                          "Total Amount: Rs. 10,500")
        >>> info.hospital_name, info.bill_number, info.amount
        ('Apollo Hospitals', 'APL-2025-001234', 'Rs. 10,500')
    """
    if not ocr_text:
        return BillInfo()

    amount = _first_match(_AMOUNT_PATTERNS, ocr_text)

    return BillInfo(
        hospital_name=_hospital_name(ocr_text),
        amount=f"Rs. {amount}" if amount else "",
        bill_date=_first_match(_DATE_PATTERNS, ocr_text),
        bill_number=_first_match(_BILL_NUMBER_PATTERNS, ocr_text),
        patient_name=_first_match(_PATIENT_PATTERNS, ocr_text),
    )
