"""
Semantic contracts for the clinical documentation workflow.

Immutable data structures passed between the orchestrator, its
collaborators and the transport layer.

Design principles:
- Frozen dataclasses (immutable after creation)
- No validation logic (contracts, not validators)
- No dependencies on storage or collaborators

Contents:
- TranscriptionResult: Speech-to-text collaborator output
- OcrResult: OCR collaborator output
- RenderResult: Document rendering collaborator output
- BillInfo: Fields extracted from bill OCR text
- FinalResponse: Read-only join of a primary and an optional OCR session

Usage:
    from clinic_workflow.contracts import TranscriptionResult, FinalResponse
"""

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class TranscriptionResult:
    """
    Output of the transcription collaborator.

    Attributes:
        text: Transcribed text
        confidence: Estimated confidence score 0-100
        duration: Audio duration in seconds, None when unknown
    """
    text: str
    confidence: float
    duration: Optional[float] = None


@dataclass(frozen=True)
class OcrResult:
    """
    Output of the OCR collaborator.

    Attributes:
        text: Cleaned recognised text
        confidence: Mean recognition confidence 0-100
    """
    text: str
    confidence: float

    @property
    def word_count(self) -> int:
        return len(self.text.split())


@dataclass(frozen=True)
class RenderResult:
    """
    Output of the rendering collaborator.

    pdf_path is a reference to the durable file, never its bytes.
    """
    pdf_path: str
    file_name: str


@dataclass(frozen=True)
class BillInfo:
    """Fields extracted from medical bill text. Empty string means not found."""
    hospital_name: str = ""
    amount: str = ""
    bill_date: str = ""
    bill_number: str = ""
    patient_name: str = ""

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class FinalResponse:
    """
    Read-only view assembled from a primary session and, optionally,
    an OCR session. Building one never mutates either session.
    """
    session_id: str
    transcript: str
    soap: Dict[str, Any]
    summary: Optional[str]
    prescription: Optional[str]
    follow_up: Optional[str]
    next_steps: Optional[str]
    template_type: Optional[str]
    pdf_path: Optional[str] = None
    ocr_session_id: Optional[str] = None
    ocr_text: Optional[str] = None
    bill_info: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
