"""
Artifact vocabulary for session-scoped workflow storage.

Invariants:
- Every artifact written to the store is named by exactly one ArtifactKey
- At most one artifact exists per (session_id, key); writes overwrite
- PRIMARY_PATH_KEYS is the only set that drives completion percentage

Design:
- ArtifactKey is a string-based enum so records serialize as plain JSON
- ArtifactStore validates keys against VALID_KEYS (fail fast on typos)
- PipelineOrchestrator owns which keys gate which stage
"""

from enum import Enum


class ArtifactKey(str, Enum):
    """
    Closed set of artifact names a session may hold.

    Primary (audio) path:
        AUDIO_FILE, TRANSCRIPT_CONFIDENCE, AUDIO_DURATION, TRANSCRIPT_RAW
            Written by ingest_audio. TRANSCRIPT_RAW is written last.
        TRANSCRIPT_CLEAN
            Written by confirm_transcript.
        TEMPLATE_TYPE, SOAP_DATA
            Written by generate_document. SOAP_DATA is written last.
        PDF_PATH
            Written by render_document.

    Secondary (bill scan) path:
        IMAGE_FILE, OCR_CONFIDENCE, OCR_RAW
            Written by ingest_image. OCR_RAW is written last.
        OCR_CLEAN
            Written by confirm_ocr_text.
        BILL_INFO
            Written by extract_bill.
    """
    AUDIO_FILE = "audio_file"
    TRANSCRIPT_CONFIDENCE = "transcript_confidence"
    AUDIO_DURATION = "audio_duration"
    TRANSCRIPT_RAW = "transcript_raw"
    TRANSCRIPT_CLEAN = "transcript_clean"
    TEMPLATE_TYPE = "template_type"
    SOAP_DATA = "soap_data"
    PDF_PATH = "pdf_path"

    IMAGE_FILE = "image_file"
    OCR_CONFIDENCE = "ocr_confidence"
    OCR_RAW = "ocr_raw"
    OCR_CLEAN = "ocr_clean"
    BILL_INFO = "bill_info"


# Ordered: position in this tuple is position in the primary workflow
PRIMARY_PATH_KEYS = (
    ArtifactKey.TRANSCRIPT_RAW,
    ArtifactKey.TRANSCRIPT_CLEAN,
    ArtifactKey.SOAP_DATA,
    ArtifactKey.PDF_PATH,
)

SECONDARY_PATH_KEYS = (
    ArtifactKey.OCR_RAW,
    ArtifactKey.OCR_CLEAN,
)

# Single source of truth for valid key strings
VALID_KEYS = {key.value for key in ArtifactKey}


def to_artifact_key(key) -> ArtifactKey:
    """
    Coerce a key (enum member or raw string) to ArtifactKey.

    Raises:
        ValueError: If key is not part of the vocabulary
    """
    if isinstance(key, ArtifactKey):
        return key
    if key not in VALID_KEYS:
        raise ValueError(
            f"Unknown artifact key: {key!r}. Valid keys: {sorted(VALID_KEYS)}"
        )
    return ArtifactKey(key)
