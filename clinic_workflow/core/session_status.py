"""
Session Status - Deterministic workflow view derived from stored artifacts.

Purpose:
    Collapses the set of artifacts present for a session into a finite
    WorkflowStage plus the completion metrics shown to clients.

Scope:
    This module does NOT:
    - Write artifacts
    - Run stages
    - Cache anything (status is recomputed on every call)

    This module ONLY:
    - Reads the durable artifact set for a session
    - Produces a SessionStatus

Design Constraints:
    - project_status() is pure and total
    - SessionStatusProjector.status() never raises; on an internal error
      it returns a degraded status (completion 0, error set)
    - OCR artifacts are reported but never counted toward completion
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from clinic_workflow.artifacts import ArtifactKey, PRIMARY_PATH_KEYS

logger = logging.getLogger(__name__)


class WorkflowStage(str, Enum):
    """
    Position of a primary (audio) session in its workflow.

    EMPTY → TRANSCRIBED → TRANSCRIPT_CONFIRMED → DOCUMENT_GENERATED → RENDERED

    The furthest artifact present decides the stage. Re-running an
    earlier stage never moves a session backwards.
    """
    EMPTY = "empty"
    TRANSCRIBED = "transcribed"
    TRANSCRIPT_CONFIRMED = "transcript_confirmed"
    DOCUMENT_GENERATED = "document_generated"
    RENDERED = "rendered"


# Checked furthest-first
_STAGE_BY_KEY = (
    (ArtifactKey.PDF_PATH, WorkflowStage.RENDERED),
    (ArtifactKey.SOAP_DATA, WorkflowStage.DOCUMENT_GENERATED),
    (ArtifactKey.TRANSCRIPT_CLEAN, WorkflowStage.TRANSCRIPT_CONFIRMED),
    (ArtifactKey.TRANSCRIPT_RAW, WorkflowStage.TRANSCRIBED),
)

_NEXT_STEP = {
    WorkflowStage.EMPTY: "ingest_audio",
    WorkflowStage.TRANSCRIBED: "confirm_transcript",
    WorkflowStage.TRANSCRIPT_CONFIRMED: "generate_document",
    WorkflowStage.DOCUMENT_GENERATED: "render_document",
    WorkflowStage.RENDERED: None,
}


@dataclass(frozen=True)
class SessionStatus:
    """
    Advisory completion view of one session.

    Attributes:
        session_id: Session identifier
        stage: Furthest primary-path stage reached
        has_transcript_raw / has_transcript_clean / has_soap_data / has_pdf:
            Presence of the four primary-path artifacts
        has_ocr_raw / has_ocr_clean: Presence of OCR artifacts (not counted)
        template_type: Chosen template key, if any
        completion_percentage: round(primary artifacts present / 4 * 100)
        error: Set only on a degraded status
    """
    session_id: str
    stage: WorkflowStage = WorkflowStage.EMPTY
    has_transcript_raw: bool = False
    has_transcript_clean: bool = False
    has_soap_data: bool = False
    has_pdf: bool = False
    has_ocr_raw: bool = False
    has_ocr_clean: bool = False
    template_type: Optional[str] = None
    completion_percentage: int = 0
    error: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.completion_percentage == 100

    @property
    def next_step(self) -> Optional[str]:
        """Name of the orchestrator operation that resumes this session"""
        if self.error is not None:
            return None
        return _NEXT_STEP[self.stage]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        data["next_step"] = self.next_step
        if self.error is None:
            del data["error"]
        return data


def _present(data: Mapping[str, Any], key: ArtifactKey) -> bool:
    # Empty strings and empty documents count as absent
    return bool(data.get(key.value))


def completion_percentage(data: Mapping[str, Any]) -> int:
    """Percentage of primary-path artifacts present, rounded to nearest integer"""
    present = sum(1 for key in PRIMARY_PATH_KEYS if _present(data, key))
    return int(present * 100 / len(PRIMARY_PATH_KEYS) + 0.5)


def derive_stage(data: Mapping[str, Any]) -> WorkflowStage:
    for key, stage in _STAGE_BY_KEY:
        if _present(data, key):
            return stage
    return WorkflowStage.EMPTY


def project_status(session_id: str, data: Mapping[str, Any]) -> SessionStatus:
    """
    Build a SessionStatus from a session's artifact mapping.

    Pure function: same mapping always gives the same status.

    Examples:
        >>> project_status("s1", {"transcript_raw": "uh chest pain"}).completion_percentage
        25
        >>> project_status("s1", {}).stage
        <WorkflowStage.EMPTY: 'empty'>
    """
    return SessionStatus(
        session_id=session_id,
        stage=derive_stage(data),
        has_transcript_raw=_present(data, ArtifactKey.TRANSCRIPT_RAW),
        has_transcript_clean=_present(data, ArtifactKey.TRANSCRIPT_CLEAN),
        has_soap_data=_present(data, ArtifactKey.SOAP_DATA),
        has_pdf=_present(data, ArtifactKey.PDF_PATH),
        has_ocr_raw=_present(data, ArtifactKey.OCR_RAW),
        has_ocr_clean=_present(data, ArtifactKey.OCR_CLEAN),
        template_type=data.get(ArtifactKey.TEMPLATE_TYPE.value) or None,
        completion_percentage=completion_percentage(data),
    )


class SessionStatusProjector:
    """Read-only status view over an ArtifactStore"""

    def __init__(self, store):
        self.store = store

    def status(self, session_id: str) -> SessionStatus:
        """
        Compute status from the current durable artifact set.

        Never raises. Status is UI-facing and must not block callers.
        """
        try:
            data = self.store.get_session_data(session_id)
            return project_status(session_id, data)
        except Exception as e:
            logger.error(f"Error getting session status for {session_id}: {e}")
            return SessionStatus(
                session_id=session_id,
                completion_percentage=0,
                error=str(e),
            )
