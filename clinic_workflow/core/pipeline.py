"""
Pipeline Orchestrator - Stage-gated clinical documentation workflow

Responsibilities:
- Define the workflow stages and the artifacts each one requires
- Invoke collaborators (transcription, generation, rendering, OCR)
  under an orchestrator-owned timeout
- Write each stage's output back to the ArtifactStore
- Assemble the final read-only response

Stage graph:
    Primary (audio) session:
        ingest_audio → confirm_transcript → generate_document → render_document
    Secondary (bill scan) session:
        ingest_image → confirm_ocr_text → extract_bill
    Join:
        assemble_final_response(session_id, ocr_session_id=None)

Design principles:
- A stage writes nothing until its collaborator has fully answered
- Multi-artifact stages write their gating artifact last, and roll back
  their earlier writes if a later one fails
- Transitions are monotonic: re-running an earlier stage overwrites its
  artifact but never invalidates or re-runs downstream artifacts
- No per-session lock; concurrent writes to one key are last-writer-wins
- Every failure surfaces with stage and session id attached
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from clinic_workflow.artifacts import ArtifactKey
from clinic_workflow.contracts import FinalResponse
from clinic_workflow.core.session_status import SessionStatus, SessionStatusProjector
from clinic_workflow.core.soap_generator import SOAP_NOTE_FIELD, validate_soap_data
from clinic_workflow.errors import (
    CollaboratorTimeout,
    GenerationFailure,
    IncompleteWorkflow,
    InvalidStageInput,
    PrerequisiteMissing,
    RecognitionFailure,
    RenderFailure,
    StorageFailure,
    TranscriptionFailure,
    WorkflowError,
)
from clinic_workflow.utils.bill_extractor import extract_bill_info
from clinic_workflow.utils.soap_templates import is_valid_template

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INGEST_AUDIO = "ingest_audio"
    CONFIRM_TRANSCRIPT = "confirm_transcript"
    GENERATE_DOCUMENT = "generate_document"
    RENDER_DOCUMENT = "render_document"
    INGEST_IMAGE = "ingest_image"
    CONFIRM_OCR_TEXT = "confirm_ocr_text"
    EXTRACT_BILL = "extract_bill"
    ASSEMBLE_FINAL_RESPONSE = "assemble_final_response"


@dataclass(frozen=True)
class StageResult:
    """
    Outcome of one successful stage

    Attributes:
        stage: Stage that ran
        session_id: Session the artifacts were written to
        artifacts: key string -> value for every artifact written, in write order
    """
    stage: Stage
    session_id: str
    artifacts: Dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key) -> Any:
        return self.artifacts[getattr(key, "value", key)]


class PipelineOrchestrator:
    """
    Runs workflow stages against an ArtifactStore.

    Collaborators are injected (dependency injection, no globals). Any of
    them may be None when a deployment only serves part of the workflow;
    calling a stage whose collaborator is missing raises RuntimeError.
    """

    def __init__(self, store, transcriber=None, soap_generator=None, renderer=None,
                 ocr_processor=None, timeout_seconds: float = 120.0, max_workers: int = 4):
        """
        Args:
            store: ArtifactStore
            transcriber: Object with transcribe(audio_path) -> TranscriptionResult
            soap_generator: Object with generate(transcript, template_key) -> dict
            renderer: Object with render(soap_data, template_type, session_id) -> RenderResult
            ocr_processor: Object with extract_text(image_path) -> OcrResult
            timeout_seconds: Upper bound for every collaborator call
            max_workers: Collaborator calls that may be in flight at once

        Raises:
            TypeError: If a collaborator lacks its required method
            ValueError: If timeout_seconds is not positive
        """
        self._validate_modules(transcriber, soap_generator, renderer, ocr_processor)
        if timeout_seconds is None or timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self.store = store
        self.projector = SessionStatusProjector(store)
        self.transcriber = transcriber
        self.soap_generator = soap_generator
        self.renderer = renderer
        self.ocr_processor = ocr_processor
        self.timeout_seconds = timeout_seconds

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="collaborator"
        )

        logger.info(f"Pipeline Orchestrator initialized (timeout={timeout_seconds}s)")

    def _validate_modules(self, transcriber, soap_generator, renderer, ocr_processor):
        """Validate collaborator interfaces"""
        required = (
            (transcriber, "transcriber", "transcribe"),
            (soap_generator, "soap_generator", "generate"),
            (renderer, "renderer", "render"),
            (ocr_processor, "ocr_processor", "extract_text"),
        )
        for module, name, method in required:
            if module is not None and not callable(getattr(module, method, None)):
                raise TypeError(f"{name} must have callable {method}() method")

    def shutdown(self) -> None:
        """Stop accepting collaborator calls. In-flight calls are not interrupted."""
        self._executor.shutdown(wait=False)

    # ==================== PUBLIC API ====================

    def status(self, session_id: str) -> SessionStatus:
        return self.projector.status(session_id)

    def ingest_audio(self, session_id: str, audio_path: str) -> StageResult:
        """
        Transcribe audio and store transcript_raw.

        Requires nothing. Writes audio_file, transcript_confidence,
        audio_duration, then transcript_raw.

        Raises:
            TranscriptionFailure: Unreadable/unsupported audio or model error
            CollaboratorTimeout: Transcription exceeded the deadline
            StorageFailure: Durable write failed
        """
        stage = Stage.INGEST_AUDIO
        self._require_text(stage, session_id, audio_path, "audio_path")
        collaborator = self._require_collaborator(stage, self.transcriber, "transcriber")

        result = self._invoke(stage, session_id, TranscriptionFailure,
                              collaborator.transcribe, audio_path)

        written = self._write_all(stage, session_id, (
            (ArtifactKey.AUDIO_FILE, str(audio_path)),
            (ArtifactKey.TRANSCRIPT_CONFIDENCE, result.confidence),
            (ArtifactKey.AUDIO_DURATION, result.duration),
            (ArtifactKey.TRANSCRIPT_RAW, result.text),
        ))

        logger.info(f"Audio transcribed successfully for session: {session_id}")
        return StageResult(stage, session_id, written)

    def confirm_transcript(self, session_id: str, cleaned_text: str) -> StageResult:
        """
        Store the human-corrected transcript as transcript_clean.

        transcript_raw is a soft precondition: its absence is logged,
        not enforced.

        Raises:
            InvalidStageInput: cleaned_text is not a non-empty string
            StorageFailure: Durable write failed
        """
        stage = Stage.CONFIRM_TRANSCRIPT
        self._require_text(stage, session_id, cleaned_text, "transcript_clean")

        if self.store.get(session_id, ArtifactKey.TRANSCRIPT_RAW) is None:
            logger.warning(f"Confirming transcript for {session_id} without transcript_raw")

        written = self._write_all(stage, session_id, (
            (ArtifactKey.TRANSCRIPT_CLEAN, cleaned_text),
        ))

        logger.info(f"Transcript confirmed for session: {session_id}")
        return StageResult(stage, session_id, written)

    def generate_document(self, session_id: str, template_key,
                          transcript: Optional[str] = None) -> StageResult:
        """
        Generate the SOAP document and store soap_data + template_type.

        Args:
            session_id: Primary session
            template_key: One of the SOAP template keys
            transcript: Text to generate from; defaults to the stored
                transcript_clean

        Raises:
            InvalidStageInput: Unknown template or empty transcript
            PrerequisiteMissing: No transcript given and none stored
            SchemaValidationFailure: Model output missing a required field
            GenerationFailure: Model errored
            CollaboratorTimeout: Generation exceeded the deadline
            StorageFailure: Durable write failed
        """
        stage = Stage.GENERATE_DOCUMENT
        template_key = getattr(template_key, "value", template_key)

        if not is_valid_template(template_key):
            raise InvalidStageInput(
                f"Invalid template_type: {template_key!r}",
                stage=stage.value, session_id=session_id
            )

        if transcript is None:
            transcript = self.store.get(session_id, ArtifactKey.TRANSCRIPT_CLEAN)
            if transcript is None:
                raise PrerequisiteMissing(
                    "No confirmed transcript for this session. Confirm the transcript first.",
                    missing=[ArtifactKey.TRANSCRIPT_CLEAN.value],
                    stage=stage.value, session_id=session_id
                )
        self._require_text(stage, session_id, transcript, "transcript")
        collaborator = self._require_collaborator(stage, self.soap_generator, "soap_generator")

        logger.info(f"Generating SOAP for session: {session_id}, template: {template_key}")

        soap_data = self._invoke(stage, session_id, GenerationFailure,
                                 collaborator.generate, transcript, template_key)
        try:
            validate_soap_data(soap_data)
        except WorkflowError as e:
            raise e.with_context(stage.value, session_id)

        written = self._write_all(stage, session_id, (
            (ArtifactKey.TEMPLATE_TYPE, template_key),
            (ArtifactKey.SOAP_DATA, soap_data),
        ))

        logger.info(f"SOAP generated successfully for session: {session_id}")
        return StageResult(stage, session_id, written)

    def render_document(self, session_id: str) -> StageResult:
        """
        Render the stored document and store pdf_path.

        Raises:
            PrerequisiteMissing: soap_data or template_type absent
            RenderFailure: Renderer errored
            CollaboratorTimeout: Rendering exceeded the deadline
            StorageFailure: Durable write failed
        """
        stage = Stage.RENDER_DOCUMENT
        soap_data = self.store.get(session_id, ArtifactKey.SOAP_DATA)
        template_type = self.store.get(session_id, ArtifactKey.TEMPLATE_TYPE)

        missing = [key.value for key, value in (
            (ArtifactKey.SOAP_DATA, soap_data),
            (ArtifactKey.TEMPLATE_TYPE, template_type),
        ) if not value]
        if missing:
            raise PrerequisiteMissing(
                f"Missing {', '.join(missing)} for this session. Generate the document first.",
                missing=missing, stage=stage.value, session_id=session_id
            )
        collaborator = self._require_collaborator(stage, self.renderer, "renderer")

        logger.info(f"Rendering document for session: {session_id}")

        result = self._invoke(stage, session_id, RenderFailure,
                              collaborator.render, soap_data, template_type, session_id)

        written = self._write_all(stage, session_id, (
            (ArtifactKey.PDF_PATH, result.pdf_path),
        ))

        logger.info(f"Document rendered successfully for session: {session_id}")
        return StageResult(stage, session_id, written)

    def ingest_image(self, ocr_session_id: str, image_path: str) -> StageResult:
        """
        Run OCR on a bill image and store ocr_raw.

        Writes image_file, ocr_confidence, then ocr_raw.

        Raises:
            RecognitionFailure: Unreadable/unsupported image or OCR error
            CollaboratorTimeout: OCR exceeded the deadline
            StorageFailure: Durable write failed
        """
        stage = Stage.INGEST_IMAGE
        self._require_text(stage, ocr_session_id, image_path, "image_path")
        collaborator = self._require_collaborator(stage, self.ocr_processor, "ocr_processor")

        result = self._invoke(stage, ocr_session_id, RecognitionFailure,
                              collaborator.extract_text, image_path)

        written = self._write_all(stage, ocr_session_id, (
            (ArtifactKey.IMAGE_FILE, str(image_path)),
            (ArtifactKey.OCR_CONFIDENCE, result.confidence),
            (ArtifactKey.OCR_RAW, result.text),
        ))

        logger.info(f"OCR processed successfully for session: {ocr_session_id}")
        return StageResult(stage, ocr_session_id, written)

    def confirm_ocr_text(self, ocr_session_id: str, cleaned_text: str) -> StageResult:
        """
        Store the human-corrected OCR text as ocr_clean.

        Raises:
            InvalidStageInput: cleaned_text is not a non-empty string
            StorageFailure: Durable write failed
        """
        stage = Stage.CONFIRM_OCR_TEXT
        self._require_text(stage, ocr_session_id, cleaned_text, "ocr_clean")

        if self.store.get(ocr_session_id, ArtifactKey.OCR_RAW) is None:
            logger.warning(f"Confirming OCR text for {ocr_session_id} without ocr_raw")

        written = self._write_all(stage, ocr_session_id, (
            (ArtifactKey.OCR_CLEAN, cleaned_text),
        ))

        logger.info(f"OCR text confirmed for session: {ocr_session_id}")
        return StageResult(stage, ocr_session_id, written)

    def extract_bill(self, ocr_session_id: str) -> StageResult:
        """
        Derive the bill record from OCR text (ocr_clean, else ocr_raw).

        Raises:
            PrerequisiteMissing: Neither OCR artifact exists
            StorageFailure: Durable write failed
        """
        stage = Stage.EXTRACT_BILL
        text = self._ocr_text(ocr_session_id)
        if not text:
            raise PrerequisiteMissing(
                "No OCR text for this session. Upload a bill image first.",
                missing=[ArtifactKey.OCR_RAW.value],
                stage=stage.value, session_id=ocr_session_id
            )

        bill_info = extract_bill_info(text)

        written = self._write_all(stage, ocr_session_id, (
            (ArtifactKey.BILL_INFO, bill_info.to_dict()),
        ))

        logger.info(f"Bill information extracted for session: {ocr_session_id}")
        return StageResult(stage, ocr_session_id, written)

    def assemble_final_response(self, session_id: str,
                                ocr_session_id: Optional[str] = None) -> FinalResponse:
        """
        Join a primary session (and optionally an OCR session) into one view.

        Reads only; neither session is modified.

        Raises:
            IncompleteWorkflow: transcript_clean or soap_data absent
        """
        stage = Stage.ASSEMBLE_FINAL_RESPONSE
        transcript = self.store.get(session_id, ArtifactKey.TRANSCRIPT_CLEAN)
        soap_data = self.store.get(session_id, ArtifactKey.SOAP_DATA)

        missing = [key.value for key, value in (
            (ArtifactKey.TRANSCRIPT_CLEAN, transcript),
            (ArtifactKey.SOAP_DATA, soap_data),
        ) if not value]
        if missing:
            raise IncompleteWorkflow(
                "Missing transcript or SOAP data. Complete the workflow first.",
                missing=missing, stage=stage.value, session_id=session_id
            )

        ocr_text = None
        bill_info = None
        if ocr_session_id:
            ocr_text = self._ocr_text(ocr_session_id)
            bill_info = self.store.get(ocr_session_id, ArtifactKey.BILL_INFO)

        logger.info(f"Final response assembled for session: {session_id}")

        return FinalResponse(
            session_id=session_id,
            transcript=transcript,
            soap=soap_data.get(SOAP_NOTE_FIELD),
            summary=soap_data.get("summary"),
            prescription=soap_data.get("prescription"),
            follow_up=soap_data.get("followUp"),
            next_steps=soap_data.get("nextSteps"),
            template_type=self.store.get(session_id, ArtifactKey.TEMPLATE_TYPE),
            pdf_path=self.store.get(session_id, ArtifactKey.PDF_PATH),
            ocr_session_id=ocr_session_id,
            ocr_text=ocr_text,
            bill_info=bill_info,
        )

    # ==================== INTERNALS ====================

    def _ocr_text(self, ocr_session_id: str) -> Optional[str]:
        return (self.store.get(ocr_session_id, ArtifactKey.OCR_CLEAN)
                or self.store.get(ocr_session_id, ArtifactKey.OCR_RAW))

    def _require_text(self, stage: Stage, session_id: str, value: Any, name: str) -> None:
        if not isinstance(value, str) or not value.strip():
            raise InvalidStageInput(
                f"{name} must be a non-empty string",
                stage=stage.value, session_id=session_id
            )

    def _require_collaborator(self, stage: Stage, collaborator, name: str):
        if collaborator is None:
            raise RuntimeError(f"{stage.value} requires a {name}, none configured")
        return collaborator

    def _invoke(self, stage: Stage, session_id: str, failure_cls, fn, *args):
        """
        Call a collaborator under the orchestrator's timeout.

        A timed-out call is not interrupted; its eventual result is
        discarded because nothing waits for it any more. It keeps its
        worker thread until it returns, so max_workers hung calls leave
        later calls queued, and a queued call spends its timeout waiting
        (size the pool with CLINIC_COLLABORATOR_WORKERS).

        Raises:
            CollaboratorTimeout: No answer within timeout_seconds
            WorkflowError: Raised by the collaborator, with context added
            failure_cls: Any other collaborator exception, chained
        """
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeout as e:
            future.cancel()
            logger.error(f"{stage.value} timed out after {self.timeout_seconds}s "
                         f"for session {session_id}")
            raise CollaboratorTimeout(
                f"Collaborator did not respond within {self.timeout_seconds}s",
                stage=stage.value, session_id=session_id
            ) from e
        except WorkflowError as e:
            logger.error(f"{stage.value} failed for session {session_id}: {e.message}")
            raise e.with_context(stage.value, session_id)
        except Exception as e:
            logger.error(f"{stage.value} failed for session {session_id}: {e}")
            raise failure_cls(str(e), stage=stage.value, session_id=session_id) from e

    def _write_all(self, stage: Stage, session_id: str, items) -> Dict[str, Any]:
        """
        Store artifacts in order; the last one is the stage's gating artifact.

        If any write fails, the artifacts this call already wrote are put
        back to their previous durable values (or removed if they had none),
        so the session stays in its last completed state.
        """
        previous = self.store.get_session_data(session_id)
        written = {}
        for key, value in items:
            try:
                self.store.store(session_id, key, value)
            except StorageFailure as e:
                self._roll_back(session_id, written, previous)
                raise e.with_context(stage.value, session_id)
            written[key.value] = value
        return written

    def _roll_back(self, session_id: str, written: Dict[str, Any],
                   previous: Dict[str, Any]) -> None:
        for key in reversed(list(written)):
            try:
                if key in previous:
                    self.store.store(session_id, key, previous[key])
                else:
                    self.store.delete(session_id, key)
            except StorageFailure as e:
                logger.error(f"Rollback of {key} failed for session {session_id}: {e}")
        if written:
            logger.warning(f"Rolled back {len(written)} artifact(s) for session {session_id}")
