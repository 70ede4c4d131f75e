"""
Unit tests for PipelineOrchestrator

Tests stage gating, artifact writes and failure propagation with
mocked collaborators and a real ArtifactStore in a temp directory.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import threading

import pytest

from clinic_workflow.artifacts import ArtifactKey
from clinic_workflow.contracts import OcrResult, RenderResult, TranscriptionResult
from clinic_workflow.core.pipeline import PipelineOrchestrator, Stage, StageResult
from clinic_workflow.core.session_status import WorkflowStage
from clinic_workflow.errors import (
    CollaboratorTimeout,
    GenerationFailure,
    IncompleteWorkflow,
    InvalidStageInput,
    PrerequisiteMissing,
    RecognitionFailure,
    RenderFailure,
    SchemaValidationFailure,
    StorageFailure,
    TranscriptionFailure,
    WorkflowError,
)
from clinic_workflow.persistence import ArtifactStore


VALID_SOAP = {
    "SOAP_Note": {
        "Subjective": "Chest pain for two days",
        "Objective": "BP 130/85, HR 78",
        "Assessment": "Likely musculoskeletal chest pain",
        "Plan": "Analgesia and review",
    },
    "summary": "Musculoskeletal chest pain, analgesia prescribed",
    "prescription": "Paracetamol 500mg every 6 hours for 5 days",
    "followUp": "Review in one week",
    "nextSteps": "ECG if pain worsens",
}

BILL_TEXT = """City Care Hospital
Bill No: CCH-2025-0042
Date: 12/03/2025
Patient Name: Ravi Kumar
Total Amount: Rs. 4,250.00"""


# ========================
# Mock Modules
# ========================

class MockTranscriber:
    """Mock transcription collaborator"""

    def __init__(self, text="uh patient has chest pain", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe(self, audio_path):
        self.calls.append(audio_path)
        if self.error:
            raise self.error
        return TranscriptionResult(text=self.text, confidence=82.0, duration=12.5)


class MockSoapGenerator:
    """Mock document generator returning a fixed document"""

    def __init__(self, document=None, error=None):
        self.document = VALID_SOAP if document is None else document
        self.error = error
        self.calls = []

    def generate(self, transcript, template_key):
        self.calls.append((transcript, template_key))
        if self.error:
            raise self.error
        return dict(self.document)


class MockRenderer:
    """Mock PDF renderer"""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def render(self, soap_data, template_type, session_id):
        self.calls.append((soap_data, template_type, session_id))
        if self.error:
            raise self.error
        return RenderResult(pdf_path=f"/out/{session_id}.pdf", file_name=f"{session_id}.pdf")


class MockOCRProcessor:
    """Mock OCR collaborator"""

    def __init__(self, text=BILL_TEXT, error=None):
        self.text = text
        self.error = error

    def extract_text(self, image_path):
        if self.error:
            raise self.error
        return OcrResult(text=self.text, confidence=91.0)


class BlockingSoapGenerator:
    """Generator that never answers until released"""

    def __init__(self):
        self.release = threading.Event()

    def generate(self, transcript, template_key):
        self.release.wait(5)
        return dict(VALID_SOAP)


class FailingStore(ArtifactStore):
    """Store whose writes fail for one key"""

    def __init__(self, base_dir, failing_key):
        super().__init__(base_dir)
        self.failing_key = failing_key

    def store(self, session_id, key, value):
        if key == self.failing_key:
            raise StorageFailure("disk full", session_id=session_id)
        super().store(session_id, key, value)


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(str(tmp_path / "sessions"))


def make_orchestrator(store, **overrides):
    modules = {
        "transcriber": MockTranscriber(),
        "soap_generator": MockSoapGenerator(),
        "renderer": MockRenderer(),
        "ocr_processor": MockOCRProcessor(),
    }
    modules.update(overrides)
    return PipelineOrchestrator(store=store, timeout_seconds=2.0, **modules)


# ========================
# Construction
# ========================

def test_rejects_collaborator_without_method(store):
    with pytest.raises(TypeError):
        PipelineOrchestrator(store=store, transcriber=object())


def test_rejects_non_positive_timeout(store):
    with pytest.raises(ValueError):
        PipelineOrchestrator(store=store, timeout_seconds=0)


def test_missing_collaborator_raises_runtime_error(store):
    orchestrator = PipelineOrchestrator(store=store)
    with pytest.raises(RuntimeError):
        orchestrator.ingest_audio("s1", "/tmp/visit.wav")


# ========================
# Primary path
# ========================

def test_ingest_audio_writes_transcript(store):
    orchestrator = make_orchestrator(store)

    result = orchestrator.ingest_audio("s1", "/tmp/visit.wav")

    assert isinstance(result, StageResult)
    assert result.stage == Stage.INGEST_AUDIO
    assert result[ArtifactKey.TRANSCRIPT_RAW] == "uh patient has chest pain"
    assert list(result.artifacts)[-1] == "transcript_raw"
    assert store.get("s1", ArtifactKey.TRANSCRIPT_RAW) == "uh patient has chest pain"
    assert store.get("s1", ArtifactKey.TRANSCRIPT_CONFIDENCE) == 82.0
    assert store.get("s1", ArtifactKey.AUDIO_DURATION) == 12.5
    assert orchestrator.status("s1").stage == WorkflowStage.TRANSCRIBED


def test_full_primary_path(store):
    orchestrator = make_orchestrator(store)

    orchestrator.ingest_audio("s1", "/tmp/visit.wav")
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.generate_document("s1", "Cardiology SOAP")
    orchestrator.render_document("s1")

    status = orchestrator.status("s1")
    assert status.completion_percentage == 100
    assert status.stage == WorkflowStage.RENDERED
    assert store.get("s1", ArtifactKey.PDF_PATH) == "/out/s1.pdf"


def test_confirm_transcript_without_raw_is_allowed(store):
    orchestrator = make_orchestrator(store)
    orchestrator.confirm_transcript("s1", "Typed in by the doctor")
    assert store.get("s1", ArtifactKey.TRANSCRIPT_CLEAN) == "Typed in by the doctor"


@pytest.mark.parametrize("text", ["", "   ", None])
def test_confirm_transcript_rejects_empty_text(store, text):
    orchestrator = make_orchestrator(store)
    with pytest.raises(InvalidStageInput):
        orchestrator.confirm_transcript("s1", text)
    assert store.get_session_data("s1") == {}


def test_generate_document_uses_stored_transcript(store):
    generator = MockSoapGenerator()
    orchestrator = make_orchestrator(store, soap_generator=generator)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    result = orchestrator.generate_document("s1", "Cardiology SOAP")

    assert generator.calls == [("Patient has chest pain.", "Cardiology SOAP")]
    assert result[ArtifactKey.TEMPLATE_TYPE] == "Cardiology SOAP"
    assert list(result.artifacts) == ["template_type", "soap_data"]
    assert store.get("s1", ArtifactKey.SOAP_DATA)["summary"] == VALID_SOAP["summary"]


def test_generate_document_with_explicit_transcript(store):
    generator = MockSoapGenerator()
    orchestrator = make_orchestrator(store, soap_generator=generator)

    orchestrator.generate_document("s1", "Practice SOAP", transcript="Fever for three days")

    assert generator.calls == [("Fever for three days", "Practice SOAP")]


def test_generate_document_without_transcript(store):
    orchestrator = make_orchestrator(store)
    with pytest.raises(PrerequisiteMissing) as exc_info:
        orchestrator.generate_document("s1", "Cardiology SOAP")
    assert exc_info.value.missing == ("transcript_clean",)


def test_generate_document_unknown_template(store):
    generator = MockSoapGenerator()
    orchestrator = make_orchestrator(store, soap_generator=generator)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    with pytest.raises(InvalidStageInput):
        orchestrator.generate_document("s1", "Astrology SOAP")
    assert generator.calls == []


def test_schema_failure_writes_nothing(store):
    partial = dict(VALID_SOAP)
    del partial["prescription"]
    orchestrator = make_orchestrator(store, soap_generator=MockSoapGenerator(document=partial))
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    with pytest.raises(SchemaValidationFailure) as exc_info:
        orchestrator.generate_document("s1", "Cardiology SOAP")

    assert "prescription" in str(exc_info.value)
    assert exc_info.value.stage == "generate_document"
    assert exc_info.value.session_id == "s1"
    assert store.get("s1", ArtifactKey.SOAP_DATA) is None
    assert store.get("s1", ArtifactKey.TEMPLATE_TYPE) is None
    assert orchestrator.status("s1").completion_percentage == 25


def test_render_without_document(store):
    renderer = MockRenderer()
    orchestrator = make_orchestrator(store, renderer=renderer)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    with pytest.raises(PrerequisiteMissing) as exc_info:
        orchestrator.render_document("s1")

    assert set(exc_info.value.missing) == {"soap_data", "template_type"}
    assert exc_info.value.stage == "render_document"
    assert renderer.calls == []
    assert store.get("s1", ArtifactKey.PDF_PATH) is None


def test_render_receives_stored_document(store):
    renderer = MockRenderer()
    orchestrator = make_orchestrator(store, renderer=renderer)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.generate_document("s1", "Cardiology SOAP")

    orchestrator.render_document("s1")

    soap_data, template_type, session_id = renderer.calls[0]
    assert soap_data["SOAP_Note"] == VALID_SOAP["SOAP_Note"]
    assert template_type == "Cardiology SOAP"
    assert session_id == "s1"


def test_rerunning_earlier_stage_keeps_downstream(store):
    orchestrator = make_orchestrator(store)
    orchestrator.confirm_transcript("s1", "First version")
    orchestrator.generate_document("s1", "Cardiology SOAP")

    orchestrator.confirm_transcript("s1", "Second version")

    assert store.get("s1", ArtifactKey.TRANSCRIPT_CLEAN) == "Second version"
    assert store.get("s1", ArtifactKey.SOAP_DATA) is not None
    assert orchestrator.status("s1").stage == WorkflowStage.DOCUMENT_GENERATED


# ========================
# Collaborator failures
# ========================

def test_transcription_error_is_wrapped(store):
    orchestrator = make_orchestrator(
        store, transcriber=MockTranscriber(error=RuntimeError("decoder crashed"))
    )

    with pytest.raises(TranscriptionFailure) as exc_info:
        orchestrator.ingest_audio("s1", "/tmp/visit.wav")

    assert exc_info.value.stage == "ingest_audio"
    assert exc_info.value.session_id == "s1"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert store.get_session_data("s1") == {}


def test_collaborator_workflow_error_gets_context(store):
    orchestrator = make_orchestrator(
        store, transcriber=MockTranscriber(error=TranscriptionFailure("Audio file not found"))
    )

    with pytest.raises(TranscriptionFailure) as exc_info:
        orchestrator.ingest_audio("s1", "/tmp/missing.wav")

    assert exc_info.value.stage == "ingest_audio"
    assert "session=s1" in str(exc_info.value)


def test_generation_error_is_wrapped(store):
    orchestrator = make_orchestrator(
        store, soap_generator=MockSoapGenerator(error=RuntimeError("CUDA out of memory"))
    )
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    with pytest.raises(GenerationFailure):
        orchestrator.generate_document("s1", "Cardiology SOAP")
    assert store.get("s1", ArtifactKey.SOAP_DATA) is None


def test_render_error_is_wrapped(store):
    orchestrator = make_orchestrator(store, renderer=MockRenderer(error=OSError("read-only")))
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.generate_document("s1", "Cardiology SOAP")

    with pytest.raises(RenderFailure):
        orchestrator.render_document("s1")
    assert orchestrator.status("s1").completion_percentage == 50


def test_timeout_writes_nothing(store):
    generator = BlockingSoapGenerator()
    orchestrator = PipelineOrchestrator(store=store, soap_generator=generator,
                                        timeout_seconds=0.05)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    try:
        with pytest.raises(CollaboratorTimeout) as exc_info:
            orchestrator.generate_document("s1", "Cardiology SOAP")
    finally:
        generator.release.set()
        orchestrator.shutdown()

    assert exc_info.value.stage == "generate_document"
    assert store.get("s1", ArtifactKey.SOAP_DATA) is None
    assert orchestrator.status("s1").completion_percentage == 25


def test_storage_failure_on_gating_key_leaves_stage_incomplete(tmp_path):
    store = FailingStore(str(tmp_path / "sessions"), ArtifactKey.SOAP_DATA)
    orchestrator = make_orchestrator(store)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")

    with pytest.raises(StorageFailure) as exc_info:
        orchestrator.generate_document("s1", "Cardiology SOAP")

    assert exc_info.value.stage == "generate_document"
    status = orchestrator.status("s1")
    assert not status.has_soap_data
    assert status.stage == WorkflowStage.TRANSCRIPT_CONFIRMED


def test_failed_rerun_keeps_previous_document(tmp_path):
    store = FailingStore(str(tmp_path / "sessions"), None)
    orchestrator = make_orchestrator(store)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.generate_document("s1", "Practice SOAP")

    store.failing_key = ArtifactKey.SOAP_DATA
    with pytest.raises(StorageFailure):
        orchestrator.generate_document("s1", "Cardiology SOAP")

    assert store.get("s1", ArtifactKey.TEMPLATE_TYPE) == "Practice SOAP"
    assert store.get("s1", ArtifactKey.SOAP_DATA) == VALID_SOAP
    assert store.get_session_data("s1")["template_type"] == "Practice SOAP"


def test_failed_first_run_removes_earlier_writes(tmp_path):
    store = FailingStore(str(tmp_path / "sessions"), ArtifactKey.TRANSCRIPT_RAW)
    orchestrator = make_orchestrator(store)

    with pytest.raises(StorageFailure) as exc_info:
        orchestrator.ingest_audio("s1", "/tmp/visit.wav")

    assert exc_info.value.stage == "ingest_audio"
    assert store.get_session_data("s1") == {}
    assert store.get("s1", ArtifactKey.AUDIO_FILE) is None
    assert store.get("s1", ArtifactKey.TRANSCRIPT_CONFIDENCE) is None


def test_failed_audio_rerun_restores_previous_values(tmp_path):
    store = FailingStore(str(tmp_path / "sessions"), None)
    orchestrator = make_orchestrator(store)
    orchestrator.ingest_audio("s1", "/tmp/first.wav")

    store.failing_key = ArtifactKey.TRANSCRIPT_RAW
    with pytest.raises(StorageFailure):
        orchestrator.ingest_audio("s1", "/tmp/second.wav")

    assert store.get("s1", ArtifactKey.AUDIO_FILE) == "/tmp/first.wav"
    assert store.get("s1", ArtifactKey.TRANSCRIPT_RAW) == "uh patient has chest pain"


def test_hung_calls_occupy_the_worker_pool(store):
    generator = BlockingSoapGenerator()
    orchestrator = PipelineOrchestrator(store=store, soap_generator=generator,
                                        timeout_seconds=0.05, max_workers=1)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.confirm_transcript("s2", "Patient has a cough.")

    try:
        with pytest.raises(CollaboratorTimeout):
            orchestrator.generate_document("s1", "Cardiology SOAP")
        # The only worker is still held by the first call
        with pytest.raises(CollaboratorTimeout):
            orchestrator.generate_document("s2", "Practice SOAP")
    finally:
        generator.release.set()
        orchestrator.shutdown()

    assert store.get("s2", ArtifactKey.SOAP_DATA) is None


def test_all_failures_are_workflow_errors(store):
    orchestrator = make_orchestrator(store)
    with pytest.raises(WorkflowError):
        orchestrator.render_document("s1")


# ========================
# Secondary path and join
# ========================

def test_ocr_path(store):
    orchestrator = make_orchestrator(store)

    result = orchestrator.ingest_image("ocr1", "/tmp/bill.png")
    assert result[ArtifactKey.OCR_RAW] == BILL_TEXT
    assert store.get("ocr1", ArtifactKey.OCR_CONFIDENCE) == 91.0

    orchestrator.confirm_ocr_text("ocr1", BILL_TEXT + "\nPaid in cash")
    bill = orchestrator.extract_bill("ocr1")[ArtifactKey.BILL_INFO]

    assert bill["hospital_name"] == "City Care Hospital"
    assert bill["bill_number"] == "CCH-2025-0042"
    assert bill["amount"] == "Rs. 4,250.00"
    assert store.get("ocr1", ArtifactKey.BILL_INFO) == bill


def test_ocr_error_is_wrapped(store):
    orchestrator = make_orchestrator(
        store, ocr_processor=MockOCRProcessor(error=RuntimeError("tesseract not installed"))
    )
    with pytest.raises(RecognitionFailure):
        orchestrator.ingest_image("ocr1", "/tmp/bill.png")
    assert store.get_session_data("ocr1") == {}


def test_extract_bill_without_ocr_text(store):
    orchestrator = make_orchestrator(store)
    with pytest.raises(PrerequisiteMissing):
        orchestrator.extract_bill("ocr1")


def test_final_response_requires_transcript_and_document(store):
    orchestrator = make_orchestrator(store)
    orchestrator.ingest_audio("s1", "/tmp/visit.wav")

    with pytest.raises(IncompleteWorkflow) as exc_info:
        orchestrator.assemble_final_response("s1")

    assert set(exc_info.value.missing) == {"transcript_clean", "soap_data"}


def test_final_response_joins_sessions(store):
    orchestrator = make_orchestrator(store)
    orchestrator.ingest_audio("s1", "/tmp/visit.wav")
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.generate_document("s1", "Cardiology SOAP")
    orchestrator.render_document("s1")
    orchestrator.ingest_image("ocr1", "/tmp/bill.png")
    orchestrator.extract_bill("ocr1")

    before = (store.get_session_data("s1"), store.get_session_data("ocr1"))
    response = orchestrator.assemble_final_response("s1", ocr_session_id="ocr1")

    assert response.transcript == "Patient has chest pain."
    assert response.soap == VALID_SOAP["SOAP_Note"]
    assert response.prescription == VALID_SOAP["prescription"]
    assert response.follow_up == VALID_SOAP["followUp"]
    assert response.template_type == "Cardiology SOAP"
    assert response.pdf_path == "/out/s1.pdf"
    assert response.ocr_text == BILL_TEXT
    assert response.bill_info["bill_number"] == "CCH-2025-0042"
    assert (store.get_session_data("s1"), store.get_session_data("ocr1")) == before


def test_final_response_without_ocr_session(store):
    orchestrator = make_orchestrator(store)
    orchestrator.confirm_transcript("s1", "Patient has chest pain.")
    orchestrator.generate_document("s1", "Cardiology SOAP")

    data = orchestrator.assemble_final_response("s1").to_dict()

    assert data["ocr_text"] is None
    assert data["bill_info"] is None
    assert data["pdf_path"] is None
