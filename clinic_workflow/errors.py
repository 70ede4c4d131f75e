"""
Failure taxonomy for the clinical documentation workflow.

Every error names the stage and session it came from so a caller can
retry the same stage. Collaborator errors are raised with the original
exception chained (raise ... from e).
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow failures"""

    def __init__(self, message: str, stage: Optional[str] = None,
                 session_id: Optional[str] = None):
        self.stage = stage
        self.session_id = session_id
        self.message = message
        super().__init__(self._format(message))

    def with_context(self, stage: Optional[str] = None,
                     session_id: Optional[str] = None) -> "WorkflowError":
        """Fill in stage/session if the raiser didn't know them. Returns self."""
        self.stage = self.stage or stage
        self.session_id = self.session_id or session_id
        self.args = (self._format(self.message),)
        return self

    def _format(self, message: str) -> str:
        context = []
        if self.stage:
            context.append(f"stage={self.stage}")
        if self.session_id:
            context.append(f"session={self.session_id}")
        if not context:
            return message
        return f"{message} [{', '.join(context)}]"


class StorageFailure(WorkflowError):
    """Durable medium unavailable during a write. Not retried automatically."""


class PrerequisiteMissing(WorkflowError):
    """
    Stage invoked before the artifacts it depends on exist.

    Attributes:
        missing: Artifact key strings that were absent
    """

    def __init__(self, message: str, missing=(), stage: Optional[str] = None,
                 session_id: Optional[str] = None):
        self.missing = tuple(missing)
        super().__init__(message, stage=stage, session_id=session_id)


class SchemaValidationFailure(WorkflowError):
    """Generated document did not match the required field set"""


class RecognitionFailure(WorkflowError):
    """OCR collaborator could not read the image"""


class TranscriptionFailure(WorkflowError):
    """Transcription collaborator could not read the audio"""


class CollaboratorTimeout(WorkflowError):
    """Collaborator did not answer within the orchestrator's deadline"""


class IncompleteWorkflow(WorkflowError):
    """
    Join-time read of a session whose upstream stages never completed.

    Attributes:
        missing: Artifact key strings that were absent
    """

    def __init__(self, message: str, missing=(), stage: Optional[str] = None,
                 session_id: Optional[str] = None):
        self.missing = tuple(missing)
        super().__init__(message, stage=stage, session_id=session_id)


class InvalidStageInput(WorkflowError, ValueError):
    """Caller-supplied input rejected before any collaborator was called"""


class GenerationFailure(WorkflowError):
    """Document generation collaborator errored before producing output"""


class RenderFailure(WorkflowError):
    """Rendering collaborator could not produce the document file"""
