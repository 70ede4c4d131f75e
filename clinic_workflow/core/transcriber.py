"""
Audio Transcriber - Speech-to-text collaborator

Responsibilities:
- Validate audio file existence and format
- Run a HuggingFace speech-recognition pipeline
- Estimate a 0-100 confidence score (the model doesn't report one)
"""

import logging
import re
from pathlib import Path
from typing import Optional

from transformers import pipeline

from clinic_workflow.contracts import TranscriptionResult
from clinic_workflow.errors import TranscriptionFailure

logger = logging.getLogger(__name__)

SUPPORTED_AUDIO_FORMATS = (".wav", ".mp3", ".m4a", ".mp4", ".aac", ".flac")

BASE_CONFIDENCE = 85.0

# Patterns that usually indicate recognition noise
_ARTIFACT_PATTERNS = (
    re.compile(r"\[.*?\]"),
    re.compile(r"\(.*?\)"),
    re.compile(r"\b[A-Z]{3,}\b"),
)


def is_supported_audio(file_path) -> bool:
    return Path(file_path).suffix.lower() in SUPPORTED_AUDIO_FORMATS


def estimate_confidence(transcript: str, duration: Optional[float]) -> float:
    """
    Heuristic confidence for a transcript.

    Starts at 85, then:
    - Short transcripts (< 50 chars): -15; long (> 500 chars): +5
    - Speaking rate < 1 word/s: -10; > 5 words/s: -5
    - -2 per bracketed, parenthetical or all-caps artefact

    Returns:
        float: Confidence clamped to 0-100
    """
    confidence = BASE_CONFIDENCE

    if len(transcript) < 50:
        confidence -= 15
    elif len(transcript) > 500:
        confidence += 5

    if duration:
        words_per_second = len(transcript.split()) / duration
        if words_per_second < 1:
            confidence -= 10
        elif words_per_second > 5:
            confidence -= 5

    for pattern in _ARTIFACT_PATTERNS:
        confidence -= 2 * len(pattern.findall(transcript))

    return max(0.0, min(100.0, confidence))


class AudioTranscriber:
    """Transcribe audio files with a speech-recognition model"""

    def __init__(self, model_name: str = "openai/whisper-small", device: Optional[str] = None,
                 asr_pipeline=None):
        """
        Args:
            model_name: HuggingFace ASR model identifier
            device: Torch device string; None lets transformers decide
            asr_pipeline: Pre-built pipeline callable (skips model loading)
        """
        self.model_name = model_name

        if asr_pipeline is None:
            logger.info(f"Loading speech recognition model: {model_name}")
            asr_pipeline = pipeline(
                "automatic-speech-recognition",
                model=model_name,
                device=device,
                chunk_length_s=30,
            )
        self.asr = asr_pipeline

    def transcribe(self, audio_path) -> TranscriptionResult:
        """
        Transcribe one audio file.

        Raises:
            TranscriptionFailure: Missing file, unsupported format, or empty output
        """
        path = Path(audio_path)
        if not path.is_file():
            raise TranscriptionFailure(f"Audio file not found: {audio_path}")
        if not is_supported_audio(path):
            raise TranscriptionFailure(
                f"Unsupported audio format: {path.suffix}. "
                f"Supported: {', '.join(SUPPORTED_AUDIO_FORMATS)}"
            )

        logger.info(f"Transcribing audio file: {path.name} ({path.stat().st_size // 1024} KB)")

        output = self.asr(str(path), return_timestamps=True)
        text = (output.get("text") or "").strip()
        if not text:
            raise TranscriptionFailure(f"No speech recognised in {path.name}")

        duration = None
        chunks = output.get("chunks") or []
        if chunks:
            end = chunks[-1].get("timestamp", (None, None))[1]
            duration = float(end) if end is not None else None

        confidence = estimate_confidence(text, duration)
        logger.info(f"Transcription completed: {len(text)} characters, "
                    f"confidence {confidence:.2f}%")

        return TranscriptionResult(text=text, confidence=confidence, duration=duration)
