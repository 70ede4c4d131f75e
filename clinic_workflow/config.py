"""
Central configuration for the clinical documentation workflow.
All values come from environment variables with sensible defaults.
Entrypoints call load_dotenv() before importing this module.
"""

import os


def _env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes"):
        return True
    if val in ("false", "0", "no"):
        return False
    return default


def _env_float(key: str, default: float) -> float:
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
DATA_DIR = os.getenv("CLINIC_DATA_DIR", "outputs/sessions")
UPLOAD_DIR = os.getenv("CLINIC_UPLOAD_DIR", "outputs/uploads")
PDF_DIR = os.getenv("CLINIC_PDF_DIR", "outputs/pdfs")

# Sessions untouched for longer than this are removed by the sweeper
RETENTION_DAYS = _env_int("CLINIC_RETENTION_DAYS", 7)

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
COLLABORATOR_TIMEOUT_SECONDS = _env_float("CLINIC_COLLABORATOR_TIMEOUT", 120.0)
COLLABORATOR_MAX_WORKERS = _env_int("CLINIC_COLLABORATOR_WORKERS", 4)

LLM_MODEL_NAME = os.getenv("CLINIC_LLM_MODEL", "mistralai/Mistral-7B-Instruct-v0.2")
LLM_LOAD_IN_4BIT = _env_bool("CLINIC_LLM_LOAD_IN_4BIT", True)
LLM_DEVICE = os.getenv("CLINIC_LLM_DEVICE", "cuda")
LLM_MAX_TOKENS = _env_int("CLINIC_LLM_MAX_TOKENS", 2500)
LLM_TEMPERATURE = _env_float("CLINIC_LLM_TEMPERATURE", 0.2)

ASR_MODEL_NAME = os.getenv("CLINIC_ASR_MODEL", "openai/whisper-small")

OCR_LANGUAGE = os.getenv("CLINIC_OCR_LANGUAGE", "eng")

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
MAX_UPLOAD_MB = _env_int("CLINIC_MAX_UPLOAD_MB", 50)
PORT = _env_int("PORT", 5000)
DEBUG = _env_bool("CLINIC_DEBUG", False)
