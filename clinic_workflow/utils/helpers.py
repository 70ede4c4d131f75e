"""
Utility helpers for the clinical documentation workflow

Simple utility functions for session ids and upload file names.
"""

import re
import uuid
from pathlib import Path


def generate_session_id():
    """
    Generate a new session identifier (full UUID4 string).

    Sessions have no creation call; the id only becomes a session once
    the first artifact is stored under it.

    Examples:
        >>> generate_session_id()
        '3f1c2d4e-5b6a-4c7d-8e9f-0a1b2c3d4e5f'
    """
    return str(uuid.uuid4())


def generate_upload_filename(original_name):
    """
    Generate a unique, filesystem-safe name for an uploaded file

    Format: {uuid}-{sanitised original name}

    Examples:
        >>> generate_upload_filename("visit recording.m4a")
        '9b2e...-visit_recording.m4a'
    """
    name = Path(original_name or "upload").name
    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._") or "upload"
    return f"{uuid.uuid4()}-{safe}"
