"""
SOAP Generator - Transcript to structured clinical document

Responsibilities:
- Build the template-specific prompt
- Call the language model for a JSON document
- Parse and validate the fixed document schema

Design principles:
- Malformed or partial output is a caller-visible failure, never patched
- Every required field is checked explicitly
- No storage access (the orchestrator owns persistence)
"""

import json
import logging
from typing import Any, Dict

from clinic_workflow.errors import SchemaValidationFailure
from clinic_workflow.utils.soap_templates import build_prompt, get_template

logger = logging.getLogger(__name__)

SOAP_NOTE_FIELD = "SOAP_Note"
REQUIRED_FIELDS = (SOAP_NOTE_FIELD, "summary", "prescription", "followUp", "nextSteps")
REQUIRED_SOAP_FIELDS = ("Subjective", "Objective", "Assessment", "Plan")


def validate_soap_data(soap_data: Any) -> Dict[str, Any]:
    """
    Check a generated document against the required schema.

    Args:
        soap_data: Parsed model output

    Returns:
        dict: The same document (unchanged)

    Raises:
        SchemaValidationFailure: Naming the first missing or empty field
    """
    if not isinstance(soap_data, dict):
        raise SchemaValidationFailure(
            f"Generated document must be a JSON object, got {type(soap_data).__name__}"
        )

    for field in REQUIRED_FIELDS:
        if not soap_data.get(field):
            raise SchemaValidationFailure(f"Missing required field: {field}")

    soap_note = soap_data[SOAP_NOTE_FIELD]
    if not isinstance(soap_note, dict):
        raise SchemaValidationFailure(f"{SOAP_NOTE_FIELD} must be an object")

    for field in REQUIRED_SOAP_FIELDS:
        if not soap_note.get(field):
            raise SchemaValidationFailure(f"Missing required SOAP field: {field}")

    return soap_data


class SoapGenerator:
    """Generate validated SOAP documents from transcripts"""

    def __init__(self, llm_client, max_tokens: int = 2500, temperature: float = 0.2):
        """
        Args:
            llm_client: Object with generate_json(prompt, max_tokens, temperature)
                returning a JSON string (HuggingFaceClient in production)
            max_tokens: Generation budget
            temperature: Sampling temperature

        Raises:
            TypeError: If llm_client lacks generate_json()
        """
        if not callable(getattr(llm_client, "generate_json", None)):
            raise TypeError("llm_client must have callable generate_json() method")

        self.llm_client = llm_client
        self.max_tokens = max_tokens
        self.temperature = temperature
        logger.info("SOAP Generator initialized")

    def generate(self, transcript: str, template_key) -> Dict[str, Any]:
        """
        Generate a SOAP document.

        Args:
            transcript: Confirmed transcript text
            template_key: SoapTemplateKey or its string value

        Returns:
            dict: Validated document with SOAP_Note, summary, prescription,
                  followUp, nextSteps (and templateType)

        Raises:
            ValueError: Unknown template
            SchemaValidationFailure: Unparseable or incomplete model output
        """
        template = get_template(template_key)
        prompt = build_prompt(template.key, transcript)

        logger.info(f"Generating {template.name} from transcript ({len(transcript)} chars)")

        raw = self.llm_client.generate_json(
            prompt, max_tokens=self.max_tokens, temperature=self.temperature
        )

        try:
            soap_data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Model returned unparseable JSON: {e}")
            raise SchemaValidationFailure(f"Generated document is not valid JSON: {e}") from e

        validate_soap_data(soap_data)
        soap_data.setdefault("templateType", template.name)

        logger.info(f"{template.name} generated successfully")
        return soap_data
