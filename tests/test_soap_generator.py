"""
Unit tests for SoapGenerator, schema validation and the template registry

Uses a mock LLM client; no model is loaded.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json

import pytest

from clinic_workflow.core.soap_generator import SoapGenerator, validate_soap_data
from clinic_workflow.errors import SchemaValidationFailure
from clinic_workflow.utils.soap_templates import (
    SOAP_TEMPLATES,
    SoapTemplateKey,
    build_prompt,
    get_template,
    is_valid_template,
    list_templates,
    select_template,
)


VALID_SOAP = {
    "SOAP_Note": {
        "Subjective": "Itchy rash on forearms for a week",
        "Objective": "Erythematous papules, no vesicles",
        "Assessment": "Contact dermatitis",
        "Plan": "Topical steroid, avoid irritant",
    },
    "summary": "Contact dermatitis of forearms",
    "prescription": "Hydrocortisone 1% cream twice daily for 7 days",
    "followUp": "Two weeks if not improving",
    "nextSteps": "Patch testing if recurrent",
}


# ========================
# Mock Modules
# ========================

class MockLLMClient:
    """Mock HuggingFace client returning a canned JSON string"""

    def __init__(self, response):
        self.response = response
        self.prompts = []

    def generate_json(self, prompt, max_tokens=2500, temperature=0.2):
        self.prompts.append((prompt, max_tokens, temperature))
        return self.response


# ========================
# validate_soap_data
# ========================

def test_valid_document_passes():
    assert validate_soap_data(dict(VALID_SOAP)) == VALID_SOAP


@pytest.mark.parametrize("field", ["SOAP_Note", "summary", "prescription", "followUp", "nextSteps"])
def test_missing_top_level_field_named(field):
    document = dict(VALID_SOAP)
    del document[field]
    with pytest.raises(SchemaValidationFailure, match=field):
        validate_soap_data(document)


def test_empty_field_treated_as_missing():
    document = dict(VALID_SOAP, followUp="")
    with pytest.raises(SchemaValidationFailure, match="followUp"):
        validate_soap_data(document)


def test_missing_soap_subfield_named():
    note = dict(VALID_SOAP["SOAP_Note"])
    del note["Assessment"]
    with pytest.raises(SchemaValidationFailure, match="Assessment"):
        validate_soap_data(dict(VALID_SOAP, SOAP_Note=note))


def test_non_object_rejected():
    with pytest.raises(SchemaValidationFailure):
        validate_soap_data(["not", "a", "dict"])


# ========================
# SoapGenerator
# ========================

def test_requires_generate_json():
    with pytest.raises(TypeError):
        SoapGenerator(object())


def test_generate_returns_validated_document():
    client = MockLLMClient(json.dumps(VALID_SOAP))
    generator = SoapGenerator(client, max_tokens=1000, temperature=0.1)

    result = generator.generate("Rash on arms for a week", SoapTemplateKey.DERMATOLOGY)

    assert result["SOAP_Note"] == VALID_SOAP["SOAP_Note"]
    assert result["templateType"] == "Dermatology SOAP"
    prompt, max_tokens, temperature = client.prompts[0]
    assert "Rash on arms for a week" in prompt
    assert "Dermatology SOAP" in prompt
    assert (max_tokens, temperature) == (1000, 0.1)


def test_generate_keeps_model_template_type():
    client = MockLLMClient(json.dumps(dict(VALID_SOAP, templateType="Dermatology SOAP")))
    result = SoapGenerator(client).generate("Rash", "Dermatology SOAP")
    assert result["templateType"] == "Dermatology SOAP"


def test_unparseable_output_is_schema_failure():
    client = MockLLMClient("Sorry, I cannot help with that")
    with pytest.raises(SchemaValidationFailure):
        SoapGenerator(client).generate("Rash", "Dermatology SOAP")


def test_partial_output_is_schema_failure():
    partial = dict(VALID_SOAP)
    del partial["nextSteps"]
    client = MockLLMClient(json.dumps(partial))
    with pytest.raises(SchemaValidationFailure, match="nextSteps"):
        SoapGenerator(client).generate("Rash", "Dermatology SOAP")


def test_unknown_template_rejected_before_model_call():
    client = MockLLMClient(json.dumps(VALID_SOAP))
    with pytest.raises(ValueError):
        SoapGenerator(client).generate("Rash", "Astrology SOAP")
    assert client.prompts == []


# ========================
# Template registry
# ========================

def test_eighteen_templates_in_menu_order():
    templates = list_templates()
    assert len(templates) == 18
    assert len(SOAP_TEMPLATES) == 18
    assert templates[0]["key"] == "Practice SOAP"
    assert all(t["description"] for t in templates)


def test_is_valid_template():
    assert is_valid_template("Cardiology SOAP")
    assert is_valid_template(SoapTemplateKey.ENT)
    assert not is_valid_template("cardiology")


def test_get_template_unknown():
    with pytest.raises(ValueError):
        get_template("Astrology SOAP")


def test_select_template_by_number():
    assert select_template("1").key == SoapTemplateKey.PRACTICE
    assert select_template(18).name == list_templates()[-1]["name"]


@pytest.mark.parametrize("selection", ["0", "19", "abc", ""])
def test_select_template_out_of_range(selection):
    with pytest.raises(ValueError):
        select_template(selection)


def test_prompt_includes_safety_profile():
    template = get_template(SoapTemplateKey.PEDIATRICS)
    prompt = build_prompt(SoapTemplateKey.PEDIATRICS, "Child with fever")

    assert "Child with fever" in prompt
    assert '"SOAP_Note"' in prompt
    for line in template.safety_profile:
        assert line in prompt
