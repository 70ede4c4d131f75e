"""
SOAP Template Registry

Defines the closed set of clinical templates a document can be generated
from. Each template carries:
- A specialty prompt (what the note must focus on)
- A safety profile (specialty-specific prescribing constraints)

The template key is what gets stored as the template_type artifact and
printed on the rendered PDF.

Template selection:
- list_templates() returns the menu in display order
- select_template() resolves a 1-based menu number
- get_template() resolves a key and fails fast on unknown keys
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class SoapTemplateKey(str, Enum):
    """
    Template identifiers (values are the stored template_type strings).

    Naming convention: <SPECIALTY> SOAP
    """
    PRACTICE = "Practice SOAP"
    PEDIATRICS = "Pediatrics SOAP"
    CARDIOLOGY = "Cardiology SOAP"
    ORTHOPEDICS = "Orthopedics SOAP"
    MENTAL_HEALTH = "Mental Health SOAP"
    DERMATOLOGY = "Dermatology SOAP"
    GYNECOLOGY = "Gynecology SOAP"
    ENT = "ENT SOAP"
    NEUROLOGY = "Neurology SOAP"
    GASTRO = "Gastro SOAP"
    PULMONOLOGY = "Pulmonology SOAP"
    EMERGENCY = "Emergency SOAP"
    DIABETOLOGY = "Diabetology SOAP"
    OBSTETRICS = "Obstetrics SOAP"
    ONCOLOGY = "Oncology SOAP"
    NEPHROLOGY = "Nephrology SOAP"
    UROLOGY = "Urology SOAP"
    REHAB = "Rehab SOAP"


@dataclass(frozen=True)
class SoapTemplate:
    key: SoapTemplateKey
    description: str
    prompt: str
    safety_profile: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.key.value


# Applied to every template, in this order, ahead of the template's own profile
COMMON_SAFETY_REQUIREMENTS: Tuple[str, ...] = (
    "Always include clear dosing instructions with maximum daily limits",
    "For PRN (as needed) medications, specify maximum frequency and total daily dose",
    "Include specific safety warnings and contraindications",
    "For emergency medications like nitroglycerin, provide clear protocols with proper timing",
    "Never suggest dangerous dosing patterns without proper medical supervision",
)


_TEMPLATE_LIST: List[SoapTemplate] = [
    SoapTemplate(
        SoapTemplateKey.PRACTICE,
        "General practice consultation",
        "Generate a comprehensive SOAP note for a general practice consultation. "
        "Include vital signs, general health assessment, and routine care recommendations.",
        ("Check for interactions with any long-term medications mentioned",),
    ),
    SoapTemplate(
        SoapTemplateKey.PEDIATRICS,
        "Pediatric consultation",
        "Generate a SOAP note tailored for a pediatric consultation. Include child's age, "
        "weight, height, developmental milestones, immunization status, growth parameters, "
        "parent/guardian concerns, and age-appropriate treatment plans.",
        ("Express every dose as mg/kg with the child's weight and an absolute maximum",
         "Flag medications contraindicated below a minimum age"),
    ),
    SoapTemplate(
        SoapTemplateKey.CARDIOLOGY,
        "Cardiovascular consultation",
        "Generate a SOAP note for a cardiology consultation. Focus on cardiovascular symptoms, "
        "heart rate, blood pressure, ECG findings, cardiac risk factors, chest pain assessment, "
        "and cardiac-specific treatment plans.",
        ("State nitrate timing limits and when to call emergency services for chest pain",
         "Note bleeding risk for anticoagulant and antiplatelet therapy"),
    ),
    SoapTemplate(
        SoapTemplateKey.ORTHOPEDICS,
        "Orthopedic consultation",
        "Generate a SOAP note for an orthopedic consultation. Include musculoskeletal "
        "examination, range of motion, pain assessment, imaging findings, mobility status, "
        "and orthopedic treatment recommendations.",
        ("Give NSAID duration limits and gastrointestinal precautions",),
    ),
    SoapTemplate(
        SoapTemplateKey.MENTAL_HEALTH,
        "Mental health consultation",
        "Generate a SOAP note for a mental health consultation. Include mental status "
        "examination, mood assessment, cognitive function, risk assessment, psychiatric "
        "history, and mental health treatment plans with appropriate safety considerations.",
        ("Document self-harm risk and crisis contact instructions",
         "Limit dispensed quantities where overdose risk exists"),
    ),
    SoapTemplate(
        SoapTemplateKey.DERMATOLOGY,
        "Dermatological consultation",
        "Generate a SOAP note for a dermatology consultation. Include skin examination "
        "findings, lesion descriptions, dermatological history, skin condition assessment, "
        "and dermatology-specific treatment recommendations.",
        ("Specify topical steroid potency, application area and maximum duration",),
    ),
    SoapTemplate(
        SoapTemplateKey.GYNECOLOGY,
        "Gynecological consultation",
        "Generate a SOAP note for a gynecology consultation. Include menstrual history, "
        "reproductive health, pelvic examination findings, gynecological symptoms, and "
        "women's health-specific care plans.",
        ("State pregnancy and breastfeeding safety for every medication",),
    ),
    SoapTemplate(
        SoapTemplateKey.ENT,
        "Ear, Nose, Throat consultation",
        "Generate a SOAP note for an ENT consultation. Include ear, nose, and throat "
        "examination, hearing assessment, respiratory symptoms, ENT-specific findings, and "
        "otolaryngology treatment plans.",
        ("Limit decongestant duration to avoid rebound congestion",),
    ),
    SoapTemplate(
        SoapTemplateKey.NEUROLOGY,
        "Neurological consultation",
        "Generate a SOAP note for a neurology consultation. Include neurological examination, "
        "cognitive assessment, motor and sensory function, reflexes, neurological symptoms, "
        "and neurology-specific treatment plans.",
        ("List stroke warning signs requiring emergency care",
         "Note driving restrictions where seizures or syncope are involved"),
    ),
    SoapTemplate(
        SoapTemplateKey.GASTRO,
        "Gastroenterology consultation",
        "Generate a SOAP note for a gastroenterology consultation. Include gastrointestinal "
        "symptoms, abdominal examination, digestive health history, and "
        "gastroenterology-specific treatment recommendations.",
        ("Flag red-flag symptoms such as GI bleeding or unintentional weight loss",),
    ),
    SoapTemplate(
        SoapTemplateKey.PULMONOLOGY,
        "Pulmonology consultation",
        "Generate a SOAP note for a pulmonology consultation. Include respiratory symptoms, "
        "lung function assessment, breathing patterns, chest examination, and "
        "pulmonary-specific treatment plans.",
        ("Give maximum daily reliever inhaler use before seeking care",),
    ),
    SoapTemplate(
        SoapTemplateKey.EMERGENCY,
        "Emergency department consultation",
        "Generate a SOAP note for an emergency department consultation. Include triage "
        "assessment, acute symptoms, vital signs, emergency interventions, disposition "
        "planning, and urgent care recommendations.",
        ("Document disposition and explicit return precautions",),
    ),
    SoapTemplate(
        SoapTemplateKey.DIABETOLOGY,
        "Diabetes and endocrine consultation",
        "Generate a SOAP note for a diabetology consultation. Include blood glucose levels, "
        "HbA1c, diabetic complications assessment, endocrine function, and diabetes "
        "management plans.",
        ("Include hypoglycaemia recognition and treatment instructions",),
    ),
    SoapTemplate(
        SoapTemplateKey.OBSTETRICS,
        "Obstetric consultation",
        "Generate a SOAP note for an obstetrics consultation. Include gestational age, fetal "
        "development, maternal health, prenatal care, and obstetric-specific monitoring and "
        "care plans.",
        ("Use only medications with established pregnancy safety and state the category",),
    ),
    SoapTemplate(
        SoapTemplateKey.ONCOLOGY,
        "Oncology consultation",
        "Generate a SOAP note for an oncology consultation. Include cancer staging, treatment "
        "response, side effects assessment, performance status, and oncology-specific "
        "treatment plans with supportive care.",
        ("Include neutropenic fever precautions",),
    ),
    SoapTemplate(
        SoapTemplateKey.NEPHROLOGY,
        "Nephrology consultation",
        "Generate a SOAP note for a nephrology consultation. Include kidney function "
        "assessment, fluid balance, electrolyte status, renal symptoms, and "
        "nephrology-specific treatment recommendations.",
        ("Adjust every dose for renal function and avoid nephrotoxic agents",),
    ),
    SoapTemplate(
        SoapTemplateKey.UROLOGY,
        "Urological consultation",
        "Generate a SOAP note for a urology consultation. Include urogenital symptoms, "
        "urological examination, kidney and bladder function, and urology-specific "
        "treatment plans.",
        ("Flag urinary retention risk for anticholinergic medications",),
    ),
    SoapTemplate(
        SoapTemplateKey.REHAB,
        "Rehabilitation consultation",
        "Generate a SOAP note for a rehabilitation consultation. Include functional "
        "assessment, mobility status, rehabilitation goals, therapy progress, and "
        "rehabilitation-specific treatment plans.",
        ("Give fall-risk precautions alongside sedating medications",),
    ),
]

# Single source of truth for template lookup
SOAP_TEMPLATES: Dict[str, SoapTemplate] = {t.key.value: t for t in _TEMPLATE_LIST}


def list_templates() -> List[Dict[str, str]]:
    """Menu entries in display order: [{'key', 'name', 'description'}, ...]"""
    return [
        {"key": t.key.value, "name": t.name, "description": t.description}
        for t in _TEMPLATE_LIST
    ]


def is_valid_template(template_key) -> bool:
    return str(getattr(template_key, "value", template_key)) in SOAP_TEMPLATES


def get_template(template_key) -> SoapTemplate:
    """
    Resolve a template key.

    Raises:
        ValueError: If key is not a known template
    """
    key = getattr(template_key, "value", template_key)
    template = SOAP_TEMPLATES.get(key)
    if template is None:
        raise ValueError(
            f"Invalid template type: {template_key}. "
            f"Available: {', '.join(SOAP_TEMPLATES)}"
        )
    return template


def select_template(selection) -> SoapTemplate:
    """
    Resolve a 1-based menu selection (as typed by a user).

    Raises:
        ValueError: Non-numeric or out-of-range selection
    """
    try:
        number = int(str(selection).strip())
    except ValueError:
        number = 0

    if number < 1 or number > len(_TEMPLATE_LIST):
        raise ValueError(
            f"Invalid selection. Please enter a number between 1 and {len(_TEMPLATE_LIST)}."
        )
    return _TEMPLATE_LIST[number - 1]


def build_prompt(template_key, transcript: str) -> str:
    """
    Build the generation prompt for a template and transcript.

    The prompt asks for a single JSON object with SOAP_Note (Subjective,
    Objective, Assessment, Plan), summary, prescription, followUp and
    nextSteps.
    """
    template = get_template(template_key)
    safety_lines = "\n".join(
        f"- {line}" for line in COMMON_SAFETY_REQUIREMENTS + template.safety_profile
    )

    return f"""You are an expert medical assistant AI specializing in {template.name}. {template.prompt}

Transcript: "{transcript}"

IMPORTANT: Generate detailed, practical information for each section specific to {template.name}. Do not leave any section empty or vague.

CRITICAL SAFETY REQUIREMENTS FOR PRESCRIPTIONS:
{safety_lines}

Provide a complete medical response with:

1. SOAP NOTE (Medical Documentation for {template.name}):
   - Subjective: Patient's symptoms, complaints, history, concerns they mentioned
   - Objective: Physical findings, vital signs, examination results, observable data
   - Assessment: Clinical diagnosis, differential diagnosis, medical impression
   - Plan: Treatment approach, management strategy, medical recommendations

2. SUMMARY: 1-2 sentences summarizing the key medical findings and plan

3. PRESCRIPTION SHEET (For Pharmacist & Patient):
   For each medicine give name and strength, dosage, duration, maximum, instructions and a warning.

4. FOLLOW-UP REMINDER (For Patient & Doctor):
   When, reason, warning signs, and when to seek emergency care.

5. NEXT STEP SUGGESTIONS (For Doctor & Patient):
   Laboratory tests, imaging, specialist referral, monitoring, lifestyle.

Return response in this exact JSON format:
{{
  "templateType": "{template.name}",
  "SOAP_Note": {{
    "Subjective": "...",
    "Objective": "...",
    "Assessment": "...",
    "Plan": "..."
  }},
  "summary": "...",
  "prescription": "...",
  "followUp": "...",
  "nextSteps": "..."
}}"""
