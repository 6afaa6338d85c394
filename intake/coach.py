"""
Coach response parsing and interview bookkeeping.

The model is asked for strict JSON but routinely wraps it in markdown fences,
adds prose around it, or returns fields of the wrong type. Everything here is
written to degrade to "no structured suggestion this turn" rather than raise.
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

from pydantic import ValidationError

from intake.exceptions import ParseFailure
from intake.models import (
    CaseOutputs,
    ChatTurn,
    CoachSuggestion,
    FactSet,
    IntakeData,
    to_string_list,
    to_trimmed_string,
)

logger = logging.getLogger(__name__)


class IntakeFieldDefinition(NamedTuple):
    label: str
    intake_key: Optional[str]
    question: str
    priority: int
    optional: bool = False


INTAKE_FIELD_DEFINITIONS: List[IntakeFieldDefinition] = [
    IntakeFieldDefinition(
        "relationship_category", "relationship_category",
        "What is the relationship category between you and the other person?", 1,
    ),
    IntakeFieldDefinition(
        "cohabitation", "cohabitation",
        "Do you currently live together, previously live together, or never lived together?", 2,
    ),
    IntakeFieldDefinition(
        "most_recent_incident_datetime", "most_recent_incident_at",
        "What is the date and time of the most recent incident?", 3,
    ),
    IntakeFieldDefinition(
        "pattern_summary", "pattern_of_incidents",
        "Please summarize the pattern of incidents and note any reported injuries or threats (brief and factual).", 4,
    ),
    IntakeFieldDefinition(
        "safety_status", "safety_status",
        "Are you safe right now? (safe now / unsafe / immediate danger / unsure)", 5,
    ),
    IntakeFieldDefinition(
        "firearms_access", "firearms_access",
        "Does the other person have access to firearms? (yes / no / unknown)", 6,
    ),
    IntakeFieldDefinition(
        "children_involved", "children_involved",
        "Were any children involved or did they witness the incidents?", 7,
    ),
    IntakeFieldDefinition(
        "existing_cases_orders", "existing_cases_orders",
        "Are there any existing cases or orders between you and this person?", 8,
    ),
    IntakeFieldDefinition(
        "evidence_inventory", "evidence_inventory",
        "What evidence do you have (texts, photos, reports, witnesses, etc.)?", 9,
    ),
    # Label keeps the "(optional)" suffix the prompt has always used.
    IntakeFieldDefinition(
        "requested_relief(optional)", "requested_relief",
        "What relief are you asking for (stay-away, no contact, custody, etc.)? (optional)", 10, True,
    ),
    IntakeFieldDefinition(
        "top_events", None,
        "Please list 1-3 most important events with dates or approximate dates, locations, "
        "and what was reported to happen.", 11,
    ),
    IntakeFieldDefinition(
        "petitioner_name(optional)", "petitioner_name",
        "What is the petitioner's name? (optional)", 12, True,
    ),
    IntakeFieldDefinition(
        "respondent_name(optional)", "respondent_name",
        "What is the respondent's name? (optional)", 13, True,
    ),
]

FIELD_LOOKUP: Dict[str, IntakeFieldDefinition] = {f.label: f for f in INTAKE_FIELD_DEFINITIONS}
ALLOWED_LABELS = frozenset(FIELD_LOOKUP)
REQUIRED_LABELS = [f.label for f in INTAKE_FIELD_DEFINITIONS if not f.optional]

# Intake answers that can also be satisfied from the fact set.
FACT_EQUIVALENTS = {
    "requested_relief": "requested_relief",
    "relationship_category": "relationship",
}

FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)


def sanitize_model_output(text: str) -> str:
    """If the model wrapped its answer in ``` fences, keep only the first fenced block."""
    trimmed = text.strip()
    match = FENCE_RE.search(trimmed)
    return match.group(1).strip() if match else trimmed


def extract_first_json_object(text: str) -> Optional[str]:
    """
    Returns the first balanced {...} substring that parses as JSON.
    Braces inside string literals are not counted.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False

    for i, c in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue

        if c == '"' and depth > 0:
            in_string = True
        elif c == "{":
            if depth == 0:
                start = i
            depth += 1
        elif c == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                candidate = text[start:i + 1]
                try:
                    json.loads(candidate)
                    return candidate
                except ValueError:
                    start = -1
    return None


def _loose_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Fallback: everything between the first '{' and the last '}'."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        return None
    try:
        value = json.loads(text[first:last + 1])
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _locate_payload(text: str) -> Optional[Dict[str, Any]]:
    sanitized = sanitize_model_output(text)
    candidate = extract_first_json_object(sanitized)
    if candidate is not None:
        value = json.loads(candidate)
        if isinstance(value, dict):
            return value
    return _loose_json_object(sanitized)


def _progress(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return int(min(100, max(0, round(number))))


def coerce_extracted_facts(value: Any) -> FactSet:
    """Validates a model-supplied extracted_facts object; anything unusable becomes an empty FactSet."""
    if not isinstance(value, dict):
        return FactSet()
    try:
        return FactSet.model_validate(value)
    except ValidationError as e:
        logger.info(f"Discarding malformed extracted_facts: {e.error_count()} errors")
        return FactSet()


def coerce_extracted_outputs(value: Any) -> Optional[CaseOutputs]:
    if not isinstance(value, dict):
        return None
    try:
        return CaseOutputs.model_validate(value)
    except ValidationError:
        return None


def parse_coach_response(raw_text: str) -> Optional[CoachSuggestion]:
    """
    Extracts a structured suggestion from raw model output.

    Returns None when no JSON object can be located or parsed. Callers then
    show the raw text instead. Never raises.
    """
    if not isinstance(raw_text, str):
        return None
    try:
        payload = _locate_payload(raw_text)
    except (ValueError, RecursionError):
        return None
    if payload is None:
        return None

    missing_fields = [label for label in to_string_list(payload.get("missing_fields")) if label in ALLOWED_LABELS]

    try:
        return CoachSuggestion(
            assistant_message=to_trimmed_string(payload.get("assistant_message")),
            next_questions=to_string_list(payload.get("next_questions")),
            extracted_facts=coerce_extracted_facts(payload.get("extracted_facts")),
            missing_fields=missing_fields,
            progress_percent=_progress(payload.get("progress_percent")),
            safety_flags=to_string_list(payload.get("safety_flags")),
            extracted_outputs=coerce_extracted_outputs(payload.get("outputs")),
            raw=raw_text,
        )
    except ValidationError:
        return None


def require_coach_response(raw_text: str) -> CoachSuggestion:
    """Like parse_coach_response, but raises ParseFailure when there is nothing to show."""
    parsed = parse_coach_response(raw_text)
    if parsed is None or not parsed.assistant_message:
        raise ParseFailure("Model response did not contain a usable coach suggestion.")
    return parsed


def _value_is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def compute_missing_fields(intake: IntakeData, facts: FactSet) -> List[str]:
    """Required intake labels still unanswered by either the intake answers or the facts, by priority."""
    incidents = facts.incidents or []

    def has(intake_key: str) -> bool:
        if not _value_is_missing(getattr(intake, intake_key, None)):
            return True
        fact_field = FACT_EQUIVALENTS.get(intake_key)
        if fact_field and not _value_is_missing(getattr(facts, fact_field, None)):
            return True
        if intake_key == "most_recent_incident_at":
            return any(incident.date.strip() for incident in incidents)
        return False

    missing = [
        definition.label
        for definition in INTAKE_FIELD_DEFINITIONS
        if definition.intake_key and not definition.optional and not has(definition.intake_key)
    ]

    if not any(incident.what_happened and incident.date for incident in incidents):
        missing.append("top_events")

    return sorted(missing, key=lambda label: FIELD_LOOKUP[label].priority)


def build_questions_from_missing(missing_fields: Sequence[str], limit: int = 3) -> List[str]:
    definitions = sorted(
        (FIELD_LOOKUP[label] for label in missing_fields if label in FIELD_LOOKUP),
        key=lambda d: d.priority,
    )
    return [d.question for d in definitions[:limit]]


def calculate_progress(missing_fields: Sequence[str]) -> int:
    total = len(REQUIRED_LABELS)
    remaining = len([label for label in missing_fields if label in REQUIRED_LABELS])
    return min(100, max(0, round((total - remaining) / total * 100)))


def merge_outputs(existing: Optional[CaseOutputs], incoming: Optional[CaseOutputs]) -> Optional[CaseOutputs]:
    """Keeps existing artifacts wherever the incoming ones are blank."""
    if existing is None:
        return incoming
    if incoming is None:
        return existing
    return CaseOutputs(
        script_2min=incoming.script_2min or existing.script_2min,
        outline_5min=incoming.outline_5min or existing.outline_5min,
        evidence_checklist=incoming.evidence_checklist or existing.evidence_checklist,
        timeline_summary=incoming.timeline_summary or existing.timeline_summary,
        what_to_bring=incoming.what_to_bring or existing.what_to_bring,
        what_to_expect=incoming.what_to_expect or existing.what_to_expect,
    )


BASE_STYLE = """You are a safety-first, court-friendly information assistant focused ONLY on New York Family Court Orders of Protection.
This is NOT legal advice.

STYLE RULES:
- Be neutral, factual, and chronological.
- Avoid emotional or inflammatory language. Prefer "reported" / "alleged".
- Avoid legal conclusions. Describe actions.
- If uncertainties exist, explicitly flag them in assistant_message.
- DO NOT invent facts. Only use INTAKE DATA or RECENT CONVERSATION.
- Output STRICT JSON ONLY (no markdown, no extra text)."""

INTERVIEW_INSTRUCTION = BASE_STYLE + """
MODE: Interview (investigator). Your goal is to fill missing critical fields with concise, petition-style facts.
For each key incident, ask for: date/time (or approximate date like "early Jan 2026" if exact is unknown), location,
what happened (clear verbs), reported injuries, reported threats (exact quotes if possible), witnesses, and evidence."""

UPDATE_INSTRUCTION = BASE_STYLE + """
MODE: Roadmap Update (updater). The user is providing a new fact to add. Extract and update the JSON.
Do NOT ask follow-up questions unless the new fact is unclear."""

SAFETY_PROBE = (
    "ADDITIONAL SAFETY PROBE: If the user describes general arguing or conflict without specifics, "
    "explicitly ask if there was any physical contact, threats of harm, use of or access to weapons, "
    "or unwanted repetitive contact (harassment/stalking). These details are critical for the petition."
)

RESPONSE_SHAPE = """{
  "assistant_message": string,
  "next_questions": string[],
  "extracted_facts": object,
  "missing_fields": string[],
  "progress_percent": number,
  "safety_flags": string[]
}"""

FACTS_SHAPE = """{
  "parties": { "petitioner": string, "respondent": string },
  "relationship": string,
  "incidents": [{ "date": "...", "time": "...", "location": "...", "whatHappened": "...", "injuries": "...", "threats": "...", "witnesses": "...", "evidence": "..." }],
  "safetyConcerns": [],
  "requestedRelief": [],
  "evidenceList": [],
  "timeline": []
}"""


def build_coach_prompt(
    intake: IntakeData,
    facts: FactSet,
    last_messages: Sequence[ChatTurn],
    user_message: str,
    mode: str = "interview",
) -> Tuple[str, str]:
    """Returns (system_instruction, user_prompt) for one coach turn."""
    system_instruction = UPDATE_INSTRUCTION if mode == "update" else INTERVIEW_INSTRUCTION
    system_instruction = f"{system_instruction}\n\n{SAFETY_PROBE}"

    allowed_labels = ", ".join(f.label for f in INTAKE_FIELD_DEFINITIONS)
    conversation = "\n".join(f"{m.role.upper()}: {m.content}" for m in list(last_messages)[-12:])

    user_prompt = f"""Return STRICT JSON ONLY. The JSON must match exactly:
{RESPONSE_SHAPE}

Allowed missing field labels ONLY (exact text): {allowed_labels}

PRIORITY for follow-up questions (max 3):
relationship/cohabitation -> most recent incident datetime -> injuries/threats -> firearms -> children -> existing cases/orders -> evidence -> requested relief -> top_events.

extracted_facts should align to this structure when possible:
{FACTS_SHAPE}

INTAKE DATA:
{intake.model_dump_json(by_alias=True, indent=2)}

CURRENT FACTS:
{facts.model_dump_json(by_alias=True, exclude_none=True, indent=2)}

RECENT CONVERSATION:
{conversation}

NEW USER MESSAGE:
{user_message}"""

    return system_instruction, user_prompt
