import re
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

LIST_DELIMITERS = re.compile(r"\n|,|;|•")


def to_trimmed_string(value: Any) -> str:
    """Coerces an LLM-supplied scalar into a trimmed string."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def to_string_list(value: Any) -> List[str]:
    """
    Accepts a list of scalars or a single delimited string ("a, b; c")
    and returns the non-blank trimmed entries.
    """
    if isinstance(value, (list, tuple)):
        items = [to_trimmed_string(v) for v in value]
    else:
        text = to_trimmed_string(value)
        items = [part.strip() for part in LIST_DELIMITERS.split(text)] if text else []
    return [item for item in items if item]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        extra='ignore',
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class CaseStatus(str, Enum):
    INTERVIEW = "interview"
    SUMMARY = "summary"
    ROADMAP = "roadmap"


class IntakeData(CamelModel):
    petitioner_name: str = ""
    respondent_name: str = ""
    relationship_category: str = ""
    cohabitation: str = ""
    most_recent_incident_at: str = ""
    pattern_of_incidents: str = ""
    children_involved: str = ""
    existing_cases_orders: str = ""
    firearms_access: str = ""
    safety_status: str = ""
    incident_location: str = ""
    evidence_inventory: str = ""
    requested_relief: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str:
        return to_trimmed_string(value)


class Parties(CamelModel):
    petitioner: Optional[str] = None
    respondent: Optional[str] = None

    @field_validator("petitioner", "respondent", mode="before")
    @classmethod
    def _coerce_name(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return to_trimmed_string(value)


class Incident(CamelModel):
    date: str = ""
    time: str = ""
    location: str = ""
    what_happened: str = ""
    injuries: str = ""
    threats: str = ""
    witnesses: str = ""
    evidence: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> str:
        return to_trimmed_string(value)


class FactSet(CamelModel):
    """
    Structured extraction of a litigant's situation.

    Every sequence field is either None (not yet known) or non-empty.
    An empty list is normalized to None on construction so that an omitted
    field and an empty one mean the same thing.
    """
    parties: Optional[Parties] = None
    relationship: Optional[str] = None
    incidents: Optional[List[Incident]] = None
    safety_concerns: Optional[List[str]] = None
    requested_relief: Optional[List[str]] = None
    evidence_list: Optional[List[str]] = None
    timeline: Optional[List[str]] = None

    @field_validator("parties", mode="before")
    @classmethod
    def _coerce_parties(cls, value: Any) -> Any:
        if isinstance(value, (dict, Parties)) or value is None:
            return value
        return None

    @field_validator("relationship", mode="before")
    @classmethod
    def _coerce_relationship(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return to_trimmed_string(value)

    @field_validator("incidents", mode="before")
    @classmethod
    def _coerce_incidents(cls, value: Any) -> Optional[list]:
        if not isinstance(value, (list, tuple)):
            return None
        incidents = [item for item in value if isinstance(item, (dict, Incident))]
        return incidents or None

    @field_validator("safety_concerns", "requested_relief", "evidence_list", "timeline", mode="before")
    @classmethod
    def _coerce_string_lists(cls, value: Any) -> Optional[List[str]]:
        if value is None:
            return None
        return to_string_list(value) or None


SEQUENCE_FIELDS = ("incidents", "safety_concerns", "requested_relief", "evidence_list", "timeline")


class CaseOutputs(CamelModel):
    script_2min: str = Field("", alias="script2Min")
    outline_5min: List[str] = Field(default_factory=list, alias="outline5Min")
    evidence_checklist: List[str] = Field(default_factory=list)
    timeline_summary: List[str] = Field(default_factory=list)
    what_to_bring: List[str] = Field(default_factory=list)
    what_to_expect: List[str] = Field(default_factory=list)

    @field_validator("script_2min", mode="before")
    @classmethod
    def _coerce_script(cls, value: Any) -> str:
        return to_trimmed_string(value)

    @field_validator(
        "outline_5min", "evidence_checklist", "timeline_summary", "what_to_bring", "what_to_expect",
        mode="before",
    )
    @classmethod
    def _coerce_lists(cls, value: Any) -> List[str]:
        return to_string_list(value)


class CoachMessage(CamelModel):
    id: str
    role: str = Field(..., pattern="^(user|assistant|system)$")
    content: str
    created_at: datetime


class SafetyState(CamelModel):
    immediate_danger: bool = False
    notes: str = ""
    flags: List[str] = Field(default_factory=list)


class CaseFile(CamelModel):
    id: str
    status: CaseStatus = CaseStatus.INTERVIEW
    facts: FactSet = Field(default_factory=FactSet)
    outputs: CaseOutputs = Field(default_factory=CaseOutputs)
    created_at: datetime
    updated_at: datetime
    intake: IntakeData = Field(default_factory=IntakeData)
    turn_count: int = 0
    messages: List[CoachMessage] = Field(default_factory=list)
    assumptions: List[str] = Field(default_factory=list)
    uncertainties: List[str] = Field(default_factory=list)
    safety: SafetyState = Field(default_factory=SafetyState)


class StoreSnapshot(CamelModel):
    version: int = 1
    cases: List[CaseFile] = Field(default_factory=list)
    active_case_id: Optional[str] = None


class CoachSuggestion(BaseModel):
    model_config = ConfigDict(extra='ignore')
    assistant_message: str = ""
    next_questions: List[str] = Field(default_factory=list)
    extracted_facts: FactSet = Field(default_factory=FactSet)
    missing_fields: List[str] = Field(default_factory=list)
    progress_percent: int = Field(0, ge=0, le=100)
    safety_flags: List[str] = Field(default_factory=list)
    extracted_outputs: Optional[CaseOutputs] = None
    raw: str = ""


class SessionRecord(CamelModel):
    id: str
    created_at: str
    updated_at: str
    payload: Any = None


class SessionWriteResponse(CamelModel):
    id: str
    created_at: str
    updated_at: str


class ChatTurn(BaseModel):
    model_config = ConfigDict(extra='ignore')
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str = Field(..., max_length=5000)


class CoachRequest(CamelModel):
    intake: IntakeData = Field(default_factory=IntakeData)
    facts: FactSet = Field(default_factory=FactSet)
    last_messages: List[ChatTurn] = Field(default_factory=list, max_length=20)
    user_message: str = Field("", max_length=5000)
    mode: str = Field("interview", pattern="^(interview|update)$")


class CoachResponse(BaseModel):
    model_config = ConfigDict(extra='ignore')
    assistant_message: str
    next_questions: List[str] = Field(default_factory=list)
    extracted_facts: dict = Field(default_factory=dict)
    missing_fields: List[str] = Field(default_factory=list)
    progress_percent: int = 0
    safety_flags: List[str] = Field(default_factory=list)


class StandardErrorResponse(BaseModel):
    model_config = ConfigDict(extra='ignore')
    error: bool = True
    type: str
    detail: str


class HealthResponse(BaseModel):
    model_config = ConfigDict(extra='ignore', from_attributes=True)
    status: str
    message: str
