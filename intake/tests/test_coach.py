"""
Tests for coach response parsing and interview bookkeeping.
"""
import json

import pytest

from intake.coach import (
    ALLOWED_LABELS,
    INTAKE_FIELD_DEFINITIONS,
    build_coach_prompt,
    build_questions_from_missing,
    calculate_progress,
    compute_missing_fields,
    extract_first_json_object,
    merge_outputs,
    parse_coach_response,
    require_coach_response,
    sanitize_model_output,
)
from intake.exceptions import ParseFailure
from intake.models import CaseOutputs, ChatTurn, FactSet, Incident, IntakeData


def test_fenced_json_with_language_tag():
    raw = (
        "```json\n"
        '{"assistant_message":"Thanks for sharing that.","next_questions":["Q1","Q2"],'
        '"missing_fields":["relationship_category"]}\n'
        "```"
    )
    parsed = parse_coach_response(raw)

    assert parsed is not None
    assert "Thanks" in parsed.assistant_message
    assert len(parsed.next_questions) == 2
    assert "relationship_category" in parsed.missing_fields
    assert parsed.raw == raw


def test_fence_without_language_tag():
    parsed = parse_coach_response('```\n{"assistant_message": "ok"}\n```')
    assert parsed is not None
    assert parsed.assistant_message == "ok"


def test_json_surrounded_by_prose():
    raw = 'Sure! Here is the JSON you asked for: {"assistant_message": "Hello", "progress_percent": 40} Hope it helps.'
    parsed = parse_coach_response(raw)
    assert parsed.assistant_message == "Hello"
    assert parsed.progress_percent == 40


def test_first_valid_object_wins():
    raw = 'noise {not json} then {"assistant_message": "first"} and {"assistant_message": "second"}'
    parsed = parse_coach_response(raw)
    assert parsed.assistant_message == "first"


def test_braces_inside_strings_are_not_counted():
    raw = '{"assistant_message": "use { and } freely", "next_questions": []}'
    assert extract_first_json_object(raw) == raw
    assert parse_coach_response(raw).assistant_message == "use { and } freely"


@pytest.mark.parametrize("raw", [
    "",
    "I cannot help with that.",
    "```json\n{not valid json}\n```",
    "[1, 2, 3]",
    "{",
    "}{",
])
def test_no_valid_object_returns_none(raw: str) -> None:
    assert parse_coach_response(raw) is None


def test_unknown_missing_field_labels_are_dropped():
    raw = json.dumps({
        "assistant_message": "ok",
        "missing_fields": ["relationship_category", "favourite_colour", "top_events"],
    })
    parsed = parse_coach_response(raw)
    assert parsed.missing_fields == ["relationship_category", "top_events"]
    assert set(parsed.missing_fields) <= ALLOWED_LABELS


def test_wrong_types_are_coerced():
    raw = json.dumps({
        "assistant_message": "ok",
        "next_questions": "When did it happen?; Where were you?",
        "extracted_facts": "not an object",
        "progress_percent": 250,
        "safety_flags": None,
    })
    parsed = parse_coach_response(raw)

    assert parsed.next_questions == ["When did it happen?", "Where were you?"]
    assert parsed.extracted_facts == FactSet()
    assert parsed.progress_percent == 100
    assert parsed.safety_flags == []


def test_extracted_facts_use_camel_case_keys():
    raw = json.dumps({
        "assistant_message": "ok",
        "extracted_facts": {
            "parties": {"petitioner": "Ana", "respondent": "Bo"},
            "relationship": "Spouse",
            "incidents": [{"date": "2024-06-15", "whatHappened": "Pushed me", "injuries": "bruise"}],
            "safetyConcerns": ["firearm in the house"],
            "someUnknownKey": True,
        },
    })
    facts = parse_coach_response(raw).extracted_facts

    assert facts.parties.petitioner == "Ana"
    assert facts.relationship == "Spouse"
    assert facts.incidents[0].what_happened == "Pushed me"
    assert facts.safety_concerns == ["firearm in the house"]
    assert facts.timeline is None


def test_outputs_are_parsed_when_present():
    raw = json.dumps({"assistant_message": "ok", "outputs": {"script2Min": "Your Honor..."}})
    parsed = parse_coach_response(raw)
    assert parsed.extracted_outputs.script_2min == "Your Honor..."
    assert parse_coach_response('{"assistant_message": "ok"}').extracted_outputs is None


@pytest.mark.parametrize("raw", [
    None, 12, b"{}", "\x00", "```", "``````", "{" * 500, '{"a": "\\', '{"progress_percent": NaN}',
    '{"progress_percent": "NaN"}', '{"missing_fields": {"a": 1}}', '{"progress_percent": 1e400}',
    '{"progress_percent": -Infinity}', '{"progress_percent": "inf"}',
])
def test_parser_never_raises(raw) -> None:
    parsed = parse_coach_response(raw)
    if parsed is not None:
        assert len(parsed.next_questions) >= 0
        assert set(parsed.missing_fields) <= ALLOWED_LABELS
        assert 0 <= parsed.progress_percent <= 100


@pytest.mark.parametrize("value", ["1e400", "-1e400", "Infinity", "-Infinity", '"inf"'])
def test_infinite_progress_is_zero(value: str) -> None:
    parsed = parse_coach_response('{"assistant_message": "hi", "progress_percent": %s}' % value)
    assert parsed.assistant_message == "hi"
    assert parsed.progress_percent == 0


def test_require_coach_response_raises_parse_failure():
    with pytest.raises(ParseFailure):
        require_coach_response("no json here")
    with pytest.raises(ParseFailure):
        require_coach_response('{"assistant_message": ""}')
    assert require_coach_response('{"assistant_message": "hi"}').assistant_message == "hi"


def test_sanitize_keeps_unfenced_text():
    assert sanitize_model_output('  {"a": 1}  ') == '{"a": 1}'
    assert sanitize_model_output('intro\n```json\n{"a": 1}\n```\noutro') == '{"a": 1}'


def test_everything_missing_on_empty_case():
    missing = compute_missing_fields(IntakeData(), FactSet())
    required = [d.label for d in INTAKE_FIELD_DEFINITIONS if not d.optional]

    assert sorted(missing) == sorted(required)
    assert missing[0] == "relationship_category"
    assert missing[-1] == "top_events"
    assert calculate_progress(missing) == 0


def test_facts_can_satisfy_intake_fields():
    facts = FactSet(
        relationship="Spouse",
        incidents=[Incident(date="2024-06-15", what_happened="Pushed me into a wall")],
    )
    missing = compute_missing_fields(IntakeData(), facts)

    assert "relationship_category" not in missing
    assert "most_recent_incident_datetime" not in missing
    assert "top_events" not in missing
    assert "cohabitation" in missing


def test_optional_fields_never_missing():
    missing = compute_missing_fields(IntakeData(), FactSet())
    assert not any(label.endswith("(optional)") for label in missing)


def test_questions_follow_priority():
    questions = build_questions_from_missing(["evidence_inventory", "cohabitation", "safety_status", "top_events"])
    assert len(questions) == 3
    assert questions[0].startswith("Do you currently live together")
    assert "evidence" in questions[2].lower()


def test_questions_ignore_unknown_labels():
    assert build_questions_from_missing(["nope"]) == []


def test_progress_is_complete_when_nothing_missing():
    assert calculate_progress([]) == 100
    assert calculate_progress(["petitioner_name(optional)"]) == 100


def test_merge_outputs_keeps_existing_when_incoming_blank():
    existing = CaseOutputs(script_2min="old script", what_to_bring=["ID"])
    incoming = CaseOutputs(script_2min="", what_to_bring=["ID", "Photos"])
    merged = merge_outputs(existing, incoming)

    assert merged.script_2min == "old script"
    assert merged.what_to_bring == ["ID", "Photos"]
    assert merge_outputs(None, incoming) is incoming
    assert merge_outputs(existing, None) is existing


def test_prompt_mode_and_context():
    turns = [ChatTurn(role="user", content="He pushed me"), ChatTurn(role="assistant", content="When?")]
    system, user = build_coach_prompt(
        IntakeData(relationship_category="Spouse"), FactSet(), turns, "Last Friday", mode="update"
    )

    assert "Roadmap Update" in system
    assert "ADDITIONAL SAFETY PROBE" in system
    assert "USER: He pushed me" in user
    assert "ASSISTANT: When?" in user
    assert '"relationshipCategory": "Spouse"' in user
    assert user.endswith("Last Friday")

    system, _ = build_coach_prompt(IntakeData(), FactSet(), [], "hi")
    assert "Interview (investigator)" in system
