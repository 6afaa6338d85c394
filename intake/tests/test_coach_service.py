import json
from unittest.mock import MagicMock

from intake.exceptions import LLMServiceError
from intake.models import ChatTurn, CoachRequest, FactSet, IntakeData, Parties
from intake.services.coach_service import build_fallback_response, collect_safety_flags, run_coach_turn


def fake_client(text: str = "", error: Exception = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.complete.side_effect = error
    else:
        client.complete.return_value = text
    return client


def test_safety_flags_from_intake_answer():
    flags = collect_safety_flags(IntakeData(safety_status="Immediate danger"), "", [])
    assert flags == ["immediate_danger"]


def test_safety_flags_from_earlier_user_messages_only():
    turns = [
        ChatTurn(role="assistant", content="Did he point a gun at you?"),
        ChatTurn(role="user", content="He choked me last week"),
    ]
    flags = collect_safety_flags(IntakeData(), "We argued.", turns)

    assert "immediate_danger" in flags
    assert "strangulation" in flags
    assert "weapon_use" not in flags


def test_fallback_lists_next_questions():
    response = build_fallback_response(CoachRequest())
    assert "I still need:" in response.assistant_message
    assert len(response.next_questions) == 3
    assert response.progress_percent == 0


def test_without_client_fallback():
    response = run_coach_turn(CoachRequest(user_message="hi"), None)
    assert "GEMINI_API_KEY" in response.assistant_message


def test_llm_error_falls_back():
    client = fake_client(error=LLMServiceError("Gemini API error 500", upstream_status=500))
    response = run_coach_turn(CoachRequest(user_message="hi"), client)
    assert response.assistant_message.startswith("Thanks for sharing.")


def test_model_facts_are_merged_before_missing_fields():
    request = CoachRequest(
        intake=IntakeData(cohabitation="Never lived together"),
        facts=FactSet(parties=Parties(petitioner="Ana")),
        user_message="He is my ex-boyfriend.",
    )
    client = fake_client(json.dumps({
        "assistant_message": "Thanks. When was the most recent incident?",
        "extracted_facts": {"relationship": "Dating"},
        "missing_fields": [],
        "progress_percent": 99,
    }))

    response = run_coach_turn(request, client)

    assert "relationship_category" not in response.missing_fields
    assert "cohabitation" not in response.missing_fields
    assert response.missing_fields[0] == "most_recent_incident_datetime"
    assert response.extracted_facts == {"relationship": "Dating"}
    assert response.progress_percent == 20

    call = client.complete.call_args
    assert "He is my ex-boyfriend." in call.args[0]
    assert "Interview" in call.kwargs["system_instruction"]


def test_model_safety_flags_are_added_once():
    client = fake_client(json.dumps({"assistant_message": "ok", "safety_flags": ["immediate_danger", "stalking"]}))
    response = run_coach_turn(CoachRequest(user_message="I am in immediate danger"), client)
    assert response.safety_flags.count("immediate_danger") == 1
    assert "stalking" in response.safety_flags
