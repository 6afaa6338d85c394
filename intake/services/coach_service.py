import logging
from typing import Iterable, List, Optional

from intake.coach import (
    build_coach_prompt,
    build_questions_from_missing,
    calculate_progress,
    compute_missing_fields,
    require_coach_response,
)
from intake.exceptions import LLMServiceError, ParseFailure
from intake.merge_facts import merge_facts
from intake.models import ChatTurn, CoachRequest, CoachResponse, FactSet, IntakeData
from intake.safety import detect_danger
from intake.services.gemini_client import GeminiClient

logger = logging.getLogger(__name__)

IMMEDIATE_DANGER_FLAG = "immediate_danger"

EMERGENCY_NOTICE = (
    " If anything feels unsafe right now, contact emergency services (911) "
    "or the National DV Hotline (1-800-799-7233)."
)


def collect_safety_flags(intake: IntakeData, user_message: str, last_messages: Iterable[ChatTurn]) -> List[str]:
    """Safety flags from the intake answer, the new message and earlier user messages."""
    flags = {}
    if intake.safety_status.lower() == "immediate danger":
        flags[IMMEDIATE_DANGER_FLAG] = True

    texts = [user_message] + [m.content for m in last_messages if m.role == "user"]
    for text in texts:
        result = detect_danger(text)
        if result.immediate_danger:
            flags[IMMEDIATE_DANGER_FLAG] = True
        for category in result.matched_categories:
            flags[category] = True
    return list(flags)


def build_fallback_response(request: CoachRequest, preamble: Optional[str] = None) -> CoachResponse:
    """A deterministic turn used when the model is unavailable or its output is unusable."""
    missing_fields = compute_missing_fields(request.intake, request.facts)
    next_questions = build_questions_from_missing(missing_fields, 3)

    message = preamble or (
        "Thanks for sharing. I can help organize New York Family Court Order of Protection "
        "information in a neutral, factual way."
    )
    message += EMERGENCY_NOTICE
    if next_questions:
        message += "\n\nTo keep this court-friendly and clear, I still need:\n- " + "\n- ".join(next_questions)

    return CoachResponse(
        assistant_message=message,
        next_questions=next_questions,
        extracted_facts={},
        missing_fields=missing_fields,
        progress_percent=calculate_progress(missing_fields),
        safety_flags=collect_safety_flags(request.intake, request.user_message, request.last_messages),
    )


def run_coach_turn(request: CoachRequest, client: Optional[GeminiClient]) -> CoachResponse:
    """
    One interview turn: prompt the model, parse its suggestion, merge the
    extracted facts, then recompute what is still missing from the merged facts.
    """
    if client is None:
        return build_fallback_response(
            request,
            preamble=(
                "The coach model is not configured. Add GEMINI_API_KEY to enable coach responses. "
                "This tool provides information-only guidance and does not give legal advice."
            ),
        )

    system_instruction, user_prompt = build_coach_prompt(
        request.intake, request.facts, request.last_messages, request.user_message, request.mode
    )

    try:
        raw_text = client.complete(user_prompt, system_instruction=system_instruction)
    except LLMServiceError as e:
        logger.warning(f"Coach turn fell back to deterministic response: {e.detail}")
        return build_fallback_response(request)

    try:
        suggestion = require_coach_response(raw_text)
    except ParseFailure as e:
        # Show whatever the model said; only the structured parts are lost this turn.
        logger.info(f"{e.detail} Showing raw model text.")
        return build_fallback_response(request, preamble=raw_text.strip() or None)

    merged: FactSet = merge_facts(request.facts, suggestion.extracted_facts)
    missing_fields = compute_missing_fields(request.intake, merged)
    next_questions = build_questions_from_missing(missing_fields, 3) if request.mode == "interview" else []

    safety_flags = collect_safety_flags(request.intake, request.user_message, request.last_messages)
    safety_flags += [flag for flag in suggestion.safety_flags if flag not in safety_flags]

    return CoachResponse(
        assistant_message=suggestion.assistant_message,
        next_questions=next_questions,
        extracted_facts=suggestion.extracted_facts.model_dump(by_alias=True, exclude_none=True),
        missing_fields=missing_fields,
        progress_percent=calculate_progress(missing_fields),
        safety_flags=safety_flags,
    )
