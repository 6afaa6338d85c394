import pytest
from unittest.mock import MagicMock, patch
from google.genai import errors

from intake.exceptions import LLMServiceError
from intake.services.gemini_client import GeminiClient

SETTINGS = {"model": {"id": "test-model", "temperature": 0.1, "top_p": 0.8, "max_output_tokens": 512}}


def part(text, thought=False) -> MagicMock:
    mock_part = MagicMock()
    mock_part.text = text
    mock_part.thought = thought
    return mock_part


def test_requires_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(ValueError):
        GeminiClient(settings=SETTINGS)


@patch("google.genai.Client")
def test_rejects_empty_prompt(mock_genai_client: MagicMock) -> None:
    with pytest.raises(ValueError):
        GeminiClient(api_key="key", settings=SETTINGS).complete("   ")


@patch("google.genai.Client")
def test_joins_non_thought_parts(mock_genai_client: MagicMock, monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_MODEL", raising=False)
    mock_instance = mock_genai_client.return_value
    mock_candidate = MagicMock()
    mock_candidate.content.parts = [part("thinking...", thought=True), part('{"assistant_'), part('message": "hi"}')]
    mock_response = MagicMock()
    mock_response.candidates = [mock_candidate]
    mock_instance.models.generate_content.return_value = mock_response

    text = GeminiClient(api_key="key", settings=SETTINGS).complete("prompt", system_instruction="system")

    assert text == '{"assistant_message": "hi"}'
    kwargs = mock_instance.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["contents"] == "prompt"
    assert kwargs["config"].system_instruction == "system"
    assert kwargs["config"].temperature == 0.1


@patch("google.genai.Client")
def test_model_override_from_environment(mock_genai_client: MagicMock, monkeypatch) -> None:
    monkeypatch.setenv("GEMINI_MODEL", "override-model")
    assert GeminiClient(api_key="key", settings=SETTINGS).model_id == "override-model"


@patch("google.genai.Client")
def test_empty_candidates_yield_empty_text(mock_genai_client: MagicMock) -> None:
    mock_response = MagicMock()
    mock_response.candidates = []
    mock_genai_client.return_value.models.generate_content.return_value = mock_response

    assert GeminiClient(api_key="key", settings=SETTINGS).complete("prompt") == ""


@patch("google.genai.Client")
def test_blocked_candidate_yields_empty_text(mock_genai_client: MagicMock) -> None:
    mock_candidate = MagicMock()
    mock_candidate.finish_reason = "SAFETY"
    mock_candidate.content = None
    mock_response = MagicMock()
    mock_response.candidates = [mock_candidate]
    mock_genai_client.return_value.models.generate_content.return_value = mock_response

    assert GeminiClient(api_key="key", settings=SETTINGS).complete("prompt") == ""


@patch("google.genai.Client")
def test_client_error_becomes_llm_service_error(mock_genai_client: MagicMock) -> None:
    mock_genai_client.return_value.models.generate_content.side_effect = errors.ClientError(
        400, {"error": {"code": 400, "message": "bad request", "status": "INVALID_ARGUMENT"}}
    )

    with pytest.raises(LLMServiceError) as exc_info:
        GeminiClient(api_key="key", settings=SETTINGS).complete("prompt")

    assert exc_info.value.upstream_status == 400
    assert exc_info.value.status_code == 502
    assert "bad request" in exc_info.value.body


@patch("google.genai.Client")
@patch("tenacity.nap.time.sleep", side_effect=lambda x: None)
def test_rate_limit_retries_then_succeeds(mock_sleep: MagicMock, mock_genai_client: MagicMock) -> None:
    mock_candidate = MagicMock()
    mock_candidate.content.parts = [part("ok")]
    mock_response = MagicMock()
    mock_response.candidates = [mock_candidate]
    mock_instance = mock_genai_client.return_value
    mock_instance.models.generate_content.side_effect = [
        errors.ClientError(429, {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}),
        mock_response,
    ]

    assert GeminiClient(api_key="key", settings=SETTINGS).complete("prompt") == "ok"
    assert mock_instance.models.generate_content.call_count == 2


@patch("google.genai.Client")
@patch("tenacity.nap.time.sleep", side_effect=lambda x: None)
def test_rate_limit_exhausted_maps_to_429(mock_sleep: MagicMock, mock_genai_client: MagicMock) -> None:
    mock_genai_client.return_value.models.generate_content.side_effect = errors.ClientError(
        429, {"error": {"code": 429, "message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}}
    )

    with pytest.raises(LLMServiceError) as exc_info:
        GeminiClient(api_key="key", settings=SETTINGS).complete("prompt")

    assert exc_info.value.status_code == 429
    assert exc_info.value.type == "RateLimitError"
