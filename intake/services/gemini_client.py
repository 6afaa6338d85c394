import logging
import os
from typing import Any, Dict, Optional

from google import genai
from google.genai import errors, types

from intake.config_loader import get_settings
from intake.exceptions import LLMServiceError
from intake.utils import generate_content_with_retry

logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Completion boundary for the coach: a prompt goes in, unstructured text
    (expected to contain a JSON payload) comes out.
    """

    def __init__(self, api_key: Optional[str] = None, settings: Optional[Dict[str, Any]] = None):
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError("Gemini API key is required")
        self.settings = settings or get_settings()
        self.model_id = os.getenv("GEMINI_MODEL") or self.settings["model"]["id"]
        self.client = genai.Client(api_key=api_key)

    def _config(self, system_instruction: Optional[str]) -> types.GenerateContentConfig:
        model_settings = self.settings["model"]
        return types.GenerateContentConfig(
            system_instruction=system_instruction or None,
            temperature=model_settings.get("temperature", 0.2),
            top_p=model_settings.get("top_p", 0.9),
            max_output_tokens=model_settings.get("max_output_tokens", 2048),
        )

    def complete(self, user_prompt: str, system_instruction: Optional[str] = None) -> str:
        if not user_prompt or not user_prompt.strip():
            raise ValueError("User prompt cannot be empty")

        try:
            response = generate_content_with_retry(
                client=self.client,
                model=self.model_id,
                contents=user_prompt,
                config=self._config(system_instruction),
            )
        except errors.APIError as e:
            body = e.message or str(e)
            logger.error(f"Gemini API error {e.code}: {body}")
            raise LLMServiceError(f"Gemini API error {e.code}: {body}", upstream_status=e.code, body=body)

        if not response.candidates:
            return ""
        candidate = response.candidates[0]
        if candidate.content is None or not candidate.content.parts:
            logger.info(f"Gemini returned no content (finish reason: {candidate.finish_reason})")
            return ""
        return "".join(p.text for p in candidate.content.parts if p.text and not p.thought)
