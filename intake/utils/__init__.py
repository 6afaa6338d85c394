from typing import Any
from google import genai
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

def is_rate_limit_error(e: Exception) -> bool:
    """Returns True only if it is a genuine quota/rate limit issue."""
    msg = str(e).lower()
    # Check for the specific 429 status code or explicit quota messages
    if "429" in msg or "quota exceeded" in msg or "rate limit" in msg:
        return True
    code = getattr(e, "code", None)
    return code in (429, 500, 502, 503)

@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=3),
    retry=retry_if_exception(is_rate_limit_error),
    reraise=True
)
def generate_content_with_retry(client: genai.Client, model: str, contents: Any, config: Any) -> Any:
    """Wraps Gemini content generation with exponential backoff retries on 429 and 5xx."""
    return client.models.generate_content(
        model=model,
        contents=contents,
        config=config
    )
