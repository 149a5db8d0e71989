import time
import logging

from warmintro.backends.base import LLMBackend
from warmintro.config import GEMINI_API_KEY, GEMINI_ENRICHMENT_MODEL, GEMINI_INTENT_MODEL, GEMINI_MESSAGE_MODEL
from warmintro.prompts import sanitize_prompt_input

logger = logging.getLogger(__name__)

_RETRYABLE = (ConnectionError, TimeoutError, RuntimeError)


class GeminiBackend(LLMBackend):
    """Gemini backend. Structured output comes from the native JSON response schema."""

    def __init__(self):
        from google import genai
        self.client = genai.Client(api_key=GEMINI_API_KEY)

    def _structured_call(self, model, system_prompt, user_msg, response_schema,
                         thinking_budget=0, retries=1):
        """Generate JSON matching `response_schema` and return it as a dict."""
        from google.genai.types import GenerateContentConfig, ThinkingConfig

        config = GenerateContentConfig(
            system_instruction=system_prompt,
            response_mime_type="application/json",
            response_schema=response_schema,
            max_output_tokens=4096,
            thinking_config=ThinkingConfig(thinking_budget=thinking_budget),
        )
        contents = [{"role": "user", "parts": [{"text": user_msg}]}]

        for attempt in range(retries + 1):
            start = time.time()
            try:
                response = self.client.models.generate_content(model=model, contents=contents, config=config)
            except _RETRYABLE as exc:
                if attempt == retries:
                    raise
                wait = 2 ** attempt
                logger.warning("Gemini %s failed (attempt %d), retrying in %ds: %s", model, attempt + 1, wait, exc)
                time.sleep(wait)
                continue

            usage = getattr(response, "usage_metadata", None)
            logger.info("Gemini call: model=%s elapsed=%.1fs input=%s output=%s",
                        model, time.time() - start,
                        getattr(usage, "prompt_token_count", "?"),
                        getattr(usage, "candidates_token_count", "?"))
            return response_schema.model_validate_json(response.text).model_dump()

    def extract_contact(self, raw_text, system_prompt, response_schema):
        user_msg = f"<contact>\n{sanitize_prompt_input(raw_text)}\n</contact>"
        return self._structured_call(GEMINI_ENRICHMENT_MODEL, system_prompt, user_msg, response_schema)

    def parse_query(self, query, system_prompt, response_schema):
        user_msg = f"<query>\n{sanitize_prompt_input(query)}\n</query>"
        return self._structured_call(GEMINI_INTENT_MODEL, system_prompt, user_msg, response_schema)

    def write_message(self, context, system_prompt, response_schema):
        user_msg = f"<context>\n{sanitize_prompt_input(context)}\n</context>"
        # Pro models reject a zero thinking budget
        return self._structured_call(
            GEMINI_MESSAGE_MODEL, system_prompt, user_msg, response_schema, thinking_budget=1024,
        )
