import time
import logging
import anthropic

from warmintro.backends.base import LLMBackend
from warmintro.config import ANTHROPIC_API_KEY, ENRICHMENT_MODEL, INTENT_MODEL, MESSAGE_MODEL
from warmintro.prompts import sanitize_prompt_input

logger = logging.getLogger(__name__)

_RETRYABLE = (anthropic.APITimeoutError, anthropic.APIConnectionError, anthropic.RateLimitError)

_TOOL_DESCRIPTIONS = {
    "report_contact": "Report the structured fields extracted from one contact record",
    "report_intent": "Report the search filter parsed from the user's query",
    "report_message": "Report the drafted introduction message",
}


class ClaudeBackend(LLMBackend):
    """Claude backend. Every call forces a single tool so the reply is schema-shaped JSON."""

    def __init__(self):
        self.client = anthropic.Anthropic(api_key=ANTHROPIC_API_KEY)

    def _tool_use_call(self, model, system, user_content, schema_class, tool_name,
                       retries=1, max_tokens=1024):
        """Call the model with a forced tool and validate its input against `schema_class`.

        Timeouts, connection errors and 429s are retried with exponential backoff;
        anything else propagates to the collaborator, which decides how to degrade.
        """
        request = dict(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user_content}],
            tools=[{
                "name": tool_name,
                "description": _TOOL_DESCRIPTIONS[tool_name],
                "input_schema": schema_class.model_json_schema(),
            }],
            tool_choice={"type": "tool", "name": tool_name},
        )
        for attempt in range(retries + 1):
            start = time.time()
            try:
                message = self.client.messages.create(**request)
            except _RETRYABLE as exc:
                if attempt == retries:
                    raise
                wait = 2 ** attempt
                logger.warning("%s failed (attempt %d), retrying in %ds: %s", tool_name, attempt + 1, wait, exc)
                time.sleep(wait)
                continue

            usage = getattr(message, "usage", None)
            logger.info(
                "API call %s: model=%s elapsed=%.1fs stop=%s input=%s output=%s cache_read=%s",
                tool_name, model, time.time() - start, message.stop_reason,
                getattr(usage, "input_tokens", "?"),
                getattr(usage, "output_tokens", "?"),
                getattr(usage, "cache_read_input_tokens", 0),
            )
            tool_input = next((b.input for b in message.content if b.type == "tool_use"), None)
            if tool_input is None:
                raise ValueError(f"No tool_use block in response for {tool_name}")
            return schema_class.model_validate(tool_input)

    def extract_contact(self, raw_text, system_prompt, response_schema):
        # Same system prompt for every contact in an import
        system = [{"type": "text", "text": system_prompt, "cache_control": {"type": "ephemeral"}}]
        result = self._tool_use_call(
            ENRICHMENT_MODEL, system,
            f"<contact>\n{sanitize_prompt_input(raw_text)}\n</contact>",
            response_schema, "report_contact",
        )
        return result.model_dump()

    def parse_query(self, query, system_prompt, response_schema):
        result = self._tool_use_call(
            INTENT_MODEL, [{"type": "text", "text": system_prompt}],
            f"<query>\n{sanitize_prompt_input(query)}\n</query>",
            response_schema, "report_intent", max_tokens=512,
        )
        return result.model_dump()

    def write_message(self, context, system_prompt, response_schema):
        result = self._tool_use_call(
            MESSAGE_MODEL, [{"type": "text", "text": system_prompt}],
            f"<context>\n{sanitize_prompt_input(context)}\n</context>",
            response_schema, "report_message",
        )
        return result.model_dump()
