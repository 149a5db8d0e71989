import logging
from pydantic import BaseModel

from warmintro.backends.base import LLMBackend
from warmintro.models import IntroMessage
from warmintro.prompts import CONNECTOR_MESSAGE_PROMPT, REQUESTER_MESSAGE_PROMPT

logger = logging.getLogger(__name__)


# --- Pydantic schema for structured output ---

class MessageDraft(BaseModel):
    subject: str
    body: str


class RequesterContext(BaseModel):
    requester_name: str
    requester_info: str
    connector_first_name: str
    target_company: str
    reason: str
    essay: str | None = None


class ConnectorContext(BaseModel):
    connector_name: str
    requester_name: str
    requester_pitch: str
    target_company: str
    essay: str | None = None


def requester_fallback(ctx: RequesterContext) -> IntroMessage:
    return IntroMessage(
        subject=f"Introduction to {ctx.target_company}",
        body=(f"Hi {ctx.connector_first_name}, I'm interested in connecting with someone at "
              f"{ctx.target_company}. {ctx.reason}"),
    )


def connector_fallback(ctx: ConnectorContext) -> IntroMessage:
    return IntroMessage(
        subject=f"Introduction: {ctx.requester_name}",
        body=f"Hi! I wanted to introduce you to {ctx.requester_name}. {ctx.requester_pitch}",
    )


def _format_requester_context(ctx: RequesterContext) -> str:
    lines = [
        f"Requester name: {ctx.requester_name}",
        f"Requester uni/role: {ctx.requester_info}",
        f"Connector name (first): {ctx.connector_first_name}",
        f"Target company: {ctx.target_company}",
        f"Reason/goal: {ctx.reason}",
    ]
    if ctx.essay:
        lines.append(f"Longer pitch: {ctx.essay}")
    return "\n".join(lines)


def _format_connector_context(ctx: ConnectorContext) -> str:
    lines = [
        f"Connector name: {ctx.connector_name}",
        f"Requester name: {ctx.requester_name}",
        f"Requester short pitch: {ctx.requester_pitch}",
        f"Target company: {ctx.target_company}",
    ]
    if ctx.essay:
        lines.append(f"Longer pitch: {ctx.essay}")
    return "\n".join(lines)


class MessageWriter:
    """Message generation collaborator. Always returns a usable message."""

    def __init__(self, backend: LLMBackend | None):
        self.backend = backend

    def _draft(self, context: str, system_prompt: str, fallback: IntroMessage) -> IntroMessage:
        if self.backend is None:
            return fallback
        try:
            draft = MessageDraft.model_validate(
                self.backend.write_message(context, system_prompt, MessageDraft)
            )
        except Exception as exc:
            logger.warning("Message generation failed, using template: %s", exc)
            return fallback
        return IntroMessage(
            subject=draft.subject.strip() or fallback.subject,
            body=draft.body.strip() or fallback.body,
        )

    def requester_to_connector(self, ctx: RequesterContext) -> IntroMessage:
        """Message the requester can send to ask the connector for an intro."""
        return self._draft(_format_requester_context(ctx), REQUESTER_MESSAGE_PROMPT, requester_fallback(ctx))

    def connector_to_target(self, ctx: ConnectorContext) -> IntroMessage:
        """Forwardable message from the connector to their contact at the target company."""
        return self._draft(_format_connector_context(ctx), CONNECTOR_MESSAGE_PROMPT, connector_fallback(ctx))
