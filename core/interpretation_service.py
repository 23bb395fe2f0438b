"""
Interpretation service for the radar intake.

Asks Claude to read the user's free-text input as a radar proposal and
streams the raw JSON text back as it is generated.

Flow
────
interpret_streaming(text)
  → yields JSON text deltas in real time while Claude writes the
    interpretation (what / when / why)
  → the web layer forwards each delta as an SSE ``chunk`` event and the
    client-side InterpretationClient parses them incrementally
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator

import anthropic

logger = logging.getLogger(__name__)

INTERPRET_MODEL = "claude-haiku-4-5"   # fast first token matters while typing

INTERPRET_SYSTEM = (
    "You turn a short free-text request into a configuration for a 'radar', "
    "a recurring web monitor. Return only JSON matching the schema, no "
    "commentary, no markdown fences. Write the fields in order: what, when, why. "
    "what.topic is a short formal title; what.description says what will be "
    "tracked. when.frequency is how often to check. Offer exactly three "
    "when.options and mark exactly one isRecommended. why.intent explains in "
    "1-2 sentences why this is worth tracking; why.insights lists up to three "
    "things the user might learn. Set what.isValid to false when the request "
    "cannot be monitored."
)

#: JSON schema used for structured output.
INTERPRET_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "what": {
            "type": "object",
            "properties": {
                "topic": {"type": "string"},
                "description": {"type": "string"},
                "isValid": {"type": "boolean"},
                "confidence": {"type": "number"},
            },
            "required": ["topic", "description", "isValid", "confidence"],
            "additionalProperties": False,
        },
        "when": {
            "type": "object",
            "properties": {
                "frequency": {
                    "type": "string",
                    "enum": ["hourly", "daily", "weekly", "monthly"],
                },
                "scheduleDescription": {"type": "string"},
                "notifyCondition": {
                    "type": "string",
                    "enum": ["always", "significant_change", "threshold", "never"],
                },
                "options": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "value": {"type": "string"},
                            "isRecommended": {"type": "boolean"},
                        },
                        "required": ["label", "value", "isRecommended"],
                        "additionalProperties": False,
                    },
                },
            },
            "required": ["frequency", "scheduleDescription", "notifyCondition", "options"],
            "additionalProperties": False,
        },
        "why": {
            "type": "object",
            "properties": {
                "intent": {"type": "string"},
                "insights": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["intent", "insights"],
            "additionalProperties": False,
        },
    },
    "required": ["what", "when", "why"],
    "additionalProperties": False,
}


def interpret_streaming(
    text: str,
    model: str = INTERPRET_MODEL,
) -> Generator[str, None, None]:
    """Stream Claude's JSON interpretation of *text*.

    Yields raw text deltas; concatenated they form one JSON document in the
    shape of :class:`core.models.Interpretation`.

    Args:
        text: The user's free-text input.
        model: Claude model name.

    Raises:
        ValueError: If text is blank.
        anthropic.APIError: On API errors.
    """
    text = text.strip()
    if not text:
        raise ValueError("Text to interpret must not be empty.")

    client = anthropic.Anthropic(api_key=os.environ["ANTHROPIC_API_KEY"])
    logger.info("Interpreting input=%r model=%s", text, model)

    with client.messages.stream(
        model=model,
        max_tokens=700,
        system=INTERPRET_SYSTEM,
        messages=[{"role": "user", "content": text}],
        output_config={
            "format": {"type": "json_schema", "schema": INTERPRET_SCHEMA}
        },
    ) as stream:
        for event in stream:
            if getattr(event, "type", None) != "content_block_delta":
                continue
            delta = getattr(event, "delta", None)
            if delta and getattr(delta, "type", None) == "text_delta":
                yield delta.text
