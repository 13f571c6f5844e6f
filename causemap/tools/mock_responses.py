"""
Mock language-model responses for offline runs and tests.

Responses are deterministic in the prompt: the cause name is built from
the most frequent topic in the listed projects, and the wording variant
is chosen by hashing the prompt. Designed to work with pydantic-ai's
FunctionModel.
"""

import hashlib
import json
import logging
import re
from collections import Counter
from typing import Any, Dict, List

from pydantic_ai.messages import ModelRequest, ModelResponse, TextPart, UserPromptPart

logger = logging.getLogger(__name__)

_TOPIC_LINE = re.compile(r"Topics:\s*(.+)")

_MOCK_DESCRIPTIONS = (
    "Open-source projects working on {topic} and closely related problems.",
    "Tools and platforms that advance {topic} for communities worldwide.",
    "Community-driven software focused on {topic}.",
)


def _topics_in_prompt(prompt: str) -> List[str]:
    topics: List[str] = []
    for match in _TOPIC_LINE.finditer(prompt):
        topics.extend(t.strip().lower() for t in match.group(1).split(",") if t.strip())
    return topics


def get_mock_label(prompt: str) -> Dict[str, Any]:
    """Build a deterministic cause label for a labeling prompt."""
    variant = int(hashlib.md5(prompt.encode()).hexdigest()[:8], 16) % len(_MOCK_DESCRIPTIONS)
    counts = Counter(_topics_in_prompt(prompt))
    ranked = [t for t, _ in counts.most_common(5)]
    if not ranked:
        return {
            "name": "Community Technology",
            "description": _MOCK_DESCRIPTIONS[variant].format(topic="community technology"),
            "keywords": ["community", "technology"],
            "confidence": 0.5,
        }
    topic = ranked[0].replace("-", " ")
    return {
        "name": f"{topic.title()} Initiatives",
        "description": _MOCK_DESCRIPTIONS[variant].format(topic=topic),
        "keywords": ranked,
        "confidence": 0.75,
    }


def get_mock_response(prompt: str) -> str:
    """Return the mock JSON text for a prompt."""
    return json.dumps(get_mock_label(prompt))


def get_mock_response_for_function_model(messages: list[Any], info: Any) -> ModelResponse:
    """Adapter for pydantic-ai FunctionModel.

    Extracts the latest user prompt from the message history and returns
    the canned label as a single text part.
    """
    prompt = ""
    for msg in messages:
        if isinstance(msg, ModelRequest):
            for part in msg.parts:
                if isinstance(part, UserPromptPart) and isinstance(part.content, str):
                    prompt = part.content
    text = get_mock_response(prompt)
    logger.debug(f"Mock LLM response: {text[:120]}")
    return ModelResponse(parts=[TextPart(content=text)])
