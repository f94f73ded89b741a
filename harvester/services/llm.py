"""
Adapter for the external classification service.

Model routing follows two tiers:
  - classifier (Flash) for screening, terminology extraction and same-event checks
  - generator (Pro) for milestone / news-event content generation

Model output is untrusted free text. Everything that leaves this module as
structured data has been located, repaired and parsed by parse_json_output().
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from harvester.core.config import get_settings
from harvester.core.errors import MalformedOutputError
from harvester.core.logging import get_logger

logger = get_logger(__name__)

ModelTier = Literal["classifier", "generator"]

_FENCE_RE = re.compile(r"```(?:json)?")
_CLOSER_AHEAD_RE = re.compile(r"\s*[\]}]")
_CLOSERS = {"{": "}", "[": "]"}


def get_chat_model(tier: ModelTier = "classifier", *, temperature: float = 0.0) -> BaseChatModel:
    """Build a Gemini chat model for the requested tier."""
    settings = get_settings()
    model = settings.model_generator if tier == "generator" else settings.model_classifier
    return ChatGoogleGenerativeAI(
        model=model,
        temperature=temperature,
        google_api_key=settings.google_api_key,
    )


def response_text(message: BaseMessage) -> str:
    """Flatten a chat response to plain text (Gemini may return a list of parts)."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for part in content:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type", "text") == "text":
            parts.append(str(part.get("text", "")))
    return "".join(parts)


async def complete(llm: BaseChatModel, prompt: str, *, system: str | None = None) -> str:
    """Send one prompt and return the raw response text."""
    messages: list[BaseMessage] = []
    if system:
        messages.append(SystemMessage(content=system))
    messages.append(HumanMessage(content=prompt))
    response = await llm.ainvoke(messages)
    return response_text(response)


# ═══════════════════════════════════════════════════════════════
# JSON recovery
# ═══════════════════════════════════════════════════════════════
def extract_json_fragment(text: str, opener: str = "{") -> str | None:
    """
    Return the first JSON value starting with ``opener`` embedded in ``text``.

    The fragment ends where its brackets balance. If they never do (the model
    ran out of tokens) everything after the opener is returned for repair.
    """
    text = _FENCE_RE.sub("", text)
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:].rstrip()


def _drop_trailing_commas(text: str) -> str:
    """Remove commas that directly precede a closing bracket, leaving string contents alone."""
    out: list[str] = []
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "," and _CLOSER_AHEAD_RE.match(text, i + 1):
            continue
        out.append(ch)
    return "".join(out)


def repair_json(fragment: str) -> str:
    """
    Best-effort fix for the malformations the model actually produces.

    Trailing commas are dropped. A truncated fragment is cut back to its last
    complete top-level element and closed; when no element completed, the open
    string and brackets are closed in order.
    """
    text = _drop_trailing_commas(fragment)

    stack: list[str] = []
    in_string = False
    escaped = False
    last_complete: int | None = None
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append(ch)
        elif ch in "}]":
            if stack:
                stack.pop()
            if len(stack) == 1:
                last_complete = i

    if not stack and not in_string:
        return text

    if stack and last_complete is not None:
        return text[: last_complete + 1] + _CLOSERS[stack[0]]

    if in_string:
        text += '"'
    text = text.rstrip().rstrip(",")
    text += "".join(_CLOSERS[b] for b in reversed(stack))
    return _drop_trailing_commas(text)


def parse_json_output(text: str, kind: Literal["object", "array"] = "object") -> Any:
    """
    Locate, repair and parse the JSON value in a model response.

    Raises MalformedOutputError when no value of the requested kind can be recovered.
    """
    opener = "{" if kind == "object" else "["
    fragment = extract_json_fragment(text, opener)
    if fragment is None:
        raise MalformedOutputError(f"No JSON {kind} found in model output", text)

    try:
        value = json.loads(repair_json(fragment))
    except json.JSONDecodeError as e:
        raise MalformedOutputError(f"Unparseable JSON {kind}: {e.msg}", text) from e

    expected = dict if kind == "object" else list
    if not isinstance(value, expected):
        raise MalformedOutputError(f"Expected a JSON {kind}", text)
    return value
