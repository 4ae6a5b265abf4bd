from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Dict

from openai import OpenAI
from pydantic import TypeAdapter, ValidationError

from .log import get_logger

log = get_logger(__name__)

RAW_FALLBACK_KEY = "_raw"

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", flags=re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


# Any JSON object is kept as returned; the description keys are a prompt convention, not enforced.
_REPLY_OBJECT = TypeAdapter(Dict[str, Any])


@dataclass
class ChatResult:
    text: str
    ms: int


def chat(
    *,
    api_key: str,
    base_url: str,
    model: str,
    system_prompt: str,
    user_message: str,
    timeout_s: int,
    max_tokens: int = 0,
    label: str = "",
    client: Any = None,
) -> ChatResult:
    """One chat-completions round trip against an OpenAI-compatible endpoint. No retries."""
    t0 = time.time()
    if client is None:
        client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout_s, max_retries=0)
    log.info("LLM request start (%s): model=%s timeout_s=%d", label or "-", model, timeout_s)
    extra: Dict[str, Any] = {}
    if max_tokens > 0:
        extra["max_tokens"] = max_tokens
    resp = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_message},
        ],
        **extra,
    )
    ms = int((time.time() - t0) * 1000)
    choices = getattr(resp, "choices", None) or []
    if not choices:
        raise ValueError(f"LLM response has no choices ({label or '-'})")
    content = choices[0].message.content or ""
    log.info("LLM request done (%s): chars=%d elapsed_ms=%d", label or "-", len(content), ms)
    return ChatResult(text=content.strip(), ms=ms)


def strip_code_fence(raw_text: str) -> str:
    raw = (raw_text or "").strip()
    raw = _FENCE_OPEN.sub("", raw, count=1)
    return _FENCE_CLOSE.sub("", raw, count=1).strip()


def parse_group_description(raw_text: str) -> Dict[str, Any]:
    """The reply's JSON object, unchanged, or {"_raw": text} when it is not a JSON object."""
    raw = (raw_text or "").strip()
    try:
        return _REPLY_OBJECT.validate_json(strip_code_fence(raw))
    except ValidationError as e:
        log.warning("Could not parse LLM JSON, storing raw response: %s", e.errors()[:1])
        return {RAW_FALLBACK_KEY: raw}
