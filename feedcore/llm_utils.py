from __future__ import annotations

import json
import math
from collections import Counter
from collections.abc import Sequence
from typing import Any, cast

from feedcore.constants import (
    CONTENT_MAX_CHARS,
    LLM_NUM_PREDICT,
    LLM_REPEAT_PENALTY,
    LLM_TEMPERATURE,
    LLM_TOP_P,
)
from feedcore.logging_config import get_logger

logger = get_logger(__name__)

TIME_CONTEXT: dict[str, str] = {
    "morning": "Morning: favor motivating, practical, learn-something-new posts.",
    "afternoon": "Afternoon: favor relaxed, shareable, thoughtful posts.",
    "evening": "Evening: favor reflective posts that invite conversation.",
    "night": "Night: favor calm, introspective, exploratory posts.",
}

MODE_GUIDANCE: dict[str, str] = {
    "default": "Balance the user's interests with a little variety.",
    "creative": "Take unexpected angles and playful framings.",
    "focused": "Stay tightly on the user's strongest interests.",
}


def time_of_day(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "night"


def diversity_score(topics: Sequence[str]) -> float:
    """Normalized Shannon entropy of recent topics (0.5 when there are none)."""
    if not topics:
        return 0.5
    counts = Counter(topics)
    total = sum(counts.values())
    entropy = -sum((c / total) * math.log2(c / total) for c in counts.values())
    max_entropy = math.log2(len(counts))
    return entropy / max_entropy if max_entropy > 0 else 0.0


def build_prompt(
    interests: Sequence[str],
    recent_topics: Sequence[str] = (),
    mode: str = "default",
    diversity: float = 0.5,
    time_context: str | None = None,
    count: int = 3,
    language: str = "en",
    style: str = "casual",
) -> str:
    lines = [
        f"Write {count} short social posts (max {CONTENT_MAX_CHARS} characters each).",
        f"Language: {language}. Tone: {style}.",
    ]
    if interests:
        lines.append(f"The reader is interested in: {', '.join(interests)}.")
    if recent_topics:
        recent = ", ".join(dict.fromkeys(recent_topics))
        lines.append(f"They recently engaged with: {recent}.")
    if diversity < 0.3:
        lines.append("Their feed has been narrow lately; introduce an adjacent topic.")
    elif diversity > 0.8:
        lines.append("Their feed has been scattered lately; go deeper on one theme.")
    lines.append(MODE_GUIDANCE.get(mode, MODE_GUIDANCE["default"]))
    if time_context in TIME_CONTEXT:
        lines.append(TIME_CONTEXT[time_context])
    lines.append(
        'Reply with JSON only: {"posts": [{"content": str, "hashtags": [str], '
        '"topics": [str]}]}'
    )
    return "\n".join(lines)


def build_messages(contents: object | None) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if isinstance(contents, str):
        return [{"role": "user", "content": contents}]
    if isinstance(contents, list):
        for item in contents:
            if isinstance(item, str):
                messages.append({"role": "user", "content": item})
                continue
            if not isinstance(item, dict):
                continue
            item_dict = cast(dict[str, object], item)
            role = item_dict.get("role", "user")
            content = item_dict.get("content")
            if isinstance(content, str) and isinstance(role, str):
                messages.append({"role": role, "content": content})
    return messages


def build_payload(
    model: str,
    contents: object | None,
    config: dict[str, object] | None = None,
) -> dict[str, object]:
    """Ollama /api/chat request body (non-streaming)."""
    config = config or {}
    options: dict[str, object] = {
        "temperature": config.get("temperature", LLM_TEMPERATURE),
        "top_p": config.get("top_p", LLM_TOP_P),
        "repeat_penalty": config.get("repeat_penalty", LLM_REPEAT_PENALTY),
    }
    num_predict = config.get("num_predict", LLM_NUM_PREDICT)
    if isinstance(num_predict, (int, float)) and num_predict > 0:
        options["num_predict"] = int(num_predict)

    payload: dict[str, object] = {
        "model": model,
        "messages": build_messages(contents),
        "stream": False,
        "options": options,
    }
    if config.get("format") == "json":
        payload["format"] = "json"
    return payload


def _strip_code_fence(src: str) -> str:
    cleaned = src.strip()
    if not cleaned.startswith("```"):
        return cleaned
    lines = cleaned.splitlines()
    if lines and lines[0].strip().startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def _extract_json_substring(src: str) -> str | None:
    first_obj = src.find("{")
    first_arr = src.find("[")
    if first_obj == -1 and first_arr == -1:
        return None
    if first_arr == -1 or (first_obj != -1 and first_obj < first_arr):
        open_ch, close_ch, start = "{", "}", first_obj
    else:
        open_ch, close_ch, start = "[", "]", first_arr

    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(src)):
        ch = src[idx]
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            continue
        if ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return src[start : idx + 1]
    return None


def parse_posts(text: str) -> list[dict[str, Any]]:
    """Extract post dicts from a model reply, tolerating fences and chatter."""
    if not text:
        return []
    clean = _strip_code_fence(text)
    candidates = [clean]
    extracted = _extract_json_substring(clean)
    if extracted and extracted not in candidates:
        candidates.append(extracted)

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug(f"JSON decode failed, trying fallback: {e}")
            continue
        if isinstance(parsed, dict):
            parsed = parsed.get("posts", [])
        if not isinstance(parsed, list):
            continue
        posts: list[dict[str, Any]] = []
        for raw in parsed:
            if not isinstance(raw, dict):
                continue
            content = raw.get("content")
            if not isinstance(content, str) or not content.strip():
                continue
            hashtags = raw.get("hashtags")
            topics = raw.get("topics")
            posts.append(
                {
                    "content": content.strip()[:CONTENT_MAX_CHARS],
                    "hashtags": [str(h) for h in hashtags] if isinstance(hashtags, list) else [],
                    "topics": [str(t) for t in topics] if isinstance(topics, list) else [],
                }
            )
        return posts
    return []
