"""Helpers for parsing AI JSON responses."""

from __future__ import annotations

import json
import logging
import re

logger = logging.getLogger(__name__)


def _strip_code_fences(text: str) -> str:
    content = text.strip()
    if content.startswith("```"):
        lines = content.splitlines()[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = "\n".join(lines).strip()
    return content


def parse_json_object(text: str | None) -> dict | None:
    """Parse a JSON object from model output, tolerating fences and preamble."""
    if not text:
        return None
    content = _strip_code_fences(text)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            logger.warning("Failed to parse JSON object: %s", exc)
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner_exc:
            logger.warning("Failed to parse JSON object: %s", inner_exc)
            return None
    return data if isinstance(data, dict) else None


def _camel_to_snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def pick(data: dict, snake_key: str, *aliases: str):
    """
    Read a field that models return as camelCase or snake_case.

    `pick(d, "call_summary")` matches callSummary, call_summary and any alias.
    """
    for key in (snake_key, *aliases):
        if key in data:
            return data[key]
    for key, value in data.items():
        if _camel_to_snake(key) == snake_key:
            return value
    return None
