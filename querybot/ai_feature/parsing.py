import json
import re
from typing import Any, Dict, Optional

from querybot.ai_feature.errors import ParseFailure

CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang line and a trailing ``` fence."""
    return CODE_FENCE.sub("", text.strip()).strip()


def find_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced {...} span of `text`, or None.

    Braces inside JSON string literals do not count.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse the first JSON object embedded in model output."""
    span = find_json_object(text)
    if span is None:
        raise ParseFailure("no JSON object found in response")

    try:
        data = json.loads(span)
    except json.JSONDecodeError as error:
        raise ParseFailure(f"invalid JSON object: {error}") from error

    if not isinstance(data, dict):
        raise ParseFailure("response JSON is not an object")
    return data
