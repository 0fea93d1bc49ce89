import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from nexus_desk.errors import ModelOutputError

FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


@dataclass
class HiddenBlock:
    start_marker: str
    end_marker: str

    def extract(self, text: str) -> tuple[str, Optional[str]]:
        """Split ``text`` into (visible text, block content).

        A missing or misplaced end marker leaves the text untouched and reports no block.
        """
        start = text.find(self.start_marker)
        if start == -1:
            return text, None
        end = text.find(self.end_marker, start + len(self.start_marker))
        if end == -1:
            return text, None

        content = text[start + len(self.start_marker):end].strip()
        before = text[:start].rstrip()
        after = text[end + len(self.end_marker):].lstrip()
        visible = f"{before}\n\n{after}".strip() if after else before
        return visible, content


def strip_code_fences(raw_text: str) -> str:
    text = raw_text.strip()
    # only a fence wrapping the whole output; backticks inside a JSON string stay put
    match = FENCE_PATTERN.fullmatch(text)
    if match and match.group(1):
        return match.group(1).strip()
    return text


def load_json_object(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(strip_code_fences(raw_text))
    except json.JSONDecodeError as exc:
        raise ModelOutputError(f"Model output is not valid JSON: {exc.msg}") from exc

    if not isinstance(parsed, dict):
        raise ModelOutputError("Model output must be a JSON object")
    return parsed


def require_reply_fields(data: dict[str, Any]) -> tuple[str, bool]:
    response_text = data.get("responseText")
    escalation = data.get("escalationSuggested")
    if not isinstance(response_text, str):
        raise ModelOutputError("'responseText' must be a string")
    if not isinstance(escalation, bool):
        raise ModelOutputError("'escalationSuggested' must be a boolean")
    return response_text, escalation
