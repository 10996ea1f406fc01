import json
import re
from typing import Any, Dict

_OBJECT_RE = re.compile(r"\{.*\}", re.S)


def extract_json(text: str) -> str:
    m = _OBJECT_RE.search(text or "")
    return m.group(0).strip() if m else ""


def parse_json_object(text: str) -> Dict[str, Any]:
    """Parse the outermost JSON object in a model reply, tolerating code fences and chatter."""
    raw = extract_json(text)
    if not raw:
        raise ValueError("No JSON object in reply")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data
