"""
Plan parser: turn raw model output into a normalized Plan.

The model is asked for a bare JSON object but routinely wraps it in
markdown fences or explanation text. Strategies, first success wins:

  1. a ```json fenced block
  2. any fenced block
  3. the first balanced {...} span that parses (string-aware scan)
  4. the whole trimmed text
"""

import json
import re

from pydantic import ValidationError

from sitecraft.errors import UnparsableResponseError
from sitecraft.models import Plan, PlanAction


PLAN_KEYS = ("files", "delete", "dependencies", "devDependencies", "commands", "actions")

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)```", re.IGNORECASE)
_ANY_FENCE = re.compile(r"```([^\n`]*)\n?([\s\S]*?)```")


def _loads_object(text: str) -> dict | None:
    """Parse text as a JSON object; anything else (arrays, scalars, junk) is None."""
    try:
        result = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return result if isinstance(result, dict) else None


def _from_fences(text: str) -> dict | None:
    for m in _JSON_FENCE.finditer(text):
        result = _loads_object(m.group(1).strip())
        if result is not None:
            return result

    for m in _ANY_FENCE.finditer(text):
        label, body = m.group(1).strip(), m.group(2)
        # ```{"files": ...}``` on one line: the "label" is the payload itself
        candidate = (label + "\n" + body) if label.startswith("{") else body
        result = _loads_object(candidate.strip())
        if result is not None:
            return result
    return None


def extract_first_object(text: str) -> dict | None:
    """
    Scan for the first balanced top-level {...} span that parses as JSON.
    Braces inside string literals (including escaped quotes) are ignored.
    """
    s = text.replace("\ufeff", "")
    in_string = False
    escape = False
    depth = 0
    start = -1
    for i, c in enumerate(s):
        if in_string:
            if escape:
                escape = False
            elif c == "\\":
                escape = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
            continue
        if c == "{":
            if depth == 0:
                start = i
            depth += 1
        elif c == "}":
            if depth > 0:
                depth -= 1
            if depth == 0 and start != -1:
                result = _loads_object(s[start:i + 1])
                if result is not None:
                    return result
                start = -1
    return None


def _as_text(value) -> str:
    if isinstance(value, str):
        return value
    # e.g. "package.json": {...} given as an object instead of a string
    return json.dumps(value, indent=2)


def _as_str_map(value) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): _as_text(v) for k, v in value.items() if v is not None}


def _as_str_list(value) -> list[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v)]


def normalize_plan(raw: dict) -> Plan:
    """Fill in missing containers and coerce loose shapes into a Plan."""
    if raw and not any(k in raw for k in PLAN_KEYS) and all(isinstance(v, str) for v in raw.values()):
        # Bare {"path": "content"} map
        return Plan(files=dict(raw))

    actions = []
    raw_actions = raw.get("actions")
    if isinstance(raw_actions, list):
        for item in raw_actions:
            if isinstance(item, dict):
                actions.append(PlanAction.model_validate(item))

    return Plan(
        files=_as_str_map(raw.get("files")),
        delete=_as_str_list(raw.get("delete")),
        dependencies=_as_str_map(raw.get("dependencies")),
        dev_dependencies=_as_str_map(raw.get("devDependencies", raw.get("dev_dependencies"))),
        commands=_as_str_list(raw.get("commands")),
        actions=actions,
    )


def parse_plan(raw_text: str) -> Plan:
    """Recover a Plan from model output or raise UnparsableResponseError."""
    if not isinstance(raw_text, str):
        raise UnparsableResponseError(f"Expected text, got {type(raw_text).__name__}")

    raw = _from_fences(raw_text)
    if raw is None:
        raw = extract_first_object(raw_text)
    if raw is None:
        trimmed = raw_text.strip()
        if not trimmed:
            raise UnparsableResponseError("Cannot parse an empty response")
        raw = _loads_object(trimmed)
    if raw is None:
        preview = raw_text.strip()[:120]
        raise UnparsableResponseError(f"No JSON plan found in model response: {preview!r}")

    try:
        return normalize_plan(raw)
    except ValidationError as e:
        raise UnparsableResponseError(f"Plan has an unusable shape: {e}") from e
