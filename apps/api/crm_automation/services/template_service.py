"""Template rendering for automation action configs.

Placeholders are ``{{dotted.path}}`` and resolve by key lookup into the
trigger data. A path that cannot be resolved is left in the output as-is
so a misconfigured template stays visibly broken.
"""

from __future__ import annotations

import json
import re
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

_MISSING = object()


def _resolve_path(data: Any, path: str) -> Any:
    value = data
    for key in path.strip().split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        elif isinstance(value, list) and key.isdigit() and int(key) < len(value):
            value = value[int(key)]
        else:
            return _MISSING
    return value


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


def process_template(template: str | None, data: dict[str, Any]) -> str:
    """Render ``{{path}}`` placeholders against data."""
    if not template:
        return ""

    def _replace(match: re.Match[str]) -> str:
        value = _resolve_path(data, match.group(1))
        if value is _MISSING:
            return match.group(0)
        return _stringify(value)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def extract_placeholders(template: str | None) -> list[str]:
    """Return the dotted paths referenced by a template, in order."""
    if not template:
        return []
    return [m.group(1).strip() for m in PLACEHOLDER_PATTERN.finditer(template)]
