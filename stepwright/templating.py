"""``{{ path }}`` interpolation against a run's trigger payload and step outputs."""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Mapping, Union

from .contracts import RunContext

logger = logging.getLogger(__name__)

TEMPLATE_RE = re.compile(r"\{\{\s*([^{}]*?)\s*\}\}")

Scope = Union[RunContext, Mapping[str, Any]]


def _scope_of(context: Scope) -> Mapping[str, Any]:
    if isinstance(context, RunContext):
        return context.scope()
    return context


def resolve_path(value: Any, path: str) -> Any:
    """Walk ``value`` along a dot-separated ``path``.

    Mapping keys are looked up by name and list items by numeric index.
    Returns ``None`` as soon as a segment cannot be followed.
    """
    current = value
    for part in [piece for piece in path.split(".") if piece]:
        if isinstance(current, Mapping):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            idx = int(part)
            if idx >= len(current):
                return None
            current = current[idx]
        else:
            return None
    return current


def render_value(value: Any) -> str:
    """Render a resolved value the way it appears inside interpolated text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def interpolate(template: Any, context: Scope) -> str:
    """Replace every ``{{ path }}`` token in ``template``.

    Unresolvable paths render as an empty string; this never raises.
    """
    if template is None:
        return ""
    if not isinstance(template, str):
        template = str(template)
    if "{{" not in template:
        return template

    scope = _scope_of(context)

    def _replace(match: re.Match[str]) -> str:
        path = match.group(1)
        resolved = resolve_path(scope, path)
        if resolved is None:
            logger.debug(f"Template path '{path}' resolved to nothing")
        return render_value(resolved)

    return TEMPLATE_RE.sub(_replace, template)


def resolve_settings(value: Any, context: Scope) -> Any:
    """Interpolate every string nested inside ``value``."""
    if isinstance(value, str):
        return interpolate(value, context)
    if isinstance(value, Mapping):
        return {key: resolve_settings(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_settings(item, context) for item in value]
    return value
