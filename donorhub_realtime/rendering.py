"""
Display helpers for server-pushed payloads.

Push payloads are produced by several server controllers and are not
validated on the wire, so every field a template reads may be missing,
``None`` or of the wrong type. These helpers never raise: missing values
render as a generic placeholder.
"""

import re
import string
from typing import Any, Mapping

__all__ = [
    "PLACEHOLDER",
    "safe_text",
    "render_template",
]

PLACEHOLDER = "…"

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_HTML_TAG_RE = re.compile(r"<[^>]{1,200}>")
_WHITESPACE_RE = re.compile(r"\s+")


def safe_text(value: Any, max_length: int = 200, placeholder: str = PLACEHOLDER) -> str:
    """Coerce a payload value into display text.

    Strips HTML tags and control characters and collapses whitespace.

    Args:
        value: Raw payload value (any type).
        max_length: Maximum output length (default 200 chars).
        placeholder: Returned when the value is missing or empty.

    Returns:
        Cleaned text suitable for a toast or inbox line.
    """
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return placeholder
    cleaned = str(value)[: max_length * 2]
    cleaned = _HTML_TAG_RE.sub("", cleaned)
    cleaned = _CONTROL_CHARS_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip()
    if not cleaned:
        return placeholder
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 1].rstrip() + "…"
    return cleaned


class _PayloadFields(dict):
    def __missing__(self, key: str) -> str:
        return PLACEHOLDER


_FORMATTER = string.Formatter()


def render_template(template: str, payload: Any) -> str:
    """Fill ``{field}`` references in ``template`` from a payload.

    Only plain top-level field names are supported. Non-dict payloads
    render every field as the placeholder.
    """
    source: Mapping[str, Any] = payload if isinstance(payload, dict) else {}
    fields = _PayloadFields()
    for _, name, _, _ in _FORMATTER.parse(template):
        if name and name in source:
            fields[name] = safe_text(source[name])
    try:
        return template.format_map(fields)
    except (ValueError, IndexError, AttributeError, KeyError):
        return safe_text(template)
