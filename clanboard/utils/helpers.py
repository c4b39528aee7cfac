"""
Utility helpers for tags and loosely-typed upstream JSON.
"""
import json
import re
from typing import Any, Optional
from urllib.parse import quote

from clanboard.errors import DeserializationFailure

# Clan/player tags only ever use this alphabet (after the leading '#')
_ENTITY_TAG_RE = re.compile(r"^#?[0289PYLQGRJCUV]{3,15}$", re.IGNORECASE)


def safe_lower(value: Any) -> str:
    """
    Safely lowercase a value, handling None.

    Args:
        value: Any value to lowercase

    Returns:
        Lowercased string or empty string if None
    """
    if value is None:
        return ""
    return str(value).lower()


def parse_int(value: Any) -> Optional[int]:
    """
    Interpret a number or numeric string as int.

    Booleans and non-numeric strings yield None so that
    ``parse_int(12) == parse_int("12")`` while garbage never compares equal
    to a real value by accident.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except (ValueError, TypeError):
        return None


def parse_float(value: Any) -> Optional[float]:
    """Interpret a number or numeric string as float; booleans and garbage yield None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except (ValueError, TypeError):
        return None


def normalize_tag(tag: Any) -> str:
    """
    Canonical form used whenever two tags are compared.

    Uppercases and strips the leading '#', so "#2abc" and "2ABC" are equal.
    """
    if tag is None:
        return ""
    return str(tag).strip().upper().lstrip("#")


def display_tag(tag: str) -> str:
    """Tag with exactly one leading '#', uppercased."""
    return f"#{normalize_tag(tag)}"


def encode_tag(tag: str) -> str:
    """Percent-encode a tag for use inside an upstream URL path."""
    tag = tag if tag.startswith("#") else f"#{tag}"
    return quote(tag, safe="")


def is_entity_tag(tag: Any) -> bool:
    """True if the value looks like a real clan/player tag (not e.g. 'waitlist')."""
    if not isinstance(tag, str):
        return False
    return bool(_ENTITY_TAG_RE.match(tag.strip()))


def same_tag_set(left, right) -> bool:
    """Compare two tag lists as case-folded sets, ignoring order and '#'."""
    return {normalize_tag(t) for t in left or []} == {normalize_tag(t) for t in right or []}


def loads_json(body: Optional[bytes], what: str = "payload") -> Any:
    """
    Decode a cached/upstream body.

    Raises:
        DeserializationFailure: body is empty or not valid JSON
    """
    if not body:
        raise DeserializationFailure(f"{what}: empty body")
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise DeserializationFailure(f"{what}: {e}") from e
