"""
Multi-source merge of authoritative and identity snapshots.

The authoritative record always wins a field collision. The losing identity
value is kept under ``upstream_<field>`` so disagreements stay auditable.
Drift on a few meaningful fields is reported via ``is_dirty``/``is_diff``.
"""
import copy
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from clanboard.utils.helpers import normalize_tag, parse_int, safe_lower


IDENTITY_PREFIX = "upstream_"

# Fields compared when deciding whether two sources disagree
DIRTY_FIELDS = ("name", "role", "expLevel")

# Role labels the two sources use for the same rank
ROLE_BUCKETS = {
    "admin": "admin",
    "elder": "admin",
}

# Fields copied from a cached player detail onto roster members
DETAIL_ENRICH_FIELDS = ("warStars", "heroes", "league")

# Clan settings owned by the identity source
IDENTITY_OWNED_CLAN_FIELDS = (
    "nameDB",
    "index",
    "description",
    "maxKickpoints",
    "minSeasonWins",
    "kickpointsExpireAfterDays",
    "kickpointReasons",
)

DetailLookup = Callable[[str], Optional[Dict[str, Any]]]


def role_bucket(role: Any) -> str:
    """Collapse equivalent role labels; unknown labels map to themselves."""
    label = safe_lower(role)
    return ROLE_BUCKETS.get(label, label)


def _as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def field_differs(field: str, authoritative: Any, identity: Any) -> bool:
    """Type-tolerant comparison for one of DIRTY_FIELDS."""
    if field == "name":
        return _as_str(authoritative) != _as_str(identity)
    if field == "role":
        return role_bucket(_as_str(authoritative)) != role_bucket(_as_str(identity))
    if field == "expLevel":
        return parse_int(authoritative) != parse_int(identity)
    return False


def _overlay(target: Dict[str, Any], identity: Dict[str, Any]) -> bool:
    """
    Overlay identity fields onto target in place.

    Returns:
        True if any DIRTY_FIELDS value disagrees
    """
    dirty = False
    for key, value in identity.items():
        if key not in target:
            target[key] = copy.deepcopy(value)
        elif key != "tag":
            if key in DIRTY_FIELDS and field_differs(key, target[key], value):
                dirty = True
            target[f"{IDENTITY_PREFIX}{key}"] = copy.deepcopy(value)
    return dirty


def merge_entity(primary: Optional[Dict[str, Any]], secondary: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge a single authoritative object with a single identity object.

    Either side may be None. Inputs are never mutated.
    """
    merged = copy.deepcopy(primary) if isinstance(primary, dict) else {}
    if isinstance(secondary, dict):
        _overlay(merged, secondary)
    return merged


def combine_identity_lists(identity_lists: Iterable[Optional[Sequence[Any]]]) -> List[Dict[str, Any]]:
    """
    Fold several identity lists into one, keyed by normalized tag.

    Earlier lists take precedence; later lists only fill fields that the
    earlier entry for the same tag lacks. Order of first appearance is kept.
    """
    combined: Dict[str, Dict[str, Any]] = {}
    for records in identity_lists:
        if not isinstance(records, list):
            continue
        for record in records:
            if not isinstance(record, dict):
                continue
            key = normalize_tag(record.get("tag"))
            if not key:
                continue
            existing = combined.get(key)
            if existing is None:
                combined[key] = copy.deepcopy(record)
                continue
            for field, value in record.items():
                if field not in existing:
                    existing[field] = copy.deepcopy(value)
    return list(combined.values())


def _set_markers(record: Dict[str, Any], in_authoritative: bool, in_identity: bool,
                 is_new: bool, is_left: bool, is_dirty: bool, is_diff: bool):
    record["in_authoritative"] = in_authoritative
    record["in_identity"] = in_identity
    record["is_new"] = is_new
    record["is_left"] = is_left
    record["is_dirty"] = is_dirty
    record["is_diff"] = is_diff


def _lookup(detail_lookup: Optional[DetailLookup], tag: str) -> Optional[Dict[str, Any]]:
    if detail_lookup is None or not tag:
        return None
    detail = detail_lookup(tag)
    return detail if isinstance(detail, dict) else None


def merge_members(
    authoritative: Optional[Sequence[Any]],
    identity_lists: Iterable[Optional[Sequence[Any]]] = (),
    detail_lookup: Optional[DetailLookup] = None,
    enrich: bool = False,
) -> List[Dict[str, Any]]:
    """
    Merge an authoritative member roster with identity member lists.

    Args:
        authoritative: Official roster entries (e.g. a clan's memberList)
        identity_lists: Zero or more identity-source member lists
        detail_lookup: tag -> cached authoritative player detail, or None
        enrich: Copy DETAIL_ENRICH_FIELDS from the player detail onto
            authoritative members

    Returns:
        Authoritative members in roster order, then identity-only members
        ("left") in identity order
    """
    identity_members = combine_identity_lists(identity_lists)
    identity_by_tag = {normalize_tag(m.get("tag")): m for m in identity_members}

    merged: List[Dict[str, Any]] = []
    seen = set()

    for entry in authoritative or []:
        if not isinstance(entry, dict):
            continue
        record = copy.deepcopy(entry)
        tag = record.get("tag") or ""
        key = normalize_tag(tag)
        seen.add(key)

        match = identity_by_tag.get(key) if key else None
        if match is not None:
            dirty = _overlay(record, match)
            _set_markers(record, True, True, is_new=False, is_left=False, is_dirty=dirty, is_diff=dirty)
        else:
            _set_markers(record, True, False, is_new=True, is_left=False, is_dirty=False, is_diff=True)

        if enrich:
            detail = _lookup(detail_lookup, tag)
            if detail is not None:
                for field in DETAIL_ENRICH_FIELDS:
                    if field in detail:
                        record[field] = copy.deepcopy(detail[field])

        merged.append(record)

    for member in identity_members:
        key = normalize_tag(member.get("tag"))
        if key in seen:
            continue
        merged.append(_left_member(member, detail_lookup))

    return merged


def _left_member(member: Dict[str, Any], detail_lookup: Optional[DetailLookup]) -> Dict[str, Any]:
    """Synthetic record for an identity member missing from the official roster."""
    record = copy.deepcopy(member)
    tag = record.get("tag") or ""
    _set_markers(record, False, True, is_new=False, is_left=True, is_dirty=False, is_diff=True)

    detail = _lookup(detail_lookup, tag)
    if detail is not None:
        for key, value in detail.items():
            if key not in record:
                record[key] = copy.deepcopy(value)

    if "name" not in record:
        fallback = record.get(f"{IDENTITY_PREFIX}name")
        if fallback is None:
            fallback = record.get("nickname")
        record["name"] = fallback if fallback is not None else tag
    if "role" not in record:
        fallback = record.get(f"{IDENTITY_PREFIX}role")
        record["role"] = fallback if fallback is not None else "member"
    return record


def normalize_badges(obj: Any) -> Any:
    """
    Give an object a ``badgeUrls`` dict when only ``badgeUrl`` is present.

    Mutates and returns obj; lists are handled element-wise.
    """
    if isinstance(obj, list):
        for item in obj:
            normalize_badges(item)
        return obj
    if isinstance(obj, dict) and "badgeUrls" not in obj:
        url = obj.get("badgeUrl")
        if isinstance(url, str):
            obj["badgeUrls"] = {"small": url, "medium": url, "large": url}
    return obj


def merge_clan(authoritative: Optional[Dict[str, Any]], identity: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge a single clan document.

    Identity-owned settings take the identity value outright; every other
    field follows the generic collision rule.
    """
    merged = merge_entity(authoritative, identity)
    if isinstance(identity, dict):
        for field in IDENTITY_OWNED_CLAN_FIELDS:
            if field in identity:
                merged[field] = copy.deepcopy(identity[field])
                merged.pop(f"{IDENTITY_PREFIX}{field}", None)
    return normalize_badges(merged)
