"""
Role-based redaction of merged records.

Everything here works on deep copies: cached bytes and merged records stay
unredacted, the filtered view only exists for the response being built.
"""
import copy
from typing import Any, Dict, List, Optional

from clanboard.errors import AccessDenied
from clanboard.merge import normalize_badges
from clanboard.realms import Realm
from clanboard.roles import CallerContext, Role
from clanboard.utils.helpers import parse_int, safe_lower

# Storage-only field the identity bot leaks into member payloads
INTERNAL_FIELDS = ("clanDB",)

# Raw third-party identity linkage
LINKAGE_FIELDS = ("userId", "discordId")

# Dropped entirely for callers below MEMBER
NON_MEMBER_HIDDEN_FIELDS = (
    "totalKickpoints",
    "activeKickpoints",
    "userId",
    "discordId",
    "nickname",
    "avatar",
)

# Clan moderation settings
CLAN_SETTINGS_FIELDS = (
    "maxKickpoints",
    "minSeasonWins",
    "kickpointsExpireAfterDays",
    "kickpointReasons",
)

# Placeholder "clan" the Clash Royale bot uses for its waiting list
WAITLIST_NAME = "warteliste"

IDENTITY_PUBLIC_FIELDS = ("nickname", "global_name", "username", "avatar")
IDENTITY_SENSITIVE_FIELDS = ("userId", "discordId", "playerAccounts")

KICKPOINT_DETAIL_HIDDEN_FIELDS = ("description", "reason")

GUILD_SUMMARY_FIELDS = ("membercount", "name", "icon")


def _kickpoint_sum(entries: List[Any]) -> int:
    total = 0
    for entry in entries:
        if isinstance(entry, dict):
            amount = parse_int(entry.get("amount"))
            if amount is not None:
                total += amount
    return total


def summarize_kickpoints(record: Dict[str, Any]) -> Dict[str, Any]:
    """Add activeKickpointsCount/Sum next to a raw activeKickpoints list."""
    active = record.get("activeKickpoints")
    if isinstance(active, list):
        record["activeKickpointsCount"] = len(active)
        record["activeKickpointsSum"] = _kickpoint_sum(active)
    return record


def _filter_member(record: Dict[str, Any], ctx: CallerContext) -> Dict[str, Any]:
    if ctx.is_exempt(record.get("tag")):
        return record

    for field in INTERNAL_FIELDS:
        record.pop(field, None)

    if ctx.has_role(Role.MEMBER):
        active = record.pop("activeKickpoints", None)
        if isinstance(active, list):
            record["activeKickpointsCount"] = len(active)
            record["activeKickpointsSum"] = _kickpoint_sum(active)
        if "userId" in record:
            record["isLinked"] = True
        for field in LINKAGE_FIELDS:
            record.pop(field, None)
    else:
        for field in NON_MEMBER_HIDDEN_FIELDS:
            record.pop(field, None)
    return record


def filter_members(records: Any, ctx: CallerContext) -> Any:
    """
    Redact member records (list or single record) for a caller.

    COLEADER and above see everything; exempt tags are never touched.
    """
    if ctx.has_role(Role.COLEADER):
        return copy.deepcopy(records)

    filtered = copy.deepcopy(records)
    if isinstance(filtered, list):
        for record in filtered:
            if isinstance(record, dict):
                _filter_member(record, ctx)
    elif isinstance(filtered, dict):
        _filter_member(filtered, ctx)
    return filtered


def _is_waitlist(clan: Dict[str, Any]) -> bool:
    return any(
        safe_lower(clan.get(field)) == WAITLIST_NAME
        for field in ("name", "nameDB", "tag")
    )


def filter_clans(records: Any, realm: Realm, ctx: CallerContext) -> Any:
    """
    Clan list (or single clan) view.

    - The CR waitlist placeholder is always dropped from lists
    - Badge URLs are always normalized
    - Clan settings are removed below MEMBER
    """
    filtered = copy.deepcopy(records)
    strip_settings = not ctx.has_role(Role.MEMBER)

    if isinstance(filtered, list):
        if realm is Realm.CR:
            filtered = [c for c in filtered if not (isinstance(c, dict) and _is_waitlist(c))]
        clans = [c for c in filtered if isinstance(c, dict)]
    elif isinstance(filtered, dict):
        clans = [filtered]
    else:
        return filtered

    for clan in clans:
        normalize_badges(clan)
        if strip_settings:
            for field in CLAN_SETTINGS_FIELDS:
                clan.pop(field, None)
    return filtered


def clan_config_view(identity_clan: Optional[Dict[str, Any]], ctx: CallerContext) -> Dict[str, Any]:
    """Clan moderation settings, MEMBER and above only."""
    if not ctx.has_role(Role.MEMBER):
        raise AccessDenied(Role.MEMBER.value)
    identity_clan = identity_clan or {}
    return {
        field: copy.deepcopy(identity_clan[field])
        for field in CLAN_SETTINGS_FIELDS
        if field in identity_clan
    }


def _can_see_kickpoints(tag: Any, ctx: CallerContext) -> bool:
    return ctx.has_role(Role.MEMBER) or ctx.is_exempt(tag)


def player_view(
    player: Dict[str, Any],
    identity: Optional[Dict[str, Any]],
    ctx: CallerContext,
) -> Dict[str, Any]:
    """
    Authoritative player with a kickpoint summary for MEMBER+ or self.

    Identity linkage is never merged into this view.
    """
    view = copy.deepcopy(player)
    if not isinstance(identity, dict) or not _can_see_kickpoints(view.get("tag"), ctx):
        return view

    active = identity.get("activeKickpoints")
    if isinstance(active, list):
        view["activeKickpointsCount"] = len(active)
        view["activeKickpointsSum"] = _kickpoint_sum(active)
    if "totalKickpoints" in identity:
        view["totalKickpoints"] = identity["totalKickpoints"]
    return view


def identity_view(identity: Optional[Dict[str, Any]], tag: str, ctx: CallerContext) -> Dict[str, Any]:
    """
    Linked community identity for a player.

    Raises:
        AccessDenied: caller is below MEMBER and not the player
    """
    exempt = ctx.is_exempt(tag)
    if not ctx.has_role(Role.MEMBER) and not exempt:
        raise AccessDenied(Role.MEMBER.value)

    identity = identity or {}
    view = {f: copy.deepcopy(identity[f]) for f in IDENTITY_PUBLIC_FIELDS if f in identity}
    if ctx.has_role(Role.COLEADER) or exempt:
        for field in IDENTITY_SENSITIVE_FIELDS:
            if field in identity:
                view[field] = copy.deepcopy(identity[field])
    return view


def kickpoint_summary(identity: Optional[Dict[str, Any]], tag: str, ctx: CallerContext) -> Dict[str, int]:
    """
    Totals only: {"total", "activeCount", "activeSum"}.

    Raises:
        AccessDenied: caller is below MEMBER and not the player
    """
    if not _can_see_kickpoints(tag, ctx):
        raise AccessDenied(Role.MEMBER.value)
    identity = identity or {}
    active = identity.get("activeKickpoints")
    active = active if isinstance(active, list) else []
    return {
        "total": parse_int(identity.get("totalKickpoints")) or 0,
        "activeCount": len(active),
        "activeSum": _kickpoint_sum(active),
    }


def kickpoint_details(identity: Optional[Dict[str, Any]], tag: str, ctx: CallerContext) -> List[Any]:
    """
    Itemized active kickpoints; reasons are hidden below COLEADER unless self.

    Raises:
        AccessDenied: caller is below MEMBER and not the player
    """
    exempt = ctx.is_exempt(tag)
    if not ctx.has_role(Role.MEMBER) and not exempt:
        raise AccessDenied(Role.MEMBER.value)

    active = (identity or {}).get("activeKickpoints")
    if not isinstance(active, list):
        return []
    details = copy.deepcopy(active)
    if not ctx.has_role(Role.COLEADER) and not exempt:
        for entry in details:
            if isinstance(entry, dict):
                for field in KICKPOINT_DETAIL_HIDDEN_FIELDS:
                    entry.pop(field, None)
    return details


def guild_view(guild: Optional[Dict[str, Any]], ctx: CallerContext) -> Dict[str, Any]:
    """Full guild document for ADMIN, a small public summary otherwise."""
    guild = guild or {}
    if ctx.has_role(Role.ADMIN):
        return copy.deepcopy(guild)
    return {f: copy.deepcopy(guild[f]) for f in GUILD_SUMMARY_FIELDS if f in guild}
