"""
Realms, sources and the endpoint templates each realm exposes.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from clanboard.utils.helpers import encode_tag


class Realm(Enum):
    """Game context served; each has its own official API and identity bot."""
    COC = "coc"   # Clash of Clans
    CR = "cr"     # Clash Royale


class Source(Enum):
    """Which upstream a cached document came from."""
    AUTHORITATIVE = "authoritative"   # official game statistics API
    IDENTITY = "identity"             # community bot (membership, kickpoints, links)


# Identity-bot clan endpoints warmed per clan, by realm
_IDENTITY_CLAN_ENDPOINTS = {
    Realm.COC: ("", "/members", "/kickpoint-reasons", "/war-members", "/raid-members", "/cwl-members"),
    Realm.CR: ("", "/members", "/kickpoint-reasons"),
}


@dataclass(frozen=True)
class RealmConfig:
    """Per-realm upstream coordinates and behavior switches."""
    realm: Realm
    authoritative_url: str
    authoritative_token: Optional[str]
    identity_url: str
    identity_token: Optional[str]
    has_guild: bool = False
    enrich_from_player_detail: bool = False
    identity_clan_endpoints: Tuple[str, ...] = field(default_factory=tuple)

    def base_url(self, source: Source) -> str:
        if source is Source.AUTHORITATIVE:
            return self.authoritative_url.rstrip("/")
        return self.identity_url.rstrip("/")

    def token(self, source: Source) -> Optional[str]:
        if source is Source.AUTHORITATIVE:
            return self.authoritative_token
        return self.identity_token


def realm_configs(settings) -> dict:
    """Build the RealmConfig table from settings."""
    return {
        Realm.COC: RealmConfig(
            realm=Realm.COC,
            authoritative_url=settings.coc_authoritative_url,
            authoritative_token=settings.coc_authoritative_token,
            identity_url=settings.coc_identity_url,
            identity_token=settings.coc_identity_token,
            has_guild=True,
            enrich_from_player_detail=True,
            identity_clan_endpoints=_IDENTITY_CLAN_ENDPOINTS[Realm.COC],
        ),
        Realm.CR: RealmConfig(
            realm=Realm.CR,
            authoritative_url=settings.cr_authoritative_url,
            authoritative_token=settings.cr_authoritative_token,
            identity_url=settings.cr_identity_url,
            identity_token=settings.cr_identity_token,
            identity_clan_endpoints=_IDENTITY_CLAN_ENDPOINTS[Realm.CR],
        ),
    }


def cache_key(realm: Realm, source: Source, path: str) -> str:
    """Composite cache key; one live entry per upstream path per realm/source."""
    return f"{realm.value}:{source.value}:{path}"


# ===== PATH TEMPLATES =====

ROSTER_PATH = "/api/clans"
GUILD_PATH = "/api/guild"


def identity_clan_path(tag: str, suffix: str = "") -> str:
    return f"/api/clans/{encode_tag(tag)}{suffix}"


def identity_player_path(tag: str) -> str:
    return f"/api/players/{encode_tag(tag)}"


def identity_user_path(user_id: str) -> str:
    return f"/api/users/{user_id}"


def clan_path(tag: str) -> str:
    return f"/clans/{encode_tag(tag)}"


def player_path(tag: str) -> str:
    return f"/players/{encode_tag(tag)}"


def league_group_path(tag: str) -> str:
    return f"/clans/{encode_tag(tag)}/currentwar/leaguegroup"


def league_war_path(war_tag: str) -> str:
    return f"/clanwarleagues/wars/{encode_tag(war_tag)}"
