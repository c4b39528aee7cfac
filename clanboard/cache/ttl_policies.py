"""
TTL configuration and path-to-read-class mapping.
"""
import re
from enum import Enum
from typing import Dict

from config.settings import settings


class ReadPathClass(Enum):
    """Classes of upstream paths with different freshness needs."""
    ROSTER = "roster"     # clan list, guild
    CLAN = "clan"         # single clan documents
    MEMBERS = "members"   # member-style lists for a clan
    PLAYER = "player"     # single player documents
    USER = "user"         # identity-bot user records (always live)
    LEAGUE = "league"     # league groups and league wars


def ttl_config() -> Dict[ReadPathClass, int]:
    """Current TTL per read class (seconds), read from settings."""
    return {
        ReadPathClass.ROSTER: settings.ttl_roster_seconds,
        ReadPathClass.CLAN: settings.ttl_clan_seconds,
        ReadPathClass.MEMBERS: settings.ttl_members_seconds,
        ReadPathClass.PLAYER: settings.ttl_player_seconds,
        ReadPathClass.USER: 0,
        ReadPathClass.LEAGUE: settings.ttl_league_seconds,
    }


_MEMBER_SUFFIXES = ("members", "war-members", "raid-members", "cwl-members", "kickpoint-reasons")
_CLAN_PATH = re.compile(r"^(/api)?/clans/[^/]+$")


def get_read_class(path: str) -> ReadPathClass:
    """
    Determine the read class for an upstream path (either source).

    Args:
        path: Upstream path, e.g. "/clans/%23ABC" or "/api/clans/%23ABC/members"

    Returns:
        ReadPathClass for caching behavior
    """
    path = path.split("?", 1)[0].rstrip("/")

    if path in ("/api/clans", "/api/guild", "/clans"):
        return ReadPathClass.ROSTER

    if path.startswith("/api/users/"):
        return ReadPathClass.USER

    if "/currentwar/leaguegroup" in path or path.startswith("/clanwarleagues/"):
        return ReadPathClass.LEAGUE

    if _CLAN_PATH.match(path):
        return ReadPathClass.CLAN

    if path.rsplit("/", 1)[-1] in _MEMBER_SUFFIXES:
        return ReadPathClass.MEMBERS

    if path.startswith("/players/") or path.startswith("/api/players/"):
        return ReadPathClass.PLAYER

    # Unknown paths get the shortest non-zero TTL
    return ReadPathClass.PLAYER


def get_ttl_for_path(path: str) -> int:
    """TTL seconds for an upstream path."""
    return ttl_config()[get_read_class(path)]
