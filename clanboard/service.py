"""
Read contract for the serving layer.

ClanService wires store, upstream client, orchestrator, reconciler and the
background jobs together, and builds role-filtered merged views on read.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from clanboard import crud, privacy
from clanboard.cache import CacheStore, FetchOrchestrator
from clanboard.errors import AccessDenied, CacheMiss, DeserializationFailure
from clanboard.merge import merge_clan, merge_entity, merge_members
from clanboard.realms import (
    GUILD_PATH,
    ROSTER_PATH,
    Realm,
    Source,
    clan_path,
    identity_clan_path,
    identity_player_path,
    player_path,
    realm_configs,
)
from clanboard.reconciler import IdentityReconciler
from clanboard.roles import CallerContext, Role
from clanboard.scheduler import (
    CacheWarmer,
    LatencyProber,
    SideClanHarvester,
    build_probes,
    latency_history,
    latency_status,
)
from clanboard.upstream import UpstreamClient
from clanboard.utils.helpers import loads_json
from config.settings import settings as default_settings

logger = logging.getLogger("service")


class EntityView(Enum):
    """Merged/filtered views served from the cache."""
    CLANS = "clans"
    CLAN = "clan"
    CLAN_CONFIG = "clan_config"
    MEMBERS = "members"
    WAR_MEMBERS = "war-members"
    RAID_MEMBERS = "raid-members"
    CWL_MEMBERS = "cwl-members"
    MEMBERS_LITE = "members-lite"
    KICKPOINT_REASONS = "kickpoint-reasons"
    PLAYER = "player"
    IDENTITY = "identity"
    KICKPOINTS = "kickpoints"
    KICKPOINT_DETAILS = "kickpoint_details"
    GUILD = "guild"


# Identity-only member lists served with member redaction, by clan sub-path
_IDENTITY_MEMBER_LISTS = {
    EntityView.WAR_MEMBERS: "/war-members",
    EntityView.RAID_MEMBERS: "/raid-members",
    EntityView.CWL_MEMBERS: "/cwl-members",
    EntityView.MEMBERS_LITE: "/members",
}

_TAGGED_VIEWS = {
    EntityView.CLAN, EntityView.CLAN_CONFIG, EntityView.MEMBERS, EntityView.KICKPOINT_REASONS,
    EntityView.PLAYER, EntityView.IDENTITY, EntityView.KICKPOINTS, EntityView.KICKPOINT_DETAILS,
    *_IDENTITY_MEMBER_LISTS,
}


class ClanService:
    """
    Facade over the cache core.

    Everything is constructed from settings unless injected, so tests can
    swap the upstream client, the session factory and the clock.
    """

    def __init__(self, settings=None, session_factory=None, client=None, clock=time.time):
        self.settings = settings or default_settings
        self.realms = realm_configs(self.settings)
        if session_factory is None:
            from clanboard.db import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.clock = clock
        self.client = client or UpstreamClient(self.realms)

        self.store = CacheStore(session_factory, clock=clock)
        self.orchestrator = FetchOrchestrator(self.store, self.client, clock=clock)
        self.reconciler = IdentityReconciler(self.orchestrator, session_factory, clock=clock)

        self.prober = LatencyProber(
            self.client,
            session_factory,
            build_probes(self.realms, self.settings.frontend_url),
            timeout=self.settings.latency_probe_timeout_seconds,
            retention_hours=self.settings.latency_retention_hours,
            clock=clock,
        )
        self.warmers = {
            realm: CacheWarmer(
                self.orchestrator,
                config,
                session_factory=session_factory,
                include_side_clans=realm.value == self.settings.side_clan_realm,
                max_workers=self.settings.warmer_max_workers,
                member_sample=self.settings.warmer_member_sample,
            )
            for realm, config in self.realms.items()
        }
        self.harvester = SideClanHarvester(
            self.orchestrator,
            self.client,
            session_factory,
            realm=Realm(self.settings.side_clan_realm),
            config_url=self.settings.side_clan_config_url,
            config_path=self.settings.side_clan_config_path,
        )

    # ===== raw reads =====

    def get_or_refresh(
        self,
        realm: Realm,
        source: Source,
        path: str,
        ttl_seconds: Optional[int] = None,
    ) -> bytes:
        """
        Cached-or-live body for an upstream path.

        Raises:
            CacheMiss: nothing cached and the live fetch failed
        """
        return self.orchestrator.get_or_refresh(realm, source, path, ttl_seconds)

    def _document(self, realm: Realm, source: Source, path: str, ttl_seconds: Optional[int] = None) -> Any:
        """Parsed document, or None when the source is absent or unreadable."""
        try:
            return loads_json(self.get_or_refresh(realm, source, path, ttl_seconds), path)
        except CacheMiss as e:
            logger.debug(f"{realm.value}:{source.value}:{path} unavailable: {e}")
            return None
        except DeserializationFailure as e:
            logger.warning(f"Treating {source.value} source as absent: {e}")
            return None

    def _cached_document(self, realm: Realm, source: Source, path: str) -> Any:
        body = self.orchestrator.peek(realm, source, path)
        if body is None:
            return None
        try:
            return loads_json(body, path)
        except DeserializationFailure as e:
            logger.warning(f"Ignoring cached {path}: {e}")
            return None

    def _player_detail(self, realm: Realm):
        """Cache-only lookup of authoritative player detail, for member enrichment."""
        def lookup(tag: str) -> Optional[Dict[str, Any]]:
            detail = self._cached_document(realm, Source.AUTHORITATIVE, player_path(tag))
            return detail if isinstance(detail, dict) else None
        return lookup

    # ===== merged views =====

    def merged_view(self, realm: Realm, view: EntityView, ctx: CallerContext, tag: Optional[str] = None) -> Any:
        """
        Merged, role-filtered view.

        Raises:
            ValueError: view needs a tag and none was given
            AccessDenied: caller's role is too low for the view
            CacheMiss: the primary document for the view is unavailable
        """
        if view in _TAGGED_VIEWS and not tag:
            raise ValueError(f"{view.value} view requires a tag")

        if view is EntityView.CLANS:
            return self._clans_view(realm, ctx)
        if view is EntityView.CLAN:
            return self._clan_view(realm, tag, ctx)
        if view is EntityView.CLAN_CONFIG:
            return privacy.clan_config_view(
                self._cached_document(realm, Source.IDENTITY, identity_clan_path(tag)), ctx
            )
        if view is EntityView.MEMBERS:
            return self._members_view(realm, tag, ctx)
        if view in _IDENTITY_MEMBER_LISTS:
            path = identity_clan_path(tag, _IDENTITY_MEMBER_LISTS[view])
            return privacy.filter_members(self._require(realm, Source.IDENTITY, path), ctx)
        if view is EntityView.KICKPOINT_REASONS:
            if not ctx.has_role(Role.COLEADER):
                raise AccessDenied(Role.COLEADER.value)
            return self._require(realm, Source.IDENTITY, identity_clan_path(tag, "/kickpoint-reasons"))
        if view is EntityView.PLAYER:
            player = self._require(realm, Source.AUTHORITATIVE, player_path(tag))
            identity = self._document(realm, Source.IDENTITY, identity_player_path(tag))
            return privacy.player_view(player, identity, ctx)
        if view is EntityView.IDENTITY:
            if not ctx.has_role(Role.MEMBER) and not ctx.is_exempt(tag):
                raise AccessDenied(Role.MEMBER.value)
            return privacy.identity_view(self._require(realm, Source.IDENTITY, identity_player_path(tag)), tag, ctx)
        if view is EntityView.KICKPOINTS:
            return privacy.kickpoint_summary(self._require(realm, Source.IDENTITY, identity_player_path(tag)), tag, ctx)
        if view is EntityView.KICKPOINT_DETAILS:
            return privacy.kickpoint_details(self._require(realm, Source.IDENTITY, identity_player_path(tag)), tag, ctx)
        if view is EntityView.GUILD:
            if not self.realms[realm].has_guild:
                raise ValueError(f"{realm.value} has no guild")
            return privacy.guild_view(self._require(realm, Source.IDENTITY, GUILD_PATH), ctx)
        raise ValueError(f"Unknown view: {view}")

    def _require(self, realm: Realm, source: Source, path: str) -> Any:
        """Parsed document that the view cannot do without."""
        body = self.get_or_refresh(realm, source, path)
        return loads_json(body, path)

    def _clans_view(self, realm: Realm, ctx: CallerContext) -> Any:
        return privacy.filter_clans(self._require(realm, Source.IDENTITY, ROSTER_PATH), realm, ctx)

    def _clan_view(self, realm: Realm, tag: str, ctx: CallerContext) -> Dict[str, Any]:
        clan = self._require(realm, Source.AUTHORITATIVE, clan_path(tag))
        identity = self._document(realm, Source.IDENTITY, identity_clan_path(tag))
        merged = merge_clan(clan, identity if isinstance(identity, dict) else None)
        return privacy.filter_clans(merged, realm, ctx)

    def _members_view(self, realm: Realm, tag: str, ctx: CallerContext) -> List[Dict[str, Any]]:
        clan = self._document(realm, Source.AUTHORITATIVE, clan_path(tag))
        roster = clan.get("memberList") if isinstance(clan, dict) else None
        identity = self._document(realm, Source.IDENTITY, identity_clan_path(tag, "/members"))

        # Identity members are redacted before merging so that
        # upstream_<field> copies never carry hidden values
        identity = privacy.filter_members(identity, ctx) if isinstance(identity, list) else None

        return merge_members(
            roster if isinstance(roster, list) else [],
            [identity] if identity is not None else [],
            detail_lookup=self._player_detail(realm),
            enrich=self.realms[realm].enrich_from_player_detail,
        )

    # ===== accounts =====

    def reconcile_linked_accounts(self, user_id: str) -> Tuple[List[str], List[str]]:
        return self.reconciler.reconcile_linked_accounts(user_id)

    def user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.reconciler.user_profile(user_id)

    def _account(self, realm: Realm, tag: str) -> Optional[Dict[str, Any]]:
        player = self._document(realm, Source.AUTHORITATIVE, player_path(tag))
        if not isinstance(player, dict):
            return None
        identity = self._document(realm, Source.IDENTITY, identity_player_path(tag))
        account = merge_entity(player, identity if isinstance(identity, dict) else None)
        account["gameType"] = realm.value
        return privacy.summarize_kickpoints(account)

    def player_accounts(self, user_id: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Reconciled linked accounts with merged player details per realm.

        Accounts whose player document is unavailable are left out.
        """
        primary, secondary = self.reconcile_linked_accounts(user_id)
        jobs = [(Realm.COC, t) for t in primary] + [(Realm.CR, t) for t in secondary]
        if not jobs:
            return {Realm.COC.value: [], Realm.CR.value: []}
        with ThreadPoolExecutor(max_workers=min(len(jobs), self.settings.warmer_max_workers)) as executor:
            accounts = list(executor.map(lambda job: self._account(*job), jobs))
        result: Dict[str, List[Dict[str, Any]]] = {Realm.COC.value: [], Realm.CR.value: []}
        for (realm, _), account in zip(jobs, accounts):
            if account is not None:
                result[realm.value].append(account)
        return result

    # ===== side clans / status =====

    def side_clans(self) -> List[Dict[str, Any]]:
        """Registry in display order, each with its league history (newest first)."""
        db = self.session_factory()
        try:
            results = []
            for clan in crud.list_side_clans(db, with_history=True):
                history = sorted(clan.league_stats, key=lambda s: s.season, reverse=True)
                results.append({"clan": clan.to_dict(), "history": [s.to_dict() for s in history]})
            return results
        finally:
            db.close()

    def latency_status(self) -> Dict[str, Dict[str, object]]:
        db = self.session_factory()
        try:
            return latency_status(
                db,
                self.prober.probes.keys(),
                self.clock(),
                retention_hours=self.settings.latency_retention_hours,
            )
        finally:
            db.close()

    def latency_history(self) -> List[Dict[str, object]]:
        db = self.session_factory()
        try:
            return latency_history(db)
        finally:
            db.close()

    def cache_stats(self) -> dict:
        return self.orchestrator.get_stats()

    def close(self):
        self.client.close()


# Global service instance (lazy initialization)
_service: Optional[ClanService] = None


def get_clan_service() -> ClanService:
    """Get or create the global ClanService instance."""
    global _service
    if _service is None:
        _service = ClanService()
    return _service
