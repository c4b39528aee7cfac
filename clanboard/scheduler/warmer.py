"""
Per-realm cache warmer.

One cycle:
1. Refresh the identity roster (and the guild document where the realm has one)
2. Add side clans from the registry that the roster does not list
3. Per clan, refresh its endpoint set concurrently (bounded pool)
4. Drill into a capped sample of each clan's member profiles
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Dict, List, Optional, Tuple

from clanboard import crud
from clanboard.errors import ClanboardError
from clanboard.realms import (
    GUILD_PATH,
    ROSTER_PATH,
    RealmConfig,
    Source,
    clan_path,
    identity_clan_path,
    player_path,
)
from clanboard.utils.helpers import is_entity_tag, loads_json, normalize_tag

logger = logging.getLogger("scheduler.warmer")

Endpoint = Tuple[Source, str]


class CacheWarmer:
    """Keeps one realm's hot paths fresh ahead of reads."""

    def __init__(
        self,
        orchestrator,
        realm_config: RealmConfig,
        session_factory=None,
        include_side_clans: bool = False,
        max_workers: int = 7,
        member_sample: int = 10,
    ):
        """
        Args:
            orchestrator: FetchOrchestrator
            realm_config: Realm being warmed
            session_factory: For reading the side clan registry
            include_side_clans: Registry belongs to this realm
            max_workers: Concurrent endpoint refreshes per clan
            member_sample: Member profiles refreshed per clan
        """
        self._orchestrator = orchestrator
        self.config = realm_config
        self.realm = realm_config.realm
        self._session_factory = session_factory
        self._include_side_clans = include_side_clans and session_factory is not None
        self._max_workers = max(1, max_workers)
        self._member_sample = max(0, member_sample)

    # ===== single refresh =====

    def _refresh(self, source: Source, path: str, ttl_seconds: Optional[int] = 0) -> bytes:
        """Live fetch with no stale fallback so failures are visible."""
        return self._orchestrator.get_or_refresh(
            self.realm, source, path, ttl_seconds=ttl_seconds, allow_stale=False
        )

    # ===== roster =====

    def _roster_tags(self) -> List[str]:
        try:
            roster = loads_json(self._refresh(Source.IDENTITY, ROSTER_PATH), f"{self.realm.value} roster")
        except ClanboardError as e:
            logger.error(f"[{self.realm.value}] Roster refresh failed: {e}")
            return []
        if not isinstance(roster, list):
            logger.error(f"[{self.realm.value}] Roster is not a list")
            return []
        return [c["tag"] for c in roster if isinstance(c, dict) and isinstance(c.get("tag"), str)]

    def _side_clan_tags(self, known: List[str]) -> List[str]:
        if not self._include_side_clans:
            return []
        db = self._session_factory()
        try:
            registry = [clan.tag for clan in crud.list_side_clans(db)]
        except Exception as e:
            logger.error(f"[{self.realm.value}] Could not read side clan registry: {e}")
            return []
        finally:
            db.close()
        seen = {normalize_tag(t) for t in known}
        return [t for t in registry if normalize_tag(t) not in seen]

    def _refresh_guild(self) -> bool:
        if not self.config.has_guild:
            return True
        try:
            self._refresh(Source.IDENTITY, GUILD_PATH)
            return True
        except ClanboardError as e:
            logger.warning(f"[{self.realm.value}] Guild refresh failed: {e}")
            return False

    # ===== per clan =====

    def clan_endpoints(self, tag: str, identity_known: bool = True) -> List[Endpoint]:
        """Endpoint set warmed for one clan."""
        endpoints: List[Endpoint] = []
        if identity_known:
            endpoints.extend(
                (Source.IDENTITY, identity_clan_path(tag, suffix))
                for suffix in self.config.identity_clan_endpoints
            )
        endpoints.append((Source.AUTHORITATIVE, clan_path(tag)))
        return endpoints

    def _refresh_batch(
        self,
        executor: ThreadPoolExecutor,
        endpoints: List[Endpoint],
        ttl_seconds: Optional[int] = 0,
    ) -> Tuple[Dict[Endpoint, bytes], int]:
        """Refresh endpoints concurrently; one failure never cancels the others."""
        results: Dict[Endpoint, bytes] = {}
        failed = 0
        futures = {
            executor.submit(self._refresh, source, path, ttl_seconds): (source, path)
            for source, path in endpoints
        }
        for future in as_completed(futures):
            endpoint = futures[future]
            try:
                results[endpoint] = future.result()
            except ClanboardError as e:
                failed += 1
                logger.warning(f"[{self.realm.value}] Error refreshing {endpoint[1]}: {e}")
            except Exception as e:
                failed += 1
                logger.error(f"[{self.realm.value}] Unexpected error refreshing {endpoint[1]}: {e}")
        return results, failed

    def _member_tags(self, clan_body: Optional[bytes]) -> List[str]:
        if not clan_body or not self._member_sample:
            return []
        try:
            clan = loads_json(clan_body, "clan detail")
        except ClanboardError as e:
            logger.debug(f"[{self.realm.value}] {e}")
            return []
        members = clan.get("memberList") if isinstance(clan, dict) else None
        if not isinstance(members, list):
            return []
        tags = [m.get("tag") for m in members if isinstance(m, dict)]
        return [t for t in tags if is_entity_tag(t)][: self._member_sample]

    # ===== cycle =====

    def run_cycle(self) -> Dict[str, Any]:
        """
        One warm-up pass.

        Returns:
            Summary counters for logging and tests
        """
        started = time.monotonic()
        summary: Dict[str, Any] = {
            "realm": self.realm.value,
            "clans": 0,
            "skipped": [],
            "endpoints_ok": 0,
            "endpoints_failed": 0,
            "players_ok": 0,
            "players_failed": 0,
            "guild_ok": self._refresh_guild(),
        }

        roster = self._roster_tags()
        side = self._side_clan_tags(roster)

        targets: List[Tuple[str, bool]] = []
        for tag in roster:
            if is_entity_tag(tag):
                targets.append((tag, True))
            else:
                summary["skipped"].append(tag)
        # Side clans are not known to the identity bot
        targets.extend((tag, False) for tag in side if is_entity_tag(tag))

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            for tag, identity_known in targets:
                endpoints = self.clan_endpoints(tag, identity_known)
                results, failed = self._refresh_batch(executor, endpoints)
                summary["clans"] += 1
                summary["endpoints_ok"] += len(results)
                summary["endpoints_failed"] += failed

                members = self._member_tags(results.get((Source.AUTHORITATIVE, clan_path(tag))))
                if members:
                    # Player TTL applies: only stale profiles are refetched
                    player_results, player_failed = self._refresh_batch(
                        executor,
                        [(Source.AUTHORITATIVE, player_path(t)) for t in members],
                        ttl_seconds=None,
                    )
                    summary["players_ok"] += len(player_results)
                    summary["players_failed"] += player_failed

        summary["duration_ms"] = int((time.monotonic() - started) * 1000)
        logger.info(
            f"[{self.realm.value}] Warm cycle complete: {summary['clans']} clans, "
            f"{summary['endpoints_ok']} ok / {summary['endpoints_failed']} failed endpoints, "
            f"{summary['players_ok']} players [{summary['duration_ms']}ms]"
        )
        return summary
