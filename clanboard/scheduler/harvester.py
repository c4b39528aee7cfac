"""
Side clan registry sync and league rank harvest.

The registry is fully reconciled against the side clan config each cycle,
then every side clan gets a fresh badge and, while it is in a league group,
a (tag, season) rank snapshot.
"""
import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from clanboard import crud
from clanboard.errors import ClanboardError
from clanboard.realms import Realm, Source, clan_path, league_group_path, league_war_path
from clanboard.utils.helpers import loads_json, normalize_tag, parse_float, parse_int

logger = logging.getLogger("scheduler.harvester")

# War tag the league API uses for not-yet-scheduled wars
UNSCHEDULED_WAR_TAG = "#0"


@dataclass
class CompetitorScore:
    """League totals for one clan in a group."""
    tag: str
    stars: int = 0
    destruction: float = 0.0


def rank_competitors(competitors: Iterable[CompetitorScore], tag: str) -> Optional[int]:
    """
    1-based rank of ``tag``: stars descending, then destruction descending.

    Exact ties fall back to tag order so the result is deterministic.
    Returns None if the tag is not among the competitors.
    """
    ordered = sorted(
        competitors,
        key=lambda c: (-c.stars, -c.destruction, normalize_tag(c.tag)),
    )
    wanted = normalize_tag(tag)
    for position, competitor in enumerate(ordered, start=1):
        if normalize_tag(competitor.tag) == wanted:
            return position
    return None


def tally_league_wars(group: Dict[str, Any], wars: Iterable[Dict[str, Any]]) -> List[CompetitorScore]:
    """Sum stars and destruction per clan over a group's wars."""
    scores: Dict[str, CompetitorScore] = {}
    for clan in group.get("clans") or []:
        if isinstance(clan, dict) and clan.get("tag"):
            scores[normalize_tag(clan["tag"])] = CompetitorScore(tag=clan["tag"])

    for war in wars:
        for side in ("clan", "opponent"):
            entry = war.get(side) if isinstance(war, dict) else None
            if not isinstance(entry, dict) or not entry.get("tag"):
                continue
            key = normalize_tag(entry["tag"])
            score = scores.setdefault(key, CompetitorScore(tag=entry["tag"]))
            score.stars += parse_int(entry.get("stars")) or 0
            score.destruction += parse_float(entry.get("destructionPercentage")) or 0.0
    return list(scores.values())


def _badge_url(urls: Any) -> Optional[str]:
    if not isinstance(urls, dict):
        return None
    return urls.get("medium") or urls.get("small") or urls.get("large")


class SideClanHarvester:
    """Hourly side clan job."""

    def __init__(
        self,
        orchestrator,
        client,
        session_factory,
        realm: Realm = Realm.COC,
        config_url: Optional[str] = None,
        config_path: Optional[Path] = None,
        max_workers: int = 5,
    ):
        self._orchestrator = orchestrator
        self._client = client
        self._session_factory = session_factory
        self.realm = realm
        self._config_url = config_url
        self._config_path = Path(config_path) if config_path else None
        self._max_workers = max(1, max_workers)

    # ===== config =====

    def load_config(self) -> Optional[List[Dict[str, Any]]]:
        """
        Side clan config from the URL, else the JSON file.

        Returns None when no source could be read, so the registry is left
        alone instead of being emptied.
        """
        if self._config_url:
            try:
                response = self._client.get(self._config_url)
                if response.ok:
                    entries = loads_json(response.body, "side clan config")
                    if isinstance(entries, list):
                        return entries
                    logger.warning("Side clan config from URL is not a list")
                else:
                    logger.warning(f"Side clan config URL returned {response.status}")
            except ClanboardError as e:
                logger.warning(f"Side clan config URL failed: {e}")

        if self._config_path and self._config_path.exists():
            try:
                entries = json.loads(self._config_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.error(f"Could not read {self._config_path}: {e}")
                return None
            if isinstance(entries, list):
                return entries
            logger.error(f"{self._config_path} does not hold a list")
        return None

    def sync_registry(self) -> Optional[Dict[str, int]]:
        entries = self.load_config()
        if entries is None:
            logger.warning("No side clan config available; registry unchanged")
            return None
        db = self._session_factory()
        try:
            return crud.sync_side_clans(db, entries)
        finally:
            db.close()

    # ===== per clan =====

    def _get(self, path: str) -> Any:
        return loads_json(
            self._orchestrator.get_or_refresh(self.realm, Source.AUTHORITATIVE, path),
            path,
        )

    def harvest_clan(self, tag: str) -> Dict[str, Any]:
        """
        Badge plus league snapshot for one side clan.

        Returns:
            {"badge_url"} and, if the clan is in a league group,
            {"season", "league_id", "league_name", "league_badge_url", "rank"}

        Raises:
            ClanboardError: clan detail could not be loaded
        """
        clan = self._get(clan_path(tag))
        clan = clan if isinstance(clan, dict) else {}
        result: Dict[str, Any] = {"badge_url": _badge_url(clan.get("badgeUrls")) or clan.get("badgeUrl")}

        try:
            group = self._get(league_group_path(tag))
        except ClanboardError as e:
            # 404 outside league season
            logger.debug(f"No league group for {tag}: {e}")
            return result
        if not isinstance(group, dict) or not group.get("season"):
            return result

        wars = []
        for league_round in group.get("rounds") or []:
            if not isinstance(league_round, dict):
                continue
            for war_tag in league_round.get("warTags") or []:
                if not isinstance(war_tag, str) or not war_tag or war_tag == UNSCHEDULED_WAR_TAG:
                    continue
                try:
                    war = self._get(league_war_path(war_tag))
                except ClanboardError as e:
                    logger.warning(f"League war {war_tag} unavailable: {e}")
                    continue
                if isinstance(war, dict):
                    wars.append(war)

        league = clan.get("warLeague") if isinstance(clan.get("warLeague"), dict) else {}
        result.update({
            "season": group["season"],
            "league_id": league.get("id"),
            "league_name": league.get("name"),
            "league_badge_url": _badge_url(league.get("iconUrls")),
            "rank": rank_competitors(tally_league_wars(group, wars), tag),
        })
        return result

    def _store(self, tag: str, harvest: Dict[str, Any]):
        db = self._session_factory()
        try:
            crud.update_side_clan_badge(db, tag, harvest.get("badge_url"))
            if harvest.get("season"):
                crud.upsert_league_stat(
                    db,
                    tag,
                    harvest["season"],
                    league_id=harvest.get("league_id"),
                    league_name=harvest.get("league_name"),
                    league_badge_url=harvest.get("league_badge_url"),
                    rank=harvest.get("rank"),
                )
        finally:
            db.close()

    # ===== cycle =====

    def run_cycle(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {"registry": self.sync_registry(), "harvested": 0, "failed": 0, "snapshots": 0}

        db = self._session_factory()
        try:
            tags = [clan.tag for clan in crud.list_side_clans(db)]
        finally:
            db.close()

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = {executor.submit(self.harvest_clan, tag): tag for tag in tags}
            for future in as_completed(futures):
                tag = futures[future]
                try:
                    harvest = future.result()
                except ClanboardError as e:
                    summary["failed"] += 1
                    logger.warning(f"Side clan {tag} skipped: {e}")
                    continue
                except Exception as e:
                    summary["failed"] += 1
                    logger.error(f"Side clan {tag} harvest crashed: {e}", exc_info=True)
                    continue
                try:
                    self._store(tag, harvest)
                except Exception as e:
                    summary["failed"] += 1
                    logger.error(f"Could not store harvest for {tag}: {e}")
                    continue
                summary["harvested"] += 1
                if harvest.get("season"):
                    summary["snapshots"] += 1

        logger.info(
            f"Side clan harvest complete: {summary['harvested']} ok, "
            f"{summary['failed']} failed, {summary['snapshots']} league snapshots"
        )
        return summary
