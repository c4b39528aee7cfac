"""
CRUD operations (Create, Read, Update, Delete)
Database query functions for latency samples, side clans, league snapshots
and linked accounts
"""
import json
import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from clanboard.errors import PersistenceFailure
from clanboard.models import LatencySample, LinkedAccounts, SideClan, SideClanLeagueStat
from clanboard.utils.helpers import display_tag, parse_int

logger = logging.getLogger("crud")

FAILED_PROBE_LATENCY = -1


def _commit(db: Session, what: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceFailure(f"{what}: {e}") from e


# ===== LATENCY SAMPLES =====

def record_latency(db: Session, probe_name: str, latency_ms: Optional[int], timestamp: int) -> LatencySample:
    """
    Append one probe result; None records the failure sentinel (-1)
    """
    sample = LatencySample(
        probe_name=probe_name,
        latency_ms=FAILED_PROBE_LATENCY if latency_ms is None else int(latency_ms),
        timestamp=int(timestamp),
    )
    db.add(sample)
    _commit(db, f"record latency for {probe_name}")
    return sample


def prune_latency(db: Session, older_than: int) -> int:
    """
    Delete samples with timestamp strictly before older_than
    Returns the number of deleted rows
    """
    deleted = (
        db.query(LatencySample)
        .filter(LatencySample.timestamp < older_than)
        .delete(synchronize_session=False)
    )
    _commit(db, "prune latency samples")
    return deleted


def reset_probe(db: Session, probe_name: str) -> int:
    """
    Drop all history for one probe
    """
    deleted = (
        db.query(LatencySample)
        .filter(LatencySample.probe_name == probe_name)
        .delete(synchronize_session=False)
    )
    _commit(db, f"reset probe {probe_name}")
    return deleted


def latency_samples(
    db: Session,
    probe_name: Optional[str] = None,
    since: Optional[int] = None,
) -> List[LatencySample]:
    """
    Samples oldest first, optionally for one probe and/or after a timestamp
    """
    query = db.query(LatencySample)
    if probe_name is not None:
        query = query.filter(LatencySample.probe_name == probe_name)
    if since is not None:
        query = query.filter(LatencySample.timestamp > since)
    return query.order_by(LatencySample.timestamp, LatencySample.id).all()


def uptime_summary(db: Session, probe_name: str, since: int) -> Tuple[int, int]:
    """
    (current_latency_ms, successful_samples) for a probe since a timestamp

    current latency is the newest sample (-1 if it failed or none exist);
    successful samples are those that did not record the failure sentinel
    """
    rows = (
        db.query(LatencySample.latency_ms)
        .filter(LatencySample.probe_name == probe_name, LatencySample.timestamp > since)
        .order_by(desc(LatencySample.timestamp), desc(LatencySample.id))
        .all()
    )
    if not rows:
        return FAILED_PROBE_LATENCY, 0
    successes = sum(1 for (latency,) in rows if latency != FAILED_PROBE_LATENCY)
    return rows[0][0], successes


# ===== SIDE CLANS =====

def list_side_clans(db: Session, with_history: bool = False) -> List[SideClan]:
    """
    Registry in display order: explicit order ascending, unordered (0) last,
    then by name
    """
    query = db.query(SideClan)
    if with_history:
        query = query.options(selectinload(SideClan.league_stats))
    return (
        query.order_by(
            case((SideClan.display_order == 0, 1), else_=0),
            SideClan.display_order,
            SideClan.display_name,
        )
        .all()
    )


def get_side_clan(db: Session, tag: str) -> Optional[SideClan]:
    return db.query(SideClan).filter(SideClan.tag == display_tag(tag)).first()


def sync_side_clans(db: Session, entries: Iterable[Dict]) -> Dict[str, int]:
    """
    Fully reconcile the registry against a config snapshot

    Entries absent from the snapshot are deleted (their league history goes
    with them); present entries are upserted. Badge URLs are kept, the config
    does not carry them.

    Each entry: {"clan_tag", "name", "belongs_to", "display_index"}
    """
    wanted: Dict[str, Dict] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping side clan config entry that is not an object: {entry!r}")
            continue
        tag = entry.get("clan_tag") or entry.get("tag")
        if not tag:
            continue
        wanted[display_tag(tag)] = entry

    existing = {clan.tag: clan for clan in db.query(SideClan).all()}

    removed = 0
    for tag, clan in existing.items():
        if tag not in wanted:
            db.delete(clan)
            removed += 1

    added = 0
    updated = 0
    for tag, entry in wanted.items():
        name = entry.get("name") or tag
        group_key = entry.get("belongs_to")
        order = parse_int(entry.get("display_index")) or 0
        clan = existing.get(tag)
        if clan is None:
            db.add(SideClan(tag=tag, display_name=name, group_key=group_key, display_order=order))
            added += 1
        else:
            clan.display_name = name
            clan.group_key = group_key
            clan.display_order = order
            updated += 1

    _commit(db, "sync side clans")
    logger.info(f"Side clan registry synced: +{added} ~{updated} -{removed}")
    return {"added": added, "updated": updated, "removed": removed}


def update_side_clan_badge(db: Session, tag: str, badge_url: Optional[str]) -> bool:
    clan = get_side_clan(db, tag)
    if clan is None or clan.badge_url == badge_url:
        return False
    clan.badge_url = badge_url
    _commit(db, f"update badge for {tag}")
    return True


def upsert_league_stat(
    db: Session,
    tag: str,
    season: str,
    league_id: Optional[int] = None,
    league_name: Optional[str] = None,
    league_badge_url: Optional[str] = None,
    rank: Optional[int] = None,
) -> SideClanLeagueStat:
    """
    Insert or replace the (tag, season) league snapshot
    """
    stat = db.merge(SideClanLeagueStat(
        tag=display_tag(tag),
        season=season,
        league_id=league_id,
        league_name=league_name,
        league_badge_url=league_badge_url,
        rank=rank,
    ))
    _commit(db, f"upsert league stat {tag}/{season}")
    return stat


def league_history(db: Session, tag: str) -> List[SideClanLeagueStat]:
    """
    Snapshots for one side clan, newest season first
    """
    return (
        db.query(SideClanLeagueStat)
        .filter(SideClanLeagueStat.tag == display_tag(tag))
        .order_by(desc(SideClanLeagueStat.season))
        .all()
    )


# ===== LINKED ACCOUNTS =====

def _decode_tags(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except ValueError:
        logger.warning(f"Unreadable linked account list: {raw!r}")
        return []
    return [t for t in tags if isinstance(t, str)] if isinstance(tags, list) else []


def get_linked_accounts(db: Session, user_id: str) -> Tuple[List[str], List[str]]:
    """
    (primary_tags, secondary_tags) for a user, empty lists if unknown
    """
    row = db.get(LinkedAccounts, user_id)
    if row is None:
        return [], []
    return _decode_tags(row.primary_tags), _decode_tags(row.secondary_tags)


def save_linked_accounts(
    db: Session,
    user_id: str,
    primary_tags: List[str],
    secondary_tags: List[str],
    now: Optional[int] = None,
) -> LinkedAccounts:
    """
    Replace both lists for a user (creating the record if needed)
    """
    row = db.merge(LinkedAccounts(
        user_id=user_id,
        primary_tags=json.dumps(list(primary_tags)),
        secondary_tags=json.dumps(list(secondary_tags)),
        updated_at=int(now if now is not None else time.time()),
    ))
    _commit(db, f"save linked accounts for {user_id}")
    return row
