"""
Cross-source reconciliation of a user's linked game accounts.

The coc identity bot is the sole authority for the primary (coc) account
list. Secondary (cr) accounts are contributed by both bots: the coc bot via
``linkedCrPlayers``, the cr bot via ``linkedPlayers`` and ``linkedCrPlayers``.
"""
import copy
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from clanboard import crud
from clanboard.errors import CacheMiss, DeserializationFailure, PersistenceFailure
from clanboard.realms import Realm, Source, identity_user_path
from clanboard.roles import role_priority
from clanboard.utils.helpers import loads_json, normalize_tag, same_tag_set

logger = logging.getLogger("reconciler")

PRIMARY_FIELD = "linkedPlayers"
SECONDARY_FIELD = "linkedCrPlayers"


def _tags(document: Dict[str, Any], field: str) -> List[str]:
    values = document.get(field)
    if not isinstance(values, list):
        return []
    return [v for v in values if isinstance(v, str)]


def union_tags(*lists: Iterable[str]) -> List[str]:
    """Order-preserving union, de-duplicated on normalized tag."""
    seen = set()
    result = []
    for tags in lists:
        for tag in tags:
            key = normalize_tag(tag)
            if key and key not in seen:
                seen.add(key)
                result.append(tag)
    return result


def merge_user_profiles(
    a: Optional[Dict[str, Any]],
    b: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """
    Combined profile from the coc bot (a) and the cr bot (b).

    - admin: true if either says so
    - highestRole: the higher-priority role
    - linked lists: de-duplicated unions
    - nickname: a's unless null
    """
    if a is None and b is None:
        return None
    if a is None:
        return copy.deepcopy(b)
    if b is None:
        return copy.deepcopy(a)

    merged = copy.deepcopy(a)
    merged["admin"] = bool(a.get("admin")) or bool(b.get("admin"))

    role_a = a.get("highestRole") or "NOTMEMBER"
    role_b = b.get("highestRole") or "NOTMEMBER"
    merged["highestRole"] = role_b if role_priority(role_b) > role_priority(role_a) else role_a

    merged[PRIMARY_FIELD] = union_tags(_tags(a, PRIMARY_FIELD), _tags(b, PRIMARY_FIELD))
    merged[SECONDARY_FIELD] = union_tags(_tags(a, SECONDARY_FIELD), _tags(b, SECONDARY_FIELD))

    if merged.get("nickname") is None and b.get("nickname") is not None:
        merged["nickname"] = b["nickname"]
    return merged


class IdentityReconciler:
    """
    Keeps the stored linked account lists in line with both identity bots.
    """

    def __init__(self, orchestrator, session_factory, clock: Callable[[], float] = time.time):
        self._orchestrator = orchestrator
        self._session_factory = session_factory
        self._clock = clock

    def _fetch_user(self, realm: Realm, user_id: str, allow_stale: bool) -> Optional[Dict[str, Any]]:
        """Live user document from one identity bot, None if unreachable or unreadable."""
        path = identity_user_path(user_id)
        try:
            body = self._orchestrator.get_or_refresh(
                realm, Source.IDENTITY, path, ttl_seconds=0, allow_stale=allow_stale
            )
            document = loads_json(body, f"{realm.value} user {user_id}")
        except CacheMiss as e:
            logger.warning(f"{realm.value} identity bot unavailable for user {user_id}: {e.__cause__ or e}")
            return None
        except DeserializationFailure as e:
            logger.warning(f"Ignoring {realm.value} user document: {e}")
            return None
        if not isinstance(document, dict):
            logger.warning(f"Ignoring {realm.value} user document for {user_id}: not an object")
            return None
        return document

    def _load(self, user_id: str) -> Tuple[List[str], List[str]]:
        db = self._session_factory()
        try:
            return crud.get_linked_accounts(db, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Could not read linked accounts for {user_id}: {e}")
            return [], []
        finally:
            db.close()

    def _save(self, user_id: str, primary: List[str], secondary: List[str]) -> bool:
        db = self._session_factory()
        try:
            crud.save_linked_accounts(db, user_id, primary, secondary, now=int(self._clock()))
            return True
        except (PersistenceFailure, SQLAlchemyError) as e:
            logger.error(f"Could not save linked accounts for {user_id}: {e}")
            return False
        finally:
            db.close()

    def reconcile_linked_accounts(self, user_id: str) -> Tuple[List[str], List[str]]:
        """
        Reconcile and (if changed) persist a user's linked accounts.

        Both bots are read live with no stale fallback, so "unreachable"
        really means the bot did not answer now.

        Returns:
            (primary_tags, secondary_tags), whether or not a write happened
        """
        current_primary, current_secondary = self._load(user_id)

        doc_a = self._fetch_user(Realm.COC, user_id, allow_stale=False)
        doc_b = self._fetch_user(Realm.CR, user_id, allow_stale=False)

        primary = current_primary
        if doc_a is not None:
            primary = _tags(doc_a, PRIMARY_FIELD)

        contribution_a = _tags(doc_a, SECONDARY_FIELD) if doc_a is not None else []
        contribution_b = (
            union_tags(_tags(doc_b, PRIMARY_FIELD), _tags(doc_b, SECONDARY_FIELD))
            if doc_b is not None else []
        )

        if doc_a is not None and doc_b is not None:
            secondary = union_tags(contribution_a, contribution_b)
        elif doc_a is not None:
            secondary = union_tags(current_secondary, contribution_a)
        elif doc_b is not None:
            secondary = union_tags(current_secondary, contribution_b)
        else:
            logger.warning(f"No identity bot reachable for user {user_id}; keeping stored accounts")
            secondary = current_secondary

        changed = (
            not same_tag_set(primary, current_primary)
            or not same_tag_set(secondary, current_secondary)
        )
        if changed:
            if self._save(user_id, primary, secondary):
                logger.info(
                    f"Linked accounts updated for {user_id}: "
                    f"{len(primary)} primary, {len(secondary)} secondary"
                )
        else:
            logger.debug(f"Linked accounts unchanged for {user_id}")

        return primary, secondary

    def user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Combined profile from both bots; stale copies are acceptable here."""
        doc_a = self._fetch_user(Realm.COC, user_id, allow_stale=True)
        doc_b = self._fetch_user(Realm.CR, user_id, allow_stale=True)
        return merge_user_profiles(doc_a, doc_b)
