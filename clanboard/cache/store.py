"""
Durable key/value store of cached upstream responses.
"""
import logging
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from clanboard.errors import PersistenceFailure
from clanboard.models import CacheRow
from .core import CacheEntry

logger = logging.getLogger("cache.store")


class CacheStore:
    """
    Upsert-only cache table.

    - put() inserts or replaces the single row for a key
    - get() returns the row or None
    - No eviction; the key space is bounded by distinct upstream paths

    Concurrent writers for the same key are last-writer-wins; every write
    replaces the whole row so no locking is needed.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def put(self, key: str, body: bytes, status: int) -> CacheEntry:
        """
        Insert or replace the entry for key, stamped with the current time.

        Raises:
            PersistenceFailure: the write did not commit
        """
        updated_at = int(self._clock())
        session = self._session_factory()
        try:
            session.merge(CacheRow(key=key, body=body, status=status, updated_at=updated_at))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceFailure(f"cache write failed for {key}: {e}") from e
        finally:
            session.close()

        logger.debug(f"Stored {key} ({len(body)} bytes, status={status})")
        return CacheEntry(key=key, body=body, status=status, updated_at=updated_at)

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Look up the entry for key.

        Raises:
            PersistenceFailure: the read failed
        """
        session = self._session_factory()
        try:
            row = session.get(CacheRow, key)
            if row is None:
                return None
            return CacheEntry(
                key=row.key,
                body=bytes(row.body),
                status=row.status,
                updated_at=row.updated_at,
            )
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"cache read failed for {key}: {e}") from e
        finally:
            session.close()
