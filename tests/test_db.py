"""
Tests for database setup helpers.
"""
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from clanboard.db import get_db, get_session, init_db, make_engine


def test_init_db_creates_all_tables(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'init.db'}")
    init_db(engine)
    init_db(engine)  # idempotent

    tables = set(inspect(engine).get_table_names())
    assert {"cache", "latency_samples", "side_clans", "side_clan_league_stats", "linked_accounts"} <= tables
    engine.dispose()


def test_get_db_yields_and_closes_a_session():
    gen = get_db()
    db = next(gen)
    assert isinstance(db, Session)
    gen.close()


def test_get_session_returns_a_session():
    db = get_session()
    try:
        assert isinstance(db, Session)
    finally:
        db.close()
