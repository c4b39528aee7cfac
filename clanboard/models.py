"""
Database models for the cache core
SQLAlchemy ORM models for cached upstream responses, latency samples,
the side clan registry, league snapshots and linked accounts
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, LargeBinary, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class CacheRow(Base):
    """
    One cached upstream response per "{realm}:{source}:{path}" key.
    Rows are overwritten in place, never accumulated.
    """
    __tablename__ = "cache"

    key = Column(String, primary_key=True)
    body = Column(LargeBinary, nullable=False)
    status = Column(Integer, nullable=False)
    updated_at = Column(BigInteger, nullable=False)  # epoch seconds

    def __repr__(self):
        return f"<CacheRow(key='{self.key}', status={self.status}, updated_at={self.updated_at})>"


class LatencySample(Base):
    """
    Latency probe result - append-only, pruned by retention horizon
    latency_ms = -1 marks a failed probe
    """
    __tablename__ = "latency_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    probe_name = Column(String, nullable=False)
    latency_ms = Column(Integer, nullable=False)
    timestamp = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_latency_probe_ts", "probe_name", "timestamp"),
    )

    def __repr__(self):
        return f"<LatencySample(probe='{self.probe_name}', latency_ms={self.latency_ms}, ts={self.timestamp})>"


class SideClan(Base):
    """
    Extra clan tracked alongside the main roster
    Fully reconciled against the external side clan config on every sync
    """
    __tablename__ = "side_clans"

    tag = Column(String, primary_key=True)
    display_name = Column(String, nullable=False)
    group_key = Column(String, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    badge_url = Column(String, nullable=True)

    league_stats = relationship(
        "SideClanLeagueStat",
        back_populates="side_clan",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "display_name": self.display_name,
            "group_key": self.group_key,
            "display_order": self.display_order,
            "badge_url": self.badge_url,
        }

    def __repr__(self):
        return f"<SideClan(tag='{self.tag}', name='{self.display_name}', order={self.display_order})>"


class SideClanLeagueStat(Base):
    """
    League/rank snapshot - one record per side clan per season
    """
    __tablename__ = "side_clan_league_stats"

    tag = Column(String, ForeignKey("side_clans.tag", ondelete="CASCADE"), primary_key=True)
    season = Column(String, primary_key=True)
    league_id = Column(Integer, nullable=True)
    league_name = Column(String, nullable=True)
    league_badge_url = Column(String, nullable=True)
    rank = Column(Integer, nullable=True)

    side_clan = relationship("SideClan", back_populates="league_stats")

    def to_dict(self) -> dict:
        return {
            "tag": self.tag,
            "season": self.season,
            "league_id": self.league_id,
            "league_name": self.league_name,
            "league_badge_url": self.league_badge_url,
            "rank": self.rank,
        }

    def __repr__(self):
        return f"<SideClanLeagueStat(tag='{self.tag}', season='{self.season}', rank={self.rank})>"


class LinkedAccounts(Base):
    """
    Game accounts linked to a community user
    primary_tags / secondary_tags are JSON-encoded tag lists
    """
    __tablename__ = "linked_accounts"

    user_id = Column(String, primary_key=True)
    primary_tags = Column(Text, nullable=False, default="[]")
    secondary_tags = Column(Text, nullable=False, default="[]")
    updated_at = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<LinkedAccounts(user_id='{self.user_id}')>"
