"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Official game APIs (authoritative source)
    coc_authoritative_url: str = "https://api.clashofclans.com/v1"
    coc_authoritative_token: Optional[str] = None
    cr_authoritative_url: str = "https://api.clashroyale.com/v1"
    cr_authoritative_token: Optional[str] = None

    # Community bot APIs (identity source)
    coc_identity_url: str = "http://localhost:8070"
    coc_identity_token: Optional[str] = None
    cr_identity_url: str = "http://localhost:8071"
    cr_identity_token: Optional[str] = None

    # Front-end (probed for availability only)
    frontend_url: str = "http://localhost:5173"

    # Persistence
    database_url: str = "sqlite:///./clanboard.db"

    # Read-path TTLs (seconds)
    ttl_roster_seconds: int = 600
    ttl_clan_seconds: int = 3600
    ttl_members_seconds: int = 3600
    ttl_player_seconds: int = 300
    ttl_league_seconds: int = 1800

    # Per-realm cache warmer cadence; offsets keep the realms out of phase
    warmer_period_coc_seconds: int = 600
    warmer_period_cr_seconds: int = 600
    warmer_offset_coc_seconds: int = 0
    warmer_offset_cr_seconds: int = 300
    warmer_max_workers: int = 7
    warmer_member_sample: int = 10

    # Latency probing
    latency_probe_period_seconds: int = 60
    latency_probe_timeout_seconds: float = 10.0
    latency_retention_hours: int = 24

    # Side clan registry + league harvest
    harvester_period_seconds: int = 3600
    side_clan_config_url: Optional[str] = None
    side_clan_config_path: Path = Path(__file__).parent / "side_clans.json"
    side_clan_realm: str = "coc"

    # Upstream HTTP
    request_timeout_seconds: float = 30.0
    max_concurrent_requests: int = 10

    # Background jobs
    scheduler_enabled: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
