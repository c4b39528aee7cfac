"""
Latency probing of every upstream plus the front-end.
"""
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from clanboard import crud
from clanboard.errors import UpstreamError
from clanboard.realms import Realm, RealmConfig, Source

logger = logging.getLogger("scheduler.latency")

FRONTEND_PROBE = "frontend"


def probe_name(source: Source, realm: Realm) -> str:
    return f"{source.value}_{realm.value}"


def build_probes(realms: Dict[Realm, RealmConfig], frontend_url: Optional[str]) -> Dict[str, Tuple[str, Optional[str]]]:
    """probe name -> (url, bearer token)"""
    probes = {}
    for realm, config in realms.items():
        for source in (Source.AUTHORITATIVE, Source.IDENTITY):
            probes[probe_name(source, realm)] = (config.base_url(source), config.token(source))
    if frontend_url:
        probes[FRONTEND_PROBE] = (frontend_url, None)
    return probes


class LatencyProber:
    """
    One bounded-timeout GET per probe per cycle.

    Any answer below 500 counts as "up" (an API root may well 404); network
    failures, timeouts and 5xx record the -1 sentinel.
    """

    def __init__(
        self,
        client,
        session_factory,
        probes: Dict[str, Tuple[str, Optional[str]]],
        timeout: float = 10.0,
        retention_hours: int = 24,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self._session_factory = session_factory
        self.probes = probes
        self._timeout = timeout
        self._retention_seconds = retention_hours * 3600
        self._clock = clock

    def _probe(self, name: str) -> Optional[int]:
        url, token = self.probes[name]
        try:
            response = self._client.get(url, token=token, timeout=self._timeout)
        except UpstreamError as e:
            logger.debug(f"Probe {name} unreachable: {e}")
            return None
        if response.status >= 500:
            logger.debug(f"Probe {name} answered {response.status}")
            return None
        return response.latency_ms

    def measure(self) -> Dict[str, Optional[int]]:
        """Run every probe concurrently; None marks a failed probe."""
        results: Dict[str, Optional[int]] = {}
        if not self.probes:
            return results
        with ThreadPoolExecutor(max_workers=len(self.probes)) as executor:
            futures = {executor.submit(self._probe, name): name for name in self.probes}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as e:
                    logger.error(f"Probe {name} crashed: {e}")
                    results[name] = None
        return results

    def run_cycle(self) -> Dict[str, Optional[int]]:
        """Measure, record one sample per probe, prune old samples."""
        results = self.measure()
        now = int(self._clock())

        db = self._session_factory()
        try:
            for name, latency in results.items():
                crud.record_latency(db, name, latency, now)
            pruned = crud.prune_latency(db, now - self._retention_seconds)
        finally:
            db.close()

        down = [name for name, latency in results.items() if latency is None]
        if down:
            logger.warning(f"Probes down: {', '.join(sorted(down))}")
        if pruned:
            logger.debug(f"Pruned {pruned} latency samples")
        return results

    def reset(self, name: str = FRONTEND_PROBE) -> int:
        """Forget a probe's history (the front-end's on startup)."""
        db = self._session_factory()
        try:
            return crud.reset_probe(db, name)
        finally:
            db.close()


def latency_status(
    db: Session,
    probe_names: Iterable[str],
    now: float,
    retention_hours: int = 24,
) -> Dict[str, Dict[str, object]]:
    """
    Per-probe {status, latency, uptime_minutes} over the retention horizon

    uptime_minutes counts successful samples (one per probe period)
    """
    since = int(now) - retention_hours * 3600
    status: Dict[str, Dict[str, object]] = {}
    for name in probe_names:
        latency, successes = crud.uptime_summary(db, name, since)
        online = latency != crud.FAILED_PROBE_LATENCY
        status[name] = {
            "status": "ONLINE" if online else "OFFLINE",
            "latency": latency if online else 0,
            "uptime_minutes": successes,
        }
    return status


def latency_history(db: Session) -> List[Dict[str, object]]:
    """All retained samples, oldest first."""
    return [
        {"api": s.probe_name, "latency": s.latency_ms, "timestamp": s.timestamp}
        for s in crud.latency_samples(db)
    ]
