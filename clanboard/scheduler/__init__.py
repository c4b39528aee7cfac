"""
Background refresh scheduler: independent periodic jobs for latency probing,
per-realm cache warming and the side clan harvest.
"""
import logging
from typing import List

from .jobs import PeriodicJob, next_deadline
from .latency import LatencyProber, latency_status, latency_history, build_probes, FRONTEND_PROBE
from .warmer import CacheWarmer
from .harvester import SideClanHarvester, CompetitorScore, rank_competitors, tally_league_wars

logger = logging.getLogger("scheduler")


class RefreshScheduler:
    """
    Owns the job threads. Jobs share nothing but the cache and the registry,
    so one slow or failing job never delays another.
    """

    def __init__(self, jobs: List[PeriodicJob], prober: LatencyProber = None):
        self.jobs = jobs
        self._prober = prober

    @classmethod
    def from_service(cls, service, settings) -> "RefreshScheduler":
        """Standard job set for a ClanService."""
        jobs = [
            PeriodicJob(
                "latency",
                service.prober.run_cycle,
                period=settings.latency_probe_period_seconds,
                run_immediately=True,
            ),
        ]
        for realm, warmer in service.warmers.items():
            jobs.append(PeriodicJob(
                f"warmer-{realm.value}",
                warmer.run_cycle,
                period=getattr(settings, f"warmer_period_{realm.value}_seconds"),
                offset=getattr(settings, f"warmer_offset_{realm.value}_seconds"),
            ))
        jobs.append(PeriodicJob(
            "side-clans",
            service.harvester.run_cycle,
            period=settings.harvester_period_seconds,
            run_immediately=True,
        ))
        return cls(jobs, prober=service.prober)

    def start(self):
        if self._prober is not None:
            try:
                removed = self._prober.reset(FRONTEND_PROBE)
                logger.info(f"Reset {FRONTEND_PROBE} uptime history ({removed} samples)")
            except Exception as e:
                logger.error(f"Could not reset {FRONTEND_PROBE} history: {e}")
        for job in self.jobs:
            job.start()

    def stop(self):
        for job in self.jobs:
            job.stop()
        logger.info("Scheduler stopped")

    def status(self) -> dict:
        return {
            job.name: {
                "running": job.is_running,
                "runs": job.runs,
                "failures": job.failures,
                "skipped_ticks": job.skipped_ticks,
            }
            for job in self.jobs
        }


__all__ = [
    "RefreshScheduler",
    "PeriodicJob",
    "next_deadline",
    "LatencyProber",
    "latency_status",
    "latency_history",
    "build_probes",
    "FRONTEND_PROBE",
    "CacheWarmer",
    "SideClanHarvester",
    "CompetitorScore",
    "rank_competitors",
    "tally_league_wars",
]
