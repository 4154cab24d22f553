"""
World Scheduler: cron-driven batch jobs decoupled from request handling.

Behavioral Contract:
- Every job is an idempotent batch operation taking the current time and
  returning a small summary dict.
- run_due runs each job whose next fire time has passed, then reschedules it
  from the current time. Missed fires collapse into one run.
- A failing job is logged and recorded; the other jobs still run.
- run_async ticks cooperatively until the stop event is set.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from croniter import croniter

from street_kernel.config import KernelSettings
from street_kernel.debt.ledger import DebtLedger
from street_kernel.ecosystem.aggregator import DistrictEcosystem
from street_kernel.models.scheduler import JobRun, JobStatus
from street_kernel.reputation.ledger import ReputationLedger
from street_kernel.surveillance.grid import SurveillanceGrid
from street_kernel.surveillance.pursuit import PursuitEngine

logger = logging.getLogger(__name__)

JobFn = Callable[[datetime], dict]


class ScheduledJob:
    """A named batch operation on a cron schedule."""

    def __init__(self, name: str, schedule: str, fn: JobFn):
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression for job {name}: {schedule!r}")
        self.name = name
        self.schedule = schedule
        self.fn = fn
        self.next_run_at: Optional[datetime] = None
        self.last_run: Optional[JobRun] = None
        self.run_count = 0
        self.failure_count = 0

    def schedule_from(self, base_time: datetime) -> None:
        self.next_run_at = croniter(self.schedule, base_time).get_next(datetime)

    def is_due(self, current_time: datetime) -> bool:
        return self.next_run_at is not None and self.next_run_at <= current_time


class WorldScheduler:
    """Runs the world's periodic jobs."""

    def __init__(
        self,
        jobs: Optional[List[ScheduledJob]] = None,
        start_time: Optional[datetime] = None,
        tick_seconds: float = 30.0,
    ):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._start_time = start_time or datetime.utcnow()
        self.tick_seconds = tick_seconds
        self._running = False
        for job in jobs or []:
            self.add_job(job)

    @property
    def status(self) -> str:
        return "running" if self._running else "idle"

    def add_job(self, job: ScheduledJob) -> None:
        if job.name in self._jobs:
            raise ValueError(f"Duplicate job name: {job.name}")
        job.schedule_from(self._start_time)
        self._jobs[job.name] = job

    def job_names(self) -> List[str]:
        return list(self._jobs)

    def run_due(self, current_time: Optional[datetime] = None) -> List[JobRun]:
        """Run every job whose fire time has come."""
        if current_time is None:
            current_time = datetime.utcnow()
        runs = []
        for job in self._jobs.values():
            if job.is_due(current_time):
                runs.append(self._execute(job, current_time))
        return runs

    def run_job(self, name: str, current_time: Optional[datetime] = None) -> JobRun:
        """Force one job now, regardless of its schedule."""
        if name not in self._jobs:
            raise KeyError(name)
        if current_time is None:
            current_time = datetime.utcnow()
        return self._execute(self._jobs[name], current_time)

    def get_status(self) -> List[JobStatus]:
        return [
            JobStatus(
                name=job.name,
                schedule=job.schedule,
                next_run_at=job.next_run_at,
                last_run=job.last_run,
                run_count=job.run_count,
                failure_count=job.failure_count,
            )
            for job in self._jobs.values()
        ]

    def _execute(self, job: ScheduledJob, current_time: datetime) -> JobRun:
        run = JobRun(job_name=job.name, started_at=current_time)
        try:
            run.summary = job.fn(current_time) or {}
            run.ok = True
        except Exception as e:
            logger.exception("Scheduled job %s failed", job.name)
            run.error = str(e)
            job.failure_count += 1
        run.finished_at = datetime.utcnow()
        job.run_count += 1
        job.last_run = run
        job.schedule_from(current_time)
        if run.ok:
            logger.debug("Job %s finished: %s", job.name, run.summary)
        return run

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Drive run_due until stopped."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                self.run_due()
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.tick_seconds)
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False


def default_jobs(
    ecosystem: DistrictEcosystem,
    grid: SurveillanceGrid,
    pursuits: PursuitEngine,
    reputation: ReputationLedger,
    debts: DebtLedger,
    settings: KernelSettings,
) -> List[ScheduledJob]:
    """The stock batch jobs of a running world."""

    def aggregate(now: datetime) -> dict:
        report = ecosystem.run_aggregation(current_time=now)
        return {
            "events_processed": report.events_processed,
            "districts_updated": report.districts_updated,
            "status_changes": len(report.status_changes),
            "failures": len(report.failures),
        }

    def decay_reputation(now: datetime) -> dict:
        decayed = reputation.decay_reputation_heat(
            step=settings.reputation_heat_decay_step,
            floor=settings.reputation_heat_floor,
            current_time=now,
        )
        return {"records_decayed": decayed}

    def expire_offers(now: datetime) -> dict:
        return {"offers_expired": debts.expire_offers(current_time=now)}

    def pursuit_timeouts(now: datetime) -> dict:
        return {"pursuits_ended": pursuits.sweep_pursuit_timeouts(current_time=now)}

    def player_heat(now: datetime) -> dict:
        cooled, cleared = pursuits.decay_player_heat(
            step=settings.player_heat_decay_step, current_time=now
        )
        return {"players_cooled": cooled, "flags_cleared": cleared}

    def sector_sweeps(now: datetime) -> dict:
        return {"sectors_swept": grid.sweep_sectors(current_time=now)}

    def district_events(now: datetime) -> dict:
        report = ecosystem.process_district_events(current_time=now)
        return {"events_expired": report.expired, "events_triggered": len(report.triggered)}

    return [
        ScheduledJob("district_aggregation", settings.aggregation_schedule, aggregate),
        ScheduledJob("reputation_heat_decay", settings.reputation_decay_schedule, decay_reputation),
        ScheduledJob("debt_offer_expiry", settings.offer_expiry_schedule, expire_offers),
        ScheduledJob("pursuit_timeouts", settings.pursuit_timeout_schedule, pursuit_timeouts),
        ScheduledJob("player_heat_decay", settings.player_heat_decay_schedule, player_heat),
        ScheduledJob("sector_sweeps", settings.sector_sweep_schedule, sector_sweeps),
        ScheduledJob("district_events", settings.district_event_schedule, district_events),
    ]
