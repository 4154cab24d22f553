"""Tests for the world scheduler and its stock jobs."""

import asyncio
from datetime import datetime, timedelta

import pytest

from street_kernel.config import KernelSettings
from street_kernel.models.district import DistrictEventType
from street_kernel.scheduler.jobs import ScheduledJob, WorldScheduler
from street_kernel.world import WorldKernel

START = datetime(2026, 1, 1, 12, 0)


class TestScheduledJob:
    def test_invalid_cron_rejected(self):
        with pytest.raises(ValueError):
            ScheduledJob("broken", "every tuesday", lambda now: {})

    def test_next_fire_time(self):
        job = ScheduledJob("quarter", "*/15 * * * *", lambda now: {})
        job.schedule_from(START)
        assert job.next_run_at == datetime(2026, 1, 1, 12, 15)
        assert not job.is_due(START + timedelta(minutes=14))
        assert job.is_due(START + timedelta(minutes=15))


class TestWorldScheduler:
    def setup_method(self):
        self.calls = []
        self.scheduler = WorldScheduler(
            [
                ScheduledJob("every_minute", "* * * * *", self._record("every_minute")),
                ScheduledJob("hourly", "0 * * * *", self._record("hourly")),
            ],
            start_time=START,
        )

    def _record(self, name):
        def fn(now):
            self.calls.append((name, now))
            return {"ran": name}
        return fn

    def test_nothing_due_before_first_fire(self):
        assert self.scheduler.run_due(START + timedelta(seconds=30)) == []

    def test_runs_only_due_jobs(self):
        runs = self.scheduler.run_due(START + timedelta(minutes=1))
        assert [r.job_name for r in runs] == ["every_minute"]
        assert runs[0].ok is True
        assert runs[0].summary == {"ran": "every_minute"}

    def test_missed_fires_collapse_into_one_run(self):
        runs = self.scheduler.run_due(START + timedelta(minutes=90))
        assert sorted(r.job_name for r in runs) == ["every_minute", "hourly"]
        assert len(self.calls) == 2
        assert self.scheduler.run_due(START + timedelta(minutes=90)) == []

    def test_failing_job_does_not_stop_others(self):
        def boom(now):
            raise RuntimeError("disk on fire")

        self.scheduler.add_job(ScheduledJob("broken", "* * * * *", boom))
        runs = self.scheduler.run_due(START + timedelta(minutes=1))

        by_name = {r.job_name: r for r in runs}
        assert by_name["every_minute"].ok is True
        assert by_name["broken"].ok is False
        assert by_name["broken"].error == "disk on fire"

        status = {s.name: s for s in self.scheduler.get_status()}
        assert status["broken"].failure_count == 1
        assert status["broken"].run_count == 1
        assert status["broken"].next_run_at == START + timedelta(minutes=2)

    def test_duplicate_job_name(self):
        with pytest.raises(ValueError):
            self.scheduler.add_job(ScheduledJob("hourly", "0 * * * *", lambda now: {}))

    def test_run_job_on_demand(self):
        run = self.scheduler.run_job("hourly", START + timedelta(minutes=5))
        assert run.ok is True
        assert self.calls == [("hourly", START + timedelta(minutes=5))]

    def test_unknown_job(self):
        with pytest.raises(KeyError):
            self.scheduler.run_job("missing")

    def test_run_async_stops_on_event(self):
        scheduler = WorldScheduler(tick_seconds=0.01)

        async def drive():
            stop = asyncio.Event()
            task = asyncio.create_task(scheduler.run_async(stop))
            await asyncio.sleep(0.05)
            assert scheduler.status == "running"
            stop.set()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(drive())
        assert scheduler.status == "idle"


class TestDefaultJobs:
    def setup_method(self):
        self.kernel = WorldKernel.from_settings(
            KernelSettings(database_path=":memory:"), start_time=START
        )

    def teardown_method(self):
        self.kernel.close()

    def test_stock_jobs_registered(self):
        assert sorted(self.kernel.scheduler.job_names()) == [
            "debt_offer_expiry",
            "district_aggregation",
            "district_events",
            "player_heat_decay",
            "pursuit_timeouts",
            "reputation_heat_decay",
            "sector_sweeps",
        ]

    def test_due_jobs_at_five_minutes(self):
        self.kernel.scheduler.run_due(START + timedelta(minutes=1))
        runs = self.kernel.scheduler.run_due(START + timedelta(minutes=5))
        assert sorted(r.job_name for r in runs) == [
            "debt_offer_expiry",
            "district_events",
            "player_heat_decay",
            "pursuit_timeouts",
        ]
        assert all(r.ok for r in runs)

    def test_aggregation_job_folds_events(self):
        self.kernel.ecosystem.record_event("parkdale", DistrictEventType.CRIME_COMMITTED, 3)
        run = self.kernel.scheduler.run_job("district_aggregation", START)
        assert run.summary["events_processed"] == 1
        assert self.kernel.ecosystem.pending_event_count() == 0

    def test_sector_sweep_job(self):
        runs = self.kernel.scheduler.run_due(START + timedelta(minutes=30))
        sweep = [r for r in runs if r.job_name == "sector_sweeps"][0]
        assert sweep.summary == {"sectors_swept": 12}

    def test_reputation_decay_job(self):
        self.kernel.reputation.modify_reputation("p1", "district", "parkdale", "heat", 5, "Shootout")
        run = self.kernel.scheduler.run_job("reputation_heat_decay", START)
        assert run.summary == {"records_decayed": 1}
        assert self.kernel.reputation.get_reputation("p1", "district", "parkdale").heat == 4
