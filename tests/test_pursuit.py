"""Tests for player heat and the pursuit state machine."""

import random
from datetime import datetime, timedelta

import pytest

from street_kernel.errors import InvalidTransitionError, InvariantViolation, NotFoundError
from street_kernel.models.surveillance import EscapeMethod, IncidentType, PursuitResolution
from street_kernel.storage.database import Database
from street_kernel.surveillance.grid import SurveillanceGrid
from street_kernel.surveillance.pursuit import PursuitEngine
from street_kernel.surveillance.store import SurveillanceStore

T0 = datetime(2026, 5, 1, 22, 0)


def _make_engine(seed: int = 7):
    db = Database(":memory:")
    store = SurveillanceStore(db)
    grid = SurveillanceGrid(db, store)
    grid.seed_sectors()
    return PursuitEngine(db, store, timeout_minutes=30, rng=random.Random(seed)), grid


class TestHeat:
    def setup_method(self):
        self.engine, self.grid = _make_engine()

    def test_unknown_player_has_no_heat(self):
        status = self.engine.get_pursuit_status("ghost")
        assert status.heat_level == 0
        assert status.current_sector == "ON-0"
        assert status.pursuit is None

    def test_heat_below_threshold_starts_nothing(self):
        status = self.engine.raise_heat("p1", 19, current_time=T0)
        assert status.heat_level == 19
        assert status.pursuit is None

    def test_crossing_threshold_starts_pursuit_at_level_one(self):
        status = self.engine.raise_heat("p1", 25, sector_id="ON-4", current_time=T0)
        assert status.pursuit is not None
        assert status.pursuit.level == 1
        assert status.pursuit.drones_assigned == 1
        assert status.pursuit.last_spotted_sector == "ON-4"
        assert status.level_info.name == "Drone Scan"

    def test_heat_is_clamped(self):
        status = self.engine.raise_heat("p1", 250, current_time=T0)
        assert status.heat_level == 100

    def test_negative_raise_rejected(self):
        with pytest.raises(InvariantViolation):
            self.engine.raise_heat("p1", -5)

    def test_escalation_never_skips_levels(self):
        status = self.engine.raise_heat("p1", 100, current_time=T0)
        assert status.pursuit.level == 1

        levels = []
        for _ in range(5):
            status = self.engine.raise_heat("p1", 0, current_time=T0)
            levels.append(status.pursuit.level)
        assert levels == [2, 3, 4, 5, 5]

    def test_escalation_logs_incidents(self):
        self.engine.raise_heat("p1", 45, current_time=T0)
        self.engine.raise_heat("p1", 0, current_time=T0)
        types = [i.incident_type for i in self.grid.list_incidents(player_id="p1")]
        assert IncidentType.PURSUIT_INITIATED in types
        assert IncidentType.PURSUIT_ESCALATED in types


class TestScans:
    def setup_method(self):
        self.engine, self.grid = _make_engine()

    def test_detected_scan_adds_heat(self):
        # ON-0 at heat 0: (90 / 2) * 0.95 = 42.75 -> 43
        result = self.engine.record_scan("p1", "ON-0", roll=0, current_time=T0)
        assert result.chance == 43
        assert result.detected is True
        assert result.heat_level == 5
        heat = self.engine.get_player_heat("p1")
        assert heat.total_detections == 1
        assert heat.current_sector == "ON-0"

    def test_evaded_scan(self):
        result = self.engine.record_scan("p1", "ON-0", roll=99, current_time=T0)
        assert result.detected is False
        assert result.heat_level == 0
        assert self.engine.get_player_heat("p1").total_scans_evaded == 1

    def test_blackout_sector_never_detects(self):
        result = self.engine.record_scan("p1", "ON-11", roll=0, current_time=T0)
        assert result.chance == 5
        assert result.detected is False

    def test_unknown_sector_uses_defaults(self):
        result = self.engine.record_scan("p1", "OFF-GRID", roll=18, current_time=T0)
        assert result.chance == 19
        assert result.detected is True

    def test_detection_can_escalate(self):
        self.engine.raise_heat("p1", 38, current_time=T0)
        result = self.engine.record_scan("p1", "ON-0", roll=0, current_time=T0)
        assert result.heat_level == 43
        assert result.pursuit.level == 2

    def test_identity_scan_incident(self):
        self.engine.record_scan("p1", "ON-2", roll=0, current_time=T0)
        incidents = self.grid.list_incidents(player_id="p1")
        assert incidents[0].incident_type == IncidentType.IDENTITY_SCANNED


class TestEscape:
    def setup_method(self):
        self.engine, self.grid = _make_engine()

    def test_no_pursuit(self):
        with pytest.raises(InvalidTransitionError):
            self.engine.attempt_escape("p1", roll=99)

    def test_successful_escape(self):
        self.engine.raise_heat("p1", 30, current_time=T0)
        result = self.engine.attempt_escape("p1", roll=45, method="blend_in", current_time=T0)
        assert result.success is True
        assert result.caught is False
        assert result.pursuit.is_active is False
        assert result.pursuit.resolution == PursuitResolution.ESCAPED
        assert result.pursuit.escape_method == "blend_in"
        assert 1 <= result.heat_level <= 10
        assert self.engine.get_pursuit_status("p1").pursuit is None

    def test_failed_escape_escalates(self):
        self.engine.raise_heat("p1", 30, current_time=T0)
        result = self.engine.attempt_escape("p1", roll=19, current_time=T0)
        assert result.success is False
        assert result.pursuit.is_active is True
        assert result.pursuit.level == 2
        assert result.pursuit.drones_assigned == 3
        assert result.heat_level == 40

    def test_failed_escape_at_max_level_is_caught(self):
        self.engine.raise_heat("p1", 100, current_time=T0)
        for _ in range(4):
            self.engine.raise_heat("p1", 0, current_time=T0)
        assert self.engine.get_pursuit_status("p1").pursuit.level == 5

        result = self.engine.attempt_escape("p1", roll=0, cash_on_hand=1000, current_time=T0)
        assert result.caught is True
        assert result.success is False
        assert result.heat_level == 0
        assert result.pursuit.resolution == PursuitResolution.CAUGHT
        assert result.pursuit.penalty.cash_percent == 50
        assert result.pursuit.penalty.jail_minutes == 120
        assert result.pursuit.penalty.cash_lost == 500
        assert self.engine.get_pursuit_status("p1").pursuit is None

    def test_bribe_uses_method_odds_and_spends_cash(self):
        self.engine.raise_heat("p1", 30, current_time=T0)
        result = self.engine.attempt_escape(
            "p1", roll=30, method=EscapeMethod.BRIBE, cash_on_hand=5000, current_time=T0
        )
        assert result.success is True
        assert result.escape_difficulty == 30
        assert result.method == EscapeMethod.BRIBE
        assert result.cost_paid == 2000
        assert result.pursuit.escape_method == "bribe"

    def test_costed_method_needs_cash(self):
        self.engine.raise_heat("p1", 30, current_time=T0)
        with pytest.raises(InvariantViolation) as exc:
            self.engine.attempt_escape(
                "p1", roll=99, method="underground", cash_on_hand=499, current_time=T0
            )
        assert exc.value.invariant == "escape.insufficient_funds"
        with pytest.raises(InvariantViolation):
            self.engine.attempt_escape("p1", roll=99, method="underground", current_time=T0)
        assert self.engine.get_pursuit_status("p1").pursuit.is_active is True

    def test_unknown_method(self):
        self.engine.raise_heat("p1", 30, current_time=T0)
        with pytest.raises(InvariantViolation) as exc:
            self.engine.attempt_escape("p1", roll=99, method="teleport", current_time=T0)
        assert exc.value.invariant == "escape.unknown_method"

    def test_caught_penalty_applies_after_cost(self):
        self.engine.raise_heat("p1", 100, current_time=T0)
        for _ in range(4):
            self.engine.raise_heat("p1", 0, current_time=T0)
        result = self.engine.attempt_escape(
            "p1", roll=0, method="bribe", cash_on_hand=20000, current_time=T0
        )
        assert result.caught is True
        assert result.cost_paid == 10000
        assert result.pursuit.penalty.cash_lost == 5000

    def test_escape_options_follow_pursuit_level(self):
        with pytest.raises(InvalidTransitionError):
            self.engine.get_escape_options("p1")
        self.engine.raise_heat("p1", 30, current_time=T0)
        options = {o.method: o for o in self.engine.get_escape_options("p1")}
        assert options[EscapeMethod.EVADE].success_chance == 80
        assert options[EscapeMethod.EVADE].cost == 0
        assert options[EscapeMethod.DECOY].cost == 5000

    def test_new_episode_after_escape(self):

        self.engine.raise_heat("p1", 30, current_time=T0)
        self.engine.attempt_escape("p1", roll=99, current_time=T0)
        status = self.engine.raise_heat("p1", 60, current_time=T0)
        assert status.pursuit.level == 1
        assert len(self.engine.get_pursuit_history("p1")) == 2


class TestTimeoutsAndDecay:
    def setup_method(self):
        self.engine, self.grid = _make_engine()

    def test_inactive_pursuit_times_out(self):
        self.engine.raise_heat("p1", 35, current_time=T0)
        assert self.engine.sweep_pursuit_timeouts(current_time=T0 + timedelta(minutes=10)) == 0
        assert self.engine.sweep_pursuit_timeouts(current_time=T0 + timedelta(minutes=31)) == 1

        history = self.engine.get_pursuit_history("p1")
        assert history[0].resolution == PursuitResolution.ESCAPED
        assert history[0].escape_method == "timeout"
        assert self.engine.get_player_heat("p1").heat_level == 20

    def test_timeout_sweep_is_idempotent(self):
        self.engine.raise_heat("p1", 35, current_time=T0)
        later = T0 + timedelta(minutes=45)
        assert self.engine.sweep_pursuit_timeouts(current_time=later) == 1
        assert self.engine.sweep_pursuit_timeouts(current_time=later) == 0
        assert self.engine.get_player_heat("p1").heat_level == 20

    def test_fresh_sighting_keeps_pursuit_alive(self):
        self.engine.raise_heat("p1", 25, current_time=T0)
        self.engine.record_scan("p1", "ON-0", roll=0, current_time=T0 + timedelta(minutes=20))
        assert self.engine.sweep_pursuit_timeouts(current_time=T0 + timedelta(minutes=31)) == 0
        assert self.engine.get_pursuit_status("p1").pursuit is not None

    def test_decay_skips_pursued_players(self):
        self.engine.raise_heat("calm", 10, current_time=T0)
        self.engine.raise_heat("wanted", 30, current_time=T0)
        cooled, _ = self.engine.decay_player_heat(step=1, current_time=T0)
        assert cooled == 1
        assert self.engine.get_player_heat("calm").heat_level == 9
        assert self.engine.get_player_heat("wanted").heat_level == 30

    def test_decay_stops_at_zero(self):
        self.engine.raise_heat("calm", 2, current_time=T0)
        for _ in range(5):
            self.engine.decay_player_heat(step=1, current_time=T0)
        assert self.engine.get_player_heat("calm").heat_level == 0

    def test_expired_flags_are_cleared(self):
        self.engine.flag_player("p1", "Seen at heist", duration_minutes=15, current_time=T0)
        assert self.engine.get_player_heat("p1").is_flagged is True

        _, cleared = self.engine.decay_player_heat(current_time=T0 + timedelta(minutes=5))
        assert cleared == 0
        _, cleared = self.engine.decay_player_heat(current_time=T0 + timedelta(minutes=20))
        assert cleared == 1
        heat = self.engine.get_player_heat("p1")
        assert heat.is_flagged is False
        assert heat.flag_reason is None


class TestGridHack:
    def setup_method(self):
        self.engine, self.grid = _make_engine()

    def test_successful_hack_lowers_surveillance(self):
        result = self.engine.hack_sector("p1", "ON-3", roll=29, current_time=T0)
        assert result.success is True
        assert result.chance == 30
        assert 15 <= result.surveillance_reduced <= 29
        assert result.surveillance_level == 60 - result.surveillance_reduced
        assert self.grid.get_sector("ON-3").surveillance_level == result.surveillance_level
        assert result.heat_level == 0

        incidents = self.grid.list_incidents(player_id="p1")
        assert incidents[0].incident_type == IncidentType.GRID_HACK
        assert incidents[0].severity == 2

    def test_failed_hack_adds_heat_and_escalates(self):
        self.engine.raise_heat("p1", 10, current_time=T0)
        result = self.engine.hack_sector("p1", "ON-3", roll=30, current_time=T0)
        assert result.success is False
        assert 15 <= result.heat_gained <= 24
        assert result.heat_level == 10 + result.heat_gained
        assert result.pursuit.level == 1
        assert self.grid.get_sector("ON-3").surveillance_level == 60

        heat = self.engine.get_player_heat("p1")
        assert heat.total_detections == 1
        assert heat.current_sector == "ON-3"

    def test_saturated_sector_is_hardest(self):
        self.grid.update_sector_surveillance("ON-0", 30, "lockdown")
        result = self.engine.hack_sector("p1", "ON-0", roll=10, current_time=T0)
        assert result.chance == 10
        assert result.success is False
        assert self.grid.get_sector("ON-0").surveillance_level == 100

    def test_unknown_sector(self):
        with pytest.raises(NotFoundError):
            self.engine.hack_sector("p1", "ON-99", roll=0, current_time=T0)
