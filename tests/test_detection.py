"""Tests for the detection model, pursuit ladder and surveillance grid."""

from datetime import datetime, timedelta

import pytest

from street_kernel.models.surveillance import (
    EscapeMethod,
    GridStatus,
    IncidentType,
    SectorSurveillance,
)
from street_kernel.storage.database import Database
from street_kernel.surveillance.detection import (
    PURSUIT_LEVELS,
    detection_chance,
    disruption_severity,
    escape_option,
    escape_options,
    hack_success_chance,
    next_level_threshold,
    sector_detection_chance,
    seed_sectors,
)
from street_kernel.surveillance.grid import SurveillanceGrid


class TestDetectionChance:
    def test_reference_case(self):
        # ((80 + 40) / 2) * 0.9
        assert detection_chance(80, 0.9, 40) == 54

    def test_floor(self):
        assert detection_chance(0, 0.0, 0) == 5
        assert detection_chance(10, 0.05, 0) == 5

    def test_ceiling(self):
        assert detection_chance(100, 1.0, 100) == 95

    def test_missing_sector_uses_defaults(self):
        # ((50 + 0) / 2) * 0.75 = 18.75
        assert sector_detection_chance(None) == 19
        assert sector_detection_chance(None, heat_level=50) == 38

    def test_monotonic_in_surveillance_and_heat(self):
        for coverage in (0.1, 0.5, 0.75, 1.0):
            for heat in range(0, 101, 10):
                previous = 0
                for level in range(0, 101, 5):
                    chance = detection_chance(level, coverage, heat)
                    assert 5 <= chance <= 95
                    assert chance >= previous
                    previous = chance
            for level in range(0, 101, 10):
                previous = 0
                for heat in range(0, 101, 5):
                    chance = detection_chance(level, coverage, heat)
                    assert chance >= previous
                    previous = chance


class TestPursuitLadder:
    def test_levels_escalate_in_order(self):
        assert sorted(PURSUIT_LEVELS) == [1, 2, 3, 4, 5]
        thresholds = [PURSUIT_LEVELS[i].heat_required for i in range(1, 6)]
        assert thresholds == [20, 40, 60, 80, 100]
        difficulties = [PURSUIT_LEVELS[i].escape_difficulty for i in range(1, 6)]
        assert difficulties == sorted(difficulties)

    def test_bottom_and_top_rungs(self):
        assert PURSUIT_LEVELS[1].drones == 1
        assert PURSUIT_LEVELS[1].cash_penalty_percent == 5
        assert PURSUIT_LEVELS[5].drones == 15
        assert PURSUIT_LEVELS[5].enforcers == 10
        assert PURSUIT_LEVELS[5].jail_minutes == 120

    def test_next_level_threshold(self):
        assert next_level_threshold(0) == 20
        assert next_level_threshold(4) == 100
        assert next_level_threshold(5) is None

    def test_disruption_severity(self):
        assert disruption_severity(5) == 1
        assert disruption_severity(-25) == 3
        assert disruption_severity(100) == 5


class TestEscapeOptions:
    def test_evade_listed_first(self):
        options = escape_options(1)
        assert options[0].method == EscapeMethod.EVADE
        assert options[0].success_chance == 80
        assert [o.method for o in options[1:]] == [
            EscapeMethod.BLEND_IN,
            EscapeMethod.UNDERGROUND,
            EscapeMethod.BRIBE,
            EscapeMethod.SAFEHOUSE,
            EscapeMethod.DECOY,
        ]

    def test_chances_and_costs_scale_with_level(self):
        assert escape_option(1, EscapeMethod.BLEND_IN).success_chance == 55
        assert escape_option(1, EscapeMethod.BLEND_IN).cost == 0
        assert escape_option(1, EscapeMethod.BRIBE).cost == 2000
        assert escape_option(3, EscapeMethod.BRIBE).cost == 6000
        assert escape_option(3, EscapeMethod.DECOY).success_chance == 66

    def test_chances_never_drop_below_floor(self):
        assert escape_option(5, EscapeMethod.BLEND_IN).success_chance == 10
        assert escape_option(5, EscapeMethod.UNDERGROUND).success_chance == 20
        assert escape_option(5, EscapeMethod.EVADE).success_chance == 10

    def test_requirements_are_listed(self):
        assert escape_option(2, EscapeMethod.SAFEHOUSE).requirements == ["Faction membership"]
        assert escape_option(2, EscapeMethod.UNDERGROUND).requirements == []

    @pytest.mark.parametrize("level,chance", [(0, 60), (30, 45), (61, 30), (100, 10)])
    def test_hack_success_chance(self, level, chance):
        assert hack_success_chance(level) == chance



class TestSurveillanceGrid:
    def setup_method(self):
        self.grid = SurveillanceGrid(Database(":memory:"))
        self.grid.seed_sectors()

    def test_seeded_grid(self):
        sectors = self.grid.list_sectors()
        assert len(sectors) == 15
        assert sectors[0].sector_id == "ON-0"
        assert sectors[0].surveillance_level == 90
        assert self.grid.get_sector("ON-13").grid_status == GridStatus.BLACKOUT
        assert len(seed_sectors()) == 15

    def test_seed_is_idempotent(self):
        assert self.grid.seed_sectors() == 0

    def test_detection_for_unknown_player(self):
        # ON-14: ((80 + 0) / 2) * 0.85 = 34
        assert self.grid.get_detection_chance("ON-14", "nobody") == 34

    def test_detection_for_unknown_sector(self):
        assert self.grid.get_detection_chance("OFF-GRID") == 19

    def test_update_sector_surveillance_clamps(self):
        sector = self.grid.update_sector_surveillance("ON-0", 50, "crackdown")
        assert sector.surveillance_level == 100
        sector = self.grid.update_sector_surveillance("ON-13", -40, "grid hack")
        assert sector.surveillance_level == 0

    def test_update_logs_incident(self):
        self.grid.update_sector_surveillance("ON-3", -25, "drone destroyed")
        incidents = self.grid.list_incidents(sector_id="ON-3")
        assert len(incidents) == 1
        assert incidents[0].incident_type == IncidentType.SURVEILLANCE_DISRUPTED
        assert incidents[0].severity == 3
        assert incidents[0].details["old_level"] == 60
        assert incidents[0].details["new_level"] == 35

    def test_update_unknown_sector_starts_from_defaults(self):
        sector = self.grid.update_sector_surveillance("ON-99", 10, "new tower")
        assert sector.surveillance_level == 60

    def test_sweep_skips_blackout(self):
        now = datetime(2026, 3, 1, 12, 0)
        swept = self.grid.sweep_sectors(current_time=now)
        assert swept == 12
        assert self.grid.get_sector("ON-5").surveillance_level == 45
        assert self.grid.get_sector("ON-11").surveillance_level == 15

    def test_sweep_waits_for_interval(self):
        now = datetime(2026, 3, 1, 12, 0)
        self.grid.sweep_sectors(current_time=now)
        assert self.grid.sweep_sectors(current_time=now + timedelta(minutes=10)) == 0
        assert self.grid.sweep_sectors(current_time=now + timedelta(minutes=30)) == 12
        assert self.grid.get_sector("ON-5").surveillance_level == 50

    def test_custom_sector_seed(self):
        grid = SurveillanceGrid(Database(":memory:"))
        grid.seed_sectors([SectorSurveillance(sector_id="ON-0", surveillance_level=80, scanner_coverage=0.9)])
        assert grid.get_detection_chance("ON-0") == 36
