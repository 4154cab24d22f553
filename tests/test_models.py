"""Tests for core data models."""

from datetime import datetime

import pytest

from street_kernel.models import (
    Debt,
    DebtStatus,
    DebtType,
    DistrictState,
    DistrictStatus,
    Effect,
    EffectType,
    EventPayload,
    MetricImpact,
    RelationshipType,
    ReputationRecord,
    SectorSurveillance,
)


class TestEventPayload:
    def test_defaults(self):
        payload = EventPayload()
        assert payload.version == 1
        assert payload.effect.type == EffectType.NONE
        assert payload.tags == []

    def test_typed_effect(self):
        payload = EventPayload(
            effect=Effect(type=EffectType.CASH, amount=2500, target="player_7"),
            note="Armoured truck",
            tags=["heist"],
        )
        restored = EventPayload.model_validate_json(payload.model_dump_json())
        assert restored.effect.type == EffectType.CASH
        assert restored.effect.amount == 2500

    def test_rejects_unknown_keys(self):
        with pytest.raises(Exception):
            EventPayload.model_validate({"version": 1, "loot": "everything"})

    def test_rejects_unknown_version(self):
        with pytest.raises(Exception):
            EventPayload.model_validate({"version": 2})

    def test_rejects_unknown_effect_type(self):
        with pytest.raises(Exception):
            Effect.model_validate({"type": "teleport"})


class TestDistrictState:
    def test_defaults(self):
        state = DistrictState(district_id="junction", name="Junction")
        assert state.crime_index == 50
        assert state.crew_tension == 0
        assert state.status == DistrictStatus.STABLE

    def test_metric_bounds(self):
        with pytest.raises(Exception):
            DistrictState(district_id="x", name="X", crime_index=101)
        with pytest.raises(Exception):
            DistrictState(district_id="x", name="X", police_presence=-1)

    def test_impact_bounds(self):
        MetricImpact(crime_index=50, police_presence=-50)
        with pytest.raises(Exception):
            MetricImpact(crime_index=51)

    def test_impact_is_zero(self):
        assert MetricImpact().is_zero()
        assert not MetricImpact(street_activity=1).is_zero()


class TestSectorSurveillance:
    def test_coverage_is_a_fraction(self):
        with pytest.raises(Exception):
            SectorSurveillance(sector_id="ON-1", scanner_coverage=1.5)

    def test_drone_density_bounds(self):
        with pytest.raises(Exception):
            SectorSurveillance(sector_id="ON-1", drone_density=21)


class TestReputationRecord:
    def test_combined_score(self):
        now = datetime.utcnow()
        record = ReputationRecord(
            id="rep_1",
            player_id="p1",
            relationship_type=RelationshipType.CREW,
            target_id="crew_9",
            respect=40,
            fear=30,
            trust=20,
            heat=15,
            created_at=now,
            updated_at=now,
        )
        assert record.combined_score == 75

    def test_heat_cannot_go_negative(self):
        now = datetime.utcnow()
        with pytest.raises(Exception):
            ReputationRecord(
                id="rep_1",
                player_id="p1",
                relationship_type=RelationshipType.PLAYER,
                target_id="p2",
                heat=-1,
                created_at=now,
                updated_at=now,
            )


class TestDebt:
    def test_value_bounds(self):
        with pytest.raises(Exception):
            Debt(
                id="debt_1",
                creditor_id="a",
                debtor_id="b",
                debt_type=DebtType.FAVOR,
                description="x",
                value=11,
                original_value=11,
                created_at=datetime.utcnow(),
            )

    def test_initial_status(self):
        debt = Debt(
            id="debt_1",
            creditor_id="a",
            debtor_id="b",
            debt_type=DebtType.BLOOD_DEBT,
            description="Saved my life",
            value=10,
            original_value=10,
            created_at=datetime.utcnow(),
        )
        assert debt.status == DebtStatus.OUTSTANDING
        assert debt.version == 1
