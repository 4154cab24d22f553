"""Tests for the reputation ledger."""

import threading
from datetime import datetime, timedelta

import pytest

from street_kernel.errors import InvariantViolation
from street_kernel.models.reputation import (
    PropagationConfig,
    RelationshipType,
    ReputationDimension,
    ReputationRecord,
)
from street_kernel.reputation.ledger import ReputationLedger, compute_standing, spillover_plan
from street_kernel.storage.database import Database


def _make_record(**scores) -> ReputationRecord:
    now = datetime.utcnow()
    return ReputationRecord(
        id="rep_test",
        player_id="p1",
        relationship_type=RelationshipType.DISTRICT,
        target_id="parkdale",
        created_at=now,
        updated_at=now,
        **scores,
    )


class TestModifyReputation:
    def setup_method(self):
        self.db = Database(":memory:")
        self.ledger = ReputationLedger(self.db)

    def _modify(self, dimension, delta, reason="Test change", target="parkdale"):
        return self.ledger.modify_reputation(
            "p1", RelationshipType.DISTRICT, target, dimension, delta, reason
        )

    def test_record_created_on_first_modify(self):
        assert self.ledger.get_reputation("p1", "district", "parkdale") is None
        change = self._modify(ReputationDimension.RESPECT, 10, "Ran the corner")
        assert change.record.respect == 10
        assert change.record.fear == 0
        assert change.event.old_value == 0
        assert change.event.new_value == 10
        assert change.event.clamped is False

        stored = self.ledger.get_reputation("p1", "district", "parkdale")
        assert stored.respect == 10

    def test_accepts_string_enums(self):
        change = self.ledger.modify_reputation("p1", "crew", "crew_9", "fear", 7, "Intimidation")
        assert change.record.relationship_type == RelationshipType.CREW
        assert change.record.fear == 7

    def test_clamped_at_upper_bound(self):
        self._modify(ReputationDimension.RESPECT, 95)
        change = self._modify(ReputationDimension.RESPECT, 20)
        assert change.record.respect == 100
        assert change.event.old_value == 95
        assert change.event.new_value == 100
        assert change.event.change_amount == 20
        assert change.event.clamped is True

    def test_clamped_at_lower_bound(self):
        change = self._modify(ReputationDimension.TRUST, -150)
        assert change.record.trust == -100
        assert change.event.clamped is True

    def test_heat_never_negative(self):
        self._modify(ReputationDimension.HEAT, 10)
        change = self._modify(ReputationDimension.HEAT, -30)
        assert change.record.heat == 0
        change = self._modify(ReputationDimension.HEAT, 250)
        assert change.record.heat == 100

    def test_one_audit_row_per_modification(self):
        for delta in (5, -3, 12, 200, -1):
            self._modify(ReputationDimension.FEAR, delta)
        history = self.ledger.get_reputation_history("p1")
        assert len(history) == 5
        for event in history:
            assert event.new_value - event.old_value == event.change_amount or event.clamped

    def test_history_newest_first(self):
        base = datetime.utcnow()
        for i, reason in enumerate(("first", "second", "third")):
            self.ledger.modify_reputation(
                "p1", "district", "parkdale", "respect", 1, reason,
                current_time=base + timedelta(seconds=i),
            )
        history = self.ledger.get_reputation_history("p1", "district", "parkdale", limit=2)
        assert [e.reason for e in history] == ["third", "second"]

    def test_reason_is_truncated(self):
        change = self._modify(ReputationDimension.RESPECT, 1, "x" * 250)
        assert len(change.event.reason) == 100

    def test_reason_required(self):
        with pytest.raises(InvariantViolation) as exc_info:
            self._modify(ReputationDimension.RESPECT, 1, "")
        assert exc_info.value.invariant == "reputation.reason_required"

    def test_unknown_dimension(self):
        with pytest.raises(InvariantViolation) as exc_info:
            self._modify("charisma", 5)
        assert exc_info.value.invariant == "reputation.unknown_dimension"
        assert self.ledger.get_reputation("p1", "district", "parkdale") is None

    def test_unknown_relationship(self):
        with pytest.raises(InvariantViolation):
            self.ledger.modify_reputation("p1", "cult", "x", "respect", 1, "Joined")

    def test_related_player_and_metadata_kept(self):
        self.ledger.modify_reputation(
            "p1", "player", "p2", "trust", 5, "Paid back",
            related_player_id="p2", metadata={"debt_id": "debt_1"},
        )
        event = self.ledger.get_reputation_history("p1")[0]
        assert event.related_player_id == "p2"
        assert event.metadata == {"debt_id": "debt_1"}

    def test_concurrent_modifications_all_land(self):
        def worker():
            self._modify(ReputationDimension.RESPECT, 5)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        record = self.ledger.get_reputation("p1", "district", "parkdale")
        assert record.respect == 50
        assert len(self.ledger.get_reputation_history("p1")) == 10


class TestQueries:
    def setup_method(self):
        self.ledger = ReputationLedger(Database(":memory:"))

    def test_player_reputations_ordered_by_combined_score(self):
        self.ledger.modify_reputation("p1", "district", "parkdale", "respect", 10, "a")
        self.ledger.modify_reputation("p1", "crew", "crew_9", "fear", 60, "b")
        self.ledger.modify_reputation("p1", "faction", "syndicate", "trust", 30, "c")
        self.ledger.modify_reputation("p1", "faction", "syndicate", "heat", 25, "d")

        records = self.ledger.get_player_reputations("p1")
        assert [r.target_id for r in records] == ["crew_9", "parkdale", "syndicate"]

    def test_filter_by_relationship_type(self):
        self.ledger.modify_reputation("p1", "district", "parkdale", "respect", 10, "a")
        self.ledger.modify_reputation("p1", "crew", "crew_9", "fear", 60, "b")
        records = self.ledger.get_player_reputations("p1", "district")
        assert len(records) == 1
        assert records[0].target_id == "parkdale"

    def test_other_players_not_returned(self):
        self.ledger.modify_reputation("p2", "district", "parkdale", "respect", 10, "a")
        assert self.ledger.get_player_reputations("p1") == []
        assert self.ledger.get_reputation_history("p1") == []

    def test_standing_for_unrecorded_relationship(self):
        standing = self.ledger.get_standing("p1", "district", "parkdale")
        assert standing.combined_score == 0
        assert standing.label == "Recognized"


class TestStanding:
    def test_legendary_feared(self):
        standing = compute_standing(_make_record(respect=60, fear=100, trust=50))
        assert standing.combined_score == 210
        assert standing.label == "Legendary feared"

    def test_renowned_trusted(self):
        standing = compute_standing(_make_record(respect=20, fear=10, trust=80))
        assert standing.label == "Renowned trusted"

    def test_ties_read_as_respected(self):
        standing = compute_standing(_make_record(respect=30, fear=30, trust=0))
        assert standing.label == "Well-known respected"

    def test_heat_drags_score_down(self):
        standing = compute_standing(_make_record(respect=40, fear=20, heat=20))
        assert standing.combined_score == 40
        assert standing.label == "Recognized"
        assert standing.dominant is None

    def test_low_tiers(self):
        assert compute_standing(_make_record(trust=-30)).label == "Unknown"
        assert compute_standing(_make_record(trust=-80)).label == "Distrusted"
        assert compute_standing(_make_record(trust=-100, respect=-20)).label == "Despised"


class TestHeatDecay:
    def setup_method(self):
        self.ledger = ReputationLedger(Database(":memory:"))
        self.ledger.modify_reputation("p1", "district", "parkdale", "heat", 10, "Shootout")
        self.ledger.modify_reputation("p1", "crew", "crew_9", "heat", 1, "Spotted")
        self.ledger.modify_reputation("p2", "district", "parkdale", "respect", 5, "Helped out")

    def test_decay_only_touches_heated_records(self):
        assert self.ledger.decay_reputation_heat(step=1) == 2
        assert self.ledger.get_reputation("p1", "district", "parkdale").heat == 9
        assert self.ledger.get_reputation("p1", "crew", "crew_9").heat == 0
        assert self.ledger.get_reputation("p2", "district", "parkdale").respect == 5

    def test_decay_respects_floor(self):
        assert self.ledger.decay_reputation_heat(step=5, floor=8) == 1
        assert self.ledger.get_reputation("p1", "district", "parkdale").heat == 8
        assert self.ledger.get_reputation("p1", "crew", "crew_9").heat == 1
        assert self.ledger.decay_reputation_heat(step=5, floor=8) == 0

    def test_decay_does_not_write_audit_rows(self):
        before = len(self.ledger.get_reputation_history("p1"))
        self.ledger.decay_reputation_heat(step=1)
        assert len(self.ledger.get_reputation_history("p1")) == before

    def test_zero_step_is_noop(self):
        assert self.ledger.decay_reputation_heat(step=0) == 0
        assert self.ledger.get_reputation("p1", "district", "parkdale").heat == 10

    def test_negative_step_rejected(self):
        with pytest.raises(InvariantViolation):
            self.ledger.decay_reputation_heat(step=-1)


RESPECT = ReputationDimension.RESPECT
FEAR = ReputationDimension.FEAR
TRUST = ReputationDimension.TRUST


class TestSpilloverPlan:
    def setup_method(self):
        self.config = PropagationConfig()

    def _plan(self, rel, target, changes):
        return {
            (p.relationship_type, p.target_id): p.changes
            for p in spillover_plan(rel, target, changes, self.config)
        }

    def test_allies_only_share_gains(self):
        plan = self._plan(
            RelationshipType.FACTION, "queen_street_kings", {RESPECT: 20, TRUST: -10}
        )
        assert plan == {
            (RelationshipType.FACTION, "yorkville_elite"): {RESPECT: 6},
            (RelationshipType.DISTRICT, "downtown"): {RESPECT: 4},
        }

    def test_enemies_invert_standing_but_fear_carries(self):
        plan = self._plan(RelationshipType.FACTION, "dixon_bloods", {RESPECT: 10, FEAR: 20})
        assert plan[(RelationshipType.FACTION, "galloway_boys")] == {RESPECT: -3, FEAR: 6}
        assert plan[(RelationshipType.DISTRICT, "etobicoke")] == {RESPECT: 2, FEAR: 4}

    def test_district_reaches_neighbours_and_local_factions(self):
        plan = self._plan(RelationshipType.DISTRICT, "yorkville", {RESPECT: 20, TRUST: 20})
        assert plan == {
            (RelationshipType.DISTRICT, "downtown"): {RESPECT: 3},
            (RelationshipType.DISTRICT, "north_york"): {RESPECT: 3},
            (RelationshipType.DISTRICT, "rosedale"): {RESPECT: 3},
            (RelationshipType.FACTION, "yorkville_elite"): {RESPECT: 5},
        }

    def test_small_changes_round_to_nothing(self):
        assert self._plan(RelationshipType.DISTRICT, "parkdale", {RESPECT: 1}) == {}

    def test_heat_and_unrelated_targets_never_spread(self):
        heat_only = {ReputationDimension.HEAT: 50}
        assert self._plan(RelationshipType.FACTION, "dixon_bloods", heat_only) == {}
        assert self._plan(RelationshipType.FACTION, "unknown_gang", {RESPECT: 50}) == {}
        assert self._plan(RelationshipType.CREW, "crew_9", {RESPECT: 50}) == {}


class TestPropagation:
    def setup_method(self):
        self.ledger = ReputationLedger(Database(":memory:"))

    def test_spillover_is_audited(self):
        plan = self.ledger.propagate_reputation(
            "p1", "faction", "dixon_bloods", {"respect": 10, "fear": 20}
        )
        assert len(plan) == 2

        rival = self.ledger.get_reputation("p1", "faction", "galloway_boys")
        assert rival.respect == -3
        assert rival.fear == 6
        home = self.ledger.get_reputation("p1", "district", "etobicoke")
        assert home.respect == 2
        assert home.fear == 4

        history = self.ledger.get_reputation_history("p1")
        assert len(history) == 4
        assert {e.metadata["propagated_from"] for e in history} == {"faction:dixon_bloods"}
        assert self.ledger.get_reputation("p1", "faction", "dixon_bloods") is None

    def test_nothing_to_spread(self):
        assert self.ledger.propagate_reputation("p1", "crew", "crew_9", {"respect": 40}) == []
        assert self.ledger.get_reputation_history("p1") == []

    def test_unknown_dimension(self):
        with pytest.raises(InvariantViolation):
            self.ledger.propagate_reputation("p1", "district", "parkdale", {"charm": 5})
