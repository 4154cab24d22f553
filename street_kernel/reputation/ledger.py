"""
Reputation Ledger: audited read-modify-write of four bounded dimensions.

Behavioral Contract:
- Records are created lazily on first modification and never deleted.
- Every successful modify_reputation writes the new value and exactly one
  audit row (old, new, delta, reason, clamped) in the same transaction.
- respect/fear/trust stay in [-100, 100]; heat stays in [0, 100]. A delta
  that would overshoot is truncated and the audit row is marked clamped.
- Heat decay is a scheduled batch: it only touches the heat dimension and
  never pushes it below the floor.
- Propagation is opt-in and runs as its own transaction after the direct
  change. Spilled amounts are rounded half up and zero spills are dropped.
"""

import logging
import math
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from street_kernel.errors import InvariantViolation
from street_kernel.models.reputation import (
    PropagatedChange,
    PropagationConfig,
    RelationshipType,
    ReputationChange,
    ReputationDimension,
    ReputationEvent,
    ReputationRecord,
    Standing,
)
from street_kernel.reputation.factions import DISTRICT_ADJACENCY, FACTIONS, factions_in_district
from street_kernel.reputation.store import ReputationStore
from street_kernel.storage.database import Database

logger = logging.getLogger(__name__)

DIMENSION_BOUNDS: Dict[ReputationDimension, Tuple[int, int]] = {
    ReputationDimension.RESPECT: (-100, 100),
    ReputationDimension.FEAR: (-100, 100),
    ReputationDimension.TRUST: (-100, 100),
    ReputationDimension.HEAT: (0, 100),
}

MAX_REASON_LENGTH = 100

# (minimum combined score, tier, carries dominant label), highest first
STANDING_BANDS: List[Tuple[int, str, bool]] = [
    (200, "Legendary", True),
    (100, "Renowned", True),
    (50, "Well-known", True),
    (0, "Recognized", False),
    (-50, "Unknown", False),
    (-100, "Distrusted", False),
]
LOWEST_TIER = "Despised"


def dominant_dimension(record: ReputationRecord) -> str:
    if record.fear > record.respect and record.fear > record.trust:
        return "feared"
    if record.trust > record.respect and record.trust > record.fear:
        return "trusted"
    return "respected"


def compute_standing(record: ReputationRecord) -> Standing:
    score = record.combined_score
    for minimum, tier, with_dominant in STANDING_BANDS:
        if score >= minimum:
            if with_dominant:
                dominant = dominant_dimension(record)
                return Standing(
                    combined_score=score,
                    label=f"{tier} {dominant}",
                    tier=tier,
                    dominant=dominant,
                )
            return Standing(combined_score=score, label=tier, tier=tier)
    return Standing(combined_score=score, label=LOWEST_TIER, tier=LOWEST_TIER)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _scaled(
    changes: Dict[ReputationDimension, int],
    multiplier: float,
    dimensions: Tuple[ReputationDimension, ...],
    positive_only: bool = False,
) -> Dict[ReputationDimension, int]:
    scaled = {}
    for dimension in dimensions:
        delta = changes.get(dimension, 0)
        if not delta or (positive_only and delta < 0):
            continue
        spilled = _round_half_up(delta * multiplier)
        if spilled:
            scaled[dimension] = spilled
    return scaled


def spillover_plan(
    relationship_type: RelationshipType,
    target_id: str,
    changes: Dict[ReputationDimension, int],
    config: PropagationConfig,
) -> List[PropagatedChange]:
    """Pure: which related targets a change reaches, and by how much."""
    respect, fear, trust = (
        ReputationDimension.RESPECT, ReputationDimension.FEAR, ReputationDimension.TRUST,
    )
    plan: List[PropagatedChange] = []

    def add(rel: RelationshipType, target: str, spilled: Dict, reason: str) -> None:
        if spilled:
            plan.append(PropagatedChange(
                relationship_type=rel, target_id=target, changes=spilled, reason=reason,
            ))

    if relationship_type == RelationshipType.FACTION:
        faction = FACTIONS.get(target_id)
        if faction is None:
            return plan
        for ally in faction.allies:
            add(
                RelationshipType.FACTION, ally,
                _scaled(changes, config.allied_faction_multiplier, (respect, trust), True),
                f"Spillover from allied faction {target_id}",
            )
        for enemy in faction.enemies:
            spilled = _scaled(changes, config.enemy_faction_multiplier, (respect, trust))
            # Threatening a faction's enemy makes it fear you too.
            if changes.get(fear):
                feared = _round_half_up(abs(changes[fear]) * config.allied_faction_multiplier)
                if feared:
                    spilled[fear] = feared
            add(
                RelationshipType.FACTION, enemy, spilled,
                f"Spillover from enemy faction {target_id}",
            )
        add(
            RelationshipType.DISTRICT, faction.home_district,
            _scaled(changes, config.home_district_multiplier, (respect, fear)),
            f"Spillover from faction {target_id}",
        )

    elif relationship_type == RelationshipType.DISTRICT:
        for adjacent in DISTRICT_ADJACENCY.get(target_id, []):
            add(
                RelationshipType.DISTRICT, adjacent,
                _scaled(changes, config.adjacent_district_multiplier, (respect, fear)),
                f"Spillover from adjacent district {target_id}",
            )
        for faction in factions_in_district(target_id):
            add(
                RelationshipType.FACTION, faction.id,
                _scaled(changes, config.district_faction_multiplier, (respect, fear)),
                f"Spillover from district {target_id}",
            )

    return plan


class ReputationLedger:
    """Multi-dimensional reputation with a full audit trail."""

    def __init__(self, db: Database, store: Optional[ReputationStore] = None):
        self.db = db
        self.store = store or ReputationStore(db)

    def modify_reputation(
        self,
        player_id: str,
        relationship_type: Union[RelationshipType, str],
        target_id: str,
        dimension: Union[ReputationDimension, str],
        delta: int,
        reason: str,
        related_player_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        current_time: Optional[datetime] = None,
    ) -> ReputationChange:
        if current_time is None:
            current_time = datetime.utcnow()

        try:
            relationship_type = RelationshipType(relationship_type)
        except ValueError:
            raise InvariantViolation(
                "reputation.unknown_relationship",
                f"Unknown relationship type: {relationship_type}",
            )
        try:
            dimension = ReputationDimension(dimension)
        except ValueError:
            raise InvariantViolation(
                "reputation.unknown_dimension",
                f"Unknown reputation dimension: {dimension}",
            )
        if not reason:
            raise InvariantViolation("reputation.reason_required", "A reason is required")
        reason = reason[:MAX_REASON_LENGTH]

        change = self.db.run_in_transaction(
            "reputation.modify",
            lambda conn: self._apply(
                conn, player_id, relationship_type, target_id, dimension, delta,
                reason, related_player_id, metadata, current_time,
            ),
        )
        logger.debug(
            "Reputation %s/%s/%s %s %+d: %d -> %d",
            player_id,
            relationship_type.value,
            target_id,
            dimension.value,
            delta,
            change.event.old_value,
            change.event.new_value,
        )
        return change

    def get_reputation(
        self,
        player_id: str,
        relationship_type: Union[RelationshipType, str],
        target_id: str,
    ) -> Optional[ReputationRecord]:
        with self.db.read() as conn:
            return self.store.get_record(
                conn, player_id, RelationshipType(relationship_type), target_id
            )

    def get_player_reputations(
        self,
        player_id: str,
        relationship_type: Optional[Union[RelationshipType, str]] = None,
    ) -> List[ReputationRecord]:
        """All of a player's relationships, best combined score first."""
        rel = RelationshipType(relationship_type) if relationship_type else None
        with self.db.read() as conn:
            return self.store.list_for_player(conn, player_id, rel)

    def get_standing(
        self,
        player_id: str,
        relationship_type: Union[RelationshipType, str],
        target_id: str,
    ) -> Standing:
        record = self.get_reputation(player_id, relationship_type, target_id)
        if record is None:
            now = datetime.utcnow()
            record = ReputationRecord(
                id="unrecorded",
                player_id=player_id,
                relationship_type=RelationshipType(relationship_type),
                target_id=target_id,
                created_at=now,
                updated_at=now,
            )
        return compute_standing(record)

    def get_reputation_history(
        self,
        player_id: str,
        relationship_type: Optional[Union[RelationshipType, str]] = None,
        target_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ReputationEvent]:
        rel = RelationshipType(relationship_type) if relationship_type else None
        with self.db.read() as conn:
            return self.store.list_events(conn, player_id, rel, target_id, limit)

    def decay_reputation_heat(
        self,
        step: int = 1,
        floor: int = 0,
        current_time: Optional[datetime] = None,
    ) -> int:
        """Cool every relationship's heat by `step`, never below `floor`."""
        if current_time is None:
            current_time = datetime.utcnow()
        if step < 0:
            raise InvariantViolation("reputation.decay_step", "Decay step must be >= 0")
        if not 0 <= floor <= 100:
            raise InvariantViolation("reputation.decay_floor", "Decay floor must be in [0, 100]")
        if step == 0:
            return 0

        decayed = self.db.run_in_transaction(
            "reputation.decay_heat",
            lambda conn: self.store.decay_heat(conn, step, floor, current_time),
        )
        if decayed:
            logger.info("Decayed reputation heat on %d records", decayed)
        return decayed

    # --- Propagation ---

    def propagate_reputation(
        self,
        player_id: str,
        relationship_type: Union[RelationshipType, str],
        target_id: str,
        changes: Dict[Union[ReputationDimension, str], int],
        config: Optional[PropagationConfig] = None,
        current_time: Optional[datetime] = None,
    ) -> List[PropagatedChange]:
        """
        Spill a reputation change onto related targets.

        Faction changes reach allied factions (positive respect and trust
        only), enemy factions (inverted, while fear carries over as fear)
        and the faction's home district. District changes reach adjacent
        districts and the factions based there. Only respect, fear and
        trust spread; heat never does. All spillover writes share one
        transaction and are audited like any other change.
        """
        if current_time is None:
            current_time = datetime.utcnow()
        config = config or PropagationConfig()
        relationship_type = RelationshipType(relationship_type)
        try:
            changes = {ReputationDimension(d): v for d, v in changes.items()}
        except ValueError as e:
            raise InvariantViolation("reputation.unknown_dimension", str(e))

        plan = spillover_plan(relationship_type, target_id, changes, config)
        if not plan:
            return []

        def _propagate(conn: sqlite3.Connection) -> None:
            for spill in plan:
                for dimension, delta in spill.changes.items():
                    self._apply(
                        conn, player_id, spill.relationship_type, spill.target_id,
                        dimension, delta, spill.reason, None,
                        {"propagated_from": f"{relationship_type.value}:{target_id}"},
                        current_time,
                    )

        self.db.run_in_transaction("reputation.propagate", _propagate)
        logger.info(
            "Propagated %s/%s change for %s to %d related targets",
            relationship_type.value, target_id, player_id, len(plan),
        )
        return plan

    # --- Internals ---

    def _apply(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        relationship_type: RelationshipType,
        target_id: str,
        dimension: ReputationDimension,
        delta: int,
        reason: str,
        related_player_id: Optional[str],
        metadata: Optional[dict],
        current_time: datetime,
    ) -> ReputationChange:
        record = self.store.get_record(conn, player_id, relationship_type, target_id)
        if record is None:
            record = ReputationRecord(
                id=f"rep_{uuid4().hex[:12]}",
                player_id=player_id,
                relationship_type=relationship_type,
                target_id=target_id,
                created_at=current_time,
                updated_at=current_time,
            )
            self.store.insert_record(conn, record)

        low, high = DIMENSION_BOUNDS[dimension]
        old_value = record.value_of(dimension)
        unclamped = old_value + delta
        new_value = max(low, min(high, unclamped))

        record = self.store.update_dimension(
            conn, record, dimension, new_value, current_time
        )
        event = ReputationEvent(
            id=f"repevt_{uuid4().hex[:12]}",
            reputation_id=record.id,
            dimension=dimension,
            change_amount=delta,
            old_value=old_value,
            new_value=new_value,
            reason=reason,
            related_player_id=related_player_id,
            clamped=new_value != unclamped,
            metadata=metadata or {},
            created_at=current_time,
        )
        self.store.insert_event(conn, event)
        return ReputationChange(record=record, event=event)
