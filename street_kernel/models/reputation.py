"""Reputation records and their audit trail."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class RelationshipType(str, Enum):
    DISTRICT = "district"
    FACTION = "faction"
    CREW = "crew"
    PLAYER = "player"


class ReputationDimension(str, Enum):
    RESPECT = "respect"
    FEAR = "fear"
    TRUST = "trust"
    HEAT = "heat"


class ReputationRecord(BaseModel):
    """Four bounded scores for one (player, type, target) relationship."""

    id: str
    player_id: str
    relationship_type: RelationshipType
    target_id: str
    respect: int = Field(ge=-100, le=100, default=0)
    fear: int = Field(ge=-100, le=100, default=0)
    trust: int = Field(ge=-100, le=100, default=0)
    heat: int = Field(ge=0, le=100, default=0)
    created_at: datetime
    updated_at: datetime
    version: int = 1

    @property
    def combined_score(self) -> int:
        return self.respect + self.fear + self.trust - self.heat

    def value_of(self, dimension: ReputationDimension) -> int:
        return getattr(self, dimension.value)


class ReputationEvent(BaseModel):
    """Append-only audit row for one dimension change."""

    id: str
    reputation_id: str
    dimension: ReputationDimension
    change_amount: int
    old_value: int
    new_value: int
    reason: str = Field(max_length=100)
    related_player_id: Optional[str] = None
    clamped: bool = False
    metadata: dict = {}
    created_at: datetime


class ReputationChange(BaseModel):
    """Result of modify_reputation."""

    record: ReputationRecord
    event: ReputationEvent


class Standing(BaseModel):
    combined_score: int
    label: str                              # e.g. "Renowned feared"
    tier: str                               # e.g. "Renowned"
    dominant: Optional[str] = None          # feared | trusted | respected


class Faction(BaseModel):
    """A street faction and who it sides with."""

    id: str
    name: str
    home_district: str
    allied_districts: List[str] = []
    allies: List[str] = []
    enemies: List[str] = []


class PropagationConfig(BaseModel):
    """Share of a reputation change that spills onto related targets."""

    allied_faction_multiplier: float = 0.3
    enemy_faction_multiplier: float = -0.3
    home_district_multiplier: float = 0.2
    adjacent_district_multiplier: float = 0.15
    district_faction_multiplier: float = 0.25


class PropagatedChange(BaseModel):
    relationship_type: RelationshipType
    target_id: str
    changes: Dict[ReputationDimension, int]
    reason: str
