"""District ecosystem state and the events that move it."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from street_kernel.models.payloads import EventPayload


class DistrictStatus(str, Enum):
    STABLE = "stable"
    VOLATILE = "volatile"
    WARZONE = "warzone"
    GENTRIFYING = "gentrifying"
    DECLINING = "declining"


class DistrictEventType(str, Enum):
    CRIME_COMMITTED = "crime_committed"
    PROPERTY_BOUGHT = "property_bought"
    PROPERTY_SOLD = "property_sold"
    CREW_BATTLE = "crew_battle"
    BUSINESS_OPENED = "business_opened"
    BUSINESS_CLOSED = "business_closed"
    PLAYER_ATTACKED = "player_attacked"
    POLICE_RAID = "police_raid"
    TERRITORY_CLAIMED = "territory_claimed"
    TERRITORY_LOST = "territory_lost"
    HEIST_EXECUTED = "heist_executed"
    DRUG_BUST = "drug_bust"
    GENTRIFICATION = "gentrification"
    ECONOMIC_BOOST = "economic_boost"
    ECONOMIC_CRASH = "economic_crash"


class MetricImpact(BaseModel):
    """Signed per-metric deltas produced by one event."""

    crime_index: int = Field(ge=-50, le=50, default=0)
    police_presence: int = Field(ge=-50, le=50, default=0)
    property_values: int = Field(ge=-50, le=50, default=0)
    business_health: int = Field(ge=-50, le=50, default=0)
    street_activity: int = Field(ge=-50, le=50, default=0)

    def is_zero(self) -> bool:
        return not any(self.model_dump().values())


class DistrictState(BaseModel):
    """Continuous state of one district. Mutated only by aggregation."""

    district_id: str
    name: str
    crime_index: int = Field(ge=0, le=100, default=50)
    police_presence: int = Field(ge=0, le=100, default=50)
    property_values: int = Field(ge=0, le=100, default=50)
    business_health: int = Field(ge=0, le=100, default=50)
    street_activity: int = Field(ge=0, le=100, default=50)
    heat_level: int = Field(ge=0, le=100, default=0)
    crew_tension: int = Field(ge=0, le=100, default=0)
    status: DistrictStatus = DistrictStatus.STABLE
    last_calculated_at: Optional[datetime] = None
    last_status_change_at: Optional[datetime] = None


class DistrictEvent(BaseModel):
    """Immutable fact. Only `processed` / `processed_at` ever change."""

    id: str
    district_id: str
    event_type: DistrictEventType
    severity: int = Field(ge=1, le=10)
    actor_player_id: Optional[str] = None
    target_player_id: Optional[str] = None
    actor_crew_id: Optional[str] = None
    payload: EventPayload = Field(default_factory=EventPayload)
    impact: MetricImpact
    processed: bool = False
    created_at: datetime
    processed_at: Optional[datetime] = None


class DistrictModifiers(BaseModel):
    """Gameplay multipliers derived from a district's metrics."""

    district_id: str
    status: DistrictStatus
    crime_difficulty: float
    property_income: float
    recruitment_ease: float
    heat_decay: float
    police_response_time: float
    crime_payout_bonus: float
    shop_price_modifier: float
    reputation_multiplier: float


class StatusChange(BaseModel):
    district_id: str
    old_status: DistrictStatus
    new_status: DistrictStatus


class AggregationReport(BaseModel):
    """Outcome of one aggregation run."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    districts_updated: int = 0
    events_processed: int = 0
    status_changes: List[StatusChange] = []
    failures: Dict[str, str] = {}           # district_id -> error message


# --- Active district events ---

class ActiveEventType(str, Enum):
    POLICE_CRACKDOWN = "police_crackdown"
    LAWLESS_ZONE = "lawless_zone"
    ECONOMIC_BOOM = "economic_boom"
    STREET_HEAT = "street_heat"
    GANG_TENSIONS = "gang_tensions"
    QUIET_STREETS = "quiet_streets"


class ThresholdDirection(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class EventTrigger(str, Enum):
    THRESHOLD = "threshold"
    SCHEDULED = "scheduled"
    ADMIN = "admin"
    PLAYER = "player"


class EventEndReason(str, Enum):
    EXPIRED = "expired"
    ADMIN = "admin"
    COUNTERED = "countered"


class ActiveEventDefinition(BaseModel):
    """Static tuning for a threshold-triggered district event."""

    event_type: ActiveEventType
    name: str
    description: str
    trigger_metric: str                     # a DistrictState metric, incl. crew_tension
    trigger_threshold: int = Field(ge=0, le=100)
    trigger_direction: ThresholdDirection
    effects: Dict[str, float]
    duration_minutes: int = Field(ge=1)
    cooldown_minutes: int = Field(ge=0)


class ActiveDistrictEvent(BaseModel):
    """A timed condition running in a district (crackdown, boom, ...)."""

    id: str
    district_id: str
    event_type: ActiveEventType
    triggered_by: EventTrigger
    trigger_metric: Optional[str] = None
    trigger_value: Optional[int] = None
    effects: Dict[str, float] = {}
    duration_minutes: int
    started_at: datetime
    expires_at: datetime
    ended_at: Optional[datetime] = None
    ended_by: Optional[EventEndReason] = None

    def is_running(self, at: datetime) -> bool:
        return self.ended_at is None and self.expires_at > at


class ThresholdReport(BaseModel):
    """Outcome of one expire-then-check pass over all districts."""

    expired: int = 0
    triggered: List[ActiveDistrictEvent] = []
