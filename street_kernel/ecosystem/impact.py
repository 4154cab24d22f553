"""
Impact Resolver and status classifier for districts.

Behavioral Contract:
- resolve_impact is a pure function of (event type, severity).
- Only the mapped event types move specific metrics; every other type
  nudges street activity by one.
- classify_status walks an ordered rule list; the first matching rule wins.
  Order matters: a district that qualifies as both warzone and volatile
  is a warzone.
- Modifiers are pure functions of the current metrics, rounded to 2 places.
"""

import math
from typing import Callable, Dict, List, NamedTuple

from street_kernel.models.district import (
    DistrictEventType,
    DistrictModifiers,
    DistrictState,
    DistrictStatus,
    MetricImpact,
)

METRIC_MIN = 0
METRIC_MAX = 100


def clamp(value: int, low: int = METRIC_MIN, high: int = METRIC_MAX) -> int:
    return max(low, min(high, value))


_IMPACT_TABLE: Dict[DistrictEventType, Callable[[int], MetricImpact]] = {
    DistrictEventType.CRIME_COMMITTED: lambda s: MetricImpact(
        crime_index=s * 2, police_presence=s,
    ),
    DistrictEventType.PROPERTY_BOUGHT: lambda s: MetricImpact(
        property_values=s, business_health=math.ceil(s * 0.5),
    ),
    DistrictEventType.CREW_BATTLE: lambda s: MetricImpact(
        crime_index=s * 3, police_presence=s * 2, business_health=-s,
    ),
    DistrictEventType.BUSINESS_OPENED: lambda s: MetricImpact(
        business_health=s * 2, property_values=s,
    ),
    DistrictEventType.POLICE_RAID: lambda s: MetricImpact(
        police_presence=s * 3, crime_index=-s * 2,
    ),
    DistrictEventType.HEIST_EXECUTED: lambda s: MetricImpact(
        crime_index=s * 4, police_presence=s * 3,
    ),
}


def resolve_impact(event_type: DistrictEventType, severity: int) -> MetricImpact:
    """Map an event to signed per-metric deltas."""
    if not 1 <= severity <= 10:
        raise ValueError(f"severity must be within [1, 10], got {severity}")
    rule = _IMPACT_TABLE.get(event_type)
    if rule is None:
        return MetricImpact(street_activity=1)
    return rule(severity)


# --- Status ladder ---

class StatusRule(NamedTuple):
    status: DistrictStatus
    applies: Callable[[DistrictState], bool]


STATUS_LADDER: List[StatusRule] = [
    StatusRule(
        DistrictStatus.WARZONE,
        lambda d: d.crime_index >= 70 and d.crew_tension >= 60,
    ),
    StatusRule(
        DistrictStatus.GENTRIFYING,
        lambda d: d.property_values >= 65 and d.business_health >= 60 and d.crime_index <= 40,
    ),
    StatusRule(
        DistrictStatus.DECLINING,
        lambda d: d.business_health <= 35 and d.property_values <= 40,
    ),
    StatusRule(
        DistrictStatus.VOLATILE,
        lambda d: d.crime_index >= 55 and d.crew_tension >= 40,
    ),
]


def classify_status(district: DistrictState) -> DistrictStatus:
    for rule in STATUS_LADDER:
        if rule.applies(district):
            return rule.status
    return DistrictStatus.STABLE


def next_crew_tension(current: int, crew_battles: int) -> int:
    """Tension cools by 10% per aggregation and spikes 10 per crew battle."""
    return clamp(round(current * 0.9 + crew_battles * 10))


# --- Gameplay modifiers ---

STATUS_REPUTATION_MULTIPLIER: Dict[DistrictStatus, float] = {
    DistrictStatus.WARZONE: 1.5,
    DistrictStatus.VOLATILE: 1.25,
    DistrictStatus.DECLINING: 1.1,
    DistrictStatus.STABLE: 1.0,
    DistrictStatus.GENTRIFYING: 0.9,
}


def status_reputation_multiplier(status: DistrictStatus) -> float:
    return STATUS_REPUTATION_MULTIPLIER[status]


def compute_modifiers(district: DistrictState) -> DistrictModifiers:
    police = district.police_presence
    prop = district.property_values
    return DistrictModifiers(
        district_id=district.district_id,
        status=district.status,
        crime_difficulty=round(1.5 - police / 100, 2),
        property_income=round(0.5 + prop / 100, 2),
        recruitment_ease=round(0.5 + district.street_activity / 100, 2),
        heat_decay=round(1.5 - police / 100, 2),
        police_response_time=round(0.5 + district.crime_index / 100, 2),
        crime_payout_bonus=round(prop / 200, 2),
        shop_price_modifier=round(0.8 + prop / 250, 2),
        reputation_multiplier=status_reputation_multiplier(district.status),
    )
