"""
Threshold-triggered district events: the fixed definition table.

Behavioral Contract:
- The table is fixed; there is no way to register new event types at runtime.
- An "above" definition fires when the metric is >= the threshold, a "below"
  one when it is <= the threshold.
- Effects of concurrently running events combine key by key; a later event
  overrides an earlier one on a shared key.
"""

from typing import Dict, List

from street_kernel.models.district import (
    ActiveDistrictEvent,
    ActiveEventDefinition,
    ActiveEventType,
    DistrictState,
    ThresholdDirection,
)

ACTIVE_EVENT_DEFINITIONS: Dict[ActiveEventType, ActiveEventDefinition] = {
    ActiveEventType.POLICE_CRACKDOWN: ActiveEventDefinition(
        event_type=ActiveEventType.POLICE_CRACKDOWN,
        name="Police Crackdown",
        description="Increased police presence reduces crime success and doubles heat gain",
        trigger_metric="crime_index",
        trigger_threshold=80,
        trigger_direction=ThresholdDirection.ABOVE,
        effects={
            "crime_success_modifier": -0.15,
            "heat_gain_modifier": 2.0,
            "police_response_modifier": 0.7,
        },
        duration_minutes=120,
        cooldown_minutes=60,
    ),
    ActiveEventType.LAWLESS_ZONE: ActiveEventDefinition(
        event_type=ActiveEventType.LAWLESS_ZONE,
        name="Lawless Zone",
        description="Low police presence creates opportunities but increases danger",
        trigger_metric="police_presence",
        trigger_threshold=20,
        trigger_direction=ThresholdDirection.BELOW,
        effects={
            "crime_success_modifier": 0.10,
            "crime_payout_modifier": 1.25,
            "pvp_damage_modifier": 1.5,
        },
        duration_minutes=90,
        cooldown_minutes=120,
    ),
    ActiveEventType.ECONOMIC_BOOM: ActiveEventDefinition(
        event_type=ActiveEventType.ECONOMIC_BOOM,
        name="Economic Boom",
        description="Thriving business district increases property income and shop deals",
        trigger_metric="business_health",
        trigger_threshold=80,
        trigger_direction=ThresholdDirection.ABOVE,
        effects={
            "property_income_modifier": 1.3,
            "shop_price_modifier": 0.9,
            "business_revenue_modifier": 1.25,
        },
        duration_minutes=180,
        cooldown_minutes=90,
    ),
    ActiveEventType.STREET_HEAT: ActiveEventDefinition(
        event_type=ActiveEventType.STREET_HEAT,
        name="Street Heat",
        description="High street activity draws attention but increases payouts",
        trigger_metric="street_activity",
        trigger_threshold=75,
        trigger_direction=ThresholdDirection.ABOVE,
        effects={
            "crime_payout_modifier": 1.2,
            "heat_gain_modifier": 1.3,
            "xp_modifier": 1.15,
        },
        duration_minutes=60,
        cooldown_minutes=45,
    ),
    ActiveEventType.GANG_TENSIONS: ActiveEventDefinition(
        event_type=ActiveEventType.GANG_TENSIONS,
        name="Gang Tensions",
        description="Crew conflicts make the streets dangerous but profitable",
        trigger_metric="crew_tension",
        trigger_threshold=70,
        trigger_direction=ThresholdDirection.ABOVE,
        effects={
            "crime_payout_modifier": 1.15,
            "territory_point_modifier": 1.5,
            "pvp_damage_modifier": 1.25,
        },
        duration_minutes=120,
        cooldown_minutes=180,
    ),
    ActiveEventType.QUIET_STREETS: ActiveEventDefinition(
        event_type=ActiveEventType.QUIET_STREETS,
        name="Quiet Streets",
        description="Low activity makes crimes easier but less rewarding",
        trigger_metric="street_activity",
        trigger_threshold=25,
        trigger_direction=ThresholdDirection.BELOW,
        effects={
            "crime_success_modifier": 0.10,
            "crime_payout_modifier": 0.8,
            "heat_gain_modifier": 0.7,
        },
        duration_minutes=60,
        cooldown_minutes=30,
    ),
}


def threshold_crossed(definition: ActiveEventDefinition, state: DistrictState) -> bool:
    value = getattr(state, definition.trigger_metric)
    if definition.trigger_direction == ThresholdDirection.ABOVE:
        return value >= definition.trigger_threshold
    return value <= definition.trigger_threshold


def combine_effects(events: List[ActiveDistrictEvent]) -> Dict[str, float]:
    """Merge the effects of running events in start order."""
    combined: Dict[str, float] = {}
    for event in events:
        combined.update(event.effects)
    return combined
