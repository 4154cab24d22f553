"""Street kernel data models."""

from street_kernel.models.debt import (
    AskingPriceType,
    Debt,
    DebtDefault,
    DebtHistory,
    DebtOffer,
    DebtResolution,
    DebtStatus,
    DebtSummary,
    DebtTransfer,
    DebtType,
    OfferStatus,
    OverdueDebt,
)
from street_kernel.models.district import (
    ActiveDistrictEvent,
    ActiveEventDefinition,
    ActiveEventType,
    AggregationReport,
    DistrictEvent,
    DistrictEventType,
    DistrictModifiers,
    DistrictState,
    DistrictStatus,
    EventEndReason,
    EventTrigger,
    MetricImpact,
    StatusChange,
    ThresholdDirection,
    ThresholdReport,
)
from street_kernel.models.payloads import Effect, EffectType, EventPayload
from street_kernel.models.reputation import (
    Faction,
    PropagatedChange,
    PropagationConfig,
    RelationshipType,
    ReputationChange,
    ReputationDimension,
    ReputationEvent,
    ReputationRecord,
    Standing,
)
from street_kernel.models.scheduler import JobRun, JobStatus
from street_kernel.models.surveillance import (
    AlertLevel,
    EscapeMethod,
    EscapeOption,
    EscapeResult,
    GridHackResult,
    GridIncident,
    GridStatus,
    IncidentType,
    PlayerHeat,
    Pursuit,
    PursuitLevel,
    PursuitPenalty,
    PursuitResolution,
    PursuitStatus,
    ScanResult,
    SectorSurveillance,
)

__all__ = [
    "ActiveDistrictEvent",
    "ActiveEventDefinition",
    "ActiveEventType",
    "AggregationReport",
    "AlertLevel",
    "AskingPriceType",
    "Debt",
    "DebtDefault",
    "DebtHistory",
    "DebtOffer",
    "DebtResolution",
    "DebtStatus",
    "DebtSummary",
    "DebtTransfer",
    "DebtType",
    "DistrictEvent",
    "DistrictEventType",
    "DistrictModifiers",
    "DistrictState",
    "DistrictStatus",
    "Effect",
    "EffectType",
    "EscapeMethod",
    "EscapeOption",
    "EscapeResult",
    "EventEndReason",
    "EventPayload",
    "EventTrigger",
    "Faction",
    "GridHackResult",
    "GridIncident",
    "GridStatus",
    "IncidentType",
    "JobRun",
    "JobStatus",
    "MetricImpact",
    "OfferStatus",
    "OverdueDebt",
    "PlayerHeat",
    "PropagatedChange",
    "PropagationConfig",
    "Pursuit",
    "PursuitLevel",
    "PursuitPenalty",
    "PursuitResolution",
    "PursuitStatus",
    "RelationshipType",
    "ReputationChange",
    "ReputationDimension",
    "ReputationEvent",
    "ReputationRecord",
    "ScanResult",
    "SectorSurveillance",
    "Standing",
    "StatusChange",
    "ThresholdDirection",
    "ThresholdReport",
]
