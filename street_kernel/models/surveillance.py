"""Surveillance grid, player heat and pursuit episodes."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class GridStatus(str, Enum):
    ACTIVE = "active"
    DEGRADED = "degraded"
    OFFLINE = "offline"
    BLACKOUT = "blackout"


class AlertLevel(str, Enum):
    MINIMAL = "minimal"
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"
    LOCKDOWN = "lockdown"


class PursuitResolution(str, Enum):
    ESCAPED = "escaped"
    CAUGHT = "caught"


class IncidentType(str, Enum):
    CRIME_DETECTED = "crime_detected"
    SCAN_EVADED = "scan_evaded"
    IDENTITY_SCANNED = "identity_scanned"
    PURSUIT_INITIATED = "pursuit_initiated"
    PURSUIT_ESCALATED = "pursuit_escalated"
    PURSUIT_ESCAPED = "pursuit_escaped"
    PURSUIT_CAUGHT = "pursuit_caught"
    SURVEILLANCE_DISRUPTED = "surveillance_disrupted"
    SECTOR_SWEEP = "sector_sweep"
    GRID_HACK = "grid_hack"


class EscapeMethod(str, Enum):
    EVADE = "evade"                         # plain run for it, rolls the ladder difficulty
    BLEND_IN = "blend_in"
    UNDERGROUND = "underground"
    BRIBE = "bribe"
    SAFEHOUSE = "safehouse"
    DECOY = "decoy"


class SectorSurveillance(BaseModel):
    """Monitoring intensity for one map sector."""

    sector_id: str                          # e.g. "ON-3"
    surveillance_level: int = Field(ge=0, le=100, default=50)
    drone_density: int = Field(ge=0, le=20, default=5)
    scanner_coverage: float = Field(ge=0, le=1, default=0.75)
    hnc_presence: int = Field(ge=0, le=100, default=50)
    alert_level: AlertLevel = AlertLevel.NORMAL
    grid_status: GridStatus = GridStatus.ACTIVE
    sweep_interval_minutes: int = Field(ge=1, default=30)
    last_sweep_at: Optional[datetime] = None


class PlayerHeat(BaseModel):
    player_id: str
    heat_level: int = Field(ge=0, le=100, default=0)
    current_sector: str = "ON-0"
    is_flagged: bool = False
    flag_reason: Optional[str] = None
    flag_expires_at: Optional[datetime] = None
    crimes_in_session: int = 0
    total_detections: int = 0
    total_scans_evaded: int = 0
    last_crime_detected_at: Optional[datetime] = None


class PursuitLevel(BaseModel):
    """Static tuning for one rung of the pursuit ladder."""

    level: int = Field(ge=1, le=5)
    name: str
    drones: int
    enforcers: int
    escape_difficulty: int = Field(ge=0, le=100)
    heat_required: int = Field(ge=0, le=100)
    cash_penalty_percent: int = Field(ge=0, le=100)
    jail_minutes: int = Field(ge=0)


class PursuitPenalty(BaseModel):
    cash_percent: int
    jail_minutes: int
    cash_lost: Optional[int] = None         # only when the caller reported cash on hand


class Pursuit(BaseModel):
    """One enforcement episode against a player."""

    id: str
    player_id: str
    level: int = Field(ge=1, le=5)
    drones_assigned: int = 0
    enforcers_assigned: int = 0
    last_spotted_sector: Optional[str] = None
    last_spotted_at: datetime
    is_active: bool = True
    resolution: Optional[PursuitResolution] = None
    escape_method: Optional[str] = None
    penalty: Optional[PursuitPenalty] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    version: int = 1


class GridIncident(BaseModel):
    id: str
    incident_type: IncidentType
    sector_id: Optional[str] = None
    player_id: Optional[str] = None
    severity: int = Field(ge=1, le=5, default=1)
    details: dict = {}
    created_at: datetime


class ScanResult(BaseModel):
    player_id: str
    sector_id: str
    chance: int
    roll: int
    detected: bool
    heat_level: int
    pursuit: Optional[Pursuit] = None


class EscapeOption(BaseModel):
    """One way out of a pursuit at a given level."""

    method: EscapeMethod
    description: str
    success_chance: int = Field(ge=0, le=100)
    cost: int = Field(ge=0)
    requirements: List[str] = []


class EscapeResult(BaseModel):
    player_id: str
    success: bool
    roll: int
    escape_difficulty: int
    heat_level: int
    pursuit: Pursuit
    caught: bool = False
    method: EscapeMethod = EscapeMethod.EVADE
    cost_paid: int = 0


class GridHackResult(BaseModel):
    player_id: str
    sector_id: str
    success: bool
    chance: int
    roll: int
    surveillance_reduced: int = 0
    heat_gained: int = 0
    surveillance_level: int
    heat_level: int
    pursuit: Optional[Pursuit] = None


class PursuitStatus(BaseModel):
    """Read-only view handed to the UI layer."""

    player_id: str
    heat_level: int
    current_sector: str
    is_flagged: bool
    pursuit: Optional[Pursuit] = None
    level_info: Optional[PursuitLevel] = None
