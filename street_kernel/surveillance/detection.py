"""
Detection Model and pursuit ladder.

Behavioral Contract:
- detection_chance is pure, non-decreasing in both surveillance level and
  heat, and always lands in [5, 95].
- A sector with no record is treated as surveillance 50, coverage 0.75.
- The pursuit ladder is fixed; escalation moves exactly one rung at a time.
- Each escape method has a success chance that falls with the pursuit level
  down to a floor, and a cost that grows with it. Plain evasion is free and
  succeeds with 100 - escape_difficulty.
"""

from typing import Dict, List, Optional

from street_kernel.models.surveillance import (
    AlertLevel,
    EscapeMethod,
    EscapeOption,
    GridStatus,
    PursuitLevel,
    SectorSurveillance,
)

DEFAULT_SURVEILLANCE_LEVEL = 50
DEFAULT_SCANNER_COVERAGE = 0.75
MIN_DETECTION_CHANCE = 5
MAX_DETECTION_CHANCE = 95


def detection_chance(
    surveillance_level: int,
    scanner_coverage: float,
    heat_level: int = 0,
) -> int:
    """Percentage chance that a scan identifies the player."""
    raw = ((surveillance_level + heat_level) / 2) * scanner_coverage
    return max(MIN_DETECTION_CHANCE, min(MAX_DETECTION_CHANCE, int(round(raw))))


def sector_detection_chance(
    sector: Optional[SectorSurveillance],
    heat_level: int = 0,
) -> int:
    if sector is None:
        return detection_chance(
            DEFAULT_SURVEILLANCE_LEVEL, DEFAULT_SCANNER_COVERAGE, heat_level
        )
    return detection_chance(sector.surveillance_level, sector.scanner_coverage, heat_level)


def disruption_severity(change: int) -> int:
    """Incident severity for a surveillance change, 1..5."""
    return min(5, abs(change) // 10 + 1)


PURSUIT_LEVELS: Dict[int, PursuitLevel] = {
    1: PursuitLevel(
        level=1, name="Drone Scan", drones=1, enforcers=0,
        escape_difficulty=20, heat_required=20, cash_penalty_percent=5, jail_minutes=5,
    ),
    2: PursuitLevel(
        level=2, name="Active Interest", drones=3, enforcers=0,
        escape_difficulty=35, heat_required=40, cash_penalty_percent=10, jail_minutes=15,
    ),
    3: PursuitLevel(
        level=3, name="Pursuit Initiated", drones=5, enforcers=2,
        escape_difficulty=50, heat_required=60, cash_penalty_percent=20, jail_minutes=30,
    ),
    4: PursuitLevel(
        level=4, name="Priority Target", drones=8, enforcers=5,
        escape_difficulty=70, heat_required=80, cash_penalty_percent=35, jail_minutes=60,
    ),
    5: PursuitLevel(
        level=5, name="Maximum Response", drones=15, enforcers=10,
        escape_difficulty=90, heat_required=100, cash_penalty_percent=50, jail_minutes=120,
    ),
}
MAX_PURSUIT_LEVEL = 5


def next_level_threshold(current_level: int) -> Optional[int]:
    """Heat needed to climb from current_level (0 = no pursuit) to the next rung."""
    nxt = PURSUIT_LEVELS.get(current_level + 1)
    return nxt.heat_required if nxt else None


def seed_sectors() -> List[SectorSurveillance]:
    """The canonical ON-0..ON-14 grid."""
    # sector: (surveillance, grid, drones, coverage, hnc, alert)
    table = [
        (90, GridStatus.ACTIVE, 15, 0.95, 90, AlertLevel.ELEVATED),
        (85, GridStatus.ACTIVE, 12, 0.90, 85, AlertLevel.ELEVATED),
        (70, GridStatus.ACTIVE, 8, 0.80, 70, AlertLevel.NORMAL),
        (60, GridStatus.ACTIVE, 6, 0.70, 60, AlertLevel.NORMAL),
        (55, GridStatus.ACTIVE, 5, 0.65, 55, AlertLevel.NORMAL),
        (40, GridStatus.DEGRADED, 3, 0.50, 40, AlertLevel.NORMAL),
        (35, GridStatus.DEGRADED, 2, 0.45, 35, AlertLevel.MINIMAL),
        (50, GridStatus.ACTIVE, 5, 0.60, 50, AlertLevel.NORMAL),
        (45, GridStatus.ACTIVE, 4, 0.55, 45, AlertLevel.NORMAL),
        (30, GridStatus.DEGRADED, 2, 0.35, 30, AlertLevel.MINIMAL),
        (25, GridStatus.OFFLINE, 1, 0.25, 25, AlertLevel.MINIMAL),
        (15, GridStatus.BLACKOUT, 0, 0.10, 10, AlertLevel.MINIMAL),
        (20, GridStatus.BLACKOUT, 0, 0.15, 15, AlertLevel.MINIMAL),
        (10, GridStatus.BLACKOUT, 0, 0.05, 5, AlertLevel.MINIMAL),
        (80, GridStatus.ACTIVE, 10, 0.85, 80, AlertLevel.NORMAL),
    ]
    return [
        SectorSurveillance(
            sector_id=f"ON-{i}",
            surveillance_level=level,
            grid_status=grid,
            drone_density=drones,
            scanner_coverage=coverage,
            hnc_presence=hnc,
            alert_level=alert,
        )
        for i, (level, grid, drones, coverage, hnc, alert) in enumerate(table)
    ]


# method: (description, base chance, per-level drop, chance floor, cost per level, requirements)
_ESCAPE_TABLE = [
    (EscapeMethod.BLEND_IN, "Blend into a crowd and disappear", 70, 15, 10, 0, []),
    (EscapeMethod.UNDERGROUND, "Escape through the underground tunnels", 60, 10, 20, 500, []),
    (EscapeMethod.BRIBE, "Bribe an HNC officer to look the other way", 80, 10, 30, 2000, []),
    (EscapeMethod.SAFEHOUSE, "Head to a faction safehouse", 85, 8, 40, 1000,
     ["Faction membership"]),
    (EscapeMethod.DECOY, "Deploy a holographic decoy", 90, 8, 50, 5000, ["Level 20+"]),
]


def escape_options(pursuit_level: int) -> List[EscapeOption]:
    """Every way out at this pursuit level, plain evasion first."""
    level = PURSUIT_LEVELS[pursuit_level]
    options = [EscapeOption(
        method=EscapeMethod.EVADE,
        description="Run for it",
        success_chance=100 - level.escape_difficulty,
        cost=0,
    )]
    for method, description, base, drop, floor, cost, requirements in _ESCAPE_TABLE:
        options.append(EscapeOption(
            method=method,
            description=description,
            success_chance=max(floor, base - pursuit_level * drop),
            cost=cost * pursuit_level,
            requirements=list(requirements),
        ))
    return options


def escape_option(pursuit_level: int, method: EscapeMethod) -> EscapeOption:
    for option in escape_options(pursuit_level):
        if option.method == method:
            return option
    raise KeyError(method)


def hack_success_chance(surveillance_level: int) -> int:
    """Odds of disrupting a sector's grid; denser surveillance is harder."""
    return max(0, 60 - surveillance_level // 2)
