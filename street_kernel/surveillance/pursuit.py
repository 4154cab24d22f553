"""
Heat and Pursuit State Machine.

Behavioral Contract:
- Heat is clamped to [0, 100] on every write.
- When heat reaches the next rung's threshold the pursuit climbs exactly one
  level; a missing pursuit is created at level 1. Levels are never skipped.
- An escape roll >= the method's difficulty (100 - success chance; plain
  evasion uses escape_difficulty) ends the episode as escaped and cools the
  player. Costed methods are refused unless the reported cash covers them.
  A failed roll below level 5 escalates one level and adds heat; a failed
  roll at level 5 ends the episode as caught, applies the level's penalty
  and resets heat to 0.
- De-escalation only happens by escape or by the inactivity timeout.
- A failed grid hack adds heat exactly like a crime and may escalate.
- Each transition is a single transaction. Nothing else is held.
"""

import logging
import random
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional, Tuple, Union
from uuid import uuid4

from street_kernel.ecosystem.impact import clamp
from street_kernel.errors import InvalidTransitionError, InvariantViolation, NotFoundError
from street_kernel.models.surveillance import (
    EscapeMethod,
    EscapeOption,
    EscapeResult,
    GridHackResult,
    GridStatus,
    IncidentType,
    PlayerHeat,
    Pursuit,
    PursuitPenalty,
    PursuitResolution,
    PursuitStatus,
    ScanResult,
)
from street_kernel.storage.database import Database
from street_kernel.surveillance.detection import (
    MAX_PURSUIT_LEVEL,
    PURSUIT_LEVELS,
    escape_option,
    escape_options,
    hack_success_chance,
    next_level_threshold,
    sector_detection_chance,
)
from street_kernel.surveillance.grid import new_incident
from street_kernel.surveillance.store import SurveillanceStore

logger = logging.getLogger(__name__)

SCAN_DETECTION_HEAT = 5
FAILED_ESCAPE_HEAT = 10
TIMEOUT_HEAT_RELIEF = 15
ESCAPE_HEAT_RELIEF_MIN = 20
ESCAPE_HEAT_RELIEF_SPREAD = 10
HACK_REDUCTION_MIN = 15
HACK_REDUCTION_SPREAD = 15
HACK_HEAT_MIN = 15
HACK_HEAT_SPREAD = 10


class PursuitEngine:
    """Per-player heat and the pursuit episodes it triggers."""

    def __init__(
        self,
        db: Database,
        store: Optional[SurveillanceStore] = None,
        timeout_minutes: int = 30,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.store = store or SurveillanceStore(db)
        self.timeout_minutes = timeout_minutes
        self.rng = rng or random.Random()

    # --- Heat ---

    def raise_heat(
        self,
        player_id: str,
        amount: int,
        sector_id: Optional[str] = None,
        reason: str = "crime",
        current_time: Optional[datetime] = None,
    ) -> PursuitStatus:
        """Crime-action hook: add heat and escalate if a threshold was crossed."""
        if current_time is None:
            current_time = datetime.utcnow()
        if amount < 0:
            raise InvariantViolation(
                "heat.negative_raise", f"Heat raise must be non-negative, got {amount}"
            )

        def _raise(conn: sqlite3.Connection) -> PursuitStatus:
            heat = self._load_heat(conn, player_id)
            updates = {
                "heat_level": clamp(heat.heat_level + amount),
                "crimes_in_session": heat.crimes_in_session + 1,
            }
            if sector_id:
                updates["current_sector"] = sector_id
            heat = heat.model_copy(update=updates)
            self.store.save_player_heat(conn, heat)

            pursuit = self._escalate_if_due(conn, heat, current_time, reason)
            return self._status(heat, pursuit)

        status = self.db.run_in_transaction("heat.raise", _raise)
        logger.debug("Heat for %s +%d -> %d (%s)", player_id, amount, status.heat_level, reason)
        return status

    def flag_player(
        self,
        player_id: str,
        reason: str,
        duration_minutes: int,
        current_time: Optional[datetime] = None,
    ) -> PlayerHeat:
        if current_time is None:
            current_time = datetime.utcnow()

        def _flag(conn: sqlite3.Connection) -> PlayerHeat:
            heat = self._load_heat(conn, player_id).model_copy(update={
                "is_flagged": True,
                "flag_reason": reason[:100],
                "flag_expires_at": current_time + timedelta(minutes=duration_minutes),
            })
            self.store.save_player_heat(conn, heat)
            return heat

        return self.db.run_in_transaction("heat.flag", _flag)

    # --- Scans ---

    def record_scan(
        self,
        player_id: str,
        sector_id: Optional[str] = None,
        roll: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> ScanResult:
        """
        Roll a grid scan against the player. Detection adds heat, refreshes
        the pursuit's last sighting and may escalate it.
        """
        if current_time is None:
            current_time = datetime.utcnow()
        if roll is None:
            roll = self.rng.randint(0, 99)

        def _scan(conn: sqlite3.Connection) -> ScanResult:
            heat = self._load_heat(conn, player_id)
            where = sector_id or heat.current_sector
            sector = self.store.get_sector(conn, where)
            chance = sector_detection_chance(sector, heat.heat_level)
            blackout = sector is not None and sector.grid_status == GridStatus.BLACKOUT
            detected = roll < chance and not blackout

            pursuit = self.store.get_active_pursuit(conn, player_id)
            if detected:
                heat = heat.model_copy(update={
                    "heat_level": clamp(heat.heat_level + SCAN_DETECTION_HEAT),
                    "current_sector": where,
                    "total_detections": heat.total_detections + 1,
                    "last_crime_detected_at": current_time,
                })
                self.store.save_player_heat(conn, heat)
                self.store.insert_incident(conn, new_incident(
                    IncidentType.IDENTITY_SCANNED,
                    current_time,
                    sector_id=where,
                    player_id=player_id,
                    severity=2,
                    details={"chance": chance, "roll": roll},
                ))
                if pursuit is not None:
                    pursuit = self.store.update_pursuit(conn, pursuit.model_copy(update={
                        "last_spotted_sector": where,
                        "last_spotted_at": current_time,
                    }))
                pursuit = self._escalate_if_due(conn, heat, current_time, "detected")
            else:
                heat = heat.model_copy(update={
                    "current_sector": where,
                    "total_scans_evaded": heat.total_scans_evaded + 1,
                })
                self.store.save_player_heat(conn, heat)
                self.store.insert_incident(conn, new_incident(
                    IncidentType.SCAN_EVADED,
                    current_time,
                    sector_id=where,
                    player_id=player_id,
                    details={"chance": chance, "roll": roll, "blackout": blackout},
                ))

            return ScanResult(
                player_id=player_id,
                sector_id=where,
                chance=chance,
                roll=roll,
                detected=detected,
                heat_level=heat.heat_level,
                pursuit=pursuit,
            )

        return self.db.run_in_transaction("pursuit.scan", _scan)

    # --- Escape ---

    def attempt_escape(
        self,
        player_id: str,
        roll: Optional[int] = None,
        method: Union[EscapeMethod, str] = EscapeMethod.EVADE,
        cash_on_hand: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> EscapeResult:
        """
        Roll an escape against the active pursuit.

        The method sets the odds: the roll must reach 100 minus the method's
        success chance. Plain evasion therefore rolls against the level's
        escape_difficulty. A costed method needs cash_on_hand to cover it and
        the cost is spent whatever the outcome.
        """
        if current_time is None:
            current_time = datetime.utcnow()
        try:
            method = EscapeMethod(method)
        except ValueError:
            raise InvariantViolation(
                "escape.unknown_method", f"Unknown escape method: {method}"
            )
        if roll is None:
            roll = self.rng.randint(0, 99)
        relief = ESCAPE_HEAT_RELIEF_MIN + self.rng.randrange(ESCAPE_HEAT_RELIEF_SPREAD)

        def _escape(conn: sqlite3.Connection) -> EscapeResult:
            pursuit = self.store.get_active_pursuit(conn, player_id)
            if pursuit is None:
                raise InvalidTransitionError(
                    "pursuit.not_active",
                    f"Player {player_id} is not being pursued",
                )
            level = PURSUIT_LEVELS[pursuit.level]
            option = escape_option(pursuit.level, method)
            if option.cost and (cash_on_hand is None or cash_on_hand < option.cost):
                raise InvariantViolation(
                    "escape.insufficient_funds",
                    f"{method.value} costs {option.cost} at pursuit level {pursuit.level}",
                )
            difficulty = 100 - option.success_chance
            heat = self._load_heat(conn, player_id)

            if roll >= difficulty:
                heat = heat.model_copy(update={"heat_level": clamp(heat.heat_level - relief)})
                pursuit = self._end(
                    conn, pursuit, PursuitResolution.ESCAPED, method.value, current_time
                )
                caught = False
            elif pursuit.level < MAX_PURSUIT_LEVEL:
                heat = heat.model_copy(update={
                    "heat_level": clamp(heat.heat_level + FAILED_ESCAPE_HEAT),
                })
                pursuit = self._climb(conn, pursuit, current_time, "failed_escape")
                caught = False
            else:
                remaining = cash_on_hand - option.cost if cash_on_hand is not None else None
                penalty = PursuitPenalty(
                    cash_percent=level.cash_penalty_percent,
                    jail_minutes=level.jail_minutes,
                    cash_lost=(
                        remaining * level.cash_penalty_percent // 100
                        if remaining is not None else None
                    ),
                )
                heat = heat.model_copy(update={"heat_level": 0})
                pursuit = self._end(
                    conn, pursuit, PursuitResolution.CAUGHT, method.value, current_time, penalty
                )
                caught = True

            self.store.save_player_heat(conn, heat)
            return EscapeResult(
                player_id=player_id,
                success=pursuit.resolution == PursuitResolution.ESCAPED,
                roll=roll,
                escape_difficulty=difficulty,
                heat_level=heat.heat_level,
                pursuit=pursuit,
                caught=caught,
                method=method,
                cost_paid=option.cost,
            )

        result = self.db.run_in_transaction("pursuit.escape", _escape)
        logger.info(
            "Escape attempt by %s via %s (roll %d vs %d): %s",
            player_id,
            method.value,
            roll,
            result.escape_difficulty,
            "caught" if result.caught else ("escaped" if result.success else "escalated"),
        )
        return result

    def get_escape_options(self, player_id: str) -> List[EscapeOption]:
        """What the player can try against their current pursuit."""
        with self.db.read() as conn:
            pursuit = self.store.get_active_pursuit(conn, player_id)
        if pursuit is None:
            raise InvalidTransitionError(
                "pursuit.not_active",
                f"Player {player_id} is not being pursued",
            )
        return escape_options(pursuit.level)

    # --- Grid hacking ---

    def hack_sector(
        self,
        player_id: str,
        sector_id: str,
        roll: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> GridHackResult:
        """
        Try to knock out the local grid. Success lowers the sector's
        surveillance; failure flags the player and adds heat, which can
        start or escalate a pursuit.
        """
        if current_time is None:
            current_time = datetime.utcnow()
        if roll is None:
            roll = self.rng.randint(0, 99)
        reduction = HACK_REDUCTION_MIN + self.rng.randrange(HACK_REDUCTION_SPREAD)
        heat_gain = HACK_HEAT_MIN + self.rng.randrange(HACK_HEAT_SPREAD)

        def _hack(conn: sqlite3.Connection) -> GridHackResult:
            sector = self.store.get_sector(conn, sector_id)
            if sector is None:
                raise NotFoundError("sector", sector_id)
            chance = hack_success_chance(sector.surveillance_level)
            heat = self._load_heat(conn, player_id)
            pursuit = self.store.get_active_pursuit(conn, player_id)

            if roll < chance:
                sector = sector.model_copy(update={
                    "surveillance_level": clamp(sector.surveillance_level - reduction),
                })
                self.store.update_sector(conn, sector)
                self.store.insert_incident(conn, new_incident(
                    IncidentType.GRID_HACK,
                    current_time,
                    sector_id=sector_id,
                    player_id=player_id,
                    severity=2,
                    details={"success": True, "surveillance_reduced": reduction},
                ))
                return GridHackResult(
                    player_id=player_id,
                    sector_id=sector_id,
                    success=True,
                    chance=chance,
                    roll=roll,
                    surveillance_reduced=reduction,
                    surveillance_level=sector.surveillance_level,
                    heat_level=heat.heat_level,
                    pursuit=pursuit,
                )

            heat = heat.model_copy(update={
                "heat_level": clamp(heat.heat_level + heat_gain),
                "current_sector": sector_id,
                "total_detections": heat.total_detections + 1,
                "last_crime_detected_at": current_time,
            })
            self.store.save_player_heat(conn, heat)
            self.store.insert_incident(conn, new_incident(
                IncidentType.GRID_HACK,
                current_time,
                sector_id=sector_id,
                player_id=player_id,
                severity=3,
                details={"success": False, "heat_change": heat_gain},
            ))
            pursuit = self._escalate_if_due(conn, heat, current_time, "grid_hack")
            return GridHackResult(
                player_id=player_id,
                sector_id=sector_id,
                success=False,
                chance=chance,
                roll=roll,
                heat_gained=heat_gain,
                surveillance_level=sector.surveillance_level,
                heat_level=heat.heat_level,
                pursuit=pursuit,
            )

        result = self.db.run_in_transaction("grid.hack", _hack)
        logger.info(
            "Grid hack by %s on %s (roll %d vs %d): %s",
            player_id, sector_id, roll, result.chance,
            "disrupted" if result.success else "detected",
        )
        return result

    # --- Batch jobs ---

    def sweep_pursuit_timeouts(self, current_time: Optional[datetime] = None) -> int:
        """End pursuits that lost track of their target."""
        if current_time is None:
            current_time = datetime.utcnow()
        cutoff = current_time - timedelta(minutes=self.timeout_minutes)

        with self.db.read() as conn:
            candidates = self.store.stale_pursuit_ids(conn, cutoff)

        ended = 0
        for pursuit_id in candidates:
            if self.db.run_in_transaction(
                "pursuit.timeout",
                lambda conn, p=pursuit_id: self._time_out(conn, p, cutoff, current_time),
            ):
                ended += 1
        if ended:
            logger.info("Timed out %d pursuits", ended)
        return ended

    def _time_out(
        self,
        conn: sqlite3.Connection,
        pursuit_id: str,
        cutoff: datetime,
        current_time: datetime,
    ) -> bool:
        pursuit = self.store.get_pursuit(conn, pursuit_id)
        # Re-check: a scan may have refreshed it since the candidate list was read.
        if pursuit is None or not pursuit.is_active or pursuit.last_spotted_at >= cutoff:
            return False
        self._end(conn, pursuit, PursuitResolution.ESCAPED, "timeout", current_time)
        heat = self._load_heat(conn, pursuit.player_id)
        self.store.save_player_heat(conn, heat.model_copy(update={
            "heat_level": clamp(heat.heat_level - TIMEOUT_HEAT_RELIEF),
        }))
        return True

    def decay_player_heat(
        self,
        step: int = 1,
        current_time: Optional[datetime] = None,
    ) -> Tuple[int, int]:
        """
        Cool players who are not being pursued and clear expired flags.
        Returns (players cooled, flags cleared).
        """
        if current_time is None:
            current_time = datetime.utcnow()

        def _decay(conn: sqlite3.Connection) -> Tuple[int, int]:
            cooled = self.store.decay_idle_heat(conn, step) if step > 0 else 0
            cleared = self.store.clear_expired_flags(conn, current_time)
            return cooled, cleared

        return self.db.run_in_transaction("heat.decay", _decay)

    # --- Queries ---

    def get_player_heat(self, player_id: str) -> PlayerHeat:
        with self.db.read() as conn:
            return self._load_heat(conn, player_id)

    def get_pursuit_status(self, player_id: str) -> PursuitStatus:
        with self.db.read() as conn:
            heat = self._load_heat(conn, player_id)
            pursuit = self.store.get_active_pursuit(conn, player_id)
        return self._status(heat, pursuit)

    def get_pursuit_history(self, player_id: str, limit: int = 20):
        with self.db.read() as conn:
            return self.store.pursuit_history(conn, player_id, limit)

    # --- Internals ---

    def _load_heat(self, conn: sqlite3.Connection, player_id: str) -> PlayerHeat:
        return self.store.get_player_heat(conn, player_id) or PlayerHeat(player_id=player_id)

    def _status(self, heat: PlayerHeat, pursuit: Optional[Pursuit]) -> PursuitStatus:
        return PursuitStatus(
            player_id=heat.player_id,
            heat_level=heat.heat_level,
            current_sector=heat.current_sector,
            is_flagged=heat.is_flagged,
            pursuit=pursuit,
            level_info=PURSUIT_LEVELS[pursuit.level] if pursuit else None,
        )

    def _escalate_if_due(
        self,
        conn: sqlite3.Connection,
        heat: PlayerHeat,
        current_time: datetime,
        reason: str,
    ) -> Optional[Pursuit]:
        pursuit = self.store.get_active_pursuit(conn, heat.player_id)
        current_level = pursuit.level if pursuit else 0
        threshold = next_level_threshold(current_level)
        if threshold is None or heat.heat_level < threshold:
            return pursuit

        if pursuit is None:
            level = PURSUIT_LEVELS[1]
            pursuit = Pursuit(
                id=f"pur_{uuid4().hex[:12]}",
                player_id=heat.player_id,
                level=1,
                drones_assigned=level.drones,
                enforcers_assigned=level.enforcers,
                last_spotted_sector=heat.current_sector,
                last_spotted_at=current_time,
                started_at=current_time,
            )
            self.store.insert_pursuit(conn, pursuit)
            self.store.insert_incident(conn, new_incident(
                IncidentType.PURSUIT_INITIATED,
                current_time,
                sector_id=heat.current_sector,
                player_id=heat.player_id,
                details={"reason": reason, "heat": heat.heat_level},
            ))
            logger.info("Pursuit started on %s (heat %d)", heat.player_id, heat.heat_level)
            return pursuit

        return self._climb(conn, pursuit, current_time, reason)

    def _climb(
        self,
        conn: sqlite3.Connection,
        pursuit: Pursuit,
        current_time: datetime,
        reason: str,
    ) -> Pursuit:
        new_level = PURSUIT_LEVELS[pursuit.level + 1]
        updated = self.store.update_pursuit(conn, pursuit.model_copy(update={
            "level": new_level.level,
            "drones_assigned": new_level.drones,
            "enforcers_assigned": new_level.enforcers,
            "last_spotted_at": current_time,
        }))
        self.store.insert_incident(conn, new_incident(
            IncidentType.PURSUIT_ESCALATED,
            current_time,
            sector_id=pursuit.last_spotted_sector,
            player_id=pursuit.player_id,
            severity=new_level.level,
            details={"reason": reason, "from_level": pursuit.level, "to_level": new_level.level},
        ))
        logger.info(
            "Pursuit on %s escalated %d -> %d (%s)",
            pursuit.player_id, pursuit.level, new_level.level, reason,
        )
        return updated

    def _end(
        self,
        conn: sqlite3.Connection,
        pursuit: Pursuit,
        resolution: PursuitResolution,
        method: str,
        current_time: datetime,
        penalty: Optional[PursuitPenalty] = None,
    ) -> Pursuit:
        ended = self.store.update_pursuit(conn, pursuit.model_copy(update={
            "is_active": False,
            "resolution": resolution,
            "escape_method": method,
            "penalty": penalty,
            "ended_at": current_time,
        }))
        incident_type = (
            IncidentType.PURSUIT_CAUGHT
            if resolution == PursuitResolution.CAUGHT
            else IncidentType.PURSUIT_ESCAPED
        )
        self.store.insert_incident(conn, new_incident(
            incident_type,
            current_time,
            sector_id=pursuit.last_spotted_sector,
            player_id=pursuit.player_id,
            severity=pursuit.level,
            details={"method": method, "level": pursuit.level},
        ))
        return ended
