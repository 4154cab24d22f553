"""
Surveillance grid: sector state, detection lookups and sector feedback.

Behavioral Contract:
- Lookups never fail on a missing sector; defaults apply.
- update_sector_surveillance clamps into [0, 100] and logs exactly one
  surveillance_disrupted incident per call.
- sweep_sectors raises surveillance on every non-blackout sector whose
  sweep interval has elapsed, and is a no-op when re-run immediately.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from street_kernel.ecosystem.impact import clamp
from street_kernel.models.surveillance import (
    GridIncident,
    GridStatus,
    IncidentType,
    SectorSurveillance,
)
from street_kernel.storage.database import Database
from street_kernel.surveillance.detection import (
    disruption_severity,
    sector_detection_chance,
    seed_sectors,
)
from street_kernel.surveillance.store import SurveillanceStore

logger = logging.getLogger(__name__)

SWEEP_SURVEILLANCE_BOOST = 5


def new_incident(
    incident_type: IncidentType,
    current_time: datetime,
    sector_id: Optional[str] = None,
    player_id: Optional[str] = None,
    severity: int = 1,
    details: Optional[dict] = None,
) -> GridIncident:
    return GridIncident(
        id=f"inc_{uuid4().hex[:12]}",
        incident_type=incident_type,
        sector_id=sector_id,
        player_id=player_id,
        severity=severity,
        details=details or {},
        created_at=current_time,
    )


class SurveillanceGrid:
    """Sector-level surveillance state."""

    def __init__(self, db: Database, store: Optional[SurveillanceStore] = None):
        self.db = db
        self.store = store or SurveillanceStore(db)

    def seed_sectors(self, sectors: Optional[List[SectorSurveillance]] = None) -> int:
        sectors = sectors if sectors is not None else seed_sectors()

        def _seed(conn: sqlite3.Connection) -> int:
            return sum(1 for s in sectors if self.store.insert_sector(conn, s))

        inserted = self.db.run_in_transaction("sector.seed", _seed)
        if inserted:
            logger.info("Seeded %d surveillance sectors", inserted)
        return inserted

    def get_sector(self, sector_id: str) -> Optional[SectorSurveillance]:
        with self.db.read() as conn:
            return self.store.get_sector(conn, sector_id)

    def list_sectors(self) -> List[SectorSurveillance]:
        with self.db.read() as conn:
            return self.store.list_sectors(conn)

    def get_detection_chance(self, sector_id: str, player_id: Optional[str] = None) -> int:
        """Point-in-time detection chance for a player standing in a sector."""
        with self.db.read() as conn:
            sector = self.store.get_sector(conn, sector_id)
            heat = self.store.get_player_heat(conn, player_id) if player_id else None
        if sector is None:
            logger.debug("No surveillance record for %s, using defaults", sector_id)
        return sector_detection_chance(sector, heat.heat_level if heat else 0)

    def update_sector_surveillance(
        self,
        sector_id: str,
        change: int,
        reason: str,
        current_time: Optional[datetime] = None,
    ) -> SectorSurveillance:
        """Shift a sector's surveillance level (hacks, blackouts, crackdowns)."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _update(conn: sqlite3.Connection) -> SectorSurveillance:
            sector = self.store.get_sector(conn, sector_id)
            if sector is None:
                sector = SectorSurveillance(sector_id=sector_id)
                self.store.insert_sector(conn, sector)
            old_level = sector.surveillance_level
            updated = sector.model_copy(update={
                "surveillance_level": clamp(old_level + change),
            })
            self.store.update_sector(conn, updated)
            self.store.insert_incident(conn, new_incident(
                IncidentType.SURVEILLANCE_DISRUPTED,
                current_time,
                sector_id=sector_id,
                severity=disruption_severity(change),
                details={
                    "reason": reason,
                    "change": change,
                    "old_level": old_level,
                    "new_level": updated.surveillance_level,
                },
            ))
            return updated

        updated = self.db.run_in_transaction("sector.update_surveillance", _update)
        logger.info(
            "Sector %s surveillance %+d -> %d (%s)",
            sector_id, change, updated.surveillance_level, reason,
        )
        return updated

    def sweep_sectors(self, current_time: Optional[datetime] = None) -> int:
        """Periodic HNC sweep. Returns the number of sectors swept."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _sweep(conn: sqlite3.Connection) -> int:
            swept = 0
            for sector in self.store.list_sectors(conn):
                if sector.grid_status == GridStatus.BLACKOUT:
                    continue
                due_at = None
                if sector.last_sweep_at is not None:
                    due_at = sector.last_sweep_at + timedelta(
                        minutes=sector.sweep_interval_minutes
                    )
                if due_at is not None and due_at > current_time:
                    continue
                self.store.update_sector(conn, sector.model_copy(update={
                    "surveillance_level": clamp(
                        sector.surveillance_level + SWEEP_SURVEILLANCE_BOOST
                    ),
                    "last_sweep_at": current_time,
                }))
                self.store.insert_incident(conn, new_incident(
                    IncidentType.SECTOR_SWEEP,
                    current_time,
                    sector_id=sector.sector_id,
                ))
                swept += 1
            return swept

        swept = self.db.run_in_transaction("sector.sweep", _sweep)
        if swept:
            logger.info("Swept %d sectors", swept)
        return swept

    def list_incidents(
        self,
        player_id: Optional[str] = None,
        sector_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[GridIncident]:
        with self.db.read() as conn:
            return self.store.list_incidents(conn, player_id, sector_id, limit)
