"""
Surveillance store: sectors, player heat, pursuits and grid incidents.

Behavioral Contract:
- At most one active pursuit per player (enforced by a partial unique index).
- Pursuit updates are version-checked; a concurrent change raises
  StaleRecordError so the transaction is retried.
- Grid incidents are append-only.
"""

import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from street_kernel.errors import StaleRecordError
from street_kernel.models.surveillance import (
    AlertLevel,
    GridIncident,
    GridStatus,
    IncidentType,
    PlayerHeat,
    Pursuit,
    PursuitPenalty,
    PursuitResolution,
    SectorSurveillance,
)
from street_kernel.storage.database import Database, from_db_time, to_db_time

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sector_surveillance (
        sector_id TEXT PRIMARY KEY,
        surveillance_level INTEGER NOT NULL DEFAULT 50
            CHECK (surveillance_level BETWEEN 0 AND 100),
        drone_density INTEGER NOT NULL DEFAULT 5
            CHECK (drone_density BETWEEN 0 AND 20),
        scanner_coverage REAL NOT NULL DEFAULT 0.75
            CHECK (scanner_coverage BETWEEN 0 AND 1),
        hnc_presence INTEGER NOT NULL DEFAULT 50
            CHECK (hnc_presence BETWEEN 0 AND 100),
        alert_level TEXT NOT NULL DEFAULT 'normal',
        grid_status TEXT NOT NULL DEFAULT 'active',
        sweep_interval_minutes INTEGER NOT NULL DEFAULT 30,
        last_sweep_at TEXT
    );

    CREATE TABLE IF NOT EXISTS player_heat (
        player_id TEXT PRIMARY KEY,
        heat_level INTEGER NOT NULL DEFAULT 0 CHECK (heat_level BETWEEN 0 AND 100),
        current_sector TEXT NOT NULL DEFAULT 'ON-0',
        is_flagged INTEGER NOT NULL DEFAULT 0,
        flag_reason TEXT,
        flag_expires_at TEXT,
        crimes_in_session INTEGER NOT NULL DEFAULT 0,
        total_detections INTEGER NOT NULL DEFAULT 0,
        total_scans_evaded INTEGER NOT NULL DEFAULT 0,
        last_crime_detected_at TEXT
    );

    CREATE TABLE IF NOT EXISTS pursuits (
        id TEXT PRIMARY KEY,
        player_id TEXT NOT NULL,
        level INTEGER NOT NULL CHECK (level BETWEEN 1 AND 5),
        drones_assigned INTEGER NOT NULL DEFAULT 0,
        enforcers_assigned INTEGER NOT NULL DEFAULT 0,
        last_spotted_sector TEXT,
        last_spotted_at TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        resolution TEXT,
        escape_method TEXT,
        penalty_json TEXT,
        started_at TEXT NOT NULL,
        ended_at TEXT,
        version INTEGER NOT NULL DEFAULT 1
    );

    CREATE UNIQUE INDEX IF NOT EXISTS idx_pursuits_one_active
        ON pursuits(player_id) WHERE is_active = 1;
    CREATE INDEX IF NOT EXISTS idx_pursuits_active_spotted
        ON pursuits(is_active, last_spotted_at);

    CREATE TABLE IF NOT EXISTS grid_incidents (
        id TEXT PRIMARY KEY,
        incident_type TEXT NOT NULL,
        sector_id TEXT,
        player_id TEXT,
        severity INTEGER NOT NULL CHECK (severity BETWEEN 1 AND 5),
        details_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_grid_incidents_player
        ON grid_incidents(player_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_grid_incidents_sector
        ON grid_incidents(sector_id, created_at);
"""


class SurveillanceStore:
    """Repository for the surveillance grid."""

    def __init__(self, db: Database):
        self.db = db
        self.db.executescript(_SCHEMA)

    # --- Sectors ---

    def insert_sector(self, conn: sqlite3.Connection, sector: SectorSurveillance) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO sector_surveillance (
                sector_id, surveillance_level, drone_density, scanner_coverage,
                hnc_presence, alert_level, grid_status, sweep_interval_minutes,
                last_sweep_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                sector.sector_id,
                sector.surveillance_level,
                sector.drone_density,
                sector.scanner_coverage,
                sector.hnc_presence,
                sector.alert_level.value,
                sector.grid_status.value,
                sector.sweep_interval_minutes,
                to_db_time(sector.last_sweep_at),
            ),
        )
        return cursor.rowcount == 1

    def get_sector(
        self, conn: sqlite3.Connection, sector_id: str
    ) -> Optional[SectorSurveillance]:
        row = conn.execute(
            "SELECT * FROM sector_surveillance WHERE sector_id = ?", (sector_id,)
        ).fetchone()
        return self._deserialize_sector(row) if row else None

    def list_sectors(self, conn: sqlite3.Connection) -> List[SectorSurveillance]:
        rows = conn.execute(
            "SELECT * FROM sector_surveillance ORDER BY CAST(substr(sector_id, 4) AS INTEGER), sector_id"
        ).fetchall()
        return [self._deserialize_sector(r) for r in rows]

    def update_sector(self, conn: sqlite3.Connection, sector: SectorSurveillance) -> None:
        conn.execute(
            """
            UPDATE sector_surveillance SET
                surveillance_level = ?, drone_density = ?, scanner_coverage = ?,
                hnc_presence = ?, alert_level = ?, grid_status = ?,
                sweep_interval_minutes = ?, last_sweep_at = ?
            WHERE sector_id = ?
            """,
            (
                sector.surveillance_level,
                sector.drone_density,
                sector.scanner_coverage,
                sector.hnc_presence,
                sector.alert_level.value,
                sector.grid_status.value,
                sector.sweep_interval_minutes,
                to_db_time(sector.last_sweep_at),
                sector.sector_id,
            ),
        )

    # --- Player heat ---

    def get_player_heat(
        self, conn: sqlite3.Connection, player_id: str
    ) -> Optional[PlayerHeat]:
        row = conn.execute(
            "SELECT * FROM player_heat WHERE player_id = ?", (player_id,)
        ).fetchone()
        return self._deserialize_heat(row) if row else None

    def save_player_heat(self, conn: sqlite3.Connection, heat: PlayerHeat) -> None:
        conn.execute(
            """
            INSERT INTO player_heat (
                player_id, heat_level, current_sector, is_flagged, flag_reason,
                flag_expires_at, crimes_in_session, total_detections,
                total_scans_evaded, last_crime_detected_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(player_id) DO UPDATE SET
                heat_level = excluded.heat_level,
                current_sector = excluded.current_sector,
                is_flagged = excluded.is_flagged,
                flag_reason = excluded.flag_reason,
                flag_expires_at = excluded.flag_expires_at,
                crimes_in_session = excluded.crimes_in_session,
                total_detections = excluded.total_detections,
                total_scans_evaded = excluded.total_scans_evaded,
                last_crime_detected_at = excluded.last_crime_detected_at
            """,
            (
                heat.player_id,
                heat.heat_level,
                heat.current_sector,
                1 if heat.is_flagged else 0,
                heat.flag_reason,
                to_db_time(heat.flag_expires_at),
                heat.crimes_in_session,
                heat.total_detections,
                heat.total_scans_evaded,
                to_db_time(heat.last_crime_detected_at),
            ),
        )

    def decay_idle_heat(self, conn: sqlite3.Connection, step: int) -> int:
        """Cool every player that is not currently being pursued."""
        cursor = conn.execute(
            """
            UPDATE player_heat SET heat_level = MAX(0, heat_level - ?)
            WHERE heat_level > 0
              AND player_id NOT IN (SELECT player_id FROM pursuits WHERE is_active = 1)
            """,
            (step,),
        )
        return cursor.rowcount

    def clear_expired_flags(self, conn: sqlite3.Connection, now: datetime) -> int:
        cursor = conn.execute(
            """
            UPDATE player_heat
            SET is_flagged = 0, flag_reason = NULL, flag_expires_at = NULL
            WHERE is_flagged = 1 AND flag_expires_at IS NOT NULL AND flag_expires_at < ?
            """,
            (to_db_time(now),),
        )
        return cursor.rowcount

    # --- Pursuits ---

    def get_active_pursuit(
        self, conn: sqlite3.Connection, player_id: str
    ) -> Optional[Pursuit]:
        row = conn.execute(
            "SELECT * FROM pursuits WHERE player_id = ? AND is_active = 1",
            (player_id,),
        ).fetchone()
        return self._deserialize_pursuit(row) if row else None

    def get_pursuit(self, conn: sqlite3.Connection, pursuit_id: str) -> Optional[Pursuit]:
        row = conn.execute("SELECT * FROM pursuits WHERE id = ?", (pursuit_id,)).fetchone()
        return self._deserialize_pursuit(row) if row else None

    def stale_pursuit_ids(self, conn: sqlite3.Connection, cutoff: datetime) -> List[str]:
        rows = conn.execute(
            """
            SELECT id FROM pursuits
            WHERE is_active = 1 AND last_spotted_at < ?
            ORDER BY last_spotted_at
            """,
            (to_db_time(cutoff),),
        ).fetchall()
        return [r["id"] for r in rows]

    def pursuit_history(
        self, conn: sqlite3.Connection, player_id: str, limit: int = 20
    ) -> List[Pursuit]:
        rows = conn.execute(
            """
            SELECT * FROM pursuits WHERE player_id = ?
            ORDER BY started_at DESC LIMIT ?
            """,
            (player_id, limit),
        ).fetchall()
        return [self._deserialize_pursuit(r) for r in rows]

    def insert_pursuit(self, conn: sqlite3.Connection, pursuit: Pursuit) -> None:
        conn.execute(
            """
            INSERT INTO pursuits (
                id, player_id, level, drones_assigned, enforcers_assigned,
                last_spotted_sector, last_spotted_at, is_active, resolution,
                escape_method, penalty_json, started_at, ended_at, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                pursuit.id,
                pursuit.player_id,
                pursuit.level,
                pursuit.drones_assigned,
                pursuit.enforcers_assigned,
                pursuit.last_spotted_sector,
                to_db_time(pursuit.last_spotted_at),
                1 if pursuit.is_active else 0,
                pursuit.resolution.value if pursuit.resolution else None,
                pursuit.escape_method,
                pursuit.penalty.model_dump_json() if pursuit.penalty else None,
                to_db_time(pursuit.started_at),
                to_db_time(pursuit.ended_at),
                pursuit.version,
            ),
        )

    def update_pursuit(self, conn: sqlite3.Connection, pursuit: Pursuit) -> Pursuit:
        """Write back a pursuit read at pursuit.version. Returns the bumped copy."""
        cursor = conn.execute(
            """
            UPDATE pursuits SET
                level = ?, drones_assigned = ?, enforcers_assigned = ?,
                last_spotted_sector = ?, last_spotted_at = ?, is_active = ?,
                resolution = ?, escape_method = ?, penalty_json = ?, ended_at = ?,
                version = version + 1
            WHERE id = ? AND version = ?
            """,
            (
                pursuit.level,
                pursuit.drones_assigned,
                pursuit.enforcers_assigned,
                pursuit.last_spotted_sector,
                to_db_time(pursuit.last_spotted_at),
                1 if pursuit.is_active else 0,
                pursuit.resolution.value if pursuit.resolution else None,
                pursuit.escape_method,
                pursuit.penalty.model_dump_json() if pursuit.penalty else None,
                to_db_time(pursuit.ended_at),
                pursuit.id,
                pursuit.version,
            ),
        )
        if cursor.rowcount != 1:
            raise StaleRecordError("pursuits", pursuit.id, pursuit.version)
        return pursuit.model_copy(update={"version": pursuit.version + 1})

    # --- Incidents ---

    def insert_incident(self, conn: sqlite3.Connection, incident: GridIncident) -> None:
        conn.execute(
            """
            INSERT INTO grid_incidents (
                id, incident_type, sector_id, player_id, severity, details_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                incident.id,
                incident.incident_type.value,
                incident.sector_id,
                incident.player_id,
                incident.severity,
                json.dumps(incident.details, default=str),
                to_db_time(incident.created_at),
            ),
        )

    def list_incidents(
        self,
        conn: sqlite3.Connection,
        player_id: Optional[str] = None,
        sector_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[GridIncident]:
        query = "SELECT * FROM grid_incidents WHERE 1=1"
        params: list = []
        if player_id:
            query += " AND player_id = ?"
            params.append(player_id)
        if sector_id:
            query += " AND sector_id = ?"
            params.append(sector_id)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        rows = conn.execute(query, params).fetchall()
        return [self._deserialize_incident(r) for r in rows]

    # --- Row mapping ---

    def _deserialize_sector(self, row: sqlite3.Row) -> SectorSurveillance:
        return SectorSurveillance(
            sector_id=row["sector_id"],
            surveillance_level=row["surveillance_level"],
            drone_density=row["drone_density"],
            scanner_coverage=row["scanner_coverage"],
            hnc_presence=row["hnc_presence"],
            alert_level=AlertLevel(row["alert_level"]),
            grid_status=GridStatus(row["grid_status"]),
            sweep_interval_minutes=row["sweep_interval_minutes"],
            last_sweep_at=from_db_time(row["last_sweep_at"]),
        )

    def _deserialize_heat(self, row: sqlite3.Row) -> PlayerHeat:
        return PlayerHeat(
            player_id=row["player_id"],
            heat_level=row["heat_level"],
            current_sector=row["current_sector"],
            is_flagged=bool(row["is_flagged"]),
            flag_reason=row["flag_reason"],
            flag_expires_at=from_db_time(row["flag_expires_at"]),
            crimes_in_session=row["crimes_in_session"],
            total_detections=row["total_detections"],
            total_scans_evaded=row["total_scans_evaded"],
            last_crime_detected_at=from_db_time(row["last_crime_detected_at"]),
        )

    def _deserialize_pursuit(self, row: sqlite3.Row) -> Pursuit:
        penalty = None
        if row["penalty_json"]:
            penalty = PursuitPenalty.model_validate_json(row["penalty_json"])
        return Pursuit(
            id=row["id"],
            player_id=row["player_id"],
            level=row["level"],
            drones_assigned=row["drones_assigned"],
            enforcers_assigned=row["enforcers_assigned"],
            last_spotted_sector=row["last_spotted_sector"],
            last_spotted_at=from_db_time(row["last_spotted_at"]),
            is_active=bool(row["is_active"]),
            resolution=PursuitResolution(row["resolution"]) if row["resolution"] else None,
            escape_method=row["escape_method"],
            penalty=penalty,
            started_at=from_db_time(row["started_at"]),
            ended_at=from_db_time(row["ended_at"]),
            version=row["version"],
        )

    def _deserialize_incident(self, row: sqlite3.Row) -> GridIncident:
        return GridIncident(
            id=row["id"],
            incident_type=IncidentType(row["incident_type"]),
            sector_id=row["sector_id"],
            player_id=row["player_id"],
            severity=row["severity"],
            details=json.loads(row["details_json"]),
            created_at=from_db_time(row["created_at"]),
        )
