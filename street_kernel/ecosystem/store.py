"""
District store: district state rows and the append-only event log.

Behavioral Contract:
- District rows are created at seed time and never deleted.
- Events are append-only; the only column ever updated is the processed
  flag (and its timestamp), and only from 0 to 1.
- Active events are closed by setting ended_at once; they are never deleted.
- Every method takes the caller's connection so the caller owns the
  transaction boundary.
"""

import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from street_kernel.models.district import (
    ActiveDistrictEvent,
    ActiveEventType,
    DistrictEvent,
    DistrictState,
    DistrictStatus,
    EventEndReason,
    MetricImpact,
)
from street_kernel.models.payloads import EventPayload
from street_kernel.storage.database import Database, from_db_time, to_db_time

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS districts (
        district_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        crime_index INTEGER NOT NULL DEFAULT 50
            CHECK (crime_index BETWEEN 0 AND 100),
        police_presence INTEGER NOT NULL DEFAULT 50
            CHECK (police_presence BETWEEN 0 AND 100),
        property_values INTEGER NOT NULL DEFAULT 50
            CHECK (property_values BETWEEN 0 AND 100),
        business_health INTEGER NOT NULL DEFAULT 50
            CHECK (business_health BETWEEN 0 AND 100),
        street_activity INTEGER NOT NULL DEFAULT 50
            CHECK (street_activity BETWEEN 0 AND 100),
        heat_level INTEGER NOT NULL DEFAULT 0
            CHECK (heat_level BETWEEN 0 AND 100),
        crew_tension INTEGER NOT NULL DEFAULT 0
            CHECK (crew_tension BETWEEN 0 AND 100),
        status TEXT NOT NULL DEFAULT 'stable',
        last_calculated_at TEXT,
        last_status_change_at TEXT
    );

    CREATE TABLE IF NOT EXISTS district_events (
        id TEXT PRIMARY KEY,
        district_id TEXT NOT NULL REFERENCES districts(district_id),
        event_type TEXT NOT NULL,
        severity INTEGER NOT NULL CHECK (severity BETWEEN 1 AND 10),
        actor_player_id TEXT,
        target_player_id TEXT,
        actor_crew_id TEXT,
        payload_json TEXT NOT NULL,
        crime_impact INTEGER NOT NULL DEFAULT 0,
        police_impact INTEGER NOT NULL DEFAULT 0,
        property_impact INTEGER NOT NULL DEFAULT 0,
        business_impact INTEGER NOT NULL DEFAULT 0,
        activity_impact INTEGER NOT NULL DEFAULT 0,
        processed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        processed_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_district_events_unprocessed
        ON district_events(processed, district_id);
    CREATE INDEX IF NOT EXISTS idx_district_events_district
        ON district_events(district_id, created_at);

    CREATE TABLE IF NOT EXISTS district_active_events (
        id TEXT PRIMARY KEY,
        district_id TEXT NOT NULL REFERENCES districts(district_id),
        event_type TEXT NOT NULL,
        triggered_by TEXT NOT NULL,
        trigger_metric TEXT,
        trigger_value INTEGER,
        effects_json TEXT NOT NULL,
        duration_minutes INTEGER NOT NULL,
        started_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        ended_at TEXT,
        ended_by TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_district_active_events_open
        ON district_active_events(district_id, event_type, ended_at);
"""


class DistrictStore:
    """Repository for districts and district events."""

    def __init__(self, db: Database):
        self.db = db
        self.db.executescript(_SCHEMA)

    # --- Districts ---

    def insert_district(self, conn: sqlite3.Connection, state: DistrictState) -> bool:
        """Insert a district if it is not there yet. Returns True if inserted."""
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO districts (
                district_id, name, crime_index, police_presence, property_values,
                business_health, street_activity, heat_level, crew_tension,
                status, last_calculated_at, last_status_change_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                state.district_id,
                state.name,
                state.crime_index,
                state.police_presence,
                state.property_values,
                state.business_health,
                state.street_activity,
                state.heat_level,
                state.crew_tension,
                state.status.value,
                to_db_time(state.last_calculated_at),
                to_db_time(state.last_status_change_at),
            ),
        )
        return cursor.rowcount == 1

    def get_district(
        self, conn: sqlite3.Connection, district_id: str
    ) -> Optional[DistrictState]:
        row = conn.execute(
            "SELECT * FROM districts WHERE district_id = ?", (district_id,)
        ).fetchone()
        return self._deserialize_district(row) if row else None

    def list_districts(self, conn: sqlite3.Connection) -> List[DistrictState]:
        rows = conn.execute("SELECT * FROM districts ORDER BY district_id").fetchall()
        return [self._deserialize_district(r) for r in rows]

    def update_district(self, conn: sqlite3.Connection, state: DistrictState) -> None:
        conn.execute(
            """
            UPDATE districts SET
                crime_index = ?, police_presence = ?, property_values = ?,
                business_health = ?, street_activity = ?, heat_level = ?,
                crew_tension = ?, status = ?, last_calculated_at = ?,
                last_status_change_at = ?
            WHERE district_id = ?
            """,
            (
                state.crime_index,
                state.police_presence,
                state.property_values,
                state.business_health,
                state.street_activity,
                state.heat_level,
                state.crew_tension,
                state.status.value,
                to_db_time(state.last_calculated_at),
                to_db_time(state.last_status_change_at),
                state.district_id,
            ),
        )

    # --- Events ---

    def insert_event(self, conn: sqlite3.Connection, event: DistrictEvent) -> None:
        impact = event.impact
        conn.execute(
            """
            INSERT INTO district_events (
                id, district_id, event_type, severity, actor_player_id,
                target_player_id, actor_crew_id, payload_json, crime_impact,
                police_impact, property_impact, business_impact, activity_impact,
                processed, created_at, processed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.district_id,
                event.event_type.value,
                event.severity,
                event.actor_player_id,
                event.target_player_id,
                event.actor_crew_id,
                event.payload.model_dump_json(),
                impact.crime_index,
                impact.police_presence,
                impact.property_values,
                impact.business_health,
                impact.street_activity,
                1 if event.processed else 0,
                to_db_time(event.created_at),
                to_db_time(event.processed_at),
            ),
        )

    def districts_with_unprocessed_events(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            """
            SELECT DISTINCT district_id FROM district_events
            WHERE processed = 0 ORDER BY district_id
            """
        ).fetchall()
        return [r["district_id"] for r in rows]

    def unprocessed_events(
        self, conn: sqlite3.Connection, district_id: str
    ) -> List[DistrictEvent]:
        rows = conn.execute(
            """
            SELECT * FROM district_events
            WHERE district_id = ? AND processed = 0
            ORDER BY created_at, id
            """,
            (district_id,),
        ).fetchall()
        return [self._deserialize_event(r) for r in rows]

    def mark_processed(
        self,
        conn: sqlite3.Connection,
        event_ids: List[str],
        processed_at: datetime,
    ) -> int:
        """Flag exactly these events. Already-processed rows are left alone."""
        marked = 0
        for event_id in event_ids:
            cursor = conn.execute(
                """
                UPDATE district_events SET processed = 1, processed_at = ?
                WHERE id = ? AND processed = 0
                """,
                (to_db_time(processed_at), event_id),
            )
            marked += cursor.rowcount
        return marked

    def recent_events(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        limit: int = 50,
    ) -> List[DistrictEvent]:
        rows = conn.execute(
            """
            SELECT * FROM district_events WHERE district_id = ?
            ORDER BY created_at DESC, id DESC LIMIT ?
            """,
            (district_id, limit),
        ).fetchall()
        return [self._deserialize_event(r) for r in rows]

    def count_unprocessed(self, conn: sqlite3.Connection) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS cnt FROM district_events WHERE processed = 0"
        ).fetchone()
        return row["cnt"]

    # --- Active events ---

    def insert_active_event(
        self, conn: sqlite3.Connection, event: ActiveDistrictEvent
    ) -> None:
        conn.execute(
            """
            INSERT INTO district_active_events (
                id, district_id, event_type, triggered_by, trigger_metric,
                trigger_value, effects_json, duration_minutes, started_at,
                expires_at, ended_at, ended_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.district_id,
                event.event_type.value,
                event.triggered_by.value,
                event.trigger_metric,
                event.trigger_value,
                json.dumps(event.effects),
                event.duration_minutes,
                to_db_time(event.started_at),
                to_db_time(event.expires_at),
                to_db_time(event.ended_at),
                event.ended_by.value if event.ended_by else None,
            ),
        )

    def running_active_events(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        at: datetime,
        event_type: Optional[ActiveEventType] = None,
    ) -> List[ActiveDistrictEvent]:
        """Events not ended and not past their expiry, oldest first."""
        query = """
            SELECT * FROM district_active_events
            WHERE district_id = ? AND ended_at IS NULL AND expires_at > ?
        """
        params: list = [district_id, to_db_time(at)]
        if event_type is not None:
            query += " AND event_type = ?"
            params.append(event_type.value)
        query += " ORDER BY started_at, id"
        rows = conn.execute(query, params).fetchall()
        return [self._deserialize_active_event(r) for r in rows]

    def last_active_event_end(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        event_type: ActiveEventType,
    ) -> Optional[datetime]:
        """When this event type last stopped (or is due to stop) in the district."""
        row = conn.execute(
            """
            SELECT MAX(COALESCE(ended_at, expires_at)) AS last_end
            FROM district_active_events
            WHERE district_id = ? AND event_type = ?
            """,
            (district_id, event_type.value),
        ).fetchone()
        return from_db_time(row["last_end"])

    def end_active_events(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        event_type: ActiveEventType,
        ended_by: EventEndReason,
        at: datetime,
    ) -> int:
        cursor = conn.execute(
            """
            UPDATE district_active_events SET ended_at = ?, ended_by = ?
            WHERE district_id = ? AND event_type = ? AND ended_at IS NULL
            """,
            (to_db_time(at), ended_by.value, district_id, event_type.value),
        )
        return cursor.rowcount

    def expire_active_events(self, conn: sqlite3.Connection, at: datetime) -> int:
        cursor = conn.execute(
            """
            UPDATE district_active_events SET ended_at = expires_at, ended_by = ?
            WHERE ended_at IS NULL AND expires_at <= ?
            """,
            (EventEndReason.EXPIRED.value, to_db_time(at)),
        )
        return cursor.rowcount

    def active_event_history(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        limit: int = 50,
    ) -> List[ActiveDistrictEvent]:
        rows = conn.execute(
            """
            SELECT * FROM district_active_events WHERE district_id = ?
            ORDER BY started_at DESC, id DESC LIMIT ?
            """,
            (district_id, limit),
        ).fetchall()
        return [self._deserialize_active_event(r) for r in rows]

    # --- Row mapping ---

    def _deserialize_district(self, row: sqlite3.Row) -> DistrictState:
        return DistrictState(
            district_id=row["district_id"],
            name=row["name"],
            crime_index=row["crime_index"],
            police_presence=row["police_presence"],
            property_values=row["property_values"],
            business_health=row["business_health"],
            street_activity=row["street_activity"],
            heat_level=row["heat_level"],
            crew_tension=row["crew_tension"],
            status=DistrictStatus(row["status"]),
            last_calculated_at=from_db_time(row["last_calculated_at"]),
            last_status_change_at=from_db_time(row["last_status_change_at"]),
        )

    def _deserialize_event(self, row: sqlite3.Row) -> DistrictEvent:
        return DistrictEvent(
            id=row["id"],
            district_id=row["district_id"],
            event_type=row["event_type"],
            severity=row["severity"],
            actor_player_id=row["actor_player_id"],
            target_player_id=row["target_player_id"],
            actor_crew_id=row["actor_crew_id"],
            payload=EventPayload.model_validate_json(row["payload_json"]),
            impact=MetricImpact(
                crime_index=row["crime_impact"],
                police_presence=row["police_impact"],
                property_values=row["property_impact"],
                business_health=row["business_impact"],
                street_activity=row["activity_impact"],
            ),
            processed=bool(row["processed"]),
            created_at=from_db_time(row["created_at"]),
            processed_at=from_db_time(row["processed_at"]),
        )

    def _deserialize_active_event(self, row: sqlite3.Row) -> ActiveDistrictEvent:
        return ActiveDistrictEvent(
            id=row["id"],
            district_id=row["district_id"],
            event_type=row["event_type"],
            triggered_by=row["triggered_by"],
            trigger_metric=row["trigger_metric"],
            trigger_value=row["trigger_value"],
            effects=json.loads(row["effects_json"]),
            duration_minutes=row["duration_minutes"],
            started_at=from_db_time(row["started_at"]),
            expires_at=from_db_time(row["expires_at"]),
            ended_at=from_db_time(row["ended_at"]),
            ended_by=row["ended_by"],
        )
