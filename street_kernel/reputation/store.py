"""
Reputation store: one row per (player, relationship type, target) plus an
append-only audit log.
"""

import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from street_kernel.errors import StaleRecordError
from street_kernel.models.reputation import (
    RelationshipType,
    ReputationDimension,
    ReputationEvent,
    ReputationRecord,
)
from street_kernel.storage.database import Database, from_db_time, to_db_time

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS player_reputations (
        id TEXT PRIMARY KEY,
        player_id TEXT NOT NULL,
        relationship_type TEXT NOT NULL,
        target_id TEXT NOT NULL,
        respect INTEGER NOT NULL DEFAULT 0 CHECK (respect BETWEEN -100 AND 100),
        fear INTEGER NOT NULL DEFAULT 0 CHECK (fear BETWEEN -100 AND 100),
        trust INTEGER NOT NULL DEFAULT 0 CHECK (trust BETWEEN -100 AND 100),
        heat INTEGER NOT NULL DEFAULT 0 CHECK (heat BETWEEN 0 AND 100),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        UNIQUE (player_id, relationship_type, target_id)
    );

    CREATE INDEX IF NOT EXISTS idx_reputations_player
        ON player_reputations(player_id, relationship_type);
    CREATE INDEX IF NOT EXISTS idx_reputations_heat
        ON player_reputations(heat);

    CREATE TABLE IF NOT EXISTS reputation_events (
        id TEXT PRIMARY KEY,
        reputation_id TEXT NOT NULL REFERENCES player_reputations(id),
        dimension TEXT NOT NULL,
        change_amount INTEGER NOT NULL,
        old_value INTEGER NOT NULL,
        new_value INTEGER NOT NULL,
        reason TEXT NOT NULL,
        related_player_id TEXT,
        clamped INTEGER NOT NULL DEFAULT 0,
        metadata_json TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_reputation_events_record
        ON reputation_events(reputation_id, created_at);
"""

_ORDER_BY_COMBINED = "ORDER BY (respect + fear + trust - heat) DESC, target_id"


class ReputationStore:
    """Repository for reputation records and their events."""

    def __init__(self, db: Database):
        self.db = db
        self.db.executescript(_SCHEMA)

    def get_record(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        relationship_type: RelationshipType,
        target_id: str,
    ) -> Optional[ReputationRecord]:
        row = conn.execute(
            """
            SELECT * FROM player_reputations
            WHERE player_id = ? AND relationship_type = ? AND target_id = ?
            """,
            (player_id, relationship_type.value, target_id),
        ).fetchone()
        return self._deserialize_record(row) if row else None

    def insert_record(self, conn: sqlite3.Connection, record: ReputationRecord) -> None:
        conn.execute(
            """
            INSERT INTO player_reputations (
                id, player_id, relationship_type, target_id, respect, fear,
                trust, heat, created_at, updated_at, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.player_id,
                record.relationship_type.value,
                record.target_id,
                record.respect,
                record.fear,
                record.trust,
                record.heat,
                to_db_time(record.created_at),
                to_db_time(record.updated_at),
                record.version,
            ),
        )

    def update_dimension(
        self,
        conn: sqlite3.Connection,
        record: ReputationRecord,
        dimension: ReputationDimension,
        new_value: int,
        updated_at: datetime,
    ) -> ReputationRecord:
        """Version-checked write of one dimension."""
        # Column name comes from the closed enum, never from user input.
        cursor = conn.execute(
            f"""
            UPDATE player_reputations
            SET {dimension.value} = ?, updated_at = ?, version = version + 1
            WHERE id = ? AND version = ?
            """,
            (new_value, to_db_time(updated_at), record.id, record.version),
        )
        if cursor.rowcount != 1:
            raise StaleRecordError("player_reputations", record.id, record.version)
        return record.model_copy(update={
            dimension.value: new_value,
            "updated_at": updated_at,
            "version": record.version + 1,
        })

    def insert_event(self, conn: sqlite3.Connection, event: ReputationEvent) -> None:
        conn.execute(
            """
            INSERT INTO reputation_events (
                id, reputation_id, dimension, change_amount, old_value, new_value,
                reason, related_player_id, clamped, metadata_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.reputation_id,
                event.dimension.value,
                event.change_amount,
                event.old_value,
                event.new_value,
                event.reason,
                event.related_player_id,
                1 if event.clamped else 0,
                json.dumps(event.metadata, default=str),
                to_db_time(event.created_at),
            ),
        )

    def list_for_player(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        relationship_type: Optional[RelationshipType] = None,
    ) -> List[ReputationRecord]:
        if relationship_type is None:
            rows = conn.execute(
                f"SELECT * FROM player_reputations WHERE player_id = ? {_ORDER_BY_COMBINED}",
                (player_id,),
            ).fetchall()
        else:
            rows = conn.execute(
                f"""
                SELECT * FROM player_reputations
                WHERE player_id = ? AND relationship_type = ? {_ORDER_BY_COMBINED}
                """,
                (player_id, relationship_type.value),
            ).fetchall()
        return [self._deserialize_record(r) for r in rows]

    def list_events(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        relationship_type: Optional[RelationshipType] = None,
        target_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ReputationEvent]:
        query = """
            SELECT e.* FROM reputation_events e
            JOIN player_reputations r ON r.id = e.reputation_id
            WHERE r.player_id = ?
        """
        params: list = [player_id]
        if relationship_type is not None:
            query += " AND r.relationship_type = ?"
            params.append(relationship_type.value)
        if target_id is not None:
            query += " AND r.target_id = ?"
            params.append(target_id)
        query += " ORDER BY e.created_at DESC, e.rowid DESC LIMIT ?"
        params.append(limit)
        rows = conn.execute(query, params).fetchall()
        return [self._deserialize_event(r) for r in rows]

    def count_events(self, conn: sqlite3.Connection, reputation_id: str) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS cnt FROM reputation_events WHERE reputation_id = ?",
            (reputation_id,),
        ).fetchone()
        return row["cnt"]

    def decay_heat(
        self,
        conn: sqlite3.Connection,
        step: int,
        floor: int,
        updated_at: datetime,
    ) -> int:
        cursor = conn.execute(
            """
            UPDATE player_reputations
            SET heat = MAX(?, heat - ?), updated_at = ?, version = version + 1
            WHERE heat > ?
            """,
            (floor, step, to_db_time(updated_at), floor),
        )
        return cursor.rowcount

    def _deserialize_record(self, row: sqlite3.Row) -> ReputationRecord:
        return ReputationRecord(
            id=row["id"],
            player_id=row["player_id"],
            relationship_type=RelationshipType(row["relationship_type"]),
            target_id=row["target_id"],
            respect=row["respect"],
            fear=row["fear"],
            trust=row["trust"],
            heat=row["heat"],
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
            version=row["version"],
        )

    def _deserialize_event(self, row: sqlite3.Row) -> ReputationEvent:
        return ReputationEvent(
            id=row["id"],
            reputation_id=row["reputation_id"],
            dimension=ReputationDimension(row["dimension"]),
            change_amount=row["change_amount"],
            old_value=row["old_value"],
            new_value=row["new_value"],
            reason=row["reason"],
            related_player_id=row["related_player_id"],
            clamped=bool(row["clamped"]),
            metadata=json.loads(row["metadata_json"]),
            created_at=from_db_time(row["created_at"]),
        )
