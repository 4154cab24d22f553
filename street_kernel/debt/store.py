"""
Debt store: debts, transfer/default history and marketplace offers.

Behavioral Contract:
- Debt rows are version-checked on update.
- Transfers and defaults are append-only history.
- At most one open offer per debt (partial unique index).
"""

import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from street_kernel.errors import StaleRecordError
from street_kernel.models.debt import (
    AskingPriceType,
    Debt,
    DebtDefault,
    DebtOffer,
    DebtStatus,
    DebtSummary,
    DebtTransfer,
    DebtType,
    OfferStatus,
)
from street_kernel.storage.database import Database, from_db_time, to_db_time

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS debts (
        id TEXT PRIMARY KEY,
        creditor_id TEXT NOT NULL,
        debtor_id TEXT NOT NULL,
        debt_type TEXT NOT NULL,
        description TEXT NOT NULL,
        value INTEGER NOT NULL CHECK (value BETWEEN 1 AND 10),
        original_value INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'outstanding',
        context_json TEXT NOT NULL,
        due_date TEXT,
        transferred_from_id TEXT,
        created_at TEXT NOT NULL,
        called_in_at TEXT,
        resolved_at TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        CHECK (creditor_id <> debtor_id)
    );

    CREATE INDEX IF NOT EXISTS idx_debts_creditor ON debts(creditor_id, status);
    CREATE INDEX IF NOT EXISTS idx_debts_debtor ON debts(debtor_id, status);
    CREATE INDEX IF NOT EXISTS idx_debts_due ON debts(status, due_date);

    CREATE TABLE IF NOT EXISTS debt_transfers (
        id TEXT PRIMARY KEY,
        debt_id TEXT NOT NULL REFERENCES debts(id),
        from_creditor_id TEXT NOT NULL,
        to_creditor_id TEXT NOT NULL,
        reason TEXT,
        value_at_transfer INTEGER NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_debt_transfers_debt ON debt_transfers(debt_id);

    CREATE TABLE IF NOT EXISTS debt_defaults (
        id TEXT PRIMARY KEY,
        debt_id TEXT NOT NULL REFERENCES debts(id),
        debtor_id TEXT NOT NULL,
        creditor_id TEXT NOT NULL,
        reason TEXT,
        trust_penalty INTEGER NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_debt_defaults_debtor ON debt_defaults(debtor_id);

    CREATE TABLE IF NOT EXISTS debt_offers (
        id TEXT PRIMARY KEY,
        debt_id TEXT NOT NULL REFERENCES debts(id),
        offerer_id TEXT NOT NULL,
        asking_price_type TEXT NOT NULL,
        asking_price_value INTEGER NOT NULL,
        asking_price_details TEXT,
        status TEXT NOT NULL DEFAULT 'open',
        accepted_by_id TEXT,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL,
        resolved_at TEXT
    );

    CREATE UNIQUE INDEX IF NOT EXISTS idx_debt_offers_one_open
        ON debt_offers(debt_id) WHERE status = 'open';
    CREATE INDEX IF NOT EXISTS idx_debt_offers_open
        ON debt_offers(status, expires_at);
"""

_ACTIVE = (DebtStatus.OUTSTANDING.value, DebtStatus.CALLED_IN.value)


class DebtStore:
    """Repository for the debt economy."""

    def __init__(self, db: Database):
        self.db = db
        self.db.executescript(_SCHEMA)

    # --- Debts ---

    def insert_debt(self, conn: sqlite3.Connection, debt: Debt) -> None:
        conn.execute(
            """
            INSERT INTO debts (
                id, creditor_id, debtor_id, debt_type, description, value,
                original_value, status, context_json, due_date,
                transferred_from_id, created_at, called_in_at, resolved_at, version
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                debt.id,
                debt.creditor_id,
                debt.debtor_id,
                debt.debt_type.value,
                debt.description,
                debt.value,
                debt.original_value,
                debt.status.value,
                json.dumps(debt.context, default=str),
                to_db_time(debt.due_date),
                debt.transferred_from_id,
                to_db_time(debt.created_at),
                to_db_time(debt.called_in_at),
                to_db_time(debt.resolved_at),
                debt.version,
            ),
        )

    def get_debt(self, conn: sqlite3.Connection, debt_id: str) -> Optional[Debt]:
        row = conn.execute("SELECT * FROM debts WHERE id = ?", (debt_id,)).fetchone()
        return self._deserialize_debt(row) if row else None

    def update_debt(self, conn: sqlite3.Connection, debt: Debt) -> Debt:
        """Write back a debt read at debt.version. Returns the bumped copy."""
        cursor = conn.execute(
            """
            UPDATE debts SET
                creditor_id = ?, status = ?, value = ?, context_json = ?,
                transferred_from_id = ?, called_in_at = ?, resolved_at = ?,
                version = version + 1
            WHERE id = ? AND version = ?
            """,
            (
                debt.creditor_id,
                debt.status.value,
                debt.value,
                json.dumps(debt.context, default=str),
                debt.transferred_from_id,
                to_db_time(debt.called_in_at),
                to_db_time(debt.resolved_at),
                debt.id,
                debt.version,
            ),
        )
        if cursor.rowcount != 1:
            raise StaleRecordError("debts", debt.id, debt.version)
        return debt.model_copy(update={"version": debt.version + 1})

    def list_debts_for_player(
        self,
        conn: sqlite3.Connection,
        player_id: str,
        as_creditor: bool,
        active_only: bool = True,
    ) -> List[Debt]:
        column = "creditor_id" if as_creditor else "debtor_id"
        query = f"SELECT * FROM debts WHERE {column} = ?"
        params: list = [player_id]
        if active_only:
            query += " AND status IN (?, ?)"
            params.extend(_ACTIVE)
        query += " ORDER BY created_at DESC"
        rows = conn.execute(query, params).fetchall()
        return [self._deserialize_debt(r) for r in rows]

    def list_debts_between(
        self, conn: sqlite3.Connection, player_a: str, player_b: str
    ) -> List[Debt]:
        rows = conn.execute(
            """
            SELECT * FROM debts
            WHERE (creditor_id = ? AND debtor_id = ?)
               OR (creditor_id = ? AND debtor_id = ?)
            ORDER BY created_at DESC
            """,
            (player_a, player_b, player_b, player_a),
        ).fetchall()
        return [self._deserialize_debt(r) for r in rows]

    def list_overdue(self, conn: sqlite3.Connection, now: datetime) -> List[Debt]:
        rows = conn.execute(
            """
            SELECT * FROM debts
            WHERE status IN (?, ?) AND due_date IS NOT NULL AND due_date < ?
            ORDER BY due_date
            """,
            (*_ACTIVE, to_db_time(now)),
        ).fetchall()
        return [self._deserialize_debt(r) for r in rows]

    def summarize(self, conn: sqlite3.Connection, player_id: str) -> DebtSummary:
        owed = conn.execute(
            """
            SELECT COUNT(*) AS cnt, COALESCE(SUM(value), 0) AS total FROM debts
            WHERE debtor_id = ? AND status IN (?, ?)
            """,
            (player_id, *_ACTIVE),
        ).fetchone()
        held = conn.execute(
            """
            SELECT COUNT(*) AS cnt, COALESCE(SUM(value), 0) AS total FROM debts
            WHERE creditor_id = ? AND status IN (?, ?)
            """,
            (player_id, *_ACTIVE),
        ).fetchone()
        resolved = conn.execute(
            """
            SELECT
                SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS defaults_count,
                SUM(CASE WHEN status = ? THEN 1 ELSE 0 END) AS fulfilled_count
            FROM debts WHERE debtor_id = ?
            """,
            (DebtStatus.DEFAULTED.value, DebtStatus.FULFILLED.value, player_id),
        ).fetchone()
        return DebtSummary(
            player_id=player_id,
            owed_count=owed["cnt"],
            owed_value=owed["total"],
            held_count=held["cnt"],
            held_value=held["total"],
            defaults_count=resolved["defaults_count"] or 0,
            fulfilled_count=resolved["fulfilled_count"] or 0,
        )

    # --- History ---

    def insert_transfer(self, conn: sqlite3.Connection, transfer: DebtTransfer) -> None:
        conn.execute(
            """
            INSERT INTO debt_transfers (
                id, debt_id, from_creditor_id, to_creditor_id, reason,
                value_at_transfer, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                transfer.id,
                transfer.debt_id,
                transfer.from_creditor_id,
                transfer.to_creditor_id,
                transfer.reason,
                transfer.value_at_transfer,
                to_db_time(transfer.created_at),
            ),
        )

    def insert_default(self, conn: sqlite3.Connection, record: DebtDefault) -> None:
        conn.execute(
            """
            INSERT INTO debt_defaults (
                id, debt_id, debtor_id, creditor_id, reason, trust_penalty, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.debt_id,
                record.debtor_id,
                record.creditor_id,
                record.reason,
                record.trust_penalty,
                to_db_time(record.created_at),
            ),
        )

    def list_transfers(self, conn: sqlite3.Connection, debt_id: str) -> List[DebtTransfer]:
        rows = conn.execute(
            "SELECT * FROM debt_transfers WHERE debt_id = ? ORDER BY created_at, rowid",
            (debt_id,),
        ).fetchall()
        return [
            DebtTransfer(
                id=r["id"],
                debt_id=r["debt_id"],
                from_creditor_id=r["from_creditor_id"],
                to_creditor_id=r["to_creditor_id"],
                reason=r["reason"],
                value_at_transfer=r["value_at_transfer"],
                created_at=from_db_time(r["created_at"]),
            )
            for r in rows
        ]

    def list_defaults(
        self,
        conn: sqlite3.Connection,
        debt_id: Optional[str] = None,
        debtor_id: Optional[str] = None,
    ) -> List[DebtDefault]:
        query = "SELECT * FROM debt_defaults WHERE 1=1"
        params: list = []
        if debt_id:
            query += " AND debt_id = ?"
            params.append(debt_id)
        if debtor_id:
            query += " AND debtor_id = ?"
            params.append(debtor_id)
        query += " ORDER BY created_at DESC"
        rows = conn.execute(query, params).fetchall()
        return [
            DebtDefault(
                id=r["id"],
                debt_id=r["debt_id"],
                debtor_id=r["debtor_id"],
                creditor_id=r["creditor_id"],
                reason=r["reason"],
                trust_penalty=r["trust_penalty"],
                created_at=from_db_time(r["created_at"]),
            )
            for r in rows
        ]

    # --- Offers ---

    def insert_offer(self, conn: sqlite3.Connection, offer: DebtOffer) -> None:
        conn.execute(
            """
            INSERT INTO debt_offers (
                id, debt_id, offerer_id, asking_price_type, asking_price_value,
                asking_price_details, status, accepted_by_id, expires_at,
                created_at, resolved_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                offer.id,
                offer.debt_id,
                offer.offerer_id,
                offer.asking_price_type.value,
                offer.asking_price_value,
                offer.asking_price_details,
                offer.status.value,
                offer.accepted_by_id,
                to_db_time(offer.expires_at),
                to_db_time(offer.created_at),
                to_db_time(offer.resolved_at),
            ),
        )

    def get_offer(self, conn: sqlite3.Connection, offer_id: str) -> Optional[DebtOffer]:
        row = conn.execute("SELECT * FROM debt_offers WHERE id = ?", (offer_id,)).fetchone()
        return self._deserialize_offer(row) if row else None

    def get_open_offer_for_debt(
        self, conn: sqlite3.Connection, debt_id: str
    ) -> Optional[DebtOffer]:
        row = conn.execute(
            "SELECT * FROM debt_offers WHERE debt_id = ? AND status = ?",
            (debt_id, OfferStatus.OPEN.value),
        ).fetchone()
        return self._deserialize_offer(row) if row else None

    def resolve_offer(
        self,
        conn: sqlite3.Connection,
        offer: DebtOffer,
        status: OfferStatus,
        resolved_at: datetime,
        accepted_by_id: Optional[str] = None,
    ) -> DebtOffer:
        """Close an open offer. Fails as stale if it is no longer open."""
        cursor = conn.execute(
            """
            UPDATE debt_offers SET status = ?, accepted_by_id = ?, resolved_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                status.value,
                accepted_by_id,
                to_db_time(resolved_at),
                offer.id,
                OfferStatus.OPEN.value,
            ),
        )
        if cursor.rowcount != 1:
            raise StaleRecordError("debt_offers", offer.id, 0)
        return offer.model_copy(update={
            "status": status,
            "accepted_by_id": accepted_by_id,
            "resolved_at": resolved_at,
        })

    def expire_offers(self, conn: sqlite3.Connection, now: datetime) -> int:
        cursor = conn.execute(
            """
            UPDATE debt_offers SET status = ?, resolved_at = ?
            WHERE status = ? AND expires_at < ?
            """,
            (
                OfferStatus.EXPIRED.value,
                to_db_time(now),
                OfferStatus.OPEN.value,
                to_db_time(now),
            ),
        )
        return cursor.rowcount

    def withdraw_open_offers(
        self, conn: sqlite3.Connection, debt_id: str, resolved_at: datetime
    ) -> int:
        """Close whatever offer is still open on a debt that changed hands or ended."""
        cursor = conn.execute(
            """
            UPDATE debt_offers SET status = ?, resolved_at = ?
            WHERE debt_id = ? AND status = ?
            """,
            (
                OfferStatus.WITHDRAWN.value,
                to_db_time(resolved_at),
                debt_id,
                OfferStatus.OPEN.value,
            ),
        )
        return cursor.rowcount

    def list_open_offers(self, conn: sqlite3.Connection, now: datetime) -> List[DebtOffer]:
        rows = conn.execute(
            """
            SELECT * FROM debt_offers
            WHERE status = ? AND expires_at >= ?
            ORDER BY created_at DESC
            """,
            (OfferStatus.OPEN.value, to_db_time(now)),
        ).fetchall()
        return [self._deserialize_offer(r) for r in rows]

    def list_offers_for_debt(self, conn: sqlite3.Connection, debt_id: str) -> List[DebtOffer]:
        rows = conn.execute(
            "SELECT * FROM debt_offers WHERE debt_id = ? ORDER BY created_at, rowid",
            (debt_id,),
        ).fetchall()
        return [self._deserialize_offer(r) for r in rows]

    # --- Row mapping ---

    def _deserialize_debt(self, row: sqlite3.Row) -> Debt:
        return Debt(
            id=row["id"],
            creditor_id=row["creditor_id"],
            debtor_id=row["debtor_id"],
            debt_type=DebtType(row["debt_type"]),
            description=row["description"],
            value=row["value"],
            original_value=row["original_value"],
            status=DebtStatus(row["status"]),
            context=json.loads(row["context_json"]),
            due_date=from_db_time(row["due_date"]),
            transferred_from_id=row["transferred_from_id"],
            created_at=from_db_time(row["created_at"]),
            called_in_at=from_db_time(row["called_in_at"]),
            resolved_at=from_db_time(row["resolved_at"]),
            version=row["version"],
        )

    def _deserialize_offer(self, row: sqlite3.Row) -> DebtOffer:
        return DebtOffer(
            id=row["id"],
            debt_id=row["debt_id"],
            offerer_id=row["offerer_id"],
            asking_price_type=AskingPriceType(row["asking_price_type"]),
            asking_price_value=row["asking_price_value"],
            asking_price_details=row["asking_price_details"],
            status=OfferStatus(row["status"]),
            accepted_by_id=row["accepted_by_id"],
            expires_at=from_db_time(row["expires_at"]),
            created_at=from_db_time(row["created_at"]),
            resolved_at=from_db_time(row["resolved_at"]),
        )
