"""
World Kernel: wires the shared database, subsystem services and scheduler.

Also hosts the two cross-subsystem flows that the debt ledger leaves to its
caller: applying trust effects after fulfilment or default. Each runs as its
own transaction after the debt transition has committed.
"""

import logging
import random
from datetime import datetime
from typing import Optional

from street_kernel.config import KernelSettings, get_settings
from street_kernel.debt.ledger import DebtLedger
from street_kernel.ecosystem.aggregator import DistrictEcosystem
from street_kernel.models.debt import DebtResolution
from street_kernel.models.reputation import (
    RelationshipType,
    ReputationChange,
    ReputationDimension,
)
from street_kernel.reputation.ledger import ReputationLedger
from street_kernel.scheduler.jobs import WorldScheduler, default_jobs
from street_kernel.storage.database import Database
from street_kernel.surveillance.grid import SurveillanceGrid
from street_kernel.surveillance.pursuit import PursuitEngine
from street_kernel.surveillance.store import SurveillanceStore

logger = logging.getLogger(__name__)


class WorldKernel:
    """Everything a running world needs, built from one settings object."""

    def __init__(
        self,
        db: Database,
        settings: KernelSettings,
        rng: Optional[random.Random] = None,
        start_time: Optional[datetime] = None,
    ):
        self.db = db
        self.settings = settings

        surveillance_store = SurveillanceStore(db)
        self.ecosystem = DistrictEcosystem(
            db, immediate_aggregation_severity=settings.immediate_aggregation_severity
        )
        self.grid = SurveillanceGrid(db, surveillance_store)
        self.pursuits = PursuitEngine(
            db,
            surveillance_store,
            timeout_minutes=settings.pursuit_timeout_minutes,
            rng=rng,
        )
        self.reputation = ReputationLedger(db)
        self.debts = DebtLedger(db, offer_expiry_hours=settings.offer_expiry_hours)
        self.scheduler = WorldScheduler(
            default_jobs(
                self.ecosystem,
                self.grid,
                self.pursuits,
                self.reputation,
                self.debts,
                settings,
            ),
            start_time=start_time,
        )

        if settings.seed_world_on_start:
            self.ecosystem.seed_districts()
            self.grid.seed_sectors()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[KernelSettings] = None,
        rng: Optional[random.Random] = None,
        start_time: Optional[datetime] = None,
    ) -> "WorldKernel":
        settings = settings or get_settings()
        db = Database(
            settings.database_path,
            busy_timeout_seconds=settings.busy_timeout_seconds,
            max_retries=settings.max_conflict_retries,
            retry_base_delay_seconds=settings.retry_base_delay_seconds,
        )
        return cls(db, settings, rng=rng, start_time=start_time)

    def apply_debt_trust(
        self,
        resolution: DebtResolution,
        current_time: Optional[datetime] = None,
    ) -> Optional[ReputationChange]:
        """Credit or debit the debtor's trust with the creditor."""
        debt = resolution.debt
        if resolution.trust_bonus:
            delta = resolution.trust_bonus
            reason = f"Fulfilled {debt.debt_type.value} debt"
        elif resolution.trust_penalty:
            delta = -resolution.trust_penalty
            reason = f"Defaulted on {debt.debt_type.value} debt"
        else:
            return None

        return self.reputation.modify_reputation(
            player_id=debt.debtor_id,
            relationship_type=RelationshipType.PLAYER,
            target_id=debt.creditor_id,
            dimension=ReputationDimension.TRUST,
            delta=delta,
            reason=reason,
            related_player_id=debt.creditor_id,
            metadata={"debt_id": debt.id, "debt_value": debt.value},
            current_time=current_time,
        )

    def close(self) -> None:
        self.db.close()
