"""
District Ecosystem: event ingestion and aggregation, plus timed district events.

Behavioral Contract:
- record_event validates, resolves impacts and appends. Nothing else is
  touched, except that a high-severity event folds its district right away.
- Aggregation runs one transaction per district: select unprocessed
  events, fold, clamp, reclassify, mark exactly those events processed.
  Events inserted while a run is in progress are left for the next run.
- A run with no unprocessed events changes nothing.
- A failure in one district is logged and does not stop the others.
- At most one instance of each active event type runs per district, and a
  type cannot restart until its cooldown has passed since it last stopped.
  Manual triggers are refused with the reason; threshold checks skip.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from street_kernel.ecosystem.active_events import (
    ACTIVE_EVENT_DEFINITIONS,
    combine_effects,
    threshold_crossed,
)
from street_kernel.ecosystem.impact import (
    classify_status,
    clamp,
    compute_modifiers,
    next_crew_tension,
    resolve_impact,
)
from street_kernel.ecosystem.seeds import seed_districts
from street_kernel.ecosystem.store import DistrictStore
from street_kernel.errors import InvalidTransitionError, InvariantViolation, NotFoundError
from street_kernel.models.district import (
    ActiveDistrictEvent,
    ActiveEventType,
    AggregationReport,
    DistrictEvent,
    DistrictEventType,
    DistrictModifiers,
    DistrictState,
    EventEndReason,
    EventTrigger,
    StatusChange,
    ThresholdReport,
)
from street_kernel.models.payloads import EventPayload
from street_kernel.storage.database import Database

logger = logging.getLogger(__name__)

_METRICS = (
    "crime_index",
    "police_presence",
    "property_values",
    "business_health",
    "street_activity",
)


def _active_event_type(value: Union[ActiveEventType, str]) -> ActiveEventType:
    try:
        return ActiveEventType(value)
    except ValueError:
        raise InvariantViolation(
            "active_event.unknown_type", f"Unknown district event type: {value}"
        )


class DistrictEcosystem:
    """Folds player actions into bounded district state."""

    def __init__(
        self,
        db: Database,
        store: Optional[DistrictStore] = None,
        immediate_aggregation_severity: int = 8,
    ):
        self.db = db
        self.store = store or DistrictStore(db)
        self.immediate_aggregation_severity = immediate_aggregation_severity

    # --- Seeding ---

    def seed_districts(self, districts: Optional[List[DistrictState]] = None) -> int:
        """Install districts that do not exist yet. Safe to call repeatedly."""
        districts = districts if districts is not None else seed_districts()

        def _seed(conn: sqlite3.Connection) -> int:
            return sum(1 for d in districts if self.store.insert_district(conn, d))

        inserted = self.db.run_in_transaction("district.seed", _seed)
        if inserted:
            logger.info("Seeded %d districts", inserted)
        return inserted

    # --- Ingestion ---

    def record_event(
        self,
        district_id: str,
        event_type: Union[DistrictEventType, str],
        severity: int,
        actor_player_id: Optional[str] = None,
        target_player_id: Optional[str] = None,
        actor_crew_id: Optional[str] = None,
        payload: Optional[EventPayload] = None,
        current_time: Optional[datetime] = None,
    ) -> DistrictEvent:
        """Append one immutable district event."""
        if current_time is None:
            current_time = datetime.utcnow()

        try:
            event_type = DistrictEventType(event_type)
        except ValueError:
            raise InvariantViolation(
                "district_event.unknown_type",
                f"Unknown district event type: {event_type}",
            )
        if not 1 <= severity <= 10:
            raise InvariantViolation(
                "district_event.severity_range",
                f"Severity must be within [1, 10], got {severity}",
            )

        event = DistrictEvent(
            id=f"devt_{uuid4().hex[:12]}",
            district_id=district_id,
            event_type=event_type,
            severity=severity,
            actor_player_id=actor_player_id,
            target_player_id=target_player_id,
            actor_crew_id=actor_crew_id,
            payload=payload or EventPayload(),
            impact=resolve_impact(event_type, severity),
            created_at=current_time,
        )

        def _append(conn: sqlite3.Connection) -> None:
            if self.store.get_district(conn, district_id) is None:
                raise NotFoundError("district", district_id)
            self.store.insert_event(conn, event)

        self.db.run_in_transaction("district.record_event", _append)
        logger.debug(
            "Recorded %s (severity %d) in %s", event_type.value, severity, district_id
        )

        if severity >= self.immediate_aggregation_severity:
            self.aggregate_district(district_id, current_time=current_time)
        return event

    # --- Aggregation ---

    def run_aggregation(self, current_time: Optional[datetime] = None) -> AggregationReport:
        """Fold every district that has unprocessed events."""
        if current_time is None:
            current_time = datetime.utcnow()

        report = AggregationReport(started_at=current_time)
        with self.db.read() as conn:
            pending = self.store.districts_with_unprocessed_events(conn)

        for district_id in pending:
            try:
                folded, change = self.db.run_in_transaction(
                    "district.aggregate",
                    lambda conn, d=district_id: self._fold_district(conn, d, current_time),
                )
            except Exception as e:
                logger.exception("Aggregation failed for district %s", district_id)
                report.failures[district_id] = str(e)
                continue

            if folded:
                report.districts_updated += 1
                report.events_processed += folded
            if change:
                report.status_changes.append(change)

        report.finished_at = datetime.utcnow()
        if report.events_processed or report.failures:
            logger.info(
                "Aggregation folded %d events across %d districts (%d status changes, %d failures)",
                report.events_processed,
                report.districts_updated,
                len(report.status_changes),
                len(report.failures),
            )
        return report

    def aggregate_district(
        self,
        district_id: str,
        current_time: Optional[datetime] = None,
    ) -> Optional[StatusChange]:
        """Fold a single district immediately."""
        if current_time is None:
            current_time = datetime.utcnow()
        _, change = self.db.run_in_transaction(
            "district.aggregate",
            lambda conn: self._fold_district(conn, district_id, current_time),
        )
        return change

    def _fold_district(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        current_time: datetime,
    ) -> Tuple[int, Optional[StatusChange]]:
        state = self.store.get_district(conn, district_id)
        if state is None:
            raise NotFoundError("district", district_id)

        events = self.store.unprocessed_events(conn, district_id)
        if not events:
            return 0, None

        updates = {}
        for metric in _METRICS:
            delta = sum(getattr(e.impact, metric) for e in events)
            updates[metric] = clamp(getattr(state, metric) + delta)

        crew_battles = sum(1 for e in events if e.event_type == DistrictEventType.CREW_BATTLE)
        updates["crew_tension"] = next_crew_tension(state.crew_tension, crew_battles)
        updates["last_calculated_at"] = current_time

        updated = state.model_copy(update=updates)
        new_status = classify_status(updated)

        change = None
        if new_status != state.status:
            change = StatusChange(
                district_id=district_id,
                old_status=state.status,
                new_status=new_status,
            )
            updated = updated.model_copy(update={
                "status": new_status,
                "last_status_change_at": current_time,
            })
            logger.info(
                "District %s status changed: %s -> %s",
                district_id, state.status.value, new_status.value,
            )

        self.store.update_district(conn, updated)
        self.store.mark_processed(conn, [e.id for e in events], current_time)
        return len(events), change

    # --- Queries ---

    def get_district_state(self, district_id: str) -> DistrictState:
        with self.db.read() as conn:
            state = self.store.get_district(conn, district_id)
        if state is None:
            raise NotFoundError("district", district_id)
        return state

    def list_districts(self) -> List[DistrictState]:
        with self.db.read() as conn:
            return self.store.list_districts(conn)

    def get_district_events(self, district_id: str, limit: int = 50) -> List[DistrictEvent]:
        with self.db.read() as conn:
            if self.store.get_district(conn, district_id) is None:
                raise NotFoundError("district", district_id)
            return self.store.recent_events(conn, district_id, limit)

    def get_district_modifiers(self, district_id: str) -> DistrictModifiers:
        return compute_modifiers(self.get_district_state(district_id))

    def pending_event_count(self) -> int:
        with self.db.read() as conn:
            return self.store.count_unprocessed(conn)

    # --- Active events ---

    def trigger_district_event(
        self,
        district_id: str,
        event_type: Union[ActiveEventType, str],
        triggered_by: Union[EventTrigger, str] = EventTrigger.ADMIN,
        duration_minutes: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> ActiveDistrictEvent:
        """Start a timed district event by hand (admin, scheduled, player)."""
        if current_time is None:
            current_time = datetime.utcnow()
        event_type = _active_event_type(event_type)
        triggered_by = EventTrigger(triggered_by)
        if duration_minutes is not None and duration_minutes < 1:
            raise InvariantViolation(
                "active_event.duration_range", "Event duration must be at least one minute"
            )

        def _trigger(conn: sqlite3.Connection) -> ActiveDistrictEvent:
            if self.store.get_district(conn, district_id) is None:
                raise NotFoundError("district", district_id)
            blocked = self._blocked_by(conn, district_id, event_type, current_time)
            if blocked:
                raise InvalidTransitionError(
                    blocked,
                    f"{event_type.value} cannot start in {district_id} right now",
                )
            return self._start_event(
                conn, district_id, event_type, triggered_by, current_time,
                duration_minutes=duration_minutes,
            )

        event = self.db.run_in_transaction("district.trigger_event", _trigger)
        logger.info(
            "District event %s started in %s by %s until %s",
            event_type.value, district_id, triggered_by.value, event.expires_at,
        )
        return event

    def end_district_event(
        self,
        district_id: str,
        event_type: Union[ActiveEventType, str],
        ended_by: Union[EventEndReason, str] = EventEndReason.ADMIN,
        current_time: Optional[datetime] = None,
    ) -> bool:
        """Stop a running event early. Returns False if none was running."""
        if current_time is None:
            current_time = datetime.utcnow()
        event_type = _active_event_type(event_type)
        ended_by = EventEndReason(ended_by)
        ended = self.db.run_in_transaction(
            "district.end_event",
            lambda conn: self.store.end_active_events(
                conn, district_id, event_type, ended_by, current_time
            ),
        )
        if ended:
            logger.info(
                "District event %s ended in %s (%s)",
                event_type.value, district_id, ended_by.value,
            )
        return ended > 0

    def check_district_thresholds(
        self, current_time: Optional[datetime] = None
    ) -> List[ActiveDistrictEvent]:
        """Start every threshold event whose trigger metric is crossed."""
        if current_time is None:
            current_time = datetime.utcnow()

        with self.db.read() as conn:
            district_ids = [d.district_id for d in self.store.list_districts(conn)]

        triggered: List[ActiveDistrictEvent] = []
        for district_id in district_ids:
            try:
                started = self.db.run_in_transaction(
                    "district.check_thresholds",
                    lambda conn, d=district_id: self._check_district(conn, d, current_time),
                )
            except Exception:
                logger.exception("Threshold check failed for district %s", district_id)
                continue
            triggered.extend(started)

        if triggered:
            logger.info("Threshold check started %d district events", len(triggered))
        return triggered

    def expire_district_events(self, current_time: Optional[datetime] = None) -> int:
        if current_time is None:
            current_time = datetime.utcnow()
        expired = self.db.run_in_transaction(
            "district.expire_events",
            lambda conn: self.store.expire_active_events(conn, current_time),
        )
        if expired:
            logger.info("Expired %d district events", expired)
        return expired

    def process_district_events(
        self, current_time: Optional[datetime] = None
    ) -> ThresholdReport:
        """Scheduled pass: close expired events, then check thresholds."""
        if current_time is None:
            current_time = datetime.utcnow()
        expired = self.expire_district_events(current_time)
        triggered = self.check_district_thresholds(current_time)
        return ThresholdReport(expired=expired, triggered=triggered)

    def get_active_district_events(
        self,
        district_id: str,
        current_time: Optional[datetime] = None,
    ) -> List[ActiveDistrictEvent]:
        if current_time is None:
            current_time = datetime.utcnow()
        with self.db.read() as conn:
            if self.store.get_district(conn, district_id) is None:
                raise NotFoundError("district", district_id)
            return self.store.running_active_events(conn, district_id, current_time)

    def get_district_event_modifiers(
        self,
        district_id: str,
        current_time: Optional[datetime] = None,
    ) -> Dict[str, float]:
        return combine_effects(self.get_active_district_events(district_id, current_time))

    def get_district_event_history(
        self, district_id: str, limit: int = 50
    ) -> List[ActiveDistrictEvent]:
        with self.db.read() as conn:
            return self.store.active_event_history(conn, district_id, limit)

    def _check_district(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        current_time: datetime,
    ) -> List[ActiveDistrictEvent]:
        state = self.store.get_district(conn, district_id)
        if state is None:
            return []
        started = []
        for definition in ACTIVE_EVENT_DEFINITIONS.values():
            if not threshold_crossed(definition, state):
                continue
            if self._blocked_by(conn, district_id, definition.event_type, current_time):
                continue
            started.append(self._start_event(
                conn, district_id, definition.event_type, EventTrigger.THRESHOLD,
                current_time,
                trigger_value=getattr(state, definition.trigger_metric),
            ))
        return started

    def _blocked_by(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        event_type: ActiveEventType,
        current_time: datetime,
    ) -> Optional[str]:
        """Why an event cannot start now, or None if it can."""
        if self.store.running_active_events(conn, district_id, current_time, event_type):
            return "active_event.already_active"
        last_end = self.store.last_active_event_end(conn, district_id, event_type)
        cooldown = ACTIVE_EVENT_DEFINITIONS[event_type].cooldown_minutes
        if last_end is not None and last_end + timedelta(minutes=cooldown) > current_time:
            return "active_event.on_cooldown"
        return None

    def _start_event(
        self,
        conn: sqlite3.Connection,
        district_id: str,
        event_type: ActiveEventType,
        triggered_by: EventTrigger,
        current_time: datetime,
        duration_minutes: Optional[int] = None,
        trigger_value: Optional[int] = None,
    ) -> ActiveDistrictEvent:
        definition = ACTIVE_EVENT_DEFINITIONS[event_type]
        duration = duration_minutes or definition.duration_minutes
        event = ActiveDistrictEvent(
            id=f"dact_{uuid4().hex[:12]}",
            district_id=district_id,
            event_type=event_type,
            triggered_by=triggered_by,
            trigger_metric=(
                definition.trigger_metric if triggered_by == EventTrigger.THRESHOLD else None
            ),
            trigger_value=trigger_value,
            effects=dict(definition.effects),
            duration_minutes=duration,
            started_at=current_time,
            expires_at=current_time + timedelta(minutes=duration),
        )
        self.store.insert_active_event(conn, event)
        return event
