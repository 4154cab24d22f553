"""
Street Kernel API: FastAPI endpoints.

Thin transport over the world kernel for:
- District state, events, aggregation and timed district events
- Surveillance, heat, pursuits and grid hacking
- Reputation and its spillover
- Debts and the debt marketplace
- Scheduler control

Domain errors map to HTTP status codes: NotFoundError -> 404,
InvalidTransitionError / ConflictError -> 409, InvariantViolation -> 422.
"""

from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from street_kernel.config import KernelSettings
from street_kernel.errors import (
    ConflictError,
    InvalidTransitionError,
    InvariantViolation,
    NotFoundError,
)
from street_kernel.models.debt import AskingPriceType, DebtType
from street_kernel.models.district import ActiveEventType, DistrictEventType, EventTrigger
from street_kernel.models.payloads import EventPayload
from street_kernel.models.reputation import RelationshipType, ReputationDimension
from street_kernel.models.surveillance import EscapeMethod
from street_kernel.world import WorldKernel


# --- Request/Response Models ---

class DistrictEventRequest(BaseModel):
    event_type: DistrictEventType
    severity: int
    actor_player_id: Optional[str] = None
    target_player_id: Optional[str] = None
    actor_crew_id: Optional[str] = None
    payload: Optional[EventPayload] = None


class HeatRequest(BaseModel):
    amount: int = Field(ge=0)
    sector_id: Optional[str] = None
    reason: str = "crime"


class ScanRequest(BaseModel):
    sector_id: Optional[str] = None


class EscapeRequest(BaseModel):
    method: EscapeMethod = EscapeMethod.EVADE
    cash_on_hand: Optional[int] = Field(default=None, ge=0)


class HackRequest(BaseModel):
    sector_id: str


class ActiveEventRequest(BaseModel):
    event_type: ActiveEventType
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    triggered_by: EventTrigger = EventTrigger.ADMIN


class SectorAdjustRequest(BaseModel):
    change: int
    reason: str


class ReputationModifyRequest(BaseModel):
    relationship_type: RelationshipType
    target_id: str
    dimension: ReputationDimension
    delta: int
    reason: str
    related_player_id: Optional[str] = None
    metadata: dict = {}
    propagate: bool = True


class DebtCreateRequest(BaseModel):
    creditor_id: str
    debtor_id: str
    debt_type: DebtType
    value: int
    description: str = ""
    due_date: Optional[datetime] = None
    context: dict = {}


class PlayerActionRequest(BaseModel):
    player_id: str
    reason: Optional[str] = None


class DebtTransferRequest(BaseModel):
    from_creditor_id: str
    to_creditor_id: str
    reason: Optional[str] = None


class OfferCreateRequest(BaseModel):
    offerer_id: str
    asking_price_type: AskingPriceType
    asking_price_value: int = Field(ge=0)
    asking_price_details: Optional[str] = None
    expires_in_hours: Optional[int] = None


# --- Application Factory ---

def create_app(
    kernel: Optional[WorldKernel] = None,
    settings: Optional[KernelSettings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Street Kernel API",
        description="Living-world layer: districts, surveillance, reputation, debts",
        version="0.1.0-alpha",
    )

    world = kernel or WorldKernel.from_settings(settings)
    app.state.kernel = world

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "kind": exc.kind, "id": exc.identifier},
        )

    @app.exception_handler(InvariantViolation)
    async def _invariant(request: Request, exc: InvariantViolation):
        status_code = 409 if isinstance(exc, InvalidTransitionError) else 422
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "invariant": exc.invariant},
        )

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "invariant": "concurrency.conflict"},
        )

    # === DISTRICTS ===

    @app.get("/districts")
    def list_districts():
        return [d.model_dump(mode="json") for d in world.ecosystem.list_districts()]

    @app.get("/districts/{district_id}")
    def get_district(district_id: str):
        return world.ecosystem.get_district_state(district_id).model_dump(mode="json")

    @app.get("/districts/{district_id}/modifiers")
    def get_district_modifiers(district_id: str):
        return world.ecosystem.get_district_modifiers(district_id).model_dump(mode="json")

    @app.get("/districts/{district_id}/events")
    def get_district_events(district_id: str, limit: int = Query(50, ge=1, le=500)):
        events = world.ecosystem.get_district_events(district_id, limit=limit)
        return [e.model_dump(mode="json") for e in events]

    @app.post("/districts/{district_id}/events")
    def record_district_event(district_id: str, req: DistrictEventRequest):
        """Game-action hook: append a district event."""
        event = world.ecosystem.record_event(
            district_id,
            req.event_type,
            req.severity,
            actor_player_id=req.actor_player_id,
            target_player_id=req.target_player_id,
            actor_crew_id=req.actor_crew_id,
            payload=req.payload,
        )
        return event.model_dump(mode="json")

    @app.post("/districts/aggregate")
    def trigger_aggregation():
        """Force an aggregation run."""
        return world.ecosystem.run_aggregation().model_dump(mode="json")

    @app.get("/districts/{district_id}/active-events")
    def get_active_district_events(district_id: str):
        events = world.ecosystem.get_active_district_events(district_id)
        return [e.model_dump(mode="json") for e in events]

    @app.get("/districts/{district_id}/event-modifiers")
    def get_district_event_modifiers(district_id: str):
        return world.ecosystem.get_district_event_modifiers(district_id)

    @app.post("/districts/{district_id}/active-events")
    def trigger_district_event(district_id: str, req: ActiveEventRequest):
        event = world.ecosystem.trigger_district_event(
            district_id,
            req.event_type,
            triggered_by=req.triggered_by,
            duration_minutes=req.duration_minutes,
        )
        return event.model_dump(mode="json")

    @app.post("/districts/{district_id}/active-events/{event_type}/end")
    def end_district_event(district_id: str, event_type: ActiveEventType):
        return {
            "district_id": district_id,
            "event_type": event_type.value,
            "ended": world.ecosystem.end_district_event(district_id, event_type),
        }

    @app.post("/districts/thresholds")
    def check_thresholds():
        """Force an expiry and threshold pass."""
        return world.ecosystem.process_district_events().model_dump(mode="json")

    # === SURVEILLANCE ===

    @app.get("/sectors")
    def list_sectors():
        return [s.model_dump(mode="json") for s in world.grid.list_sectors()]

    @app.get("/sectors/{sector_id}/detection")
    def get_detection_chance(sector_id: str, player_id: Optional[str] = None):
        chance = world.grid.get_detection_chance(sector_id, player_id)
        return {"sector_id": sector_id, "player_id": player_id, "detection_chance": chance}

    @app.post("/sectors/{sector_id}/surveillance")
    def adjust_sector(sector_id: str, req: SectorAdjustRequest):
        sector = world.grid.update_sector_surveillance(sector_id, req.change, req.reason)
        return sector.model_dump(mode="json")

    @app.get("/players/{player_id}/pursuit")
    def get_pursuit_status(player_id: str):
        return world.pursuits.get_pursuit_status(player_id).model_dump(mode="json")

    @app.post("/players/{player_id}/heat")
    def raise_heat(player_id: str, req: HeatRequest):
        status = world.pursuits.raise_heat(
            player_id, req.amount, sector_id=req.sector_id, reason=req.reason
        )
        return status.model_dump(mode="json")

    @app.post("/players/{player_id}/scan")
    def scan_player(player_id: str, req: ScanRequest):
        return world.pursuits.record_scan(player_id, sector_id=req.sector_id).model_dump(mode="json")

    @app.post("/players/{player_id}/escape")
    def attempt_escape(player_id: str, req: EscapeRequest):
        result = world.pursuits.attempt_escape(
            player_id, method=req.method, cash_on_hand=req.cash_on_hand
        )
        return result.model_dump(mode="json")

    @app.get("/players/{player_id}/escape-options")
    def get_escape_options(player_id: str):
        return [o.model_dump(mode="json") for o in world.pursuits.get_escape_options(player_id)]

    @app.post("/players/{player_id}/hack")
    def hack_sector(player_id: str, req: HackRequest):
        return world.pursuits.hack_sector(player_id, req.sector_id).model_dump(mode="json")

    @app.get("/players/{player_id}/incidents")
    def get_player_incidents(player_id: str, limit: int = Query(50, ge=1, le=500)):
        incidents = world.grid.list_incidents(player_id=player_id, limit=limit)
        return [i.model_dump(mode="json") for i in incidents]

    # === REPUTATION ===

    @app.get("/players/{player_id}/reputation")
    def get_player_reputations(
        player_id: str,
        relationship_type: Optional[RelationshipType] = None,
    ):
        records = world.reputation.get_player_reputations(player_id, relationship_type)
        return [
            {
                **r.model_dump(mode="json"),
                "combined_score": r.combined_score,
            }
            for r in records
        ]

    @app.post("/players/{player_id}/reputation")
    def modify_reputation(player_id: str, req: ReputationModifyRequest):
        change = world.reputation.modify_reputation(
            player_id,
            req.relationship_type,
            req.target_id,
            req.dimension,
            req.delta,
            req.reason,
            related_player_id=req.related_player_id,
            metadata=req.metadata,
        )
        propagated = []
        if req.propagate:
            propagated = world.reputation.propagate_reputation(
                player_id,
                req.relationship_type,
                req.target_id,
                {req.dimension: change.event.new_value - change.event.old_value},
            )
        return {
            **change.model_dump(mode="json"),
            "propagated": [p.model_dump(mode="json") for p in propagated],
        }

    @app.get("/players/{player_id}/reputation/history")
    def get_reputation_history(
        player_id: str,
        relationship_type: Optional[RelationshipType] = None,
        target_id: Optional[str] = None,
        limit: int = Query(50, ge=1, le=500),
    ):
        events = world.reputation.get_reputation_history(
            player_id, relationship_type, target_id, limit
        )
        return [e.model_dump(mode="json") for e in events]

    @app.get("/players/{player_id}/reputation/{relationship_type}/{target_id}/standing")
    def get_standing(player_id: str, relationship_type: RelationshipType, target_id: str):
        return world.reputation.get_standing(
            player_id, relationship_type, target_id
        ).model_dump(mode="json")

    # === DEBTS ===

    @app.post("/debts")
    def create_debt(req: DebtCreateRequest):
        debt = world.debts.create_debt(
            req.creditor_id,
            req.debtor_id,
            req.debt_type,
            req.value,
            description=req.description,
            due_date=req.due_date,
            context=req.context,
        )
        return debt.model_dump(mode="json")

    @app.get("/debts/overdue")
    def get_overdue_debts():
        return [o.model_dump(mode="json") for o in world.debts.get_overdue_debts()]

    @app.get("/debts/{debt_id}")
    def get_debt(debt_id: str):
        return world.debts.get_debt(debt_id).model_dump(mode="json")

    @app.get("/debts/{debt_id}/history")
    def get_debt_history(debt_id: str):
        return world.debts.get_debt_history(debt_id).model_dump(mode="json")

    @app.post("/debts/{debt_id}/call-in")
    def call_in_debt(debt_id: str, req: PlayerActionRequest):
        return world.debts.call_in(debt_id, req.player_id).model_dump(mode="json")

    @app.post("/debts/{debt_id}/fulfill")
    def fulfill_debt(debt_id: str, req: PlayerActionRequest):
        resolution = world.debts.fulfill(debt_id, req.player_id)
        change = world.apply_debt_trust(resolution)
        return {
            **resolution.model_dump(mode="json"),
            "reputation": change.model_dump(mode="json") if change else None,
        }

    @app.post("/debts/{debt_id}/default")
    def default_debt(debt_id: str, req: Optional[PlayerActionRequest] = None):
        resolution = world.debts.default(debt_id, reason=req.reason if req else None)
        change = world.apply_debt_trust(resolution)
        return {
            **resolution.model_dump(mode="json"),
            "reputation": change.model_dump(mode="json") if change else None,
        }

    @app.post("/debts/{debt_id}/forgive")
    def forgive_debt(debt_id: str, req: PlayerActionRequest):
        resolution = world.debts.forgive(debt_id, req.player_id, reason=req.reason)
        return resolution.model_dump(mode="json")

    @app.post("/debts/{debt_id}/transfer")
    def transfer_debt(debt_id: str, req: DebtTransferRequest):
        debt = world.debts.transfer(
            debt_id, req.from_creditor_id, req.to_creditor_id, reason=req.reason
        )
        return debt.model_dump(mode="json")

    @app.get("/players/{player_id}/debts/summary")
    def get_debt_summary(player_id: str):
        return world.debts.get_player_debt_summary(player_id).model_dump(mode="json")

    # === MARKETPLACE ===

    @app.get("/offers")
    def get_open_offers():
        return [o.model_dump(mode="json") for o in world.debts.get_open_offers()]

    @app.post("/debts/{debt_id}/offers")
    def create_offer(debt_id: str, req: OfferCreateRequest):
        offer = world.debts.create_offer(
            debt_id,
            req.offerer_id,
            req.asking_price_type,
            req.asking_price_value,
            asking_price_details=req.asking_price_details,
            expires_in_hours=req.expires_in_hours,
        )
        return offer.model_dump(mode="json")

    @app.post("/offers/{offer_id}/accept")
    def accept_offer(offer_id: str, req: PlayerActionRequest):
        offer, debt = world.debts.accept_offer(offer_id, req.player_id)
        return {"offer": offer.model_dump(mode="json"), "debt": debt.model_dump(mode="json")}

    @app.post("/offers/{offer_id}/withdraw")
    def withdraw_offer(offer_id: str, req: PlayerActionRequest):
        return world.debts.withdraw_offer(offer_id, req.player_id).model_dump(mode="json")

    # === SCHEDULER ===

    @app.get("/scheduler/status")
    def scheduler_status():
        return {
            "status": world.scheduler.status,
            "jobs": [j.model_dump(mode="json") for j in world.scheduler.get_status()],
        }

    @app.post("/scheduler/jobs/{job_name}/run")
    def run_job(job_name: str):
        """Force a scheduled job (for testing and operations)."""
        if job_name not in world.scheduler.job_names():
            raise HTTPException(404, "Job not found")
        return world.scheduler.run_job(job_name).model_dump(mode="json")

    return app
