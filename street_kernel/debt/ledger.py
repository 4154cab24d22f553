"""
Debt Ledger: social contracts with ownership transfer and a marketplace.

Behavioral Contract:
- Debts move only along ALLOWED_TRANSITIONS:
    outstanding -> called_in | fulfilled | defaulted | forgiven | transferred
    called_in   -> fulfilled | defaulted | forgiven | transferred
  fulfilled, defaulted and forgiven are terminal. A transfer lands the debt
  back in outstanding under the new creditor.
- Guards run before any write; a rejected call mutates nothing.
- Each transition is one transaction. Two racing terminal transitions on the
  same debt produce one success and one InvalidTransitionError.
- Trust effects are computed here and returned; the caller applies them
  through the reputation ledger.
- Offers expire on wall-clock time. Expiry never touches the debt.
- A transfer or a terminal transition withdraws any offer still open on the
  debt in the same transaction.
- Timezone-aware datetimes are converted to naive UTC on the way in.
- A passed due date only marks a debt overdue. Nothing defaults it
  automatically; the creditor or a game handler calls default().
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, List, Optional, Tuple, Union
from uuid import uuid4

from street_kernel.debt.store import DebtStore
from street_kernel.errors import InvalidTransitionError, InvariantViolation, NotFoundError
from street_kernel.models.debt import (
    AskingPriceType,
    Debt,
    DebtDefault,
    DebtHistory,
    DebtOffer,
    DebtResolution,
    DebtStatus,
    DebtSummary,
    DebtTransfer,
    DebtType,
    OfferStatus,
    OverdueDebt,
)
from street_kernel.storage.database import Database, to_naive_utc

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[DebtStatus, FrozenSet[DebtStatus]] = {
    DebtStatus.OUTSTANDING: frozenset({
        DebtStatus.CALLED_IN,
        DebtStatus.FULFILLED,
        DebtStatus.DEFAULTED,
        DebtStatus.FORGIVEN,
        DebtStatus.TRANSFERRED,
    }),
    DebtStatus.CALLED_IN: frozenset({
        DebtStatus.FULFILLED,
        DebtStatus.DEFAULTED,
        DebtStatus.FORGIVEN,
        DebtStatus.TRANSFERRED,
    }),
    DebtStatus.FULFILLED: frozenset(),
    DebtStatus.DEFAULTED: frozenset(),
    DebtStatus.FORGIVEN: frozenset(),
    DebtStatus.TRANSFERRED: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    DebtStatus.FULFILLED,
    DebtStatus.DEFAULTED,
    DebtStatus.FORGIVEN,
})

MIN_DEBT_VALUE = 1
MAX_DEBT_VALUE = 10
OFFER_ACCEPTED_REASON = "Debt offer accepted"


def trust_bonus(value: int) -> int:
    """Trust earned by the debtor for honouring a debt."""
    return 3 + value // 2


def trust_penalty(value: int) -> int:
    """Trust lost by the debtor for defaulting."""
    return 20 + value * 3


def check_transition(debt: Debt, target: DebtStatus) -> None:
    if target in ALLOWED_TRANSITIONS[debt.status]:
        return
    if debt.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            "debt.already_resolved",
            f"Debt {debt.id} is already {debt.status.value}",
            current_state=debt.status.value,
        )
    raise InvalidTransitionError(
        "debt.invalid_transition",
        f"Debt {debt.id} cannot move from {debt.status.value} to {target.value}",
        current_state=debt.status.value,
    )


class DebtLedger:
    """Finite-state debts, their history and the secondary market."""

    def __init__(
        self,
        db: Database,
        store: Optional[DebtStore] = None,
        offer_expiry_hours: int = 72,
    ):
        self.db = db
        self.store = store or DebtStore(db)
        self.offer_expiry_hours = offer_expiry_hours

    # --- Creation ---

    def create_debt(
        self,
        creditor_id: str,
        debtor_id: str,
        debt_type: Union[DebtType, str],
        value: int,
        description: str = "",
        due_date: Optional[datetime] = None,
        context: Optional[dict] = None,
        current_time: Optional[datetime] = None,
    ) -> Debt:
        if current_time is None:
            current_time = datetime.utcnow()
        current_time = to_naive_utc(current_time)
        due_date = to_naive_utc(due_date)

        if creditor_id == debtor_id:
            raise InvariantViolation(
                "debt.self_referential", "A player cannot owe a debt to themselves"
            )
        if not MIN_DEBT_VALUE <= value <= MAX_DEBT_VALUE:
            raise InvariantViolation(
                "debt.value_range",
                f"Debt value must be within [{MIN_DEBT_VALUE}, {MAX_DEBT_VALUE}], got {value}",
            )
        try:
            debt_type = DebtType(debt_type)
        except ValueError:
            raise InvariantViolation("debt.unknown_type", f"Unknown debt type: {debt_type}")
        if len(description) > 500:
            raise InvariantViolation("debt.description_length", "Description is too long")
        if due_date is not None and due_date <= current_time:
            raise InvariantViolation("debt.due_date_past", "Due date must be in the future")

        debt = Debt(
            id=f"debt_{uuid4().hex[:12]}",
            creditor_id=creditor_id,
            debtor_id=debtor_id,
            debt_type=debt_type,
            description=description or f"{debt_type.value} owed",
            value=value,
            original_value=value,
            context=context or {},
            due_date=due_date,
            created_at=current_time,
        )
        self.db.run_in_transaction(
            "debt.create", lambda conn: self.store.insert_debt(conn, debt)
        )
        logger.info(
            "Debt %s created: %s owes %s (%s, value %d)",
            debt.id, debtor_id, creditor_id, debt_type.value, value,
        )
        return debt

    # --- Transitions ---

    def call_in(
        self,
        debt_id: str,
        creditor_id: str,
        current_time: Optional[datetime] = None,
    ) -> Debt:
        """Creditor demands repayment."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _call_in(conn: sqlite3.Connection) -> Debt:
            debt = self._load(conn, debt_id)
            self._require_creditor(debt, creditor_id)
            check_transition(debt, DebtStatus.CALLED_IN)
            return self.store.update_debt(conn, debt.model_copy(update={
                "status": DebtStatus.CALLED_IN,
                "called_in_at": current_time,
            }))

        debt = self.db.run_in_transaction("debt.call_in", _call_in)
        logger.info("Debt %s called in by %s", debt_id, creditor_id)
        return debt

    def fulfill(
        self,
        debt_id: str,
        debtor_id: str,
        current_time: Optional[datetime] = None,
    ) -> DebtResolution:
        """Debtor honours the debt. Returns the trust bonus to apply."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _fulfill(conn: sqlite3.Connection) -> DebtResolution:
            debt = self._load(conn, debt_id)
            if debt.debtor_id != debtor_id:
                raise InvariantViolation(
                    "debt.wrong_party", "Only the debtor can fulfill a debt"
                )
            check_transition(debt, DebtStatus.FULFILLED)
            debt = self.store.update_debt(conn, debt.model_copy(update={
                "status": DebtStatus.FULFILLED,
                "resolved_at": current_time,
            }))
            self.store.withdraw_open_offers(conn, debt.id, current_time)
            return DebtResolution(debt=debt, trust_bonus=trust_bonus(debt.value))

        resolution = self.db.run_in_transaction("debt.fulfill", _fulfill)
        logger.info("Debt %s fulfilled (trust +%d)", debt_id, resolution.trust_bonus)
        return resolution

    def default(
        self,
        debt_id: str,
        reason: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> DebtResolution:
        """Mark a debt as broken. Returns the trust penalty to apply."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _default(conn: sqlite3.Connection) -> DebtResolution:
            debt = self._load(conn, debt_id)
            check_transition(debt, DebtStatus.DEFAULTED)
            penalty = trust_penalty(debt.value)
            debt = self.store.update_debt(conn, debt.model_copy(update={
                "status": DebtStatus.DEFAULTED,
                "resolved_at": current_time,
            }))
            self.store.withdraw_open_offers(conn, debt.id, current_time)
            record = DebtDefault(
                id=f"ddef_{uuid4().hex[:12]}",
                debt_id=debt.id,
                debtor_id=debt.debtor_id,
                creditor_id=debt.creditor_id,
                reason=reason,
                trust_penalty=penalty,
                created_at=current_time,
            )
            self.store.insert_default(conn, record)
            return DebtResolution(debt=debt, trust_penalty=penalty, default_record=record)

        resolution = self.db.run_in_transaction("debt.default", _default)
        logger.info(
            "Debt %s defaulted by %s (trust -%d)",
            debt_id, resolution.debt.debtor_id, resolution.trust_penalty,
        )
        return resolution

    def forgive(
        self,
        debt_id: str,
        creditor_id: str,
        reason: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> DebtResolution:
        if current_time is None:
            current_time = datetime.utcnow()

        def _forgive(conn: sqlite3.Connection) -> DebtResolution:
            debt = self._load(conn, debt_id)
            self._require_creditor(debt, creditor_id)
            check_transition(debt, DebtStatus.FORGIVEN)
            context = dict(debt.context)
            if reason:
                context["forgiveness_reason"] = reason
            debt = self.store.update_debt(conn, debt.model_copy(update={
                "status": DebtStatus.FORGIVEN,
                "resolved_at": current_time,
                "context": context,
            }))
            self.store.withdraw_open_offers(conn, debt.id, current_time)
            return DebtResolution(debt=debt)

        resolution = self.db.run_in_transaction("debt.forgive", _forgive)
        logger.info("Debt %s forgiven by %s", debt_id, creditor_id)
        return resolution

    def transfer(
        self,
        debt_id: str,
        from_creditor_id: str,
        to_creditor_id: str,
        reason: Optional[str] = None,
        current_time: Optional[datetime] = None,
    ) -> Debt:
        """Hand the debt to a new creditor, who must call it in afresh."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _transfer(conn: sqlite3.Connection) -> Debt:
            debt = self._load(conn, debt_id)
            return self._transfer(
                conn, debt, from_creditor_id, to_creditor_id, reason, current_time
            )

        debt = self.db.run_in_transaction("debt.transfer", _transfer)
        logger.info("Debt %s transferred %s -> %s", debt_id, from_creditor_id, to_creditor_id)
        return debt

    # --- Marketplace ---

    def create_offer(
        self,
        debt_id: str,
        offerer_id: str,
        asking_price_type: Union[AskingPriceType, str],
        asking_price_value: int,
        asking_price_details: Optional[str] = None,
        expires_in_hours: Optional[int] = None,
        current_time: Optional[datetime] = None,
    ) -> DebtOffer:
        """List a held debt for sale."""
        if current_time is None:
            current_time = datetime.utcnow()
        try:
            asking_price_type = AskingPriceType(asking_price_type)
        except ValueError:
            raise InvariantViolation(
                "offer.unknown_price_type", f"Unknown asking price type: {asking_price_type}"
            )
        if asking_price_value < 0:
            raise InvariantViolation("offer.negative_price", "Asking price must be >= 0")
        hours = expires_in_hours if expires_in_hours is not None else self.offer_expiry_hours
        if hours <= 0:
            raise InvariantViolation("offer.expiry_range", "Offer expiry must be positive")

        def _create(conn: sqlite3.Connection) -> DebtOffer:
            debt = self._load(conn, debt_id)
            self._require_creditor(debt, offerer_id)
            # Only a debt that could still be transferred can be listed.
            check_transition(debt, DebtStatus.TRANSFERRED)
            if self.store.get_open_offer_for_debt(conn, debt_id) is not None:
                raise InvariantViolation(
                    "offer.already_open", f"Debt {debt_id} already has an open offer"
                )
            offer = DebtOffer(
                id=f"offer_{uuid4().hex[:12]}",
                debt_id=debt_id,
                offerer_id=offerer_id,
                asking_price_type=asking_price_type,
                asking_price_value=asking_price_value,
                asking_price_details=asking_price_details,
                expires_at=current_time + timedelta(hours=hours),
                created_at=current_time,
            )
            self.store.insert_offer(conn, offer)
            return offer

        offer = self.db.run_in_transaction("offer.create", _create)
        logger.info("Debt %s offered by %s until %s", debt_id, offerer_id, offer.expires_at)
        return offer

    def accept_offer(
        self,
        offer_id: str,
        buyer_id: str,
        current_time: Optional[datetime] = None,
    ) -> Tuple[DebtOffer, Debt]:
        """Buy a listed debt: transfer it to the buyer and close the offer."""
        if current_time is None:
            current_time = datetime.utcnow()

        def _accept(conn: sqlite3.Connection) -> Tuple[DebtOffer, Optional[Debt]]:
            offer = self._load_offer(conn, offer_id)
            if offer.status != OfferStatus.OPEN:
                raise InvalidTransitionError(
                    "offer.not_open",
                    f"Offer {offer_id} is {offer.status.value}",
                    current_state=offer.status.value,
                )
            if offer.expires_at < current_time:
                # Persist the expiry; the caller raises after commit.
                expired = self.store.resolve_offer(
                    conn, offer, OfferStatus.EXPIRED, current_time
                )
                return expired, None

            debt = self._load(conn, offer.debt_id)
            if buyer_id == debt.debtor_id:
                raise InvariantViolation(
                    "offer.debtor_cannot_accept", "A debtor cannot buy their own debt"
                )
            if buyer_id == offer.offerer_id:
                raise InvariantViolation(
                    "offer.own_offer", "Cannot accept your own offer"
                )
            # Close this offer first so the transfer only withdraws strays.
            offer = self.store.resolve_offer(
                conn, offer, OfferStatus.ACCEPTED, current_time, accepted_by_id=buyer_id
            )
            debt = self._transfer(
                conn, debt, offer.offerer_id, buyer_id, OFFER_ACCEPTED_REASON, current_time
            )
            return offer, debt

        offer, debt = self.db.run_in_transaction("offer.accept", _accept)
        if debt is None:
            raise InvalidTransitionError(
                "offer.expired",
                f"Offer {offer_id} expired at {offer.expires_at}",
                current_state=OfferStatus.EXPIRED.value,
            )
        logger.info("Offer %s accepted by %s", offer_id, buyer_id)
        return offer, debt

    def withdraw_offer(
        self,
        offer_id: str,
        offerer_id: str,
        current_time: Optional[datetime] = None,
    ) -> DebtOffer:
        if current_time is None:
            current_time = datetime.utcnow()

        def _withdraw(conn: sqlite3.Connection) -> DebtOffer:
            offer = self._load_offer(conn, offer_id)
            if offer.offerer_id != offerer_id:
                raise InvariantViolation(
                    "offer.wrong_party", "Only the offerer can withdraw an offer"
                )
            if offer.status != OfferStatus.OPEN:
                raise InvalidTransitionError(
                    "offer.not_open",
                    f"Offer {offer_id} is {offer.status.value}",
                    current_state=offer.status.value,
                )
            return self.store.resolve_offer(conn, offer, OfferStatus.WITHDRAWN, current_time)

        return self.db.run_in_transaction("offer.withdraw", _withdraw)

    def expire_offers(self, current_time: Optional[datetime] = None) -> int:
        """Sweep open offers past their deadline. Debts are not touched."""
        if current_time is None:
            current_time = datetime.utcnow()
        expired = self.db.run_in_transaction(
            "offer.expire", lambda conn: self.store.expire_offers(conn, current_time)
        )
        if expired:
            logger.info("Expired %d debt offers", expired)
        return expired

    # --- Queries ---

    def get_debt(self, debt_id: str) -> Debt:
        with self.db.read() as conn:
            return self._load(conn, debt_id)

    def get_offer(self, offer_id: str) -> DebtOffer:
        with self.db.read() as conn:
            return self._load_offer(conn, offer_id)

    def get_open_offers(self, current_time: Optional[datetime] = None) -> List[DebtOffer]:
        if current_time is None:
            current_time = datetime.utcnow()
        with self.db.read() as conn:
            return self.store.list_open_offers(conn, current_time)

    def get_player_debt_summary(self, player_id: str) -> DebtSummary:
        with self.db.read() as conn:
            return self.store.summarize(conn, player_id)

    def get_debts_owed_by(self, player_id: str, active_only: bool = True) -> List[Debt]:
        with self.db.read() as conn:
            return self.store.list_debts_for_player(conn, player_id, False, active_only)

    def get_debts_held_by(self, player_id: str, active_only: bool = True) -> List[Debt]:
        with self.db.read() as conn:
            return self.store.list_debts_for_player(conn, player_id, True, active_only)

    def get_debts_between(self, player_a: str, player_b: str) -> List[Debt]:
        with self.db.read() as conn:
            return self.store.list_debts_between(conn, player_a, player_b)

    def get_overdue_debts(self, current_time: Optional[datetime] = None) -> List[OverdueDebt]:
        """Active debts whose due date has passed, most overdue first."""
        if current_time is None:
            current_time = datetime.utcnow()
        current_time = to_naive_utc(current_time)
        with self.db.read() as conn:
            debts = self.store.list_overdue(conn, current_time)
        return [
            OverdueDebt(debt=d, days_overdue=(current_time - d.due_date).days)
            for d in debts
        ]

    def get_player_defaults(self, player_id: str) -> List[DebtDefault]:
        with self.db.read() as conn:
            return self.store.list_defaults(conn, debtor_id=player_id)

    def get_debt_history(self, debt_id: str) -> DebtHistory:
        with self.db.read() as conn:
            debt = self._load(conn, debt_id)
            return DebtHistory(
                debt=debt,
                transfers=self.store.list_transfers(conn, debt_id),
                defaults=self.store.list_defaults(conn, debt_id=debt_id),
                offers=self.store.list_offers_for_debt(conn, debt_id),
            )

    # --- Internals ---

    def _load(self, conn: sqlite3.Connection, debt_id: str) -> Debt:
        debt = self.store.get_debt(conn, debt_id)
        if debt is None:
            raise NotFoundError("debt", debt_id)
        return debt

    def _load_offer(self, conn: sqlite3.Connection, offer_id: str) -> DebtOffer:
        offer = self.store.get_offer(conn, offer_id)
        if offer is None:
            raise NotFoundError("offer", offer_id)
        return offer

    def _require_creditor(self, debt: Debt, player_id: str) -> None:
        if debt.creditor_id != player_id:
            raise InvariantViolation(
                "debt.wrong_party", f"{player_id} is not the creditor of debt {debt.id}"
            )

    def _transfer(
        self,
        conn: sqlite3.Connection,
        debt: Debt,
        from_creditor_id: str,
        to_creditor_id: str,
        reason: Optional[str],
        current_time: datetime,
    ) -> Debt:
        self._require_creditor(debt, from_creditor_id)
        if to_creditor_id == debt.debtor_id:
            raise InvariantViolation(
                "debt.transfer_to_debtor", "Cannot transfer a debt to its debtor"
            )
        if to_creditor_id == from_creditor_id:
            raise InvariantViolation(
                "debt.transfer_to_self", "Cannot transfer a debt to yourself"
            )
        check_transition(debt, DebtStatus.TRANSFERRED)

        self.store.insert_transfer(conn, DebtTransfer(
            id=f"dxfr_{uuid4().hex[:12]}",
            debt_id=debt.id,
            from_creditor_id=from_creditor_id,
            to_creditor_id=to_creditor_id,
            reason=reason,
            value_at_transfer=debt.value,
            created_at=current_time,
        ))
        # An offer listed by the previous creditor cannot be honoured any more.
        withdrawn = self.store.withdraw_open_offers(conn, debt.id, current_time)
        if withdrawn:
            logger.info("Withdrew %d open offer(s) on transferred debt %s", withdrawn, debt.id)
        return self.store.update_debt(conn, debt.model_copy(update={
            "creditor_id": to_creditor_id,
            "transferred_from_id": from_creditor_id,
            "status": DebtStatus.OUTSTANDING,
            "called_in_at": None,
        }))
