"""Debts, their transfer/default history and the marketplace."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DebtType(str, Enum):
    FAVOR = "favor"
    MONEY = "money"
    PROTECTION = "protection"
    SERVICE = "service"
    INFORMATION = "information"
    BLOOD_DEBT = "blood_debt"


class DebtStatus(str, Enum):
    OUTSTANDING = "outstanding"
    CALLED_IN = "called_in"
    FULFILLED = "fulfilled"
    DEFAULTED = "defaulted"
    FORGIVEN = "forgiven"
    TRANSFERRED = "transferred"


class AskingPriceType(str, Enum):
    CASH = "cash"
    FAVOR = "favor"
    OTHER_DEBT = "other_debt"
    SERVICE = "service"


class OfferStatus(str, Enum):
    OPEN = "open"
    ACCEPTED = "accepted"
    WITHDRAWN = "withdrawn"
    EXPIRED = "expired"


class Debt(BaseModel):
    """A social obligation owed by debtor to creditor."""

    id: str
    creditor_id: str
    debtor_id: str
    debt_type: DebtType
    description: str = Field(max_length=500)
    value: int = Field(ge=1, le=10)         # severity, not currency
    original_value: int = Field(ge=1, le=10)
    status: DebtStatus = DebtStatus.OUTSTANDING
    context: dict = {}
    due_date: Optional[datetime] = None
    transferred_from_id: Optional[str] = None
    created_at: datetime
    called_in_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    version: int = 1


class DebtTransfer(BaseModel):
    id: str
    debt_id: str
    from_creditor_id: str
    to_creditor_id: str
    reason: Optional[str] = None
    value_at_transfer: int
    created_at: datetime


class DebtDefault(BaseModel):
    id: str
    debt_id: str
    debtor_id: str
    creditor_id: str
    reason: Optional[str] = None
    trust_penalty: int
    created_at: datetime


class DebtOffer(BaseModel):
    """Marketplace listing selling a debt to another player."""

    id: str
    debt_id: str
    offerer_id: str
    asking_price_type: AskingPriceType
    asking_price_value: int = Field(ge=0)
    asking_price_details: Optional[str] = None
    status: OfferStatus = OfferStatus.OPEN
    accepted_by_id: Optional[str] = None
    expires_at: datetime
    created_at: datetime
    resolved_at: Optional[datetime] = None


class DebtResolution(BaseModel):
    """
    Outcome of a terminal transition. Trust effects are computed here
    and applied by the caller through the reputation ledger.
    """

    debt: Debt
    trust_bonus: int = 0
    trust_penalty: int = 0
    default_record: Optional[DebtDefault] = None


class OverdueDebt(BaseModel):
    debt: Debt
    days_overdue: int


class DebtSummary(BaseModel):
    player_id: str
    owed_count: int = 0                     # debts this player must repay
    owed_value: int = 0
    held_count: int = 0                     # debts owed to this player
    held_value: int = 0
    defaults_count: int = 0
    fulfilled_count: int = 0


class DebtHistory(BaseModel):
    debt: Debt
    transfers: List[DebtTransfer] = []
    defaults: List[DebtDefault] = []
    offers: List[DebtOffer] = []
