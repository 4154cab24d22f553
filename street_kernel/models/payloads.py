"""Typed, versioned payloads attached to world events."""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class EffectType(str, Enum):
    CASH = "cash"
    BUFF = "buff"
    RESTORE = "restore"
    REDUCE = "reduce"
    NONE = "none"


class Effect(BaseModel):
    """What the originating action did, in game terms."""

    model_config = ConfigDict(extra="forbid")

    type: EffectType = EffectType.NONE
    amount: int = 0
    target: Optional[str] = None            # item, stat or player the effect touched


class EventPayload(BaseModel):
    """Structured context recorded with a district event."""

    model_config = ConfigDict(extra="forbid")

    version: Literal[1] = 1
    effect: Effect = Field(default_factory=Effect)
    note: Optional[str] = Field(default=None, max_length=500)
    tags: List[str] = []
