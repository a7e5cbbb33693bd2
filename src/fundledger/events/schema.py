from __future__ import annotations

from typing import Literal
from pydantic import BaseModel, Field, SerializeAsAny


# ---- Base + envelope ----

class BaseEvent(BaseModel):
    event_type: str
    ts: int
    campaign_id: int


class EventEnvelope(BaseModel):
    schema_version: str = "v1"
    correlation_id: str
    sequence: int = 0
    event: SerializeAsAny[BaseEvent]


# ---- Event types ----

class CampaignCreated(BaseEvent):
    event_type: Literal["campaign_created"] = "campaign_created"
    creator: str
    title: str
    goal_amount: int = Field(gt=0)
    deadline: int


class ContributionMade(BaseEvent):
    event_type: Literal["contribution_made"] = "contribution_made"
    contributor: str
    amount: int = Field(gt=0)


class FundsWithdrawn(BaseEvent):
    event_type: Literal["funds_withdrawn"] = "funds_withdrawn"
    creator: str
    amount: int = Field(gt=0)


class RefundIssued(BaseEvent):
    event_type: Literal["refund_issued"] = "refund_issued"
    contributor: str
    amount: int = Field(gt=0)


class CampaignStopped(BaseEvent):
    event_type: Literal["campaign_stopped"] = "campaign_stopped"
    administrator: str
    raised_amount: int = 0


class TransferFailed(BaseEvent):
    event_type: Literal["transfer_failed"] = "transfer_failed"
    transfer_id: str
    recipient: str
    amount: int
    attempts: int
    reason: str
