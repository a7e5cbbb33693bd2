from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Set
import uuid

CampaignStatus = Literal["open", "settled", "ceased"]
TransferKind = Literal["withdrawal", "refund"]
TransferStatus = Literal["pending", "completed", "failed"]

STATUS_OPEN: CampaignStatus = "open"
STATUS_SETTLED: CampaignStatus = "settled"
STATUS_CEASED: CampaignStatus = "ceased"


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Campaign:
    """Authoritative accounting record for one campaign.

    Amounts are ints in the smallest currency unit; timestamps are seconds.
    `contributions` keeps zeroed entries so a refunded or absorbed stake stays
    distinguishable from a party that never contributed.
    """

    id: int
    creator: str
    title: str
    description: str
    goal_amount: int
    deadline: int
    created_at: int
    raised_amount: int = 0
    status: CampaignStatus = STATUS_OPEN
    contributions: Dict[str, int] = field(default_factory=dict)
    contributor_order: List[str] = field(default_factory=list)
    withdrawn: bool = False
    withdrawn_amount: int = 0
    refunded: Set[str] = field(default_factory=set)

    @property
    def goal_reached(self) -> bool:
        return self.raised_amount >= self.goal_amount

    def copy(self) -> "Campaign":
        return Campaign(
            id=self.id,
            creator=self.creator,
            title=self.title,
            description=self.description,
            goal_amount=self.goal_amount,
            deadline=self.deadline,
            created_at=self.created_at,
            raised_amount=self.raised_amount,
            status=self.status,
            contributions=dict(self.contributions),
            contributor_order=list(self.contributor_order),
            withdrawn=self.withdrawn,
            withdrawn_amount=self.withdrawn_amount,
            refunded=set(self.refunded),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "creator": self.creator,
            "title": self.title,
            "description": self.description,
            "goal_amount": self.goal_amount,
            "deadline": self.deadline,
            "created_at": self.created_at,
            "raised_amount": self.raised_amount,
            "status": self.status,
            "contributions": dict(self.contributions),
            "contributor_order": list(self.contributor_order),
            "withdrawn": self.withdrawn,
            "withdrawn_amount": self.withdrawn_amount,
            "refunded": sorted(self.refunded),
        }

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Campaign":
        return cls(
            id=int(rec["id"]),
            creator=rec["creator"],
            title=rec["title"],
            description=rec.get("description", ""),
            goal_amount=int(rec["goal_amount"]),
            deadline=int(rec["deadline"]),
            created_at=int(rec.get("created_at", 0)),
            raised_amount=int(rec.get("raised_amount", 0)),
            status=rec.get("status", STATUS_OPEN),
            contributions={k: int(v) for k, v in rec.get("contributions", {}).items()},
            contributor_order=list(rec.get("contributor_order", [])),
            withdrawn=bool(rec.get("withdrawn", False)),
            withdrawn_amount=int(rec.get("withdrawn_amount", 0)),
            refunded=set(rec.get("refunded", [])),
        )


@dataclass
class CampaignSummary:
    id: int
    creator: str
    title: str
    description: str
    goal_amount: int
    deadline: int
    raised_amount: int
    status: CampaignStatus
    goal_reached: bool
    contributor_count: int
    withdrawn: bool
    withdrawn_amount: int


@dataclass
class TransferInstruction:
    """Outbox entry for a physical transfer owed after an accounting commit."""

    id: str
    campaign_id: int
    kind: TransferKind
    recipient: str
    amount: int
    created_at: int
    status: TransferStatus = "pending"
    attempts: int = 0
    last_error: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return dict(self.__dict__)

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "TransferInstruction":
        return cls(**rec)
