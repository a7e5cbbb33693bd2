"""Ledger package.

Public API:
- CampaignLedger: campaign lifecycle, contribution bookkeeping, withdrawal/refund settlement.
- Error kinds raised by every rejected operation (see `errors`).
"""

from .ledger import CampaignLedger, SECONDS_PER_DAY  # re-export
from .model import Campaign, CampaignSummary, TransferInstruction
from .transfers import LoggingPayoutGateway, PayoutGateway
from .errors import (
    AlreadySettled,
    DeadlinePassed,
    GoalNotReached,
    GoalReached,
    InvalidParameters,
    LedgerError,
    NoEligibleAction,
    NotFound,
    NotOpen,
    NotSettlementEligible,
    SelfContributionForbidden,
    TransferNotRetryable,
    Unauthorized,
)
