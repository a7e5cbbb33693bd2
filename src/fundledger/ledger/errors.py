"""Error kinds raised by the campaign ledger.

Every rejected precondition maps to exactly one subclass with a stable
``code`` (used as the ``reason`` label on ``ledger_rejections_total``).
A raised error guarantees the ledger state is unchanged.
"""

from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    code = "ledger_error"

    def __init__(self, message: str = "", campaign_id: Optional[int] = None):
        super().__init__(message or self.code)
        self.campaign_id = campaign_id


class InvalidParameters(LedgerError):
    code = "invalid_parameters"


class NotFound(LedgerError):
    code = "not_found"


class NotOpen(LedgerError):
    code = "not_open"


class DeadlinePassed(LedgerError):
    code = "deadline_passed"


class SelfContributionForbidden(LedgerError):
    code = "self_contribution_forbidden"


class NotSettlementEligible(LedgerError):
    code = "not_settlement_eligible"


class GoalNotReached(LedgerError):
    code = "goal_not_reached"


class GoalReached(LedgerError):
    code = "goal_reached"


class AlreadySettled(LedgerError):
    code = "already_settled"


class Unauthorized(LedgerError):
    code = "unauthorized"


class NoEligibleAction(LedgerError):
    code = "no_eligible_action"


class TransferNotRetryable(LedgerError):
    code = "transfer_not_retryable"
