from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

from ..clock import Clock, SystemClock
from ..events.schema import (
    BaseEvent,
    CampaignCreated,
    CampaignStopped,
    ContributionMade,
    EventEnvelope,
    FundsWithdrawn,
    RefundIssued,
    TransferFailed,
)
from ..metrics.ledger import (
    get_campaigns_created_total,
    get_contributed_amount_total,
    get_contributions_total,
    get_emergency_stops_total,
    get_event_sink_errors_total,
    get_refunds_total,
    get_rejections_total,
    get_settled_amount_total,
    get_withdrawals_total,
    clear_raised_gauge,
    set_raised_gauge,
)
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
from .model import (
    STATUS_CEASED,
    STATUS_OPEN,
    STATUS_SETTLED,
    Campaign,
    CampaignSummary,
    TransferInstruction,
    new_id,
)
from .transfers import LoggingPayoutGateway, PayoutGateway, TransferOutbox

SECONDS_PER_DAY = 86_400

EventSink = Callable[[EventEnvelope], None]

log = logging.getLogger("fundledger.ledger")


def _require_amount(value, name: str) -> int:
    # bool is an int subclass; a flag is never an amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameters(f"{name} must be an integer amount, got {value!r}")
    if value <= 0:
        raise InvalidParameters(f"{name} must be positive, got {value}")
    return value


def _require_identity(value, name: str, campaign_id: Optional[int] = None) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidParameters(f"{name} must be a non-empty identity string, got {value!r}", campaign_id)
    return value


class CampaignLedger:
    """Accounting core for time-boxed fundraising campaigns.

    Campaign records live in an arena keyed by id with a creator index beside
    it. Every mutation takes the campaign's lock, validates, builds its event,
    applies the change (to a copy when a store is configured, persisting the
    copy before swapping it in) and fans the event out to the sinks before
    releasing the lock. Nothing after the commit can fail the call. Payouts
    are dispatched through the transfer outbox only after that commit.
    """

    def __init__(
        self,
        administrator: str,
        clock: Optional[Clock] = None,
        gateway: Optional[PayoutGateway] = None,
        store=None,
        sinks: Optional[List[EventSink]] = None,
        seconds_per_day: int = SECONDS_PER_DAY,
    ):
        if not administrator:
            raise InvalidParameters("administrator identity required")
        if seconds_per_day <= 0:
            raise InvalidParameters("seconds_per_day must be positive")
        self.administrator = administrator
        self.clock = clock or SystemClock()
        self.store = store
        self.seconds_per_day = int(seconds_per_day)
        self.sinks: List[EventSink] = list(sinks or [])
        self.transfers = TransferOutbox(gateway or LoggingPayoutGateway(), store=store)

        self._campaigns: Dict[int, Campaign] = {}
        self._by_creator: Dict[str, List[int]] = {}
        self._locks: Dict[int, threading.RLock] = {}
        self._registry_lock = threading.RLock()
        self._sequence_lock = threading.Lock()
        self._sequence = 0
        self._next_id = 1

        # Metrics
        self._created_counter = get_campaigns_created_total()
        self._contrib_counter = get_contributions_total()
        self._contrib_amount = get_contributed_amount_total()
        self._withdrawals = get_withdrawals_total()
        self._refunds = get_refunds_total()
        self._settled_amount = get_settled_amount_total()
        self._stops = get_emergency_stops_total()
        self._rejections = get_rejections_total()
        self._sink_errors = get_event_sink_errors_total()

        if store is not None:
            for c in store.load_campaigns():
                self._install(c)
            log.info(f"ledger restored {len(self._campaigns)} campaigns; next id {self._next_id}")

    # ---- internals ----

    def _install(self, c: Campaign) -> None:
        self._campaigns[c.id] = c
        self._by_creator.setdefault(c.creator, []).append(c.id)
        self._locks.setdefault(c.id, threading.RLock())
        self._next_id = max(self._next_id, c.id + 1)

    @contextmanager
    def _rejecting(self, operation: str) -> Iterator[None]:
        try:
            yield
        except LedgerError as e:
            self._rejections.labels(operation, e.code).inc()
            log.info(f"{operation} rejected: {e.code} campaign={e.campaign_id} ({e})")
            raise

    def _lock_for(self, campaign_id: int) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(campaign_id)
        if lock is None:
            raise NotFound(f"unknown campaign {campaign_id}", campaign_id)
        return lock

    def _get(self, campaign_id: int) -> Campaign:
        c = self._campaigns.get(campaign_id)
        if c is None:
            raise NotFound(f"unknown campaign {campaign_id}", campaign_id)
        return c

    def _commit(self, c: Campaign, transfer: Optional[TransferInstruction] = None) -> None:
        # Campaign record and its transfer instruction are written together.
        if self.store is not None:
            self.store.save_campaign(c, transfer)
        self._campaigns[c.id] = c
        if transfer is not None:
            self.transfers.add(transfer, persist=False)
        if c.status != STATUS_OPEN and c.raised_amount == 0:
            clear_raised_gauge(c.id)
        else:
            set_raised_gauge(c.id, c.raised_amount)

    def _emit(self, event: BaseEvent) -> EventEnvelope:
        with self._sequence_lock:
            self._sequence += 1
            env = EventEnvelope(
                correlation_id=f"campaign:{event.campaign_id}",
                sequence=self._sequence,
                event=event,
            )
        for sink in self.sinks:
            try:
                sink(env)
            except Exception:
                # The state change is already committed; a sink cannot undo it.
                self._sink_errors.labels(getattr(sink, "__name__", type(sink).__name__)).inc()
                log.exception(f"event sink failed for seq={env.sequence} type={event.event_type}")
        return env

    def _is_eligible(self, c: Campaign, now: int) -> bool:
        return c.status != STATUS_OPEN or now >= c.deadline or c.goal_reached

    # ---- mutations ----

    def create_campaign(
        self,
        creator: str,
        title: str,
        description: str,
        goal_amount: int,
        duration_in_days: int,
    ) -> int:
        with self._rejecting("create"):
            _require_identity(creator, "creator")
            if not isinstance(title, str) or not title.strip():
                raise InvalidParameters(f"title must be a non-empty string, got {title!r}")
            if description is not None and not isinstance(description, str):
                raise InvalidParameters(f"description must be a string, got {description!r}")
            _require_amount(goal_amount, "goal_amount")
            if isinstance(duration_in_days, bool) or not isinstance(duration_in_days, int) or duration_in_days <= 0:
                raise InvalidParameters(f"duration_in_days must be a positive integer, got {duration_in_days!r}")

            lock = threading.RLock()
            with self._registry_lock:
                now = self.clock.now()
                c = Campaign(
                    id=self._next_id,
                    creator=creator,
                    title=title,
                    description=description or "",
                    goal_amount=goal_amount,
                    deadline=now + duration_in_days * self.seconds_per_day,
                    created_at=now,
                )
                event = CampaignCreated(
                    ts=now, campaign_id=c.id, creator=creator, title=title,
                    goal_amount=goal_amount, deadline=c.deadline,
                )
                # Held across the registry release so the creation event
                # precedes any other event of this campaign.
                lock.acquire()
                try:
                    # Id is consumed only once the record is durable.
                    self._commit(c)
                except BaseException:
                    lock.release()
                    raise
                self._next_id = c.id + 1
                self._by_creator.setdefault(creator, []).append(c.id)
                self._locks[c.id] = lock
            try:
                self._emit(event)
            finally:
                lock.release()
        self._created_counter.inc()
        log.info(f"campaign {c.id} created by {creator}: goal={goal_amount} deadline={c.deadline}")
        return c.id

    def contribute(self, campaign_id: int, contributor: str, amount: int) -> int:
        """Record `amount` for `contributor`; returns the contributor's new stake.

        Custody of the value is the caller's responsibility.
        """
        with self._rejecting("contribute"):
            with self._lock_for(campaign_id):
                current = self._get(campaign_id)
                now = self.clock.now()
                if current.status != STATUS_OPEN:
                    raise NotOpen(f"campaign {campaign_id} is {current.status}", campaign_id)
                if now >= current.deadline:
                    raise DeadlinePassed(f"campaign {campaign_id} closed at {current.deadline}", campaign_id)
                _require_amount(amount, "amount")
                _require_identity(contributor, "contributor", campaign_id)
                if contributor == current.creator:
                    raise SelfContributionForbidden(
                        f"creator cannot contribute to campaign {campaign_id}", campaign_id
                    )
                event = ContributionMade(ts=now, campaign_id=campaign_id, contributor=contributor, amount=amount)

                # Without a store nothing can fail past this point, so the
                # record is updated in place.
                c = current.copy() if self.store is not None else current
                stake = c.contributions.get(contributor, 0)
                if contributor not in c.contributions:
                    c.contributor_order.append(contributor)
                c.contributions[contributor] = stake + amount
                c.raised_amount += amount
                self._commit(c)
                self._emit(event)
        self._contrib_counter.inc()
        self._contrib_amount.inc(amount)
        return stake + amount

    def settle(self, campaign_id: int, caller: str) -> TransferInstruction:
        """Withdraw (creator) or refund (contributor) and dispatch the payout.

        Returns the transfer instruction; its status shows whether the payout
        itself succeeded. Accounting is final either way.
        """
        with self._rejecting("settle"):
            _require_identity(caller, "caller", campaign_id)
            with self._lock_for(campaign_id):
                current = self._get(campaign_id)
                now = self.clock.now()
                if not self._is_eligible(current, now):
                    raise NotSettlementEligible(
                        f"campaign {campaign_id} open until {current.deadline} and goal not reached", campaign_id
                    )
                if caller == current.creator:
                    c, transfer, event = self._withdraw(current, now)
                elif caller in current.contributions:
                    c, transfer, event = self._refund(current, caller, now)
                else:
                    raise NoEligibleAction(f"{caller} has no claim on campaign {campaign_id}", campaign_id)
                self._commit(c, transfer)
                self._emit(event)

        self._settled_amount.labels(transfer.kind).inc(transfer.amount)
        if transfer.kind == "withdrawal":
            self._withdrawals.inc()
        else:
            self._refunds.inc()
        log.info(f"campaign {campaign_id} {transfer.kind} of {transfer.amount} to {transfer.recipient} committed")
        # Accounting is final; a dispatch problem leaves the instruction for retry_transfer.
        try:
            return self._dispatch(transfer.id)
        except TransferNotRetryable:
            # a concurrent retry_transfer picked it up first
            return self.transfers.get(transfer.id)
        except Exception:
            log.exception(f"dispatch of transfer {transfer.id} failed after commit; left for retry")
            return self.transfers.get(transfer.id)

    def _withdraw(self, current: Campaign, now: int):
        cid = current.id
        if current.withdrawn:
            raise AlreadySettled(f"campaign {cid} already withdrawn", cid)
        if current.status == STATUS_CEASED:
            raise NotOpen(f"campaign {cid} was stopped; withdrawal disabled", cid)
        if not current.goal_reached:
            raise GoalNotReached(f"campaign {cid} raised {current.raised_amount} of {current.goal_amount}", cid)
        if current.raised_amount <= 0:
            raise NoEligibleAction(f"campaign {cid} holds nothing to withdraw", cid)

        c = current.copy()
        amount = c.raised_amount
        # Every stake is absorbed by the withdrawal.
        c.contributions = {k: 0 for k in c.contributions}
        c.raised_amount = 0
        c.withdrawn = True
        c.withdrawn_amount = amount
        c.status = STATUS_SETTLED
        transfer = TransferInstruction(
            id=new_id(), campaign_id=cid, kind="withdrawal", recipient=c.creator, amount=amount, created_at=now,
        )
        return c, transfer, FundsWithdrawn(ts=now, campaign_id=cid, creator=c.creator, amount=amount)

    def _refund(self, current: Campaign, contributor: str, now: int):
        cid = current.id
        if contributor in current.refunded:
            raise AlreadySettled(f"{contributor} already refunded from campaign {cid}", cid)
        if current.status != STATUS_CEASED and current.goal_reached:
            raise GoalReached(f"campaign {cid} reached its goal; refunds disabled", cid)
        stake = current.contributions.get(contributor, 0)
        if stake <= 0:
            raise NoEligibleAction(f"{contributor} has no outstanding stake in campaign {cid}", cid)

        c = current.copy()
        c.contributions[contributor] = 0
        c.raised_amount -= stake
        c.refunded.add(contributor)
        if c.raised_amount == 0 and c.status == STATUS_OPEN:
            c.status = STATUS_SETTLED
        transfer = TransferInstruction(
            id=new_id(), campaign_id=cid, kind="refund", recipient=contributor, amount=stake, created_at=now,
        )
        return c, transfer, RefundIssued(ts=now, campaign_id=cid, contributor=contributor, amount=stake)

    def emergency_stop(self, campaign_id: int, caller: str) -> None:
        """Administrator override: cease an open campaign.

        Blocks contributions and creator withdrawal; contributors keep their
        refund rights. No funds move.
        """
        with self._rejecting("emergency_stop"):
            if caller != self.administrator:
                raise Unauthorized(f"{caller} is not the ledger administrator", campaign_id)
            with self._lock_for(campaign_id):
                current = self._get(campaign_id)
                if current.status != STATUS_OPEN:
                    raise NotOpen(f"campaign {campaign_id} is {current.status}", campaign_id)
                now = self.clock.now()
                event = CampaignStopped(
                    ts=now, campaign_id=campaign_id, administrator=caller, raised_amount=current.raised_amount,
                )
                c = current.copy()
                c.status = STATUS_CEASED
                self._commit(c)
                self._emit(event)
        self._stops.inc()
        log.warning(f"campaign {campaign_id} stopped by administrator {caller}")

    def retry_transfer(self, transfer_id: str) -> TransferInstruction:
        """Re-attempt a failed or pending payout; accounting is not touched."""
        with self._rejecting("retry_transfer"):
            return self._dispatch(transfer_id)

    def _dispatch(self, transfer_id: str) -> TransferInstruction:
        t = self.transfers.dispatch(transfer_id)
        if t.status == "failed":
            self._emit(TransferFailed(
                ts=self.clock.now(), campaign_id=t.campaign_id, transfer_id=t.id, recipient=t.recipient,
                amount=t.amount, attempts=t.attempts, reason=t.last_error or "unknown",
            ))
        return t

    # ---- queries ----

    def get_campaign(self, campaign_id: int) -> CampaignSummary:
        with self._lock_for(campaign_id):
            c = self._get(campaign_id)
            return CampaignSummary(
                id=c.id,
                creator=c.creator,
                title=c.title,
                description=c.description,
                goal_amount=c.goal_amount,
                deadline=c.deadline,
                raised_amount=c.raised_amount,
                status=c.status,
                goal_reached=c.goal_reached,
                contributor_count=len(c.contributor_order),
                withdrawn=c.withdrawn,
                withdrawn_amount=c.withdrawn_amount,
            )

    def get_contribution(self, campaign_id: int, contributor: str) -> int:
        with self._lock_for(campaign_id):
            return self._get(campaign_id).contributions.get(contributor, 0)

    def get_creator_campaigns(self, creator: str) -> List[int]:
        with self._registry_lock:
            return list(self._by_creator.get(creator, []))

    def get_contributors(self, campaign_id: int) -> List[str]:
        with self._lock_for(campaign_id):
            return list(self._get(campaign_id).contributor_order)

    def campaign_count(self) -> int:
        with self._registry_lock:
            return len(self._campaigns)

    def snapshot(self) -> List[Campaign]:
        """Copies of every campaign record, ordered by id (for exports)."""
        with self._registry_lock:
            ids = sorted(self._campaigns)
        out = []
        for cid in ids:
            with self._lock_for(cid):
                out.append(self._campaigns[cid].copy())
        return out
