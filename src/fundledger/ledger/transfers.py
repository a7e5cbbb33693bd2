"""Transfer outbox separating accounting commits from physical payouts.

The ledger records a `TransferInstruction` only after the withdrawal or
refund is committed. Dispatching it calls the payout gateway; a gateway
failure marks the instruction `failed` and leaves accounting untouched, so a
later `retry` re-attempts the payout without re-crediting anything.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Dict, List, Optional

from .errors import NotFound, TransferNotRetryable
from .model import TransferInstruction
from ..metrics.ledger import get_transfers_failed_total

log = logging.getLogger("fundledger.ledger")


class PayoutGateway:
    """Custody collaborator. `transfer` raises on failure."""

    def transfer(self, recipient: str, amount: int, reference: str) -> None:
        raise NotImplementedError


class LoggingPayoutGateway(PayoutGateway):
    """Records payouts in the log only; used when no custody backend is wired."""

    def transfer(self, recipient: str, amount: int, reference: str) -> None:
        log.info(f"payout recipient={recipient} amount={amount} ref={reference}")


class TransferOutbox:
    """Outstanding payout instructions.

    With a store, completed instructions are dropped from memory once their
    final state is durable; `get` and `dispatch` still find them in the store.
    """

    def __init__(self, gateway: PayoutGateway, store=None):
        self.gateway = gateway
        self.store = store
        self._transfers: Dict[str, TransferInstruction] = {}
        self._in_flight: set = set()
        self._lock = threading.Lock()
        self._failed_counter = get_transfers_failed_total()
        if store is not None:
            for t in store.load_transfers():
                if t.status != "completed":
                    self._transfers[t.id] = t

    def _persist(self, t: TransferInstruction) -> None:
        if self.store is not None:
            self.store.save_transfer(t)

    def _lookup(self, transfer_id: str) -> TransferInstruction:
        t = self._transfers.get(transfer_id)
        if t is None and self.store is not None:
            t = self.store.load_transfer(transfer_id)
        if t is None:
            raise NotFound(f"unknown transfer {transfer_id}")
        return t

    def add(self, t: TransferInstruction, persist: bool = True) -> None:
        with self._lock:
            if persist:
                self._persist(t)
            self._transfers[t.id] = t

    def get(self, transfer_id: str) -> TransferInstruction:
        with self._lock:
            return dataclasses.replace(self._lookup(transfer_id))

    def list(self, status: Optional[str] = None) -> List[TransferInstruction]:
        with self._lock:
            items = [dataclasses.replace(t) for t in self._transfers.values()]
        if status is not None:
            items = [t for t in items if t.status == status]
        return sorted(items, key=lambda t: (t.created_at, t.campaign_id, t.id))

    def dispatch(self, transfer_id: str) -> TransferInstruction:
        """Attempt the physical transfer once; return the updated instruction."""
        with self._lock:
            t = self._lookup(transfer_id)
            if t.status == "completed":
                raise TransferNotRetryable(f"transfer {transfer_id} already completed", t.campaign_id)
            if transfer_id in self._in_flight:
                raise TransferNotRetryable(f"transfer {transfer_id} is in flight", t.campaign_id)
            self._transfers[transfer_id] = t
            self._in_flight.add(transfer_id)
            t.attempts += 1
        try:
            self.gateway.transfer(t.recipient, t.amount, t.id)
        except Exception as e:
            with self._lock:
                t.status = "failed"
                t.last_error = f"{type(e).__name__}: {e}"
                self._in_flight.discard(transfer_id)
                self._persist(t)
            self._failed_counter.labels(t.kind).inc()
            log.warning(
                f"transfer {t.id} ({t.kind} of {t.amount} to {t.recipient}) failed on attempt "
                f"{t.attempts}: {t.last_error}"
            )
            return dataclasses.replace(t)
        with self._lock:
            t.status = "completed"
            t.last_error = None
            self._in_flight.discard(transfer_id)
            self._persist(t)
            if self.store is not None:
                del self._transfers[transfer_id]
        return dataclasses.replace(t)
