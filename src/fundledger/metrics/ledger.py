from __future__ import annotations

from typing import Optional
import os
from prometheus_client import Counter, Gauge, REGISTRY

_campaigns_created: Optional[Counter] = None
_contributions_total: Optional[Counter] = None
_contributed_amount_total: Optional[Counter] = None
_withdrawals_total: Optional[Counter] = None
_refunds_total: Optional[Counter] = None
_settled_amount_total: Optional[Counter] = None
_transfers_failed_total: Optional[Counter] = None
_rejections_total: Optional[Counter] = None
_emergency_stops_total: Optional[Counter] = None
_event_sink_errors_total: Optional[Counter] = None
_campaign_raised_amount: Optional[Gauge] = None


class _NoOp:
    def labels(self, *args, **kwargs):
        return self
    def inc(self, *args, **kwargs):
        return None
    def set(self, *args, **kwargs):
        return None
    def remove(self, *args, **kwargs):
        return None


def _existing(name: str):
    # Counters register under both `name` and `name_total`; look up either.
    names = getattr(REGISTRY, "_names_to_collectors", {})
    coll = names.get(name)
    if coll is not None:
        return coll
    for coll in list(getattr(REGISTRY, "_collector_to_names", {}).keys()):
        if getattr(coll, "_name", None) == name:
            return coll
    return None


def _safe_counter(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Counter(name, doc, labelnames)
    except ValueError:
        coll = _existing(name)
        return coll if coll is not None else _NoOp()


def _safe_gauge_labels(name: str, doc: str, labelnames):
    if os.getenv("DISABLE_PROMETHEUS", "0") == "1":
        return _NoOp()
    try:
        return Gauge(name, doc, labelnames)
    except ValueError:
        coll = _existing(name)
        return coll if isinstance(coll, Gauge) else _NoOp()


def get_campaigns_created_total():
    global _campaigns_created
    if _campaigns_created is None:
        _campaigns_created = _safe_counter("campaigns_created_total", "Campaigns created", [])
    return _campaigns_created


def get_contributions_total():
    global _contributions_total
    if _contributions_total is None:
        _contributions_total = _safe_counter("contributions_total", "Contributions accepted", [])
    return _contributions_total


def get_contributed_amount_total():
    """Counter: sum of accepted contribution amounts (smallest currency unit)."""
    global _contributed_amount_total
    if _contributed_amount_total is None:
        _contributed_amount_total = _safe_counter(
            "contributed_amount_total", "Contributed amount accepted", []
        )
    return _contributed_amount_total


def get_withdrawals_total():
    global _withdrawals_total
    if _withdrawals_total is None:
        _withdrawals_total = _safe_counter("withdrawals_total", "Creator withdrawals committed", [])
    return _withdrawals_total


def get_refunds_total():
    global _refunds_total
    if _refunds_total is None:
        _refunds_total = _safe_counter("refunds_total", "Contributor refunds committed", [])
    return _refunds_total


def get_settled_amount_total():
    """Counter: settled_amount_total{kind} with kind in withdrawal|refund."""
    global _settled_amount_total
    if _settled_amount_total is None:
        _settled_amount_total = _safe_counter(
            "settled_amount_total", "Amount released by settlements", ["kind"]
        )
    return _settled_amount_total


def get_transfers_failed_total():
    global _transfers_failed_total
    if _transfers_failed_total is None:
        _transfers_failed_total = _safe_counter(
            "transfers_failed_total", "Payout transfer attempts that failed", ["kind"]
        )
    return _transfers_failed_total


def get_rejections_total():
    """Counter: ledger_rejections_total{operation,reason}"""
    global _rejections_total
    if _rejections_total is None:
        _rejections_total = _safe_counter(
            "ledger_rejections_total", "Ledger operations rejected", ["operation", "reason"]
        )
    return _rejections_total


def get_emergency_stops_total():
    global _emergency_stops_total
    if _emergency_stops_total is None:
        _emergency_stops_total = _safe_counter("emergency_stops_total", "Campaigns stopped by the administrator", [])
    return _emergency_stops_total


def get_event_sink_errors_total():
    global _event_sink_errors_total
    if _event_sink_errors_total is None:
        _event_sink_errors_total = _safe_counter(
            "event_sink_errors_total", "Event sink delivery errors", ["sink"]
        )
    return _event_sink_errors_total


def get_campaign_raised_amount():
    """Gauge: current raised amount, labeled by campaign id."""
    global _campaign_raised_amount
    if _campaign_raised_amount is None:
        _campaign_raised_amount = _safe_gauge_labels(
            "campaign_raised_amount", "Current raised amount per campaign", ["campaign_id"]
        )
    return _campaign_raised_amount


def set_raised_gauge(campaign_id: int, amount: int) -> None:
    try:
        get_campaign_raised_amount().labels(campaign_id=str(campaign_id)).set(float(amount))
    except Exception:
        # Metrics are optional in constrained environments
        pass


def clear_raised_gauge(campaign_id: int) -> None:
    """Drop the series of a campaign that no longer holds funds."""
    try:
        get_campaign_raised_amount().remove(str(campaign_id))
    except KeyError:
        # never set, or already cleared
        pass
