"""
Main entrypoint for fundledger.

What it does:
- Loads runtime settings from `config/config.yaml` and environment variables
  using the env-prefix convention (e.g., `FUNDLEDGER_LOCAL_*`).
- Starts the Prometheus exporter on `PROMETHEUS_PORT` (default 8000).
- Builds a `CampaignLedger` wired to its event sinks (JSONL audit log, and the
  Redis event stream when `events.publish` is enabled) and to the SQLite store
  when `store_path` is configured.
- With `OFFLINE_DEMO=1`, runs one funded and one failed campaign on a manual
  clock, then exports parquet snapshots.

Where it is used:
- Invoked by `python -m fundledger.main`.

Key related modules:
- `fundledger.config.loader.LedgerSettings` and `load_settings`
- `fundledger.ledger.CampaignLedger`
- `fundledger.events.bus.publish`
"""
import logging
import os
import time
from typing import Optional

from fundledger.clock import Clock, ManualClock
from fundledger.config.loader import LedgerSettings, load_settings
from fundledger.events import bus
from fundledger.ledger import CampaignLedger, PayoutGateway
from fundledger.logs.audit_log import AuditLogSink
from fundledger.metrics.core import start_server_safe
from fundledger.reports.export import write_parquet
from fundledger.store.sqlite_store import SQLiteStore


def build_ledger(
    settings: LedgerSettings,
    clock: Optional[Clock] = None,
    gateway: Optional[PayoutGateway] = None,
) -> CampaignLedger:
    sinks = []
    if settings.events.audit_log:
        sinks.append(AuditLogSink(settings.audit_log_path))
    if settings.events.publish:
        sinks.append(bus.publish)
    store = SQLiteStore(settings.store_path) if settings.store_path else None
    return CampaignLedger(
        settings.administrator,
        clock=clock,
        gateway=gateway,
        store=store,
        sinks=sinks,
        seconds_per_day=settings.seconds_per_day,
    )


def run_demo(ledger: CampaignLedger, clock: ManualClock) -> None:
    funded = ledger.create_campaign("alice", "Community garden", "Raised beds and tools", 100, 1)
    ledger.contribute(funded, "bob", 40)
    ledger.contribute(funded, "carol", 70)
    t = ledger.settle(funded, "alice")
    logging.info(f"withdrawal: {t.__dict__}")

    missed = ledger.create_campaign("dave", "Film festival", "Venue deposit", 500, 2)
    ledger.contribute(missed, "erin", 30)
    ledger.contribute(missed, "frank", 45)
    clock.advance(2 * ledger.seconds_per_day)
    for who in ledger.get_contributors(missed):
        t = ledger.settle(missed, who)
        logging.info(f"refund: {t.__dict__}")

    for cid in (funded, missed):
        logging.info(f"campaign: {ledger.get_campaign(cid).__dict__}")
    pending = ledger.transfers.list(status="failed")
    if pending:
        logging.warning(f"{len(pending)} payouts need retry")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    settings = load_settings()
    logging.info(f"Environment: {settings.environment}, administrator: {settings.administrator}")

    prom_port = int(os.getenv("PROMETHEUS_PORT", "8000"))
    start_server_safe(prom_port)

    if os.getenv("OFFLINE_DEMO", "0") == "1":
        logging.info("OFFLINE_DEMO=1: using a manual clock")
        clock = ManualClock(start=int(time.time()))
        ledger = build_ledger(settings, clock=clock)
        run_demo(ledger, clock)
        paths = write_parquet(ledger, settings.export_dir)
        logging.info(f"export written: {paths}")
    else:
        ledger = build_ledger(settings)
        logging.info(f"ledger ready: {ledger.campaign_count()} campaigns")

    hold = int(os.getenv("HOLD_SECONDS", "0"))
    if hold > 0:
        logging.info(f"holding metrics server for {hold}s before exit")
        time.sleep(hold)


if __name__ == "__main__":
    main()
