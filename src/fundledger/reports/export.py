"""
Export ledger state to parquet for offline analysis.

Usage (venv):
  PYTHONPATH=src python -m fundledger.reports.export

Writes `campaigns.parquet` (one row per campaign, with derived goal_reached)
and `contributions.parquet` (one row per campaign/contributor stake, in
first-contribution order) to the configured export directory.
"""

from __future__ import annotations

import os
from typing import Any, Dict, List

import pandas as pd

from fundledger.config.loader import load_settings
from fundledger.ledger.ledger import CampaignLedger
from fundledger.store.sqlite_store import SQLiteStore


def campaign_rows(ledger: CampaignLedger) -> List[Dict[str, Any]]:
    rows = []
    for c in ledger.snapshot():
        rows.append({
            "campaign_id": c.id,
            "creator": c.creator,
            "title": c.title,
            "goal_amount": c.goal_amount,
            "deadline": c.deadline,
            "raised_amount": c.raised_amount,
            "status": c.status,
            "goal_reached": c.goal_reached,
            "contributor_count": len(c.contributor_order),
            "withdrawn_amount": c.withdrawn_amount,
        })
    return rows


def contribution_rows(ledger: CampaignLedger) -> List[Dict[str, Any]]:
    rows = []
    for c in ledger.snapshot():
        for position, who in enumerate(c.contributor_order):
            rows.append({
                "campaign_id": c.id,
                "position": position,
                "contributor": who,
                "stake": c.contributions.get(who, 0),
                "refunded": who in c.refunded,
            })
    return rows


def write_parquet(ledger: CampaignLedger, base_dir: str = "data/export") -> Dict[str, str]:
    os.makedirs(base_dir, exist_ok=True)
    campaigns_df = pd.DataFrame(campaign_rows(ledger))
    contributions_df = pd.DataFrame(contribution_rows(ledger))
    paths = {
        "campaigns": os.path.join(base_dir, "campaigns.parquet"),
        "contributions": os.path.join(base_dir, "contributions.parquet"),
    }
    campaigns_df.to_parquet(paths["campaigns"])
    contributions_df.to_parquet(paths["contributions"])
    return paths


def main() -> None:
    settings = load_settings()
    if not settings.store_path:
        raise SystemExit("store_path not configured; nothing to export")

    ledger = CampaignLedger(
        settings.administrator,
        store=SQLiteStore(settings.store_path),
        seconds_per_day=settings.seconds_per_day,
    )
    paths = write_parquet(ledger, settings.export_dir)
    print(f"Export written to: {paths['campaigns']}, {paths['contributions']}")


if __name__ == "__main__":
    main()
