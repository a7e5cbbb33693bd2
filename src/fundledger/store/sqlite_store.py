from __future__ import annotations

import json
import os
import sqlite3
from typing import List, Optional

from ..ledger.model import Campaign, TransferInstruction


DDL = """
CREATE TABLE IF NOT EXISTS campaigns (
  id INTEGER PRIMARY KEY,
  creator TEXT NOT NULL,
  status TEXT NOT NULL,
  raised_amount INTEGER NOT NULL,
  json TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS transfers (
  id TEXT PRIMARY KEY,
  campaign_id INTEGER NOT NULL,
  status TEXT NOT NULL,
  json TEXT NOT NULL
);
"""


class SQLiteStore:
    """Durable campaign and transfer records.

    One row per campaign, rewritten whole on every mutation; the ledger
    serializes writers per campaign, so each upsert is a complete
    read-modify-write of that record.
    """

    def __init__(self, path: str = "data/fundledger.sqlite"):
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.path = path
        with sqlite3.connect(self.path) as con:
            con.executescript(DDL)

    def save_campaign(self, c: Campaign, transfer: Optional[TransferInstruction] = None) -> None:
        """Upsert a campaign, and the transfer its settlement owes, in one transaction."""
        with sqlite3.connect(self.path) as con:
            con.execute(
                "INSERT OR REPLACE INTO campaigns(id,creator,status,raised_amount,json) VALUES (?,?,?,?,?)",
                (c.id, c.creator, c.status, int(c.raised_amount), json.dumps(c.to_record())),
            )
            if transfer is not None:
                self._upsert_transfer(con, transfer)

    def _upsert_transfer(self, con: sqlite3.Connection, t: TransferInstruction) -> None:
        con.execute(
            "INSERT OR REPLACE INTO transfers(id,campaign_id,status,json) VALUES (?,?,?,?)",
            (t.id, t.campaign_id, t.status, json.dumps(t.to_record())),
        )

    def load_campaigns(self) -> List[Campaign]:
        with sqlite3.connect(self.path) as con:
            rows = con.execute("SELECT json FROM campaigns ORDER BY id").fetchall()
        return [Campaign.from_record(json.loads(r[0])) for r in rows]

    def save_transfer(self, t: TransferInstruction) -> None:
        with sqlite3.connect(self.path) as con:
            self._upsert_transfer(con, t)

    def load_transfers(self) -> List[TransferInstruction]:
        with sqlite3.connect(self.path) as con:
            rows = con.execute("SELECT json FROM transfers ORDER BY rowid").fetchall()
        return [TransferInstruction.from_record(json.loads(r[0])) for r in rows]

    def load_transfer(self, transfer_id: str) -> Optional[TransferInstruction]:
        with sqlite3.connect(self.path) as con:
            row = con.execute("SELECT json FROM transfers WHERE id = ?", (transfer_id,)).fetchone()
        return TransferInstruction.from_record(json.loads(row[0])) if row else None
