"""
Data models for storage layer.

Defines persisted records that are not part of the live ledger itself.
"""

from dataclasses import dataclass
from datetime import date, datetime

from ai_footprint.core.ledger import DailyLedger

CURRENT_LEDGER_KEY = "dailyData"
ARCHIVE_KEY_PREFIX = "history_"
HOST_LOCK_KEY = "ledgerHost"


def archive_key(day: date) -> str:
    """Storage key of the archive record for a calendar day."""
    return f"{ARCHIVE_KEY_PREFIX}{day.isoformat()}"


@dataclass(frozen=True)
class ArchivedLedger:
    """Immutable snapshot of a closed-out day.
    
    Written at rollover or reset time, one record per calendar day.
    A later archive for the same day replaces the earlier one
    (last write wins).
    """
    ledger: DailyLedger
    archived_at: datetime

    @property
    def key(self) -> str:
        return archive_key(self.ledger.date)
