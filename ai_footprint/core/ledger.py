"""
Daily impact ledger.

Accumulates per-turn impact into a running total for the current calendar
day, rolls it over at day boundaries and archives the previous day.

State machine:
    There is a single state, Active(date, queries, total_tokens, energy_wh,
    carbon_grams, water_ml). Rollover and reset are transitions that archive
    the Active record and replace it with a zeroed one.

Triggers for rollover:
1. Lazy check - record_turn() notices the calendar day has changed
2. Scheduled check - the boundary scheduler posts a rollover check at midnight
Both go through rollover(), which is a no-op when the day has not changed.
"""

import logging
import sqlite3
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List

from .impact import ImpactQuantity, to_impact

logger = logging.getLogger(__name__)


class InvalidInputError(ValueError):
    """Raised when a contribution would corrupt the ledger totals."""


class Role(Enum):
    """Who authored an observed turn."""
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Accept a Role or its string value (case-insensitive).

        Raises:
            InvalidInputError: If value is not a known role
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        valid_roles = [role.value for role in cls]
        raise InvalidInputError(f"role must be one of: {valid_roles}")


@dataclass(frozen=True)
class DailyLedger:
    """Running totals for one calendar day.

    Instances are immutable; every accepted turn produces a new ledger, so
    sums only ever grow within a single date.
    """
    date: date
    queries: int = 0
    total_tokens: int = 0
    energy_wh: float = 0.0
    carbon_grams: float = 0.0
    water_ml: float = 0.0

    @classmethod
    def zeroed(cls, day: date) -> "DailyLedger":
        """Fresh ledger for the given day with all counters at zero."""
        return cls(date=day)

    @property
    def impact(self) -> ImpactQuantity:
        return ImpactQuantity(
            energy_wh=self.energy_wh,
            carbon_grams=self.carbon_grams,
            water_ml=self.water_ml
        )

    def with_turn(self, tokens: int, role: Role) -> "DailyLedger":
        """Return a new ledger with one turn's contribution added."""
        impact = self.impact + to_impact(tokens)
        return replace(
            self,
            queries=self.queries + (1 if role == Role.USER else 0),
            total_tokens=self.total_tokens + tokens,
            energy_wh=impact.energy_wh,
            carbon_grams=impact.carbon_grams,
            water_ml=impact.water_ml
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "queries": self.queries,
            "total_tokens": self.total_tokens,
            "energy_wh": self.energy_wh,
            "carbon_grams": self.carbon_grams,
            "water_ml": self.water_ml,
        }


def _validate_tokens(tokens: Any) -> int:
    # bool is an int subclass but never a token count
    if isinstance(tokens, bool) or not isinstance(tokens, int):
        raise InvalidInputError(f"tokens must be an integer, got {tokens!r}")
    if tokens < 0:
        raise InvalidInputError(f"tokens cannot be negative, got {tokens}")
    return tokens


class LedgerService:
    """Single owner of the daily ledger.

    Only this object mutates the ledger. Other components submit commands
    (see ai_footprint.service) and read immutable snapshots.

    Storage failures are soft: the in-memory ledger stays authoritative,
    unwritten archives are queued and every later mutation retries the save.
    """

    def __init__(self, repository, clock: Callable[[], date] = date.today):
        """Initialize the service.

        Args:
            repository: LedgerRepository used for persistence
            clock: Returns the current calendar day (injectable for tests)
        """
        self._repository = repository
        self._clock = clock
        self._ledger = DailyLedger.zeroed(clock())
        self._pending_archives: List[DailyLedger] = []
        self._save_pending = False

    @property
    def save_pending(self) -> bool:
        """True when the last save failed and is waiting to be retried."""
        return self._save_pending or bool(self._pending_archives)

    def load(self) -> DailyLedger:
        """Load the persisted ledger, rolling over a record from an earlier day.

        A missing record, or a store that cannot be read, is treated as
        "no data yet" and a zeroed ledger for today is used.
        """
        today = self._clock()
        try:
            stored = self._repository.load_current()
        except sqlite3.Error as e:
            logger.warning("Could not load ledger, starting from zero: %s", e)
            self._ledger = DailyLedger.zeroed(today)
            return self._ledger

        if stored is None:
            self._ledger = DailyLedger.zeroed(today)
            self._persist()
        elif stored.date != today:
            self._ledger = stored
            self.rollover()
        else:
            self._ledger = stored

        logger.info(
            "Ledger loaded for %s: %d tokens, %d queries",
            self._ledger.date, self._ledger.total_tokens, self._ledger.queries
        )
        return self._ledger

    def snapshot(self) -> DailyLedger:
        """Current ledger; immutable, safe to hand to readers."""
        return self._ledger

    def record_turn(self, tokens: int, role: Role) -> bool:
        """Add one observed turn to today's totals.

        Args:
            tokens: Non-negative token count for the turn
            role: Role.USER turns also count as a query

        Returns:
            True if the updated ledger was saved durably

        Raises:
            InvalidInputError: If tokens is negative or not an integer, or
                role is unknown. The ledger is left untouched.
        """
        tokens = _validate_tokens(tokens)
        role = Role.parse(role)

        if self._ledger.date != self._clock():
            self._roll_to_today()

        self._ledger = self._ledger.with_turn(tokens, role)
        logger.debug(
            "Recorded %d %s tokens, total today: %d tokens, %d queries",
            tokens, role.value, self._ledger.total_tokens, self._ledger.queries
        )
        return self._persist()

    def rollover(self) -> bool:
        """Archive the ledger and start a zeroed one if the day has changed.

        Returns:
            True if a rollover happened, False if the ledger is already for today
        """
        if self._ledger.date == self._clock():
            return False

        self._roll_to_today()
        self._persist()
        return True

    def reset_today(self) -> bool:
        """Archive the current ledger and start over, even within the same day.

        Returns:
            True if the reset state was saved durably
        """
        logger.info("Resetting ledger for %s", self._ledger.date)
        self._roll_to_today()
        return self._persist()

    def retry_save(self) -> bool:
        """Flush any state a previous failed save left behind."""
        if not self.save_pending:
            return True
        return self._persist()

    def _roll_to_today(self) -> None:
        today = self._clock()
        logger.info(
            "Closing ledger for %s (%d tokens, %d queries), starting %s",
            self._ledger.date, self._ledger.total_tokens, self._ledger.queries, today
        )
        self._pending_archives.append(self._ledger)
        self._ledger = DailyLedger.zeroed(today)

    def _persist(self) -> bool:
        try:
            while self._pending_archives:
                self._repository.archive_ledger(self._pending_archives[0])
                self._pending_archives.pop(0)
            self._repository.save_current(self._ledger)
        except sqlite3.Error as e:
            logger.warning("Failed to save ledger, will retry on next update: %s", e)
            self._save_pending = True
            return False

        self._save_pending = False
        return True
