"""
Observation sessions.

A session watches one page (a sequence of HTML snapshots of the same
conversation), turns newly settled turns into trackTokens payloads and makes
sure each turn is submitted at most once.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Set

from bs4 import BeautifulSoup

from ai_footprint.core.token_counter import estimate_tokens, estimate_tokens_quick

from .events import TrackTokensPayload, TurnEvent
from .providers import ProviderAdapter

logger = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 2.0

Submit = Callable[[TrackTokensPayload], None]


@dataclass
class _PendingTurn:
    text: str
    first_seen: float


class ObservationSession:
    """Dedupe and settle turns observed on a single page.

    Settle timeout:
        A still-streaming response changes between snapshots. A turn is only
        counted once its text has been unchanged for settle_seconds; with
        settle_seconds=0 turns are counted on first sight.

    The set of processed dedupe keys lives only as long as the session.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        submit: Submit,
        settle_seconds: float = DEFAULT_SETTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize the session.

        Args:
            adapter: Page adapter for the observed site
            submit: Called once per new turn with its payload
            settle_seconds: How long a turn's text must stay unchanged
            clock: Monotonic time source (injectable for tests)
        """
        if settle_seconds < 0:
            raise ValueError("settle_seconds cannot be negative")
        self.adapter = adapter
        self.settle_seconds = settle_seconds
        self._submit = submit
        self._clock = clock
        self._processed: Set[str] = set()
        self._pending: Dict[str, _PendingTurn] = {}

    @property
    def processed_count(self) -> int:
        return len(self._processed)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def observe(self, html: str) -> int:
        """Process one snapshot of the page.

        Args:
            html: Full page HTML

        Turns still settling whose key is absent from this snapshot are
        forgotten; a streaming response's key changes as it grows.

        Returns:
            Number of turns submitted for this snapshot
        """
        soup = BeautifulSoup(html, "html.parser")
        submitted = 0
        seen: Set[str] = set()
        for event in self.adapter.iter_turns(soup):
            seen.add(event.dedupe_key)
            if self.observe_turn(event):
                submitted += 1

        for key in [key for key in self._pending if key not in seen]:
            del self._pending[key]
        return submitted

    def observe_turn(self, event: TurnEvent) -> bool:
        """Process one observed turn.

        Returns:
            True if the turn was submitted now, False if it was a duplicate
            or is still settling
        """
        if event.dedupe_key in self._processed:
            return False

        now = self._clock()
        pending = self._pending.get(event.dedupe_key)
        if pending is None or pending.text != event.text:
            pending = _PendingTurn(text=event.text, first_seen=now)
            self._pending[event.dedupe_key] = pending

        if now - pending.first_seen < self.settle_seconds:
            return False

        del self._pending[event.dedupe_key]
        self._processed.add(event.dedupe_key)

        tokens = estimate_tokens(event.text)
        payload = TrackTokensPayload.from_event(event, tokens)
        logger.debug(
            "New %s turn on %s: +%d tokens - %r",
            event.role.value, event.provider, tokens, payload.message_preview[:60]
        )
        self._submit(payload)
        return True

    def preview_draft(self, text: str) -> int:
        """Quick estimate for text that has not been sent yet.

        Drafts are never submitted; the finished turn is counted when it
        appears on the page.
        """
        return estimate_tokens_quick(text)
