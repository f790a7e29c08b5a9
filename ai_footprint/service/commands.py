"""
Command surface of the ledger.

Adapters and viewers talk to the ledger only through these commands. No
exception crosses this boundary: every command returns a CommandResult,
either a success (possibly a no-op) or a soft failure a viewer can show.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from ai_footprint.core.ledger import InvalidInputError, LedgerService
from ai_footprint.ingestion.events import TrackTokensPayload

logger = logging.getLogger(__name__)


class Action(Enum):
    """Command names as they appear on the wire."""
    GET_DAILY_DATA = "getDailyData"
    RESET_DATA = "resetData"
    TRACK_TOKENS = "trackTokens"
    CHECK_ROLLOVER = "checkRollover"  # Posted by the boundary scheduler


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a command."""
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


def parse_action(command: Any) -> Action:
    """Read the action of a command mapping.

    Raises:
        InvalidInputError: If the command is malformed or the action unknown
    """
    if not isinstance(command, Mapping):
        raise InvalidInputError("command must be an object")
    try:
        return Action(command.get("action"))
    except ValueError:
        valid_actions = [action.value for action in Action]
        raise InvalidInputError(f"Unknown action {command.get('action')!r}, expected one of: {valid_actions}")


class CommandHandler:
    """Dispatches commands onto a LedgerService.

    Must be called from the single thread that owns the service.
    """

    def __init__(self, service: LedgerService):
        self.service = service

    def handle(self, command: Mapping[str, Any]) -> CommandResult:
        """Execute one command.

        Args:
            command: Mapping with an "action" key and, for trackTokens,
                a "data" payload

        Returns:
            CommandResult; never raises
        """
        try:
            action = parse_action(command)
            if action == Action.GET_DAILY_DATA:
                return self._get_daily_data()
            if action == Action.RESET_DATA:
                return self._reset_data()
            if action == Action.TRACK_TOKENS:
                payload = TrackTokensPayload.from_dict(command.get("data"))
                return self.track(payload)
            return self._check_rollover()
        except InvalidInputError as e:
            logger.warning("Rejected command: %s", e)
            return CommandResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Command failed")
            return CommandResult(success=False, error=f"Internal error: {e}")

    def track(self, payload: TrackTokensPayload) -> CommandResult:
        """Record a parsed trackTokens payload."""
        saved = self.service.record_turn(payload.tokens, payload.role)
        logger.info(
            "Tracked %d %s tokens from %s",
            payload.tokens, payload.role.value, payload.provider
        )
        return self._saved_result(saved)

    def _get_daily_data(self) -> CommandResult:
        return CommandResult(success=True, data=self.service.snapshot().to_dict())

    def _reset_data(self) -> CommandResult:
        return self._saved_result(self.service.reset_today())

    def _check_rollover(self) -> CommandResult:
        rolled_over = self.service.rollover()
        saved = self.service.retry_save()
        if not saved:
            return CommandResult(success=False, error="Failed to save ledger")
        return CommandResult(success=True, data={"rolled_over": rolled_over})

    def _saved_result(self, saved: bool) -> CommandResult:
        data = self.service.snapshot().to_dict()
        if not saved:
            return CommandResult(success=False, data=data, error="Failed to save ledger")
        return CommandResult(success=True, data=data)
