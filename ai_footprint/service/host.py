"""
Long-lived ledger host.

Owns the LedgerService and executes every command on one worker thread, in
submission order. Other threads (adapters, the SDK client, the day boundary
timer, viewers) only submit commands and wait on the returned futures.

While running, the host holds the store's host lock. Other processes see
the lock and park their mutations in the holding area, which the worker
drains whenever it is idle, at start-up and after each boundary check.
"""

import logging
import queue
import sqlite3
import threading
import time
from concurrent.futures import Future
from typing import Any, Mapping, Optional

from ai_footprint.core.ledger import InvalidInputError, LedgerService
from ai_footprint.core.scheduler import BoundaryScheduler
from ai_footprint.ingestion.events import TrackTokensPayload

from .commands import Action, CommandHandler, CommandResult, parse_action

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_PENDING_POLL_SECONDS = 1.0

_STOP = object()


class LedgerOwnedError(RuntimeError):
    """Raised when another live process already hosts the ledger."""


class LedgerHost:
    """Single-owner host process for the daily ledger.

    trackTokens commands submitted while the host is not running, or while
    its queue is full, are parked in the store's holding area and ingested
    by the worker.
    """

    def __init__(
        self,
        service: LedgerService,
        repository,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        scheduler: Optional[BoundaryScheduler] = None,
        pending_poll_seconds: float = DEFAULT_PENDING_POLL_SECONDS
    ):
        """Initialize the host.

        Args:
            service: Ledger service this host owns
            repository: LedgerRepository holding the lock and pending commands
            queue_size: Maximum number of queued commands
            scheduler: Day boundary scheduler; one posting checkRollover
                commands to this host is created when omitted
            pending_poll_seconds: How often the worker checks the holding
                area for commands parked by other processes
        """
        if queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        if pending_poll_seconds <= 0:
            raise ValueError("pending_poll_seconds must be > 0")
        self.handler = CommandHandler(service)
        self._repository = repository
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._scheduler = scheduler or BoundaryScheduler(self.request_boundary_check)
        self._pending_poll_seconds = pending_poll_seconds
        self._worker: Optional[threading.Thread] = None
        self._running = False
        # Orders submit() against stop() so nothing is queued behind _STOP
        self._state_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Take the host lock, load the ledger, ingest parked commands and start.

        Raises:
            LedgerOwnedError: If another live process hosts the ledger
        """
        if self._running:
            return
        owner = self._repository.acquire_host_lock()
        if owner is not None:
            raise LedgerOwnedError(f"Ledger is already hosted by process {owner}")

        # The worker is not running yet, so this thread is the sole owner
        self.handler.service.load()
        self._ingest_parked_commands()
        with self._state_lock:
            self._running = True
        self._worker = threading.Thread(target=self._run, name="ledger-host", daemon=True)
        self._worker.start()
        self._scheduler.start()
        logger.info("Ledger host started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Finish queued commands, stop the worker and release the lock."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._queue.put(_STOP)
        self._scheduler.stop()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None
        self._repository.release_host_lock()
        logger.info("Ledger host stopped")

    def submit(self, command: Mapping[str, Any]) -> "Future[CommandResult]":
        """Queue a command for the worker.

        Returns:
            Future resolved with the CommandResult once the command (including
            its durable save) has completed
        """
        future: "Future[CommandResult]" = Future()

        with self._state_lock:
            queued = False
            if self._running:
                try:
                    self._queue.put_nowait((command, future))
                    queued = True
                except queue.Full:
                    pass
        if queued:
            return future

        if self._park(command):
            future.set_result(CommandResult(success=True, data={"queued": True}))
        else:
            future.set_result(CommandResult(success=False, error="Ledger host is not accepting commands"))
        return future

    def call(self, command: Mapping[str, Any], timeout: Optional[float] = 10.0) -> CommandResult:
        """Submit a command and wait for its result."""
        return self.submit(command).result(timeout)

    def request_boundary_check(self) -> None:
        """Post a rollover check; safe to call from any thread."""
        self.submit({"action": Action.CHECK_ROLLOVER.value})

    def _park(self, command: Mapping[str, Any]) -> bool:
        """Move a trackTokens command to the holding area."""
        try:
            if parse_action(command) != Action.TRACK_TOKENS:
                return False
            payload = TrackTokensPayload.from_dict(command.get("data"))
        except InvalidInputError as e:
            logger.warning("Rejected command: %s", e)
            return False

        try:
            self._repository.enqueue_pending_turn(payload)
        except sqlite3.Error as e:
            logger.warning("Could not park pending turn: %s", e)
            return False
        return True

    def _ingest_parked_commands(self) -> int:
        """Run parked commands; only called on the thread owning the service."""
        try:
            commands = self._repository.drain_pending_commands()
        except sqlite3.Error as e:
            logger.warning("Could not read pending commands: %s", e)
            return 0
        if commands:
            logger.info("Ingesting %d parked commands", len(commands))
        for command in commands:
            result = self.handler.handle(command)
            if not result.success:
                logger.warning("Parked command failed: %s", result.error)
        return len(commands)

    def _run(self) -> None:
        last_drain = time.monotonic()
        while True:
            try:
                item = self._queue.get(timeout=self._pending_poll_seconds)
            except queue.Empty:
                item = None

            if item is _STOP:
                break
            if item is not None:
                command, future = item
                result = self.handler.handle(command)
                if _is_boundary_check(command):
                    self._ingest_parked_commands()
                    last_drain = time.monotonic()
                future.set_result(result)

            if time.monotonic() - last_drain >= self._pending_poll_seconds:
                self._ingest_parked_commands()
                last_drain = time.monotonic()


def _is_boundary_check(command: Mapping[str, Any]) -> bool:
    try:
        return parse_action(command) == Action.CHECK_ROLLOVER
    except InvalidInputError:
        return False
