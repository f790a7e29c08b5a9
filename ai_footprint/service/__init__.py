"""
Ledger command surface.

Message-passing boundary between adapters/viewers and the ledger owner.
"""

from .commands import Action, CommandHandler, CommandResult
from .host import LedgerHost, LedgerOwnedError

__all__ = ["Action", "CommandHandler", "CommandResult", "LedgerHost", "LedgerOwnedError"]
