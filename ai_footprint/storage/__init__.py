"""SQLite persistence for the daily ledger."""
