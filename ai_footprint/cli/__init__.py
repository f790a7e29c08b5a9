"""Command-line viewer surfaces."""
