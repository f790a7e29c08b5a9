"""
Core modules for AI Footprint.

This package contains token estimation, the impact model, the daily
ledger state machine and day boundary scheduling.
"""
