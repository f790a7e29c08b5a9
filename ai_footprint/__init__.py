"""
AI Footprint.

Estimates the energy, carbon and water footprint of conversations with
hosted language models and keeps a rolling daily ledger.
"""

__version__ = "0.1.0"
