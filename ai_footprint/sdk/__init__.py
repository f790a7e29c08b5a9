"""
SDK for AI Footprint.

Provides client wrappers that record the footprint of API calls.
"""

from .openai_client import TrackedOpenAI

__all__ = ["TrackedOpenAI"]
