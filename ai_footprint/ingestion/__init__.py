"""
Ingestion adapters.

Page adapters, observation sessions and network provider mapping that turn
observed conversations into trackTokens payloads.
"""
