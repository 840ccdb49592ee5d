"""
Storage layer for AI Call Governor.

SQLite-backed durable storage for the audit trail.
"""
