"""
Core modules for AI Call Governor.

This package contains the request governor and the components it drives:
cost estimation, the call ledger and the audit trail.
"""
