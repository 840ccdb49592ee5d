"""
AI Call Governor.

Serializes, retries and downgrades outbound generative-AI calls while
tracking their cost and latency.
"""

from .core.audit_trail import AuditTrail
from .core.errors import GovernedCallError
from .core.governor import CallMetadata, GovernorConfig, RequestGovernor
from .core.ledger import CallLedger
from .core.pricing import calculate_cost

__all__ = [
    "AuditTrail",
    "CallLedger",
    "CallMetadata",
    "GovernedCallError",
    "GovernorConfig",
    "RequestGovernor",
    "calculate_cost",
]
