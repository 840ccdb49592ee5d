"""
Data models for the ledger and audit trail.

Defines call records, audit entries and their JSON forms.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class CallStatus(Enum):
    """Lifecycle states of a logical API call."""
    PENDING = "Pending"
    PROCESSING = "Processing"
    RETRYING = "Retrying"
    SUCCESS = "Success"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CallStatus.SUCCESS, CallStatus.FAILED)


class AuditEventType(Enum):
    """Kinds of domain events recorded in the audit trail."""
    API_CALL = "API_CALL"
    AGENT_ACTION = "AGENT_ACTION"
    STATE_CHANGE = "STATE_CHANGE"
    SYSTEM_EVENT = "SYSTEM_EVENT"
    USER_INTERACTION = "USER_INTERACTION"


@dataclass(frozen=True)
class CallRecord:
    """Snapshot of one logical call as tracked by the ledger.

    Records are never mutated; the ledger replaces a record with a merged
    copy on every update, so snapshots handed to subscribers stay stable.
    Times are epoch milliseconds.
    """
    id: str
    start_time: int
    status: CallStatus
    agent_name: str
    model: str
    request_payload: Any = None
    response_payload: Any = None
    error: Optional[str] = None
    end_time: Optional[int] = None
    duration: Optional[int] = None
    prompt_tokens: Optional[int] = None
    candidate_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    estimated_cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase form used in audit payloads."""
        data = {
            "id": self.id,
            "startTime": self.start_time,
            "status": self.status.value,
            "agentName": self.agent_name,
            "model": self.model,
            "requestPayload": self.request_payload,
        }
        optional = {
            "responsePayload": self.response_payload,
            "error": self.error,
            "endTime": self.end_time,
            "duration": self.duration,
            "promptTokens": self.prompt_tokens,
            "candidateTokens": self.candidate_tokens,
            "totalTokens": self.total_tokens,
            "estimatedCost": self.estimated_cost,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CallRecord":
        """Rebuild a record from the camelCase form.

        Raises:
            ValueError: If required fields are missing or invalid
        """
        try:
            return cls(
                id=str(data["id"]),
                start_time=int(data["startTime"]),
                status=CallStatus(data["status"]),
                agent_name=str(data["agentName"]),
                model=str(data["model"]),
                request_payload=data.get("requestPayload"),
                response_payload=data.get("responsePayload"),
                error=data.get("error"),
                end_time=data.get("endTime"),
                duration=data.get("duration"),
                prompt_tokens=data.get("promptTokens"),
                candidate_tokens=data.get("candidateTokens"),
                total_tokens=data.get("totalTokens"),
                estimated_cost=data.get("estimatedCost"),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"invalid call record: {e}")


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable entry of the audit trail."""
    id: str
    timestamp: str  # ISO 8601
    type: AuditEventType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        """Rebuild an entry from its persisted JSON object.

        Raises:
            ValueError: If the object is not a valid audit entry
        """
        if not isinstance(data, dict):
            raise ValueError("audit entry must be an object")
        try:
            return cls(
                id=str(data["id"]),
                timestamp=str(data["timestamp"]),
                type=AuditEventType(data["type"]),
                payload=data.get("payload") or {},
            )
        except KeyError as e:
            raise ValueError(f"audit entry missing field: {e}")
