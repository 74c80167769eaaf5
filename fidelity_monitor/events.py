"""
Pydantic Schemas for the Fidelity Monitor Wire Protocol.

Inbound: one JSON object per message, always carrying "type".
Outbound: subscribe/unsubscribe and snapshot request commands.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, ValidationError, field_validator

from core.clock import ensure_utc
from core.exceptions import TransportError, MalformedEventError

from .models import (
    ViolationAlert,
    ViolationSeverity,
    EscalationNotice,
    EscalationLevel,
)


# =============================================================
# ENUMS
# =============================================================

class EventType(str, Enum):
    CONNECTION_ESTABLISHED = "connection_established"
    FIDELITY_UPDATE = "fidelity_update"
    FIDELITY_STATUS = "fidelity_status"
    PERFORMANCE_METRICS = "performance_metrics"
    ALERT = "alert"
    VIOLATION_ALERT = "violation_alert"
    ESCALATION_NOTIFICATION = "escalation_notification"
    SUBSCRIPTION_CONFIRMED = "subscription_confirmed"
    UNSUBSCRIPTION_CONFIRMED = "unsubscription_confirmed"
    ERROR = "error"


class CommandType(str, Enum):
    SUBSCRIBE_WORKFLOW = "subscribe_workflow"
    UNSUBSCRIBE_WORKFLOW = "unsubscribe_workflow"
    GET_PERFORMANCE_METRICS = "get_performance_metrics"
    GET_FIDELITY_STATUS = "get_fidelity_status"


# =============================================================
# INBOUND ENVELOPE
# =============================================================

class InboundEvent(BaseModel):
    """
    Decoded inbound message.

    Only "type" is required; everything else stays in payload
    for the router to interpret per event type.
    """
    model_config = ConfigDict(extra="allow")

    type: str

    @property
    def payload(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def get(self, key: str, default: Any = None) -> Any:
        return (self.model_extra or {}).get(key, default)

    @classmethod
    def from_message(cls, raw: Union[str, bytes]) -> "InboundEvent":
        """
        Decode a raw text frame.

        Raises:
            TransportError: If the frame is not a JSON object with a type
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise TransportError(f"Undecodable frame: {e}", cause=e)

        if not isinstance(data, dict):
            raise TransportError(f"Expected JSON object, got {type(data).__name__}")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise TransportError("Frame has no valid 'type' field", cause=e)


# =============================================================
# INBOUND PAYLOADS
# =============================================================

class ViolationAlertSchema(BaseModel):
    """The "alert" object of alert / violation_alert events."""
    model_config = ConfigDict(extra="ignore")

    id: Union[str, int] = Field(validation_alias=AliasChoices("id", "alert_id"))
    severity: ViolationSeverity
    violation_type: str = "unknown"
    description: str = ""
    fidelity_score: Optional[float] = None
    distance_score: Optional[float] = None
    recommended_actions: List[str] = Field(default_factory=list)
    escalated: bool = False
    workflow_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def to_domain(self, received_at: datetime) -> ViolationAlert:
        return ViolationAlert(
            id=str(self.id),
            severity=self.severity,
            violation_type=self.violation_type,
            description=self.description,
            timestamp=ensure_utc(self.timestamp) if self.timestamp else received_at,
            fidelity_score=self.fidelity_score,
            distance_score=self.distance_score,
            recommended_actions=tuple(self.recommended_actions),
            escalated=self.escalated,
            workflow_id=self.workflow_id,
        )


class EscalationSchema(BaseModel):
    """The "escalation" object of escalation_notification events."""
    model_config = ConfigDict(extra="ignore")

    id: Union[str, int] = Field(validation_alias=AliasChoices("id", "escalation_id"))
    escalation_level: EscalationLevel
    violation_id: Union[str, int]
    assigned_to: Optional[str] = None
    response_time_target_minutes: int = Field(
        default=30,
        validation_alias=AliasChoices("response_time_target_minutes", "response_time_target"),
    )
    notification_sent: bool = False
    timestamp: Optional[datetime] = None

    @field_validator("escalation_level", mode="before")
    @classmethod
    def _lower_level(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def to_domain(self, received_at: datetime) -> EscalationNotice:
        return EscalationNotice(
            id=str(self.id),
            escalation_level=self.escalation_level,
            violation_id=str(self.violation_id),
            response_time_target_minutes=self.response_time_target_minutes,
            timestamp=ensure_utc(self.timestamp) if self.timestamp else received_at,
            assigned_to=self.assigned_to,
            notification_sent=self.notification_sent,
        )


def parse_payload(schema: type, data: Any, event_type: str) -> BaseModel:
    """
    Validate a nested payload object.

    Raises:
        MalformedEventError: If the payload is missing or invalid
    """
    if not isinstance(data, dict):
        raise MalformedEventError(
            f"{event_type} payload must be an object",
            event_type=event_type,
        )
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise MalformedEventError(
            f"Invalid {event_type} payload: {e.error_count()} error(s)",
            event_type=event_type,
            cause=e,
        )


# =============================================================
# OUTBOUND COMMANDS
# =============================================================

class OutboundCommand(BaseModel):
    """A command sent to the monitoring backend."""

    type: CommandType
    workflow_id: Optional[str] = None

    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def subscribe_command(workflow_id: str) -> OutboundCommand:
    return OutboundCommand(type=CommandType.SUBSCRIBE_WORKFLOW, workflow_id=workflow_id)


def unsubscribe_command(workflow_id: str) -> OutboundCommand:
    return OutboundCommand(type=CommandType.UNSUBSCRIBE_WORKFLOW, workflow_id=workflow_id)


def snapshot_commands() -> List[OutboundCommand]:
    """Metrics + status request pair used for initial load and refresh."""
    return [
        OutboundCommand(type=CommandType.GET_PERFORMANCE_METRICS),
        OutboundCommand(type=CommandType.GET_FIDELITY_STATUS),
    ]
