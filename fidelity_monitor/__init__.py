"""
Constitutional Fidelity Monitor.

Real-time compliance monitoring core: a resilient WebSocket
stream of fidelity signals, threshold classification, bounded
history, violation ledgers and escalation notifications.
"""

from .models import (
    AlertLevel,
    Trend,
    FidelityThresholds,
    FidelitySample,
    FidelitySnapshot,
    WorkflowScore,
    ViolationSeverity,
    ViolationAlert,
    EscalationLevel,
    EscalationNotice,
    ConnectionState,
    ConnectionStatus,
    classify_score,
)
from .config import (
    ReconnectConfig,
    RefreshConfig,
    NotificationConfig,
    ApiConfig,
    MonitorConfig,
    DEFAULT_MONITOR_URL,
)
from .events import (
    EventType,
    CommandType,
    InboundEvent,
    OutboundCommand,
    subscribe_command,
    unsubscribe_command,
    snapshot_commands,
)
from .transport import TransportChannel, backoff_delay
from .fidelity_store import FidelityStateStore, compute_trend
from .ledger import (
    AlertLedger,
    DisplayStyle,
    SEVERITY_DISPLAY,
    ESCALATION_DISPLAY,
    ALERT_LEVEL_DISPLAY,
)
from .subscriptions import SubscriptionManager
from .scheduler import RefreshScheduler
from .router import EventRouter
from .notifications import NotificationDispatcher, TelegramNotifier
from .monitor import FidelityMonitor
from .api import create_monitor_app, setup_monitor_routes


__all__ = [
    # Models
    "AlertLevel",
    "Trend",
    "FidelityThresholds",
    "FidelitySample",
    "FidelitySnapshot",
    "WorkflowScore",
    "ViolationSeverity",
    "ViolationAlert",
    "EscalationLevel",
    "EscalationNotice",
    "ConnectionState",
    "ConnectionStatus",
    "classify_score",
    # Config
    "ReconnectConfig",
    "RefreshConfig",
    "NotificationConfig",
    "ApiConfig",
    "MonitorConfig",
    "DEFAULT_MONITOR_URL",
    # Protocol
    "EventType",
    "CommandType",
    "InboundEvent",
    "OutboundCommand",
    "subscribe_command",
    "unsubscribe_command",
    "snapshot_commands",
    # Components
    "TransportChannel",
    "backoff_delay",
    "FidelityStateStore",
    "compute_trend",
    "AlertLedger",
    "DisplayStyle",
    "SEVERITY_DISPLAY",
    "ESCALATION_DISPLAY",
    "ALERT_LEVEL_DISPLAY",
    "SubscriptionManager",
    "RefreshScheduler",
    "EventRouter",
    "NotificationDispatcher",
    "TelegramNotifier",
    # Facade
    "FidelityMonitor",
    "create_monitor_app",
    "setup_monitor_routes",
]
