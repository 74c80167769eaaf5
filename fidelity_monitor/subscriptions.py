"""
Workflow Subscription Manager.

============================================================
PURPOSE
============================================================
Tracks which workflows the monitor wants to follow versus
which ones the backend has acknowledged.

- subscribe()/unsubscribe() only record INTENT and send the
  command. The confirmed set changes on confirmations only.
- On every transition into CONNECTED the last confirmed set
  is re-issued, one subscribe command per workflow.

============================================================
"""

import logging
from typing import Dict, FrozenSet, Optional, Set

from .events import subscribe_command, unsubscribe_command
from .models import ConnectionState, ConnectionStatus
from .transport import TransportChannel


logger = logging.getLogger(__name__)


SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"


class SubscriptionManager:
    """
    Desired vs. acknowledged workflow subscriptions.

    Register on_connection_status with the transport channel
    so resubscription follows every reconnect.
    """

    def __init__(self, channel: TransportChannel):
        self._channel = channel

        self._desired: Set[str] = set()
        self._confirmed: Set[str] = set()
        self._pending: Dict[str, str] = {}

        self._last_state: Optional[ConnectionState] = None
        self._resubscribe_count = 0

    # --------------------------------------------------------
    # COMMANDS
    # --------------------------------------------------------

    async def subscribe(self, workflow_id: str) -> bool:
        """
        Ask the backend to stream updates for a workflow.

        Returns whether the command went out. A dropped command
        still records the intent.
        """
        self._desired.add(workflow_id)
        self._pending[workflow_id] = SUBSCRIBE

        sent = await self._channel.send(subscribe_command(workflow_id))
        if not sent:
            logger.warning(f"Subscribe for {workflow_id} not sent: transport not connected")
        return sent

    async def unsubscribe(self, workflow_id: str) -> bool:
        """Ask the backend to stop streaming a workflow."""
        self._desired.discard(workflow_id)
        self._pending[workflow_id] = UNSUBSCRIBE

        sent = await self._channel.send(unsubscribe_command(workflow_id))
        if not sent:
            logger.warning(f"Unsubscribe for {workflow_id} not sent: transport not connected")
        return sent

    # --------------------------------------------------------
    # CONFIRMATIONS
    # --------------------------------------------------------

    def handle_confirmed(self, workflow_id: str) -> None:
        self._confirmed.add(workflow_id)
        if self._pending.get(workflow_id) == SUBSCRIBE:
            del self._pending[workflow_id]
        logger.info(f"Subscription confirmed: {workflow_id}")

    def handle_unsubscribed(self, workflow_id: str) -> None:
        self._confirmed.discard(workflow_id)
        if self._pending.get(workflow_id) == UNSUBSCRIBE:
            del self._pending[workflow_id]
        logger.info(f"Unsubscription confirmed: {workflow_id}")

    # --------------------------------------------------------
    # RECONNECT
    # --------------------------------------------------------

    async def on_connection_status(self, status: ConnectionStatus) -> None:
        """Resubscribe the confirmed set on each transition into CONNECTED."""
        previous, self._last_state = self._last_state, status.state

        if status.state != ConnectionState.CONNECTED or previous == ConnectionState.CONNECTED:
            return

        if not self._confirmed:
            return

        workflows = sorted(self._confirmed)
        logger.info(f"Resubscribing {len(workflows)} workflow(s) after connect")

        for workflow_id in workflows:
            await self._channel.send(subscribe_command(workflow_id))
        self._resubscribe_count += 1

    # --------------------------------------------------------
    # READ ACCESSORS
    # --------------------------------------------------------

    def confirmed_set(self) -> FrozenSet[str]:
        return frozenset(self._confirmed)

    def desired_set(self) -> FrozenSet[str]:
        return frozenset(self._desired)

    def pending(self) -> Dict[str, str]:
        """Workflow id -> outstanding action awaiting confirmation."""
        return dict(self._pending)

    def to_dict(self) -> Dict[str, object]:
        return {
            "confirmed": sorted(self._confirmed),
            "desired": sorted(self._desired),
            "pending": dict(sorted(self._pending.items())),
            "resubscribe_count": self._resubscribe_count,
        }
