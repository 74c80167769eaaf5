"""
Telegram Escalation Channel.

============================================================
PURPOSE
============================================================
Push violation alerts, escalation notices and status digests
to governance responders over the Telegram Bot API.

RULES:
- Outbound only, the bot never reads commands
- Sliding-window send budget per minute and per hour
- One failed chat does not stop delivery to the others
- Messages are HTML, user text is always escaped

============================================================
"""

import asyncio
import html
import logging
import os
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

import aiohttp

from core.clock import ClockProtocol, ClockFactory

from ..config import NotificationConfig
from ..ledger import severity_style, escalation_style
from ..models import ViolationAlert, EscalationNotice


logger = logging.getLogger(__name__)


TELEGRAM_API = "https://api.telegram.org"

# sendMessage rejects longer texts
MAX_MESSAGE_LENGTH = 4096

REQUEST_TIMEOUT_SECONDS = 10


# ============================================================
# MESSAGE RENDERING
# ============================================================

class TelegramFormatter:
    """Renders monitor objects as Telegram HTML."""

    LEVEL_ICONS = {
        "green": "🟢",
        "amber": "🟡",
        "red": "🔴",
    }

    @classmethod
    def format_alert(cls, alert: ViolationAlert) -> str:
        heading = alert.violation_type.replace("_", " ").title()
        out = [
            f"{severity_style(alert.severity).icon} <b>{html.escape(heading)}</b>",
            "",
            html.escape(alert.description) if alert.description else "<i>No description</i>",
            "",
            f"🏷 <code>[{alert.severity.value}]</code>",
            f"🕐 {cls._stamp(alert.timestamp)}",
        ]

        facts = []
        if alert.workflow_id:
            facts.append(("workflow", html.escape(alert.workflow_id)))
        if alert.fidelity_score is not None:
            facts.append(("fidelity", f"{alert.fidelity_score:.4f}"))
        if alert.distance_score is not None:
            facts.append(("distance", f"{alert.distance_score:.4f}"))
        if facts:
            out += ["", "<b>Context:</b>"]
            out += [f"• <code>{name}</code>: {value}" for name, value in facts]

        if alert.recommended_actions:
            out += ["", "<b>Recommended actions:</b>"]
            out += [f"• {html.escape(a)}" for a in alert.recommended_actions[:5]]

        return "\n".join(out)

    @classmethod
    def format_escalation(cls, notice: EscalationNotice) -> str:
        tier = notice.escalation_level.value.replace("_", " ").title()
        out = [
            f"{escalation_style(notice.escalation_level).icon} <b>Escalated to {html.escape(tier)}</b>",
            "",
            f"Violation: <code>{html.escape(notice.violation_id)}</code>",
            f"Response target: {notice.response_time_target_minutes} min",
        ]
        if notice.assigned_to:
            out.append(f"Assigned to: {html.escape(notice.assigned_to)}")
        out.append(f"🕐 {cls._stamp(notice.timestamp)}")
        return "\n".join(out)

    @classmethod
    def format_status(cls, overview: Dict[str, Any]) -> str:
        """Digest of FidelityMonitor.overview()."""
        fidelity = overview.get("fidelity", {})
        level = fidelity.get("level", "unknown")
        score = fidelity.get("score")
        connection = overview.get("connection", {}).get("description", "unknown")

        return "\n".join([
            "<b>🖥 Fidelity Monitor Status</b>",
            "",
            f"Level: {cls.LEVEL_ICONS.get(level, '⚪')} <code>{level}</code>",
            f"Score: {'n/a' if score is None else f'{score:.3f}'} (trend: {fidelity.get('trend', 'none')})",
            f"Violations: {overview.get('violation_count', 0)}",
            f"Connection: {html.escape(connection)}",
        ])

    @staticmethod
    def _stamp(timestamp: datetime) -> str:
        return timestamp.strftime("%Y-%m-%d %H:%M:%S UTC")


# ============================================================
# SEND BUDGET
# ============================================================

class _SlidingWindow:
    """Counts events inside a trailing time span."""

    def __init__(self, limit: int, span: timedelta):
        self.limit = limit
        self.span = span
        self._events: Deque[datetime] = deque()

    def _expire(self, now: datetime) -> None:
        while self._events and self._events[0] <= now - self.span:
            self._events.popleft()

    def has_room(self, now: datetime) -> bool:
        self._expire(now)
        return len(self._events) < self.limit

    def add(self, now: datetime) -> None:
        self._events.append(now)

    def remaining(self, now: datetime) -> int:
        self._expire(now)
        return max(0, self.limit - len(self._events))


class TelegramRateLimiter:
    """
    Per-minute and per-hour send budget.

    A slot is consumed only when every window has room.
    """

    def __init__(
        self,
        max_per_minute: int = 20,
        max_per_hour: int = 100,
        clock: Optional[ClockProtocol] = None,
    ):
        self._clock = clock or ClockFactory.get_clock()
        self._windows = {
            "minute": _SlidingWindow(max_per_minute, timedelta(minutes=1)),
            "hour": _SlidingWindow(max_per_hour, timedelta(hours=1)),
        }
        self._guard = asyncio.Lock()

    @property
    def limits(self) -> Dict[str, int]:
        return {name: window.limit for name, window in self._windows.items()}

    async def acquire(self) -> bool:
        async with self._guard:
            now = self._clock.now()
            if not all(w.has_room(now) for w in self._windows.values()):
                return False
            for window in self._windows.values():
                window.add(now)
            return True

    @property
    def remaining_minute(self) -> int:
        return self._windows["minute"].remaining(self._clock.now())

    @property
    def remaining_hour(self) -> int:
        return self._windows["hour"].remaining(self._clock.now())


# ============================================================
# NOTIFIER
# ============================================================

class TelegramNotifier:
    """
    Telegram delivery for the notification dispatcher.

    Register with NotificationDispatcher.add_notifier(); it exposes
    send_alert() and send_escalation().

    Credentials fall back to TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID
    (comma-separated) when not passed in.
    """

    def __init__(
        self,
        bot_token: Optional[str] = None,
        chat_ids: Optional[List[str]] = None,
        rate_limiter: Optional[TelegramRateLimiter] = None,
    ):
        self._bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN", "")
        self._chat_ids = list(chat_ids) if chat_ids else _chat_ids_from_env()
        self._rate_limiter = rate_limiter or TelegramRateLimiter()
        self._formatter = TelegramFormatter()
        self._http: Optional[aiohttp.ClientSession] = None

        self._enabled = bool(self._bot_token and self._chat_ids)
        self._delivered = 0
        self._failed = 0

        if self._enabled:
            logger.info(f"Telegram escalation channel ready for {len(self._chat_ids)} chat(s)")
        else:
            logger.warning("Telegram escalation channel disabled: TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID missing")

    @classmethod
    def from_config(cls, config: NotificationConfig) -> "TelegramNotifier":
        limiter = TelegramRateLimiter(
            max_per_minute=config.max_per_minute,
            max_per_hour=config.max_per_hour,
        )
        return cls(config.telegram_bot_token, config.telegram_chat_ids, limiter)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def disable(self) -> None:
        self._enabled = False

    def stats(self) -> Dict[str, Any]:
        return {
            "enabled": self._enabled,
            "chats": len(self._chat_ids),
            "delivered": self._delivered,
            "failed": self._failed,
            "remaining_minute": self._rate_limiter.remaining_minute,
            "remaining_hour": self._rate_limiter.remaining_hour,
        }

    async def close(self) -> None:
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    # --------------------------------------------------------
    # PUBLIC SENDS
    # --------------------------------------------------------

    async def send_alert(self, alert: ViolationAlert) -> bool:
        return await self._broadcast(self._formatter.format_alert(alert))

    async def send_escalation(self, notice: EscalationNotice) -> bool:
        return await self._broadcast(self._formatter.format_escalation(notice))

    async def send_status(self, overview: Dict[str, Any]) -> bool:
        return await self._broadcast(self._formatter.format_status(overview))

    async def send_text(self, text: str) -> bool:
        return await self._broadcast(html.escape(text))

    # --------------------------------------------------------
    # DELIVERY
    # --------------------------------------------------------

    async def _broadcast(self, text: str) -> bool:
        """Deliver one message to every chat. True only if all succeeded."""
        if not self._enabled:
            return False

        if not await self._rate_limiter.acquire():
            logger.warning("Telegram send budget exhausted, message dropped")
            return False

        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[:MAX_MESSAGE_LENGTH - 1] + "…"

        results = [await self._send_message(chat_id, text) for chat_id in self._chat_ids]
        return all(results)

    async def _send_message(self, chat_id: str, text: str) -> bool:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT_SECONDS),
            )

        url = f"{TELEGRAM_API}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }

        try:
            async with self._http.post(url, json=payload) as response:
                if response.status == 200:
                    self._delivered += 1
                    return True
                detail = await response.text()
                self._failed += 1
                logger.error(f"Telegram rejected message for chat {chat_id}: HTTP {response.status} {detail}")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._failed += 1
            logger.error(f"Telegram delivery to chat {chat_id} failed: {e}")
            return False


def _chat_ids_from_env() -> List[str]:
    raw = os.getenv("TELEGRAM_CHAT_ID", "")
    return [part.strip() for part in raw.split(",") if part.strip()]
