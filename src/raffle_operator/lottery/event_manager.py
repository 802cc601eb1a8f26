"""In-memory event store for the raffle operator."""

from __future__ import annotations

from collections import defaultdict, deque
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from raffle_operator.lottery.models import LiveFeedItem, WinnerRecord
from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)

# Event types published by the state machine.
ENTRY_ACCEPTED = "entry_accepted"
REQUEST_ISSUED = "request_issued"
WINNER_PICKED = "winner_picked"
DRAW_REVERTED = "draw_reverted"
PAYOUT_UNCONFIRMED = "payout_unconfirmed"
ROUND_UPDATE = "round_update"
HISTORY_UPDATE = "history_update"
LIVE_FEED = "live_feed"

FEED_EVENTS = (ENTRY_ACCEPTED, REQUEST_ISSUED, WINNER_PICKED, DRAW_REVERTED, PAYOUT_UNCONFIRMED)


class MemoryStore:
    """Volatile storage for round snapshots, winner history, and live feed."""

    def __init__(self, *, feed_capacity: int = 100, history_capacity: int = 20) -> None:
        self._lock = Lock()
        self._listeners: Dict[str, List[Callable[[dict | None], None]]] = defaultdict(list)
        self._live_feed: deque[LiveFeedItem] = deque(maxlen=feed_capacity)
        self._history: deque[WinnerRecord] = deque(maxlen=history_capacity)
        self._round_snapshot: Optional[dict] = None

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def add_listener(self, event_type: str, callback: Callable[[dict | None], None]) -> None:
        with self._lock:
            self._listeners[event_type].append(callback)
            logger.debug(f"[MemoryStore] Adding listener for event_type={event_type}, callback={callback}")

    def _emit(self, event_type: str, payload: dict | None) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event_type, []))
        for callback in listeners:
            try:
                callback(payload)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", event_type, exc)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(
        self,
        event_type: str,
        message: str,
        details: Dict[str, Any] | None = None,
        *,
        event_time: int = 0,
        severity: str = "info",
    ) -> LiveFeedItem:
        """Append a feed item and notify listeners of ``event_type`` and ``live_feed``."""
        item = LiveFeedItem(
            event_type=event_type,
            message=message,
            details=dict(details or {}),
            event_time=event_time,
            severity=severity,
        )
        with self._lock:
            self._live_feed.append(item)
        logger.debug("[MemoryStore] appended live feed item %s: %s", item.event_type, item.message)

        self._emit(event_type, dict(item.details))
        self._emit(LIVE_FEED, self._serialize_feed_item(item))
        return item

    def set_round_snapshot(self, snapshot: dict) -> None:
        with self._lock:
            self._round_snapshot = dict(snapshot)
        self._emit(ROUND_UPDATE, dict(snapshot))

    def add_winner(self, record: WinnerRecord) -> None:
        with self._lock:
            self._history.append(record)
        logger.info(f"[MemoryStore] Added winner record: {record}")
        self._emit(HISTORY_UPDATE, self._serialize_history())

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def get_round_snapshot(self) -> Optional[dict]:
        with self._lock:
            return dict(self._round_snapshot) if self._round_snapshot else None

    def get_winner_history(self, limit: Optional[int] = None) -> List[WinnerRecord]:
        with self._lock:
            items = list(self._history)
        if limit is not None:
            return items[-limit:]
        return items

    def get_live_feed(self, limit: Optional[int] = None, event_type: Optional[str] = None) -> List[LiveFeedItem]:
        with self._lock:
            items = list(self._live_feed)
        if event_type is not None:
            items = [item for item in items if item.event_type == event_type]
        if limit is not None:
            return items[-limit:]
        return items

    # ------------------------------------------------------------------
    # Serialization helpers
    # ------------------------------------------------------------------
    def _serialize_history(self) -> dict:
        rounds = [serialize_winner(record) for record in self.get_winner_history()]
        rounds.sort(key=lambda x: x["finishedAt"], reverse=True)
        return {"rounds": rounds}

    def _serialize_feed_item(self, item: LiveFeedItem) -> dict:
        return {
            "type": item.event_type,
            "message": item.message,
            "details": item.details,
            "severity": item.severity,
            "timestamp": item.event_time,
        }


def serialize_winner(record: WinnerRecord) -> dict:
    return {
        "requestId": record.request_id,
        "winner": record.winner,
        "prizeWei": record.prize,
        "participantCount": record.participant_count,
        "randomWord": str(record.random_word),
        "finishedAt": record.finished_at,
    }


# Global singleton used across the backend.
memory_store = MemoryStore()
