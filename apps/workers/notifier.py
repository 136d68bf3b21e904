"""Notification dispatcher: turns outbox events into push payloads."""

import json
import logging
import uuid
from typing import Any

import redis.asyncio as redis

from core.metrics import notifications_emitted_total
from core.redis import append_to_stream
from models.event import EventType, MatchEvent

logger = logging.getLogger(__name__)

NOTIFICATIONS_STREAM = "notifications.push"

_TERMINAL_EVENTS = {EventType.COMPLETED, EventType.CANCELLED, EventType.EXPIRED, EventType.DECLINED}


class Notifier:
    """Builds push payloads for the delivery service; never waits on delivery."""

    def __init__(self, stream: str = NOTIFICATIONS_STREAM) -> None:
        self.stream = stream

    def build_notifications(self, event: MatchEvent) -> list[dict[str, Any]]:
        """
        Derive the notifications for one event.

        Args:
            event: Published outbox row; its payload is the match snapshot

        Returns:
            One payload per recipient, possibly empty
        """
        snapshot = event.payload
        match_id = snapshot["matchId"]
        challenger_id = snapshot["challengerId"]
        receiver_id = snapshot["receiverId"]

        if event.event_type == EventType.CREATED:
            return [self._payload("challengeCreated", match_id, receiver_id, "You have a new challenge")]

        if event.event_type == EventType.ACCEPTED:
            return [self._payload("accepted", match_id, challenger_id, "Your challenge was accepted")]

        if event.event_type in (EventType.TURN_TAKEN, EventType.LEG_WON):
            next_player = snapshot.get("currentPlayerId")
            if not next_player:
                return []
            summary = "Leg won, your throw" if event.event_type == EventType.LEG_WON else "Your turn"
            return [self._payload("turnTaken", match_id, next_player, summary)]

        if event.event_type in _TERMINAL_EVENTS:
            ended_by = snapshot.get("endedBy")
            reason = snapshot.get("endedReason") or str(event.event_type)
            return [
                self._payload("matchEnded", match_id, uid, f"Match ended: {reason}")
                for uid in (challenger_id, receiver_id)
                if uid != ended_by
            ]

        return []

    async def dispatch(self, client: redis.Redis, event: MatchEvent) -> int:
        """Append the event's notifications to the push stream; returns how many."""
        notifications = self.build_notifications(event)
        for notification in notifications:
            await append_to_stream(client, self.stream, {"seq": event.id, "data": json.dumps(notification)})
            notifications_emitted_total.labels(event_type=notification["eventType"]).inc()

        if notifications:
            logger.debug(f"Queued {len(notifications)} notification(s) for event {event.id}")
        return len(notifications)

    @staticmethod
    def _payload(event_type: str, match_id: str, recipient: str | uuid.UUID, summary: str) -> dict[str, Any]:
        return {
            "eventType": event_type,
            "matchId": match_id,
            "recipientUserId": str(recipient),
            "summary": summary,
        }
