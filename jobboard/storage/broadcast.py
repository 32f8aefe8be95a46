import json
import logging
import threading
from typing import List, Optional

import redis

from jobboard.config.settings import get_settings
from jobboard.engine.session import SchedulingSession
from jobboard.models.events import BoardEvent
from jobboard.models.results import InvariantViolation

settings = get_settings()
logger = logging.getLogger(__name__)


class RedisEventPublisher:
    """Publishes committed board events on a Redis pub/sub channel."""

    def __init__(
        self,
        redis_url: str = settings.redis_url,
        channel: str = settings.broadcast_channel,
        timeout_seconds: float = settings.broadcast_timeout_seconds,
    ):
        self.channel = channel
        self.redis_client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )

    def publish(self, event: BoardEvent) -> bool:
        # the mutation is already committed locally; a lost broadcast is logged, not rolled back
        try:
            self.redis_client.publish(self.channel, event.to_json())
            return True
        except redis.exceptions.RedisError as exc:
            logger.warning(f"Broadcast of {event.op} event {event.event_id} failed: {exc}")
            return False

    __call__ = publish

    def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            self.redis_client.ping()
            return True
        except redis.exceptions.RedisError:
            return False


class RedisEventSubscriber:
    """Replays events published by other sessions into a local session."""

    def __init__(
        self,
        session: SchedulingSession,
        redis_url: str = settings.redis_url,
        channel: str = settings.broadcast_channel,
    ):
        self.session = session
        self.channel = channel
        self.redis_client = redis.from_url(redis_url, decode_responses=True)
        self._pubsub = None
        self._thread: Optional[threading.Thread] = None

    def handle_message(self, message: dict) -> None:
        if message.get("type") != "message":
            return
        try:
            event = BoardEvent.from_json(message["data"])
        except (ValueError, KeyError, json.JSONDecodeError) as exc:
            logger.warning(f"Dropping malformed board event: {exc!r}")
            return
        try:
            result = self.session.apply_event(event)
        except (InvariantViolation, ValueError, KeyError) as exc:
            logger.warning(f"Could not replay {event.op} event {event.event_id}: {exc!r}")
            return
        for warning in result.warnings:
            logger.warning(warning)

    def start(self) -> None:
        self._pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        self._pubsub.subscribe(**{self.channel: self.handle_message})
        self._thread = self._pubsub.run_in_thread(sleep_time=0.5, daemon=True)
        logger.info(f"Listening for board events on {self.channel}")

    def stop(self) -> None:
        if self._thread is not None:
            self._thread.stop()
            self._thread = None
        if self._pubsub is not None:
            self._pubsub.close()
            self._pubsub = None


class InMemoryEventPublisher:
    """Records events and fans them out to peer sessions in the same process."""

    def __init__(self):
        self.events: List[BoardEvent] = []
        self.peers: List[SchedulingSession] = []

    def connect(self, session: SchedulingSession) -> None:
        self.peers.append(session)

    def publish(self, event: BoardEvent) -> bool:
        self.events.append(event)
        for peer in self.peers:
            peer.apply_event(event)
        return True

    __call__ = publish
