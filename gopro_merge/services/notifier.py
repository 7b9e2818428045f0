"""
Per-session fan-out of job events.

Workers publish on Redis; the API process relays those messages into the
in-process ProgressNotifier, which hands them to every subscriber of the
session. Delivery is filtered per subscriber and group so that a subscriber
never sees a job's progress go backwards or anything after its terminal event,
whatever order the messages arrive in.
"""

import threading
from collections.abc import Callable

import redis
import structlog
from pydantic import ValidationError

from gopro_merge.core.config import settings

from .events import JobCompleted, JobFailed, ProgressUpdate, parse_event

logger = structlog.get_logger()

Event = ProgressUpdate | JobCompleted | JobFailed


class _GroupCursor:
    __slots__ = ("job_id", "attempt", "seq", "progress", "terminal")

    def __init__(self, event: Event) -> None:
        self.job_id = event.job_id
        self.attempt = event.attempt
        self.seq = event.seq
        self.progress = getattr(event, "progress", 100 if event.is_terminal else 0)
        self.terminal = event.is_terminal

    def admits(self, event: Event) -> bool:
        if event.job_id != self.job_id:
            return True
        if event.attempt != self.attempt:
            return event.attempt > self.attempt
        if self.terminal or event.seq <= self.seq:
            return False
        if isinstance(event, ProgressUpdate) and event.progress < self.progress:
            return False
        return True


class Subscription:
    def __init__(self, session_id: str, deliver: Callable[[Event], None]) -> None:
        self.session_id = session_id
        self._deliver = deliver
        self._cursors: dict[str, _GroupCursor] = {}

    def offer(self, event: Event) -> bool:
        cursor = self._cursors.get(event.group_id)
        if cursor is not None and not cursor.admits(event):
            return False
        self._cursors[event.group_id] = _GroupCursor(event)
        self._deliver(event)
        return True


class ProgressNotifier:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, session_id: str, deliver: Callable[[Event], None]) -> Subscription:
        subscription = Subscription(session_id, deliver)
        with self._lock:
            self._subscriptions.setdefault(session_id, []).append(subscription)
        logger.info("session_subscribed", session_id=session_id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.session_id, [])
            if subscription in subscriptions:
                subscriptions.remove(subscription)
            if not subscriptions:
                self._subscriptions.pop(subscription.session_id, None)
        logger.info("session_unsubscribed", session_id=subscription.session_id)

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(session_id, []))

    def publish(self, session_id: str, event: Event) -> int:
        """Deliver ``event`` to the current subscribers of ``session_id``. Returns deliveries made."""
        delivered = 0
        # Held while delivering so two publishers cannot interleave one group's events.
        with self._lock:
            for subscription in list(self._subscriptions.get(session_id, [])):
                try:
                    if subscription.offer(event):
                        delivered += 1
                except Exception as e:
                    logger.warning("event_delivery_failed", session_id=session_id, error=str(e))
        return delivered


class RedisEventListener:
    """Relays events published by workers on Redis into a ProgressNotifier."""

    def __init__(
        self,
        notifier: ProgressNotifier,
        url: str | None = None,
        prefix: str | None = None,
        reconnect_delay: float = 5.0,
    ) -> None:
        self.notifier = notifier
        self.reconnect_delay = reconnect_delay
        self.url = url or settings.redis_url
        self.prefix = prefix or settings.event_channel_prefix
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="event-listener", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stop.is_set():
            pubsub = None
            try:
                pubsub = redis.from_url(self.url).pubsub(ignore_subscribe_messages=True)
                pubsub.psubscribe(f"{self.prefix}:*")
                logger.info("event_listener_ready", pattern=f"{self.prefix}:*")

                while not self._stop.is_set():
                    message = pubsub.get_message(timeout=1.0)
                    if message is not None:
                        self.dispatch(message)

            except redis.exceptions.RedisError as e:
                logger.error("event_channel_unavailable", error=str(e))
                self._stop.wait(self.reconnect_delay)

            except Exception as e:
                # Only stop() ends the thread.
                logger.exception("event_listener_error", error=str(e))
                self._stop.wait(self.reconnect_delay)

            finally:
                if pubsub is not None:
                    pubsub.close()

    def dispatch(self, message: dict) -> int:
        channel = message.get("channel")
        if isinstance(channel, bytes):
            channel = channel.decode("utf-8", errors="replace")
        if not channel or not channel.startswith(f"{self.prefix}:"):
            return 0

        session_id = channel[len(self.prefix) + 1:]
        try:
            event = parse_event(message["data"])
        except (KeyError, ValidationError) as e:
            logger.warning("invalid_event_message", channel=channel, error=str(e))
            return 0

        return self.notifier.publish(session_id, event)


notifier = ProgressNotifier()
