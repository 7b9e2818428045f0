import json
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import pika
import redis
import structlog
from pydantic import BaseModel

from .config import settings
from .exceptions import ChannelUnavailableError

logger = structlog.get_logger()


class JobQueue(ABC):
    """Durable queue of concatenation jobs."""

    @abstractmethod
    def enqueue(self, job: Any) -> str:
        """Queue ``job`` (anything with ``id``, ``session_id``, ``group_id``) and return its id."""

    @abstractmethod
    def on_job_picked(self, handler: Callable[[str], Any], stop_event: threading.Event) -> None:
        """Call ``handler(job_id)`` for each picked job until ``stop_event`` is set."""


class RabbitMQJobQueue(JobQueue):
    """RabbitMQ job queue. One instance per thread: pika connections are not thread-safe."""

    def __init__(self, url: str | None = None, queue_name: str | None = None) -> None:
        self.url = url or settings.rabbitmq_url
        self.queue_name = queue_name or settings.job_queue_name
        self._connection: pika.BlockingConnection | None = None
        self._channel = None
        self._lock = threading.Lock()

    def _connect(self) -> None:
        if self._connection is None or self._connection.is_closed:
            params = pika.URLParameters(self.url)
            self._connection = pika.BlockingConnection(params)
            self._channel = self._connection.channel()
            self._channel.queue_declare(queue=self.queue_name, durable=True)

    def enqueue(self, job: Any) -> str:
        job_id = str(job.id)
        message = {
            "job_id": job_id,
            "session_id": job.session_id,
            "group_id": job.group_id,
        }

        with self._lock:
            try:
                self._connect()
                self._channel.basic_publish(
                    exchange="",
                    routing_key=self.queue_name,
                    body=json.dumps(message),
                    properties=pika.BasicProperties(
                        delivery_mode=2,  # persistent
                        content_type="application/json",
                    ),
                )
            except pika.exceptions.AMQPError as e:
                self._connection = None
                logger.error("job_publish_failed", job_id=job_id, error=str(e))
                raise ChannelUnavailableError(f"Job queue unavailable: {e}") from e

        logger.info("job_published", job_id=job_id, queue=self.queue_name)
        return job_id

    def on_job_picked(self, handler: Callable[[str], Any], stop_event: threading.Event) -> None:
        """Consume one message at a time, reconnecting until ``stop_event`` is set."""

        def on_message(channel, method, properties, body):
            try:
                message = json.loads(body)
                job_id = str(uuid.UUID(message["job_id"]))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
                logger.error("invalid_message", error=str(e))
                channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
                return

            logger.info("job_received", job_id=job_id)
            try:
                handler(job_id)
            except ChannelUnavailableError as e:
                logger.error("job_deferred", job_id=job_id, error=str(e))
                channel.basic_nack(delivery_tag=method.delivery_tag, requeue=True)
                return
            except Exception as e:
                logger.error("processing_error", job_id=job_id, error=str(e))
                channel.basic_nack(delivery_tag=method.delivery_tag, requeue=True)
                return

            channel.basic_ack(delivery_tag=method.delivery_tag)

        while not stop_event.is_set():
            try:
                self._connect()
                self._channel.basic_qos(prefetch_count=1)
                self._channel.basic_consume(queue=self.queue_name, on_message_callback=on_message)

                logger.info("worker_ready", queue=self.queue_name)

                while not stop_event.is_set():
                    self._connection.process_data_events(time_limit=1)

                self.close()

            except pika.exceptions.AMQPConnectionError as e:
                logger.error("rabbitmq_connection_error", error=str(e))
                self._connection = None
                stop_event.wait(5)

            except Exception as e:
                logger.error("worker_error", error=str(e))
                self._connection = None
                stop_event.wait(5)

    def close(self) -> None:
        if self._connection and not self._connection.is_closed:
            self._connection.close()


class RedisEventPublisher:
    """Publishes session events on ``<prefix>:<session_id>`` Redis channels."""

    def __init__(self, url: str | None = None, prefix: str | None = None) -> None:
        self.client = redis.from_url(url or settings.redis_url)
        self.prefix = prefix or settings.event_channel_prefix

    def channel_for(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}"

    def publish(self, session_id: str, event: BaseModel) -> int:
        try:
            return self.client.publish(self.channel_for(session_id), event.model_dump_json())
        except redis.exceptions.RedisError as e:
            raise ChannelUnavailableError(f"Event channel unavailable: {e}") from e


_job_queue: RabbitMQJobQueue | None = None
_event_publisher: RedisEventPublisher | None = None


def get_job_queue() -> RabbitMQJobQueue:
    global _job_queue
    if _job_queue is None:
        _job_queue = RabbitMQJobQueue()
    return _job_queue


def get_event_publisher() -> RedisEventPublisher:
    global _event_publisher
    if _event_publisher is None:
        _event_publisher = RedisEventPublisher()
    return _event_publisher
