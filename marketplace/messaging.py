from __future__ import annotations

import datetime as dt
import json

import pika
import structlog
from pika.exceptions import AMQPError

from .config import EVENTS_ENABLED, EVENTS_EXCHANGE, RABBITMQ_URL

logger = structlog.get_logger(__name__)


def _connect() -> pika.BlockingConnection:
    params = pika.URLParameters(RABBITMQ_URL)
    params.heartbeat = 30
    params.blocked_connection_timeout = 30
    return pika.BlockingConnection(params)


def _publish(routing_key: str, payload: dict) -> None:
    connection = _connect()
    try:
        ch = connection.channel()
        ch.exchange_declare(exchange=EVENTS_EXCHANGE, exchange_type="topic", durable=True)
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        ch.basic_publish(
            exchange=EVENTS_EXCHANGE,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=2,  # persistent
            ),
        )
    finally:
        connection.close()


def publish_event(routing_key: str, payload: dict) -> bool:
    """Publish a domain event once its transaction has committed.

    The state change is already durable, so a broker failure is logged and
    reported through the return value instead of failing the request.
    """
    if not EVENTS_ENABLED:
        return False

    event = {
        "event": routing_key,
        "occurred_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
        **payload,
    }
    try:
        _publish(routing_key, event)
    except (AMQPError, OSError):
        logger.warning("event_publish_failed", routing_key=routing_key, exc_info=True)
        return False
    return True
