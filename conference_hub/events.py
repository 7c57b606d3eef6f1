"""Booking events for the external notifier (confirmation emails, ICS invites)."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

import pika
from pika.exceptions import AMQPError

from .config import get_settings
from .models import Booking

logger = logging.getLogger(__name__)

BOOKING_CREATED = "booking_created"
BOOKING_STATUS_CHANGED = "booking_status_changed"
BOOKING_DELETED = "booking_deleted"
BOOKING_EXPIRED = "booking_expired"


def booking_message(event: str, booking: Booking) -> Dict[str, Any]:
    return {
        "event": event,
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "room_id": booking.room_id,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": booking.status.value,
    }


def publish_event(message: Dict[str, Any]) -> bool:
    """Publish a persistent message to the bookings queue.

    Returns whether a message was sent. Broker failures are logged and never
    fail the request that triggered the event.
    """
    settings = get_settings()
    if not settings.event_publishing_enabled:
        return False

    try:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.rabbitmq_host))
        try:
            channel = connection.channel()
            channel.queue_declare(queue=settings.bookings_queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=settings.bookings_queue,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
    except AMQPError:
        logger.exception("Could not publish %s for booking %s", message["event"], message["booking_id"])
        return False
    logger.info("Published %s for booking %s", message["event"], message["booking_id"])
    return True


def publish_booking_event(event: str, booking: Booking) -> bool:
    return publish_event(booking_message(event, booking))
