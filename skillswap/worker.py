import json
import logging
import pika
from skillswap.database import SessionLocal
from skillswap.crud import get_or_create_conversation, create_message
from skillswap.events import RABBITMQ_URL, EVENTS_QUEUE
from skillswap.models import MessageType

logger = logging.getLogger(__name__)

STATUS_TEXT = {
    "accepted": "Skill exchange accepted",
    "completed": "Skill exchange marked as completed",
    "cancelled": "Skill exchange cancelled",
}


def handle_exchange_status_changed(db, data: dict):
    """Post a system message about the new exchange status into the pair's conversation."""
    actor_id = data.get("actor_id")
    requester_id = data.get("requester_id")
    provider_id = data.get("provider_id")
    status = data.get("status")
    if not all([actor_id, requester_id, provider_id, status]):
        logger.warning("Missing required fields for exchange.status_changed: %s", data)
        return None

    conversation = get_or_create_conversation(db, requester_id, provider_id)
    return create_message(
        db,
        conversation.id,
        actor_id,
        STATUS_TEXT.get(status, f"Skill exchange is now {status}"),
        MessageType.SYSTEM.value,
        {"exchangeId": data.get("exchange_id"), "status": status},
    )


def process_messaging_event(ch, method, properties, body):
    try:
        event = json.loads(body)
        event_type = event.get("type")
        data = event.get("data", {})
    except (json.JSONDecodeError, AttributeError) as exc:
        logger.error("Failed to parse event JSON: %s", exc)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    logger.info("Messaging worker received event: %s", event_type)
    if event_type != "exchange.status_changed":
        ch.basic_ack(delivery_tag=method.delivery_tag)
        return

    db = SessionLocal()
    try:
        message = handle_exchange_status_changed(db, data)
        if message is not None:
            logger.info("Posted system message %s to conversation %s", message.id, message.conversation_id)
        ch.basic_ack(delivery_tag=method.delivery_tag)
    except Exception:
        logger.exception("Error processing %s", event_type)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
    finally:
        db.close()


def start_worker():
    params = pika.URLParameters(RABBITMQ_URL)
    connection = pika.BlockingConnection(params)
    channel = connection.channel()
    channel.queue_declare(queue=EVENTS_QUEUE, durable=True)
    channel.basic_consume(queue=EVENTS_QUEUE, on_message_callback=process_messaging_event)
    logger.info("Messaging worker started. Waiting for events...")
    channel.start_consuming()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    start_worker()
