"""Single Lambda entry point for the ordering service.

API Gateway requests go to the FastAPI app through Mangum. EventBridge
order status events are handled directly so customers waiting on the
checkout confirmation step are notified.
"""

import asyncio
import logging
import os
from typing import Any

from mangum import Mangum

from lambda_dependencies import get_event_handler, get_fastapi_app, initialize_lambda_environment
from restaurant_ordering.handlers.event_handler import (
    ORDER_EVENT_SOURCE,
    ORDER_STATUS_CHANGED,
    parse_eventbridge_event,
)

logger = logging.getLogger(__name__)

# Cold start wiring, reused across warm invocations
if os.getenv("ENVIRONMENT") != "test":
    initialize_lambda_environment()
    app = get_fastapi_app()
    mangum_handler = Mangum(app, lifespan="off")
else:
    app = None  # type: ignore
    mangum_handler = None  # type: ignore

EVENTBRIDGE_KEYS = ("source", "detail-type", "detail")


def _response(status_code: int, body: str) -> dict[str, Any]:
    return {"statusCode": status_code, "body": body}


def is_eventbridge_event(event: dict[str, Any]) -> bool:
    """True when the payload carries the EventBridge envelope keys."""
    return all(key in event for key in EVENTBRIDGE_KEYS)


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """Route an invocation to the EventBridge handler or the HTTP API.

    Args:
        event: EventBridge or API Gateway payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and body
    """
    logger.info(f"Lambda invocation {context.request_id}")

    try:
        if is_eventbridge_event(event):
            return handle_eventbridge_event(event)
        result: dict[str, Any] = mangum_handler(event, context)
        return result
    except Exception as e:
        logger.exception(f"Unhandled error in Lambda handler: {e}")
        return _response(500, "Internal server error")


def handle_eventbridge_event(event: dict[str, Any]) -> dict[str, Any]:
    """Deliver an OrderStatusChanged event to local subscribers."""
    kind = f"{event.get('source', '')}/{event.get('detail-type', '')}"
    if kind != f"{ORDER_EVENT_SOURCE}/{ORDER_STATUS_CHANGED}":
        logger.warning(f"Unsupported event type: {kind}")
        return _response(400, f"Unsupported event type: {kind}")

    status_event = parse_eventbridge_event(event)
    if status_event is None:
        return _response(400, "Invalid event format")

    try:
        delivered = asyncio.run(get_event_handler().handle_status_changed(status_event))
    except Exception as e:
        logger.exception(f"Error processing order event {status_event.order_id}: {e}")
        return _response(500, "Error processing event")

    return _response(
        200,
        f"Order {status_event.order_id} status change delivered to {delivered} subscriber(s)",
    )
