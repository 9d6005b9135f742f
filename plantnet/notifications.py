import logging
import os
from typing import Dict, Optional, Tuple

import resend
from redis.exceptions import RedisError
from rq import Queue, Retry

logger = logging.getLogger(__name__)

SendResult = Tuple[bool, Optional[str]]


class EmailDeliveryError(Exception):
    pass


def send_email_via_resend(payload: Dict[str, object], api_key: str) -> SendResult:
    configured_api_key = (api_key or "").strip()
    if not configured_api_key:
        return False, "Resend API key is not configured."

    previous_api_key = getattr(resend, "api_key", None)
    resend.api_key = configured_api_key
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        return False, str(exc)
    finally:
        resend.api_key = previous_api_key

    if not isinstance(response, dict) or not response.get("id"):
        return False, str(response)

    return True, None


def build_customer_order_email(order_document: Dict, sender: str) -> Optional[Dict[str, object]]:
    customer = order_document.get("customer") or {}
    recipient = str(customer.get("email") or "").strip().lower()
    if not recipient:
        return None

    name = str(customer.get("name") or "").strip() or "there"
    order_id = str(order_document.get("_id") or "")
    quantity = order_document.get("quantity", 1)
    price = order_document.get("price", 0)
    text_body = (
        f"Hi {name}, thanks for ordering from plantNet!\n"
        f"Order {order_id}: {quantity} item(s), total ${price}.\n"
        "We will let you know once the seller ships it.\n\n"
        "plantNet Team"
    )
    html_body = (
        f"<p>Hi {name}, thanks for ordering from plantNet!</p>"
        f"<p>Order <strong>{order_id}</strong>: {quantity} item(s), total ${price}.</p>"
        "<p>We will let you know once the seller ships it.</p>"
        "<p>plantNet Team</p>"
    )
    return {
        "from": sender,
        "to": [recipient],
        "subject": "Order Successful!",
        "html": html_body,
        "text": text_body,
    }


def build_seller_order_email(order_document: Dict, sender: str) -> Optional[Dict[str, object]]:
    recipient = str(order_document.get("seller") or "").strip().lower()
    if not recipient:
        return None

    customer = order_document.get("customer") or {}
    customer_name = str(customer.get("name") or "").strip() or "A customer"
    order_id = str(order_document.get("_id") or "")
    quantity = order_document.get("quantity", 1)
    text_body = (
        f"Hurray! {customer_name} placed order {order_id} for {quantity} item(s).\n"
        "Open your seller dashboard to process it.\n\n"
        "plantNet Team"
    )
    html_body = (
        f"<p>Hurray! {customer_name} placed order <strong>{order_id}</strong> "
        f"for {quantity} item(s).</p>"
        "<p>Open your seller dashboard to process it.</p>"
        "<p>plantNet Team</p>"
    )
    return {
        "from": sender,
        "to": [recipient],
        "subject": "Hurray!, You have an order to process.",
        "html": html_body,
        "text": text_body,
    }


def deliver_email(payload: Dict[str, object]) -> bool:
    """rq job: send one email, raising so rq retries or fails the job."""
    sent, error_details = send_email_via_resend(
        payload, os.getenv("RESEND_API_KEY", "")
    )
    if not sent:
        raise EmailDeliveryError(error_details or "Unknown email error")

    logger.info("Email delivered to %s", ", ".join(payload.get("to") or []))
    return True


def enqueue_email(
    email_queue: Queue,
    payload: Optional[Dict[str, object]],
    *,
    max_retries: int = 2,
    retry_interval: int = 2,
    max_backlog: int = 0,
    description: str = "",
    log: Optional[logging.Logger] = None,
):
    """Queue ``payload`` for delivery on the ``emails`` rq queue.

    Jobs that exhaust their retries land in the queue's failed job registry.
    A full backlog or an unreachable Redis drops the email with a warning;
    the caller never sees the failure.
    """
    log = log or logger
    if not payload:
        return None

    recipients = ", ".join(payload.get("to") or [])
    retry = Retry(max=max_retries, interval=retry_interval) if max_retries > 0 else None
    try:
        if max_backlog and email_queue.count >= max_backlog:
            log.warning("Email backlog is full; dropping email to %s", recipients)
            return None
        return email_queue.enqueue(
            deliver_email,
            payload,
            retry=retry,
            description=description or f"email to {recipients}",
        )
    except RedisError as exc:
        log.warning("Could not queue email to %s: %s", recipients, exc)
        return None
