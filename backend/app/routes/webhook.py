"""Paddle payment webhook routes."""

import json
import time

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.logging_config import get_logger
from app.schemas.webhook import (
    TestEventRequest,
    TestEventResponse,
    TestSecretResponse,
    WebhookAck,
)
from app.services import paddle
from app.services.auth import get_user_by_email

router = APIRouter(prefix="/webhook", tags=["webhook"])
logger = get_logger(__name__)


def _require_secret() -> str:
    secret = settings.paddle_webhook_secret
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="PADDLE_WEBHOOK_SECRET is not configured",
        )
    return secret


async def _read_body(request: Request) -> str:
    try:
        return (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        logger.warning("Rejected webhook body that is not valid UTF-8")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")


@router.post("", response_model=WebhookAck)
async def paddle_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Verify and apply a Paddle notification.

    Raises:
        HTTPException: 401 on a bad signature, 400 on a malformed payload,
            404 when the paying customer has no account
    """
    raw = await _read_body(request)
    signature = request.headers.get(paddle.SIGNATURE_HEADER)

    if not signature:
        logger.info("Webhook called without a signature")
        return WebhookAck(message="Webhook endpoint is working, but no signature was provided.")
    if not raw.strip():
        logger.info("Webhook called with an empty body")
        return WebhookAck(message="Webhook endpoint is working, but no data was provided.")

    if not paddle.verify_signature(settings.paddle_webhook_secret, signature, raw):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        body = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    if not isinstance(body, dict) or not body.get("event_type") or not body.get("data"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The webhook payload is missing required fields (event_type, data)",
        )

    event_type = body["event_type"]
    data = body["data"]
    logger.info("Processing Paddle webhook %s", event_type)

    if event_type == "transaction.updated":
        return WebhookAck(message="Transaction.updated event received")
    if event_type != "transaction.completed":
        return WebhookAck(message=f"Event received but not processed: {event_type}")

    if not isinstance(data, dict) or not data.get("id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing transaction data")

    email = paddle.extract_customer_email(data)
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing customer data")

    user = await get_user_by_email(db, email)
    if user is None:
        logger.warning("Paddle transaction %s for unknown customer", data["id"])
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    items = data.get("items") or []
    if not items:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No line items found")

    package_name, credits = paddle.resolve_package(paddle.extract_package_name(items[0]))
    balance = await paddle.record_purchase(db, user.id, data, package_name, credits)
    if balance is None:
        return WebhookAck(message="Transaction already processed")

    return WebhookAck(
        message="Transaction processed successfully", credits_added=credits, balance=balance
    )


@router.post("/test-event", response_model=TestEventResponse)
async def generate_test_event(payload: TestEventRequest):
    """Build a signed sample event plus a curl command that replays it."""
    secret = _require_secret()
    event = paddle.build_test_event(payload.event_type, payload.email, payload.package_name)
    raw = paddle.dumps(event)
    signature = paddle.sign(secret, raw)
    return TestEventResponse(
        event=event,
        signature=signature,
        curlCommand=paddle.curl_command(
            f"{settings.app_url.rstrip('/')}/api/webhook", signature, raw
        ),
    )


@router.post("/test-secret", response_model=TestSecretResponse)
async def test_webhook_secret(request: Request):
    """Sign the posted body with the configured secret."""
    raw = await _read_body(request)
    try:
        json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    secret = _require_secret()
    timestamp = str(int(time.time()))
    return TestSecretResponse(
        testSignature=paddle.sign(secret, raw, timestamp),
        webhookSecretConfigured=True,
        webhookSecretMasked=paddle.mask_secret(secret),
        timestampUsed=timestamp,
    )
