"""Pydantic schemas for payment webhook endpoints."""

from typing import Any, Dict, Optional

from pydantic import BaseModel


class WebhookAck(BaseModel):
    message: str
    success: bool = True
    credits_added: int = 0
    balance: Optional[int] = None


class TestEventRequest(BaseModel):
    event_type: str = "transaction.completed"
    email: str = "test@example.com"
    package_name: str = "Starter"


class TestEventResponse(BaseModel):
    success: bool = True
    message: str = "Test event generated"
    event: Dict[str, Any]
    signature: str
    curlCommand: str
    instructions: str = "Use the curl command to test your webhook handler with this event"


class TestSecretResponse(BaseModel):
    success: bool = True
    message: str = "Webhook secret is configured"
    testSignature: str
    webhookSecretConfigured: bool
    webhookSecretMasked: Optional[str] = None
    timestampUsed: str
    signatureFormat: str = "ts={timestamp};h1={hash}"
    testInstructions: str = (
        "Use this signature in the paddle-signature header when sending test requests"
    )
