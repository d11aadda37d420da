"""Paddle webhook signing and purchase handling."""

import hashlib
import hmac
import json
import re
import secrets
import time
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.logging_config import get_logger
from app.models.credits import CreditTransaction
from app.services import ledger

logger = get_logger(__name__)

SIGNATURE_HEADER = "paddle-signature"
SIGNATURE_FORMAT = "ts={timestamp};h1={hash}"
_SIGNATURE_RE = re.compile(r"^ts=(\d+);h1=(.+)$")

DEFAULT_PACKAGE = "Starter"
CREDIT_PACKAGES: Dict[str, int] = {
    "Starter": 50,
    "starter": 50,
    "starter pack": 50,
    "starter package": 50,
    "Pro": 100,
    "pro": 100,
    "pro package": 100,
    "professional": 100,
    "Creator": 250,
    "creator": 250,
    "creator package": 250,
    "Power": 500,
    "power": 500,
    "power package": 500,
    "power user": 500,
}


def sign(secret: str, body: str, timestamp: Optional[str] = None) -> str:
    """Build a ``paddle-signature`` header value for ``body``."""
    timestamp = timestamp or str(int(time.time()))
    digest = hmac.new(
        secret.encode("utf-8"), f"{timestamp}:{body}".encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return f"ts={timestamp};h1={digest}"


def parse_signature_header(header: str) -> Optional[Tuple[str, str]]:
    """Split a signature header into ``(timestamp, hash)``; None if malformed."""
    match = _SIGNATURE_RE.match((header or "").strip())
    if not match:
        return None
    return match.group(1), match.group(2)


def verify_signature(secret: str, header: str, body: str) -> bool:
    if not secret:
        logger.warning("Paddle webhook secret is not configured; rejecting signature")
        return False
    parsed = parse_signature_header(header)
    if parsed is None:
        logger.warning("Malformed paddle-signature header")
        return False
    timestamp, received = parsed
    expected = sign(secret, body, timestamp).split("h1=", 1)[1]
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def mask_secret(secret: str) -> Optional[str]:
    if not secret:
        return None
    return f"{secret[:3]}...{secret[-3:]}"


def _find_email(obj: Any) -> Optional[str]:
    if isinstance(obj, dict):
        email = obj.get("email")
        if isinstance(email, str) and email:
            return email
        children = obj.values()
    elif isinstance(obj, list):
        children = obj
    else:
        return None
    for child in children:
        if isinstance(child, (dict, list)):
            found = _find_email(child)
            if found:
                return found
    return None


def extract_customer_email(data: Dict[str, Any]) -> Optional[str]:
    """Customer email from the known payload locations, then a recursive search."""
    for key in ("customer", "billing_details", "buyer", "user"):
        section = data.get(key)
        if isinstance(section, dict) and section.get("email"):
            return section["email"]
    if data.get("email"):
        return data["email"]

    custom = data.get("custom_data")
    if isinstance(custom, dict) and custom.get("email"):
        return custom["email"]

    for item in data.get("items") or []:
        customer = item.get("customer") if isinstance(item, dict) else None
        if isinstance(customer, dict) and customer.get("email"):
            return customer["email"]

    return _find_email(data)


def extract_package_name(item: Dict[str, Any]) -> str:
    """Product name of a line item, falling back to the ``pri_<name>`` price id."""
    product = item.get("product") or {}
    price = item.get("price") or {}
    for candidate in (
        product.get("name"),
        price.get("product_name"),
        item.get("name"),
        item.get("product_name"),
        price.get("name"),
    ):
        if candidate:
            return candidate

    price_id = item.get("price_id") or ""
    if "_" in price_id:
        part = price_id.split("_")[1]
        if part:
            return part[:1].upper() + part[1:]
    return "Unknown Package"


def resolve_package(package_name: str) -> Tuple[str, int]:
    """Map a product name onto ``(package, credits)``.

    Exact names win, then a case-insensitive partial match; anything else is
    treated as the Starter package.
    """
    credits = CREDIT_PACKAGES.get(package_name, 0)
    if credits > 0:
        return package_name, credits

    lowered = package_name.lower()
    for key, value in CREDIT_PACKAGES.items():
        if key.lower() in lowered or lowered in key.lower():
            return key, value

    logger.warning("Unknown package %r; using %s", package_name, DEFAULT_PACKAGE)
    return DEFAULT_PACKAGE, CREDIT_PACKAGES[DEFAULT_PACKAGE]


async def record_purchase(
    db: AsyncSession,
    user_id: str,
    data: Dict[str, Any],
    package_name: str,
    credits: int,
) -> Optional[int]:
    """Store the transaction and top up the balance in one commit.

    Returns the new balance, or None when ``data['id']`` was already processed.
    """
    transaction_id = str(data["id"])
    existing = await db.execute(
        select(CreditTransaction.id).where(CreditTransaction.paddle_transaction_id == transaction_id)
    )
    if existing.scalar_one_or_none() is not None:
        logger.info("Paddle transaction %s already processed", transaction_id)
        return None

    db.add(
        CreditTransaction(
            user_id=user_id,
            paddle_transaction_id=transaction_id,
            amount=float(data.get("amount") or 0),
            currency=data.get("currency_code") or "USD",
            status="completed",
            credits_added=credits,
            package_name=package_name,
            payload=data,
        )
    )
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info("Paddle transaction %s was recorded concurrently", transaction_id)
        return None

    balance = await ledger.credit(db, user_id, credits)
    logger.info(
        "Paddle transaction %s: %s credit(s) (%s) for user %s",
        transaction_id,
        credits,
        package_name,
        user_id,
    )
    return balance


def _random_id() -> str:
    return secrets.token_hex(12)


def build_test_event(event_type: str, email: str, package_name: str) -> Dict[str, Any]:
    """Sample webhook event in Paddle's envelope."""
    items = [{"price": {"product_name": package_name}, "product": {"name": package_name}}]
    data: Dict[str, Any] = {
        "id": f"txn_{_random_id()}",
        "status": "completed",
        "customer": {"email": email},
        "items": items,
    }
    if event_type in ("transaction.completed", "transaction.updated"):
        data["billing_details"] = {"email": email}
    if event_type == "transaction.completed":
        data["amount"] = 49.99
        data["currency_code"] = "USD"
    if event_type not in ("transaction.completed", "transaction.updated"):
        data["items"] = [{"product": {"name": package_name}}]

    return {
        "event_id": f"evt_{_random_id()}",
        "event_type": event_type,
        "occurred_at": datetime.utcnow().isoformat() + "Z",
        "notification_id": f"ntf_{_random_id()}",
        "data": data,
    }


def curl_command(url: str, signature: str, body: str) -> str:
    return (
        f"curl -X POST {url} \\\n"
        '  -H "Content-Type: application/json" \\\n'
        f'  -H "paddle-signature: {signature}" \\\n'
        f"  -d '{body}'"
    )


def dumps(payload: Dict[str, Any]) -> str:
    """Compact JSON matching what the signature is computed over."""
    return json.dumps(payload, separators=(",", ":"))
