"""
Payment Event Normalizer.
Turns a raw PayRex webhook delivery into a canonical PaymentEvent.
"""

import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from app.exceptions import NormalizationError

logger = logging.getLogger(__name__)

# Header names PayRex (and proxies in front of it) have used for the signature
SIGNATURE_HEADERS = ("payrex-signature", "x-payrex-signature", "x-webhook-signature")

MINOR_UNITS_PER_MAJOR = Decimal("100")
CENTS = Decimal("0.01")

# Column limits: String(255) event ids, Numeric(12, 2) amounts
MAX_EVENT_ID_LENGTH = 255
MAX_AMOUNT = Decimal("9999999999.99")


@dataclass(frozen=True)
class PaymentEvent:
    """A payment notification in major currency units."""

    event_id: str
    amount: Decimal
    event_type: str = "payment"
    # True when the provider sent no id and we made one up
    generated_id: bool = False


def generate_event_id() -> str:
    """Time-based fallback id. Only unique within this process."""
    return f"evt_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def get_signature(headers: Mapping[str, str]) -> Optional[str]:
    """Return the first signature header present, if any."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in SIGNATURE_HEADERS:
        value = lowered.get(name)
        if value:
            return value
    return None


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a PayRex HMAC-SHA256 signature over the raw body.

    Accepts the bare hex digest or a "sha256=" prefixed one. The comparison
    itself is constant-time and only attempted for same-length values.
    """
    if not signature:
        return False

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    candidate = signature.strip()
    if candidate.startswith("sha256="):
        candidate = candidate[len("sha256="):]

    if len(candidate) != len(expected):
        logger.info(
            f"Signature mismatch: expected {expected[:12]}..., received {candidate[:12]}..."
        )
        return False

    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def _event_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Locate the object carrying the amount across payload shapes."""
    data = payload.get("data")
    if isinstance(data, dict):
        attributes = data.get("attributes")
        if isinstance(attributes, dict):
            return attributes
        return data
    attributes = payload.get("attributes")
    if isinstance(attributes, dict):
        return attributes
    return payload


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def parse_minor_units(raw: Any) -> Decimal:
    """Convert a provider amount (integer minor units) into major units."""
    if raw is None:
        return Decimal("0")
    if isinstance(raw, bool):
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, "Invalid amount")
    try:
        minor = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, f"Invalid amount: {raw!r}")
    if not minor.is_finite() or minor < 0:
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, f"Invalid amount: {raw!r}")
    amount = (minor / MINOR_UNITS_PER_MAJOR).quantize(CENTS)
    if amount > MAX_AMOUNT:
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, f"Amount too large: {raw!r}")
    return amount


def normalize(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: Optional[str] = None,
) -> PaymentEvent:
    """
    Verify, parse and canonicalize one webhook delivery.

    Raises NormalizationError(INVALID_SIGNATURE) when a secret is configured
    and the signature does not match, NormalizationError(BAD_PAYLOAD) when the
    body is not a JSON object or the amount is unusable.
    """
    if secret:
        if not verify_signature(raw_body, get_signature(headers), secret):
            raise NormalizationError(NormalizationError.INVALID_SIGNATURE, "Invalid signature")
    else:
        logger.warning("PayRex webhook secret not configured, skipping signature verification")

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        logger.error(f"Failed to parse webhook body: {raw_body[:500]!r}")
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, "Invalid JSON")

    if not isinstance(payload, dict):
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, "Invalid JSON")

    provider_id = _first_present(payload.get("id"), payload.get("event_id"))
    event_id = str(provider_id) if provider_id is not None else generate_event_id()
    if len(event_id) > MAX_EVENT_ID_LENGTH:
        raise NormalizationError(NormalizationError.BAD_PAYLOAD, "Invalid event id")

    event_type = str(_first_present(payload.get("type"), payload.get("event")) or "payment")

    data = _event_data(payload)
    raw_amount = _first_present(
        data.get("amount"),
        data.get("amount_received"),
        payload.get("amount"),
    )
    amount = parse_minor_units(raw_amount)

    logger.info(f"PayRex event {event_id} ({event_type}): {amount} from {raw_amount!r} minor units")

    return PaymentEvent(
        event_id=event_id,
        amount=amount,
        event_type=event_type,
        generated_id=provider_id is None,
    )
