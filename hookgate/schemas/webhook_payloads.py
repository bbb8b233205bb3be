"""
Webhook payload schemas - one tagged variant per provider endpoint.

Every accepted payload parses into exactly one variant of WebhookPayload.
Event types outside an endpoint's known set become UnknownEvent: they are
still stored, but flagged with known_event_type=False.
"""
import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from hookgate.errors import PermanentProcessingError, UnknownEndpointError


class WebhookEndpoint(str, Enum):
    NETBANX = "netbanx"
    ACCOUNT_STATUS = "account-status"
    DIRECT_DEBIT = "direct-debit"
    ALTERNATE_PAYMENTS = "alternate-payments"

    @classmethod
    def parse(cls, value: str) -> "WebhookEndpoint":
        try:
            return cls(value)
        except ValueError:
            raise UnknownEndpointError(value) from None


ENDPOINT_DESCRIPTIONS = {
    WebhookEndpoint.NETBANX: "Netbanx card payment, refund and chargeback events",
    WebhookEndpoint.ACCOUNT_STATUS: "Paysafe merchant account status updates",
    WebhookEndpoint.DIRECT_DEBIT: "Direct debit payment and mandate events",
    WebhookEndpoint.ALTERNATE_PAYMENTS: "Alternate payment method events (PayPal, Apple Pay, ...)",
}

# Event type used when neither the body nor the headers name one
DEFAULT_EVENT_TYPES = {
    WebhookEndpoint.NETBANX: "UNKNOWN",
    WebhookEndpoint.ACCOUNT_STATUS: "ACCOUNT_STATUS_UPDATE",
    WebhookEndpoint.DIRECT_DEBIT: "DIRECT_DEBIT_UPDATE",
    WebhookEndpoint.ALTERNATE_PAYMENTS: "ALTERNATE_PAYMENT_UPDATE",
}

KNOWN_EVENT_TYPES: dict[WebhookEndpoint, frozenset[str]] = {
    WebhookEndpoint.NETBANX: frozenset({
        "PAYMENT_COMPLETED", "PAYMENT_FAILED", "PAYMENT_PENDING", "PAYMENT_CANCELLED",
        "PAYMENT_AUTHORIZED", "PAYMENT_CAPTURED", "PAYMENT_REFUNDED",
        "REFUND_COMPLETED", "REFUND_FAILED", "CHARGEBACK_CREATED",
    }),
    WebhookEndpoint.ACCOUNT_STATUS: frozenset({
        "ACCOUNT_STATUS_UPDATE",
        "ACCT_APPROVED", "ACCT_ENABLED", "ACCT_DISABLED", "ACCT_PENDING",
        "ACCT_REJECTED", "ACCT_DEFERRED", "ACCT_PROCESSING", "ACCT_RETURNED",
        "ACCT_SUBMITTED", "ACCT_WAITING", "ACCT_WITHDRAWN",
    }),
    WebhookEndpoint.DIRECT_DEBIT: frozenset({
        "DIRECT_DEBIT_UPDATE",
        "DD_PAYMENT_COMPLETED", "DD_PAYMENT_FAILED", "DD_PAYMENT_PENDING",
        "DD_PAYMENT_RETURNED", "DD_PAYMENT_CANCELLED",
        "DD_MANDATE_CREATED", "DD_MANDATE_CANCELLED", "DD_MANDATE_FAILED",
    }),
    WebhookEndpoint.ALTERNATE_PAYMENTS: frozenset({
        "ALTERNATE_PAYMENT_UPDATE",
        "AP_PAYMENT_COMPLETED", "AP_PAYMENT_FAILED", "AP_PAYMENT_PENDING",
        "AP_PAYMENT_CANCELLED", "AP_REFUND_COMPLETED", "AP_REFUND_FAILED",
        "AP_REFUND_PENDING",
    }),
}

# Permanent failures of these raise an operator alert
CRITICAL_EVENT_TYPES = frozenset({
    "PAYMENT_COMPLETED", "PAYMENT_FAILED", "CHARGEBACK_CREATED", "REFUND_FAILED",
    "DD_PAYMENT_FAILED", "DD_PAYMENT_RETURNED", "AP_PAYMENT_FAILED", "AP_REFUND_FAILED",
})

EVENT_TYPE_HEADERS = ("x-paysafe-event-type", "x-netbanx-event-type", "x-event-type")

MAX_SOURCE_KEY_LENGTH = 200


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="allow")


# === NETBANX CARD PAYMENTS ===

class CardDetails(_ProviderModel):
    type: Optional[str] = None
    lastDigits: Optional[str] = None
    holderName: Optional[str] = None


class PaymentEventData(_ProviderModel):
    id: Optional[str] = None
    merchantRefNum: Optional[str] = None
    amount: Optional[float] = None
    currencyCode: Optional[str] = None
    status: Optional[str] = None
    txnTime: Optional[str] = None
    card: Optional[CardDetails] = None


class PaymentEvent(_ProviderModel):
    """Netbanx card payment / refund / chargeback event."""
    kind: Literal["payment"] = "payment"
    id: Optional[Union[str, int]] = None
    eventType: Optional[str] = None
    eventData: Optional[PaymentEventData] = None
    links: Optional[list[dict]] = None


# === ACCOUNT STATUS ===

class AccountDetails(_ProviderModel):
    id: Optional[str] = None
    merchantId: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    subStatus: Optional[str] = None
    onboardingStage: Optional[str] = None
    creditCardId: Optional[str] = None
    directDebitId: Optional[str] = None


class StatusChange(_ProviderModel):
    fromStatus: Optional[str] = None
    toStatus: Optional[str] = None
    reason: Optional[str] = None


class AccountStatusEvent(_ProviderModel):
    """Paysafe merchant account status update."""
    kind: Literal["account_status"] = "account_status"
    id: Optional[Union[str, int]] = None
    eventType: Optional[str] = None
    eventDate: Optional[str] = None
    account: Optional[AccountDetails] = None
    paymentMethods: Optional[list[dict]] = None
    statusChange: Optional[StatusChange] = None


# === DIRECT DEBIT / ALTERNATE PAYMENTS ===

class DirectDebitDetails(_ProviderModel):
    transactionId: Optional[str] = None
    directDebitId: Optional[str] = None
    accountNumber: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    merchantRefNum: Optional[str] = None
    mandateId: Optional[str] = None
    reason: Optional[str] = None
    returnCode: Optional[str] = None


class DirectDebitEvent(_ProviderModel):
    """Direct debit payment or mandate event."""
    kind: Literal["direct_debit"] = "direct_debit"
    id: Optional[Union[str, int]] = None
    resourceId: Optional[str] = None
    mode: Optional[str] = None
    eventDate: Optional[str] = None
    eventType: Optional[str] = None
    payload: Optional[DirectDebitDetails] = None


class AlternatePaymentDetails(_ProviderModel):
    transactionId: Optional[str] = None
    alternatePaymentId: Optional[str] = None
    paymentMethod: Optional[str] = None  # PAYPAL, APPLE_PAY, GOOGLE_PAY, ...
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    merchantRefNum: Optional[str] = None
    reason: Optional[str] = None


class AlternatePaymentEvent(_ProviderModel):
    """Alternate payment method event."""
    kind: Literal["alternate_payment"] = "alternate_payment"
    id: Optional[Union[str, int]] = None
    resourceId: Optional[str] = None
    mode: Optional[str] = None
    eventDate: Optional[str] = None
    eventType: Optional[str] = None
    payload: Optional[AlternatePaymentDetails] = None


class UnknownEvent(_ProviderModel):
    """Event type the endpoint does not recognize - kept verbatim."""
    kind: Literal["unknown"] = "unknown"
    id: Optional[Union[str, int]] = None
    eventType: Optional[str] = None


WebhookPayload = Union[
    PaymentEvent, AccountStatusEvent, DirectDebitEvent, AlternatePaymentEvent, UnknownEvent,
]

_ENDPOINT_MODELS: dict[WebhookEndpoint, type[BaseModel]] = {
    WebhookEndpoint.NETBANX: PaymentEvent,
    WebhookEndpoint.ACCOUNT_STATUS: AccountStatusEvent,
    WebhookEndpoint.DIRECT_DEBIT: DirectDebitEvent,
    WebhookEndpoint.ALTERNATE_PAYMENTS: AlternatePaymentEvent,
}


@dataclass(frozen=True)
class ParsedWebhook:
    endpoint: WebhookEndpoint
    event_type: str
    payload: WebhookPayload
    data: dict
    known_event_type: bool
    idempotency_key: str
    key_source: str  # source | payload_hash
    payload_hash: str

    @property
    def kind(self) -> str:
        return self.payload.kind

    @property
    def is_critical(self) -> bool:
        return self.event_type in CRITICAL_EVENT_TYPES


def compute_payload_hash(body: bytes) -> str:
    """SHA-256 of the raw payload for dedup and audit."""
    return hashlib.sha256(body).hexdigest()


def decode_json_object(raw_body: bytes) -> dict:
    """Decode a request body that must be a JSON object."""
    try:
        data = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise PermanentProcessingError(f"Malformed JSON payload: {e}") from e
    if not isinstance(data, dict):
        raise PermanentProcessingError("Webhook payload root must be a JSON object")
    return data


def event_type_from_headers(headers: dict) -> Optional[str]:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in EVENT_TYPE_HEADERS:
        value = (lowered.get(name) or "").strip()
        if value:
            return value
    return None


def derive_idempotency_key(data: dict, payload_hash: str) -> tuple[str, str]:
    """Source-supplied id when present, else the payload hash."""
    source_id = data.get("id")
    if isinstance(source_id, bool):
        source_id = None
    if isinstance(source_id, (str, int)) and str(source_id).strip():
        key = str(source_id).strip()
        if len(key) > MAX_SOURCE_KEY_LENGTH:
            key = "id-sha256:" + hashlib.sha256(key.encode("utf-8")).hexdigest()
        return key, "source"
    return f"sha256:{payload_hash}", "payload_hash"


def parse_webhook_payload(
    endpoint: Union[WebhookEndpoint, str],
    raw_body: bytes,
    header_event_type: Optional[str] = None,
) -> ParsedWebhook:
    """
    Parse raw webhook bytes into a tagged payload variant.
    Raises PermanentProcessingError for anything that can never succeed.
    """
    if not isinstance(endpoint, WebhookEndpoint):
        endpoint = WebhookEndpoint.parse(endpoint)

    data = decode_json_object(raw_body)
    payload_hash = compute_payload_hash(raw_body)

    body_event_type = data.get("eventType")
    if body_event_type is not None and not isinstance(body_event_type, str):
        raise PermanentProcessingError("eventType must be a string")
    event_type = (
        (body_event_type or "").strip()
        or (header_event_type or "").strip()
        or DEFAULT_EVENT_TYPES[endpoint]
    )

    known = event_type in KNOWN_EVENT_TYPES[endpoint]
    model = _ENDPOINT_MODELS[endpoint] if known else UnknownEvent
    fields = {k: v for k, v in data.items() if k != "kind"}
    try:
        payload = model.model_validate(fields)
    except ValidationError as e:
        raise PermanentProcessingError(
            f"Payload does not match {endpoint.value} schema: {e.error_count()} error(s)"
        ) from e

    idempotency_key, key_source = derive_idempotency_key(data, payload_hash)
    return ParsedWebhook(
        endpoint=endpoint,
        event_type=event_type,
        payload=payload,
        data=data,
        known_event_type=known,
        idempotency_key=idempotency_key,
        key_source=key_source,
        payload_hash=payload_hash,
    )
