"""
Inbound webhook verification.

Payhook signs each webhook delivery with the endpoint's secret and sends the
result in the `Payhook-Signature` header:

    t=1614556800,v1=5257a869e7...,v1=6ffbb59b...

The signature is HMAC-SHA256 over "{t}.{raw body}". Several `v1` entries are
sent while a secret is being rolled; any one of them matching is enough.
"""
import hashlib
import hmac
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from payhook_sdk import (
    Event,
    InvalidPayloadError,
    PayhookResponse,
    SignatureVerificationError,
    VerificationFailure,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300
EXPECTED_SCHEME = "v1"

Payload = Union[str, bytes]


@dataclass(frozen=True)
class WebhookOptions:
    """
    tolerance: maximum age in seconds of the signed timestamp; 0 disables the check.
    clock: returns the current unix time in seconds.
    """

    tolerance: int = DEFAULT_TOLERANCE
    clock: Callable[[], float] = field(default=time.time)

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ValueError("tolerance must be >= 0")

    @classmethod
    def from_env(cls, clock: Optional[Callable[[], float]] = None) -> "WebhookOptions":
        raw = os.environ.get("PAYHOOK_WEBHOOK_TOLERANCE")
        tolerance = DEFAULT_TOLERANCE
        if raw:
            try:
                tolerance = int(raw)
            except ValueError:
                raise ValueError(f"PAYHOOK_WEBHOOK_TOLERANCE is not an integer: {raw!r}") from None
        return cls(tolerance=tolerance, clock=clock or time.time)


@dataclass(frozen=True)
class ParsedSignature:
    timestamp: int
    signatures: List[str]


# -----------------------------
# Header parsing
# -----------------------------

def _items(header: str):
    for item in header.split(","):
        key, sep, value = item.partition("=")
        if sep:
            yield key, value


_INT64_MAX = 2 ** 63 - 1


def _parse_int(value: str) -> int:
    digits = value[1:] if value.startswith("-") else value
    # anything past 19 digits cannot be a signed 64-bit value
    if not digits or len(digits) > 19 or not digits.isascii() or not digits.isdigit():
        return -1
    n = int(value)
    if not -_INT64_MAX - 1 <= n <= _INT64_MAX:
        return -1
    return n


def get_timestamp(header: str) -> int:
    """Return the first `t` value in the header, or -1 if missing or not an integer."""
    for key, value in _items(header):
        if key == "t":
            return _parse_int(value)
    return -1


def get_signatures(header: str, scheme: str) -> List[str]:
    return [value for key, value in _items(header) if key == scheme]


def parse_header(header: str, scheme: str = EXPECTED_SCHEME) -> ParsedSignature:
    return ParsedSignature(get_timestamp(header), get_signatures(header, scheme))


# -----------------------------
# Signature computation
# -----------------------------

def _to_bytes(payload: Payload) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return bytes(payload)


def _hmac_sha256_hex(key: bytes, message: bytes) -> str:
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def compute_hmac_sha256(key: str, message: Payload) -> str:
    return _hmac_sha256_hex(key.encode("utf-8"), _to_bytes(message))


def signed_payload(timestamp: int, payload: Payload) -> bytes:
    # bytes payloads are signed untouched, str payloads are UTF-8 encoded
    return f"{timestamp}.".encode() + _to_bytes(payload)


def compute_signature(timestamp: int, payload: Payload, secret: str) -> str:
    return compute_hmac_sha256(secret, signed_payload(timestamp, payload))


def generate_test_header(
    payload: Payload,
    secret: str,
    timestamp: Optional[int] = None,
    scheme: str = EXPECTED_SCHEME,
) -> str:
    """Build a signature header for `payload`, e.g. to exercise a webhook endpoint in tests."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{scheme}={compute_signature(ts, payload, secret)}"


# -----------------------------
# Verification
# -----------------------------

def _fail(message: str, kind: VerificationFailure, sig_header: Optional[str]) -> SignatureVerificationError:
    logger.warning("webhook signature rejected: %s (%s) header=%r", message, kind.value, sig_header)
    return SignatureVerificationError(message, kind, sig_header)


def verify_header(
    payload: Payload,
    sig_header: Optional[str],
    secret: str,
    options: Optional[WebhookOptions] = None,
) -> bool:
    """
    Verify a `Payhook-Signature` header against the raw request body.

    Returns True, or raises SignatureVerificationError whose `kind` says why
    the header was rejected. Timestamps in the future are accepted; only
    timestamps older than `options.tolerance` seconds are stale.
    """
    if not secret:
        raise ValueError("secret is required")
    opts = options or WebhookOptions()
    header = sig_header or ""

    timestamp = get_timestamp(header)
    if timestamp <= 0:
        raise _fail(
            "Unable to extract timestamp and signatures from header",
            VerificationFailure.MALFORMED_HEADER,
            sig_header,
        )

    signatures = get_signatures(header, EXPECTED_SCHEME)
    if not signatures:
        raise _fail(
            "No signatures found with expected scheme",
            VerificationFailure.NO_MATCHING_SCHEME,
            sig_header,
        )

    # only the hash call maps to COMPUTATION_ERROR
    message = signed_payload(timestamp, payload)
    key = secret.encode("utf-8")
    try:
        expected = _hmac_sha256_hex(key, message).encode("ascii")
    except ValueError as e:
        err = _fail("Unable to compute signature for payload", VerificationFailure.COMPUTATION_ERROR, sig_header)
        raise err from e

    # every candidate is compared, no early exit
    found = False
    for signature in signatures:
        if hmac.compare_digest(expected, signature.encode("utf-8")):
            found = True
    if not found:
        raise _fail(
            "No signatures found matching the expected signature for payload",
            VerificationFailure.NO_MATCH,
            sig_header,
        )

    if opts.tolerance > 0 and timestamp < int(opts.clock()) - opts.tolerance:
        raise _fail("Timestamp outside the tolerance zone", VerificationFailure.STALE_TIMESTAMP, sig_header)

    logger.debug("webhook signature verified (t=%d, candidates=%d)", timestamp, len(signatures))
    return True


def construct_event(
    payload: Payload,
    sig_header: Optional[str],
    secret: Optional[str] = None,
    options: Optional[WebhookOptions] = None,
) -> Event:
    """
    Parse and verify a webhook delivery, returning the Event.

    The payload is parsed before the signature is checked, so a body that is
    not JSON raises InvalidPayloadError even when the signature is also bad.
    `secret` defaults to env PAYHOOK_WEBHOOK_SECRET.
    """
    secret = secret or os.environ.get("PAYHOOK_WEBHOOK_SECRET")
    if not secret:
        raise RuntimeError("secret not provided and PAYHOOK_WEBHOOK_SECRET is not set")

    try:
        body = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        # lone surrogates cannot be signed
        if isinstance(body, str):
            body.encode("utf-8")
        values = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        logger.warning("webhook payload rejected: not valid JSON header=%r", sig_header)
        raise InvalidPayloadError("Payload is not valid JSON", sig_header) from e
    if not isinstance(values, dict):
        logger.warning("webhook payload rejected: not a JSON object header=%r", sig_header)
        raise InvalidPayloadError("Payload is not a JSON object", sig_header)

    event = Event.construct_from(values)
    verify_header(payload, sig_header, secret, options)

    # events built from a webhook never went through an API response;
    # synthesize one so the raw payload stays available
    if event.last_response is None:
        event.last_response = PayhookResponse(200, {}, body)
    return event
