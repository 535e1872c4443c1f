import enum
import json
import os
from typing import Any, Dict, Optional

import requests

DEFAULT_BASE = (
    os.environ.get("PAYHOOK_API_BASE_URL")
    or os.environ.get("PAYHOOK_API_BASE")
    or "https://api.payhook.dev"
)


# -----------------------------
# Errors
# -----------------------------

class PayhookError(Exception):
    """Base exception for all payhook SDK errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class VerificationFailure(str, enum.Enum):
    MALFORMED_HEADER = "malformed_header"
    NO_MATCHING_SCHEME = "no_matching_scheme"
    NO_MATCH = "no_match"
    STALE_TIMESTAMP = "stale_timestamp"
    COMPUTATION_ERROR = "computation_error"
    INVALID_PAYLOAD = "invalid_payload"


class WebhookError(PayhookError):
    """
    Raised when an inbound webhook is rejected.

    Carries the failure kind and the signature header as received so the
    rejection can be logged. The signing secret is never part of the error.
    """

    def __init__(self, message: str, kind: VerificationFailure, sig_header: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.sig_header = sig_header

    def __str__(self) -> str:
        return f"{self.message} (kind={self.kind.value}, header={self.sig_header!r})"


class SignatureVerificationError(WebhookError):
    """The signature header did not authenticate the payload."""


class InvalidPayloadError(WebhookError):
    """The payload is not a JSON object."""

    def __init__(self, message: str, sig_header: Optional[str] = None):
        super().__init__(message, VerificationFailure.INVALID_PAYLOAD, sig_header)


# -----------------------------
# Responses and objects
# -----------------------------

class PayhookResponse:
    """Raw HTTP response an object was built from."""

    def __init__(self, status_code: int, headers: Optional[Dict[str, str]], body: str):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.body = body

    @classmethod
    def from_requests(cls, resp: requests.Response) -> "PayhookResponse":
        return cls(resp.status_code, dict(resp.headers), resp.text)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, PayhookResponse):
            return NotImplemented
        return (self.status_code, self.headers, self.body) == (
            other.status_code,
            other.headers,
            other.body,
        )

    def __repr__(self) -> str:
        return f"PayhookResponse(status_code={self.status_code}, headers={self.headers!r}, body={self.body!r})"


class PayhookObject(dict):
    """
    JSON object with attribute access.

    Nested objects are converted recursively, lists keep their order.
    `last_response` holds the response the object came from, if any.
    """

    OBJECT_NAME: Optional[str] = None

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        object.__setattr__(self, "last_response", None)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "last_response" or name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            self[name] = value

    @classmethod
    def construct_from(
        cls, values: Dict[str, Any], last_response: Optional[PayhookResponse] = None
    ) -> "PayhookObject":
        obj = cls({k: _convert(v) for k, v in values.items()})
        obj.last_response = last_response
        return obj

    def to_dict(self) -> Dict[str, Any]:
        return json.loads(json.dumps(self))


class Event(PayhookObject):
    OBJECT_NAME = "event"


def _convert(value: Any) -> Any:
    if isinstance(value, dict):
        return PayhookObject.construct_from(value)
    if isinstance(value, list):
        return [_convert(v) for v in value]
    return value


# -----------------------------
# API client
# -----------------------------

class PayhookClient:
    def __init__(self, api_key: str, base_url: Optional[str] = None, version: Optional[str] = None):
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE).rstrip('/')
        self.version = version

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }
        if self.version:
            headers["Payhook-Version"] = self.version
        return headers

    def retrieve_event(self, event_id: str) -> Event:
        if not event_id:
            raise ValueError("event_id is required")
        url = f"{self.base_url}/v1/events/{event_id}"
        resp = requests.get(url, headers=self._headers(), timeout=10)
        resp.raise_for_status()
        return Event.construct_from(resp.json(), last_response=PayhookResponse.from_requests(resp))
