"""Verify a saved webhook delivery.
Usage: verify_webhook.py BODY_FILE SIGNATURE_HEADER
Requires env: PAYHOOK_WEBHOOK_SECRET
"""
import sys
from payhook_sdk import WebhookError
from payhook_webhook import WebhookOptions, construct_event

if len(sys.argv) != 3:
    print(__doc__)
    raise SystemExit(2)

with open(sys.argv[1], "rb") as f:
    body = f.read()

# saved deliveries are usually older than the tolerance window
options = WebhookOptions(tolerance=0)

try:
    event = construct_event(body, sys.argv[2], options=options)
except WebhookError as e:
    print("invalid:", e.kind.value, e.message)
    raise SystemExit(1)
print("valid event:", event.get("id"), event.get("type"))
