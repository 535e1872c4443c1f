from fastapi import FastAPI, Request, Header, HTTPException
from payhook_sdk import PayhookClient, WebhookError
from payhook_webhook import WebhookOptions, construct_event
import os

app = FastAPI()
options = WebhookOptions.from_env()

@app.post("/webhooks/payhook")
async def webhook(request: Request, payhook_signature: str = Header(None)):
    body = await request.body()
    try:
        event = construct_event(body, payhook_signature, options=options)
    except WebhookError as e:
        raise HTTPException(status_code=400, detail=e.kind.value)
    print("payhook event", event.type)
    return {"ok": True}

@app.get("/events/{event_id}")
async def retrieve(event_id: str):
    client = PayhookClient(api_key=os.environ.get("PAYHOOK_API_KEY"), base_url=os.environ.get("PAYHOOK_API_BASE"), version=os.environ.get("PAYHOOK_VERSION"))
    event = client.retrieve_event(event_id)
    return event.to_dict()
