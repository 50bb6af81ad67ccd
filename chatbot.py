# chatbot.py
"""
Messenger reporting bot: webhook surface and wiring.

- Users report incidents (SEX / DOMESTIC / OTHERS / EVENT / NEWS); the report
  is collected message by message and sent to a moderator as a digest on END.
- Moderators draft posts (title -> link -> description -> image) and broadcast
  them to every ordinary user.
- Integrates with:
    - db_io.py (UserStore, ReportStore, MessageStore, PostStore on DynamoDB)
    - messenger_client.MessengerClient (Graph API Send API)
    - conversation.ConversationEngine (state machine)

The webhook acknowledges immediately; events are processed in a background
task after the response has been sent.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from mangum import Mangum

from broadcast import Broadcaster
from config import ConfigurationError, load_settings
from conversation import ConversationEngine
from db_io import IdSequence, MessageStore, PostStore, ReportStore, UserStore
from events import classify_event, extract_messaging_events
from messenger_client import MessengerClient
from report_digest import ReportDigest

# --- Configuration & logging ---
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("messenger.reporting.chatbot")

try:
    settings = load_settings()
except ConfigurationError as exc:
    logger.critical("%s", exc)
    raise SystemExit(1)

logging.getLogger().setLevel(settings.log_level.upper())

app = FastAPI(title="Messenger Reporting Bot", version="1.0.0")
_lambda_adapter = Mangum(app)

# ---------------------------------------------------------------------------
# Stores & collaborators
# ---------------------------------------------------------------------------

id_sequence = IdSequence(settings.counter_table_name, settings.aws_region)
user_store = UserStore(settings.user_table_name, settings.aws_region)
report_store = ReportStore(settings.report_table_name, settings.aws_region, id_sequence)
message_store = MessageStore(settings.message_table_name, settings.aws_region, id_sequence)
post_store = PostStore(settings.post_table_name, settings.aws_region, id_sequence)

messenger = MessengerClient(settings.page_access_token, settings.graph_api_version)

engine = ConversationEngine(
    users=user_store,
    reports=report_store,
    messages=message_store,
    posts=post_store,
    messenger=messenger,
    digest=ReportDigest(user_store, report_store, message_store, messenger),
    broadcaster=Broadcaster(user_store, post_store, messenger, limit=settings.latest_post_limit),
    server_url=settings.server_url,
    default_post_image_url=settings.post_image_url,
)

# ---------------------------------------------------------------------------
# Signature verification
# ---------------------------------------------------------------------------

def verify_request_signature(body: bytes, signature: Optional[str], app_secret: str) -> bool:
    """Check ``X-Hub-Signature`` (``sha1=<hex>``) against the raw body.

    A missing header is logged and tolerated; a present but wrong one is not.
    """
    if not signature:
        logger.error("Couldn't validate the signature: X-Hub-Signature header missing")
        return True
    method, _, signature_hash = signature.partition("=")
    if method != "sha1" or not signature_hash:
        logger.error("Unsupported signature format: %s", signature)
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha1).hexdigest()
    if not hmac.compare_digest(signature_hash, expected):
        logger.error("Couldn't validate the request signature")
        return False
    return True

# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def dispatch_events(raw_events: List[Dict[str, Any]]) -> None:
    for raw in raw_events:
        try:
            engine.handle(classify_event(raw))
        except Exception:
            logger.exception("Failed to process messaging event %s", raw)

# ---------------------------------------------------------------------------
# Webhook endpoints
# ---------------------------------------------------------------------------

@app.get("/webhook")
def verify_webhook(hub_mode: Optional[str] = Query(default=None, alias="hub.mode"), hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"), hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge")):
    if hub_mode == "subscribe" and hub_verify_token == settings.validation_token:
        logger.info("Validating webhook")
        return PlainTextResponse(hub_challenge or "")
    logger.error("Failed validation. Make sure the validation tokens match.")
    raise HTTPException(status_code=403, detail="Verification token mismatch")

@app.post("/webhook")
async def receive_webhook(request: Request, background_tasks: BackgroundTasks):
    body = await request.body()
    if not verify_request_signature(body, request.headers.get("x-hub-signature"), settings.app_secret):
        raise HTTPException(status_code=403, detail="Invalid signature")
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict) or payload.get("object") != "page":
        return JSONResponse({"status": "ignored"})
    raw_events = extract_messaging_events(payload)
    background_tasks.add_task(dispatch_events, raw_events)
    return JSONResponse({"status": "EVENT_RECEIVED"})

@app.get("/authorize")
def authorize(account_linking_token: Optional[str] = None, redirect_uri: Optional[str] = None):
    if not redirect_uri:
        raise HTTPException(status_code=400, detail="redirect_uri is required")
    # authorization code should be generated per user once real account linking exists
    auth_code = "1234567890"
    logger.info("Account linking requested with token %s", account_linking_token)
    return RedirectResponse(f"{redirect_uri}&authorization_code={auth_code}")

@app.get("/healthz")
def healthcheck():
    return {"status": "ok", "messenger_enabled": messenger.enabled, "server_url": settings.server_url}

# ---------------------------------------------------------------------------
# Local runner
# ---------------------------------------------------------------------------

def run():
    import uvicorn
    uvicorn.run("chatbot:app", host="0.0.0.0", port=settings.port, reload=bool(int(os.environ.get("RELOAD", "0"))))

def lambda_handler(event, context):
    return _lambda_adapter(event, context)

if __name__ == "__main__":
    run()
