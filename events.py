# events.py
"""
Classification of inbound Messenger webhook events.

A page webhook body carries ``entry[].messaging[]``; each messaging event has
exactly one of ``optin``, ``message``, ``delivery``, ``postback``, ``read`` or
``account_linking``. ``classify_event`` maps it to a typed variant and never
raises on unexpected input.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger("events")


@dataclass
class MessagingEvent:
    sender_id: Optional[str]
    recipient_id: Optional[str]
    timestamp: Optional[int]
    raw: Dict[str, Any] = field(repr=False)


@dataclass
class AuthenticationEvent(MessagingEvent):
    ref: Optional[str] = None


@dataclass
class Attachment:
    type: str
    url: Optional[str] = None


@dataclass
class MessageEvent(MessagingEvent):
    message_id: Optional[str] = None
    text: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)
    is_echo: bool = False
    quick_reply_payload: Optional[str] = None
    app_id: Optional[str] = None
    metadata: Optional[str] = None


@dataclass
class DeliveryEvent(MessagingEvent):
    message_ids: List[str] = field(default_factory=list)
    watermark: Optional[int] = None


@dataclass
class PostbackEvent(MessagingEvent):
    payload: Optional[str] = None
    title: Optional[str] = None


@dataclass
class ReadEvent(MessagingEvent):
    watermark: Optional[int] = None
    seq: Optional[int] = None


@dataclass
class AccountLinkEvent(MessagingEvent):
    status: Optional[str] = None
    authorization_code: Optional[str] = None


@dataclass
class UnknownEvent(MessagingEvent):
    pass


def _party_id(event: Dict[str, Any], key: str) -> Optional[str]:
    party = event.get(key) or {}
    value = party.get("id")
    return str(value) if value is not None else None


def _parse_attachments(message: Dict[str, Any]) -> List[Attachment]:
    attachments = []
    for item in message.get("attachments") or []:
        payload = item.get("payload") or {}
        attachments.append(Attachment(type=item.get("type", ""), url=payload.get("url")))
    return attachments


def classify_event(event: Dict[str, Any]) -> MessagingEvent:
    base = {
        "sender_id": _party_id(event, "sender"),
        "recipient_id": _party_id(event, "recipient"),
        "timestamp": event.get("timestamp"),
        "raw": event,
    }
    if event.get("optin"):
        return AuthenticationEvent(**base, ref=event["optin"].get("ref"))
    if event.get("message"):
        message = event["message"]
        quick_reply = message.get("quick_reply") or {}
        return MessageEvent(
            **base,
            message_id=message.get("mid"),
            text=message.get("text"),
            attachments=_parse_attachments(message),
            is_echo=bool(message.get("is_echo")),
            quick_reply_payload=quick_reply.get("payload"),
            app_id=message.get("app_id"),
            metadata=message.get("metadata"),
        )
    if event.get("delivery"):
        delivery = event["delivery"]
        return DeliveryEvent(**base, message_ids=list(delivery.get("mids") or []), watermark=delivery.get("watermark"))
    if event.get("postback"):
        postback = event["postback"]
        return PostbackEvent(**base, payload=postback.get("payload"), title=postback.get("title"))
    if event.get("read"):
        read = event["read"]
        return ReadEvent(**base, watermark=read.get("watermark"), seq=read.get("seq"))
    if event.get("account_linking"):
        linking = event["account_linking"]
        return AccountLinkEvent(**base, status=linking.get("status"), authorization_code=linking.get("authorization_code"))
    logger.info("Webhook received unknown messaging event: %s", event)
    return UnknownEvent(**base)


def extract_messaging_events(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    if body.get("object") != "page":
        return []
    events: List[Dict[str, Any]] = []
    for entry in body.get("entry", []):
        for messaging_event in entry.get("messaging", []):
            events.append(messaging_event)
    return events
