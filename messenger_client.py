# messenger_client.py
"""
Facebook Messenger Send API helper class.

Provides:
- send_text
- send_attachment / send_image
- send_template
- send_generic
- send_sender_action
- send_payload (pre-built message bodies from message_templates)
- fetch_profile

This class uses the Graph API endpoint:
https://graph.facebook.com/{api_version}/me/messages
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger("messenger_client")

GRAPH_BASE_URL = "https://graph.facebook.com"
MAX_TEXT_LENGTH = 640


@dataclass
class SendResult:
    ok: bool
    recipient_id: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class MessengerClient:
    def __init__(self, page_access_token: Optional[str], api_version: str = "v2.6", session: Optional[requests.Session] = None):
        self.page_access_token = page_access_token
        self.api_version = api_version
        self.send_url = f"{GRAPH_BASE_URL}/{api_version}/me/messages"
        self._session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.page_access_token)

    def _post(self, payload: Dict[str, Any]) -> SendResult:
        recipient_id = str(payload.get("recipient", {}).get("id", ""))
        if not self.enabled:
            logger.info("[dry-run] %s", json.dumps(payload, indent=2, ensure_ascii=False))
            return SendResult(ok=True, recipient_id=recipient_id)
        try:
            response = self._session.post(self.send_url, params={"access_token": self.page_access_token}, json=payload, timeout=10)
        except requests.RequestException as exc:
            logger.error("Send API call failed - recipient=%s error=%s", recipient_id, exc)
            return SendResult(ok=False, recipient_id=recipient_id, error=str(exc))
        if not response.ok:
            logger.error("Send API failed - status=%s body=%s", response.status_code, response.text)
            return SendResult(ok=False, recipient_id=recipient_id, error=f"HTTP {response.status_code}")
        try:
            body = response.json() if response.content else {}
        except ValueError as exc:
            logger.error("Send API returned a non-JSON body - status=%s body=%s", response.status_code, response.text)
            return SendResult(ok=False, recipient_id=recipient_id, error=f"invalid response body: {exc}")
        message_id = body.get("message_id")
        if message_id:
            logger.info("Sent message %s to recipient %s", message_id, body.get("recipient_id", recipient_id))
        else:
            logger.info("Called Send API for recipient %s", body.get("recipient_id", recipient_id))
        return SendResult(ok=True, recipient_id=body.get("recipient_id", recipient_id), message_id=message_id)

    def send_text(self, recipient_id: str, text: str) -> SendResult:
        if len(text) > MAX_TEXT_LENGTH:
            logger.warning("Truncating text for recipient %s from %d to %d characters", recipient_id, len(text), MAX_TEXT_LENGTH)
            text = text[:MAX_TEXT_LENGTH]
        payload = {"recipient": {"id": recipient_id}, "message": {"text": text, "metadata": "DEVELOPER_DEFINED_METADATA"}}
        return self._post(payload)

    def send_payload(self, recipient_id: str, message: Dict[str, Any]) -> SendResult:
        return self._post({"recipient": {"id": recipient_id}, "message": message})

    def send_attachment(self, recipient_id: str, attachment_type: str, url: str) -> SendResult:
        return self.send_payload(recipient_id, {"attachment": {"type": attachment_type, "payload": {"url": url}}})

    def send_image(self, recipient_id: str, url: str) -> SendResult:
        return self.send_attachment(recipient_id, "image", url)

    def send_template(self, recipient_id: str, template: Dict[str, Any]) -> SendResult:
        return self.send_payload(recipient_id, {"attachment": {"type": "template", "payload": template}})

    def send_generic(self, recipient_id: str, elements: List[Dict[str, Any]]) -> SendResult:
        # generic template carries at most 10 elements
        return self.send_template(recipient_id, {"template_type": "generic", "elements": elements[:10]})

    def send_sender_action(self, recipient_id: str, action: str) -> SendResult:
        # mark_seen | typing_on | typing_off
        return self._post({"recipient": {"id": recipient_id}, "sender_action": action})

    def fetch_profile(self, user_id: str, fields: str = "first_name,last_name") -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        url = f"{GRAPH_BASE_URL}/{self.api_version}/{user_id}"
        try:
            response = self._session.get(url, params={"fields": fields, "access_token": self.page_access_token}, timeout=10)
        except requests.RequestException as exc:
            logger.error("Profile fetch failed - user=%s error=%s", user_id, exc)
            return None
        if not response.ok:
            logger.error("Profile fetch failed - status=%s body=%s", response.status_code, response.text)
            return None
        try:
            return response.json()
        except ValueError:
            logger.error("Profile fetch returned a non-JSON body - user=%s", user_id)
            return None
