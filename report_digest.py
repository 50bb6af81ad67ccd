# report_digest.py
"""
Moderator digest of a reporter's most recent report.

Message texts are joined in insertion order; image messages are replaced by
``[image-N]`` placeholders and their URLs are sent separately as image cards
numbered the same way.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

import message_templates
from db_io import ROLE_MODERATOR, TYPE_IMAGE, MessageStore, ReportMessage, ReportStore, UserStore
from messenger_client import MessengerClient

logger = logging.getLogger("report_digest")

DIGEST_CHUNK_SIZE = 639
IMAGE_CARD_BATCH = 10


@dataclass
class Digest:
    text: str
    image_urls: List[str] = field(default_factory=list)


def build_digest(messages: Sequence[ReportMessage], separator: str = "\n") -> Digest:
    parts: List[str] = []
    image_urls: List[str] = []
    for message in messages:
        if message.type == TYPE_IMAGE:
            image_urls.append(message.text)
            parts.append(f"[image-{len(image_urls)}]")
        else:
            parts.append(message.text)
    return Digest(text=separator.join(parts), image_urls=image_urls)


def chunk_text(text: str, size: int = DIGEST_CHUNK_SIZE) -> List[str]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [text[i:i + size] for i in range(0, len(text), size)]


class ReportDigest:
    def __init__(self, users: UserStore, reports: ReportStore, messages: MessageStore, messenger: MessengerClient):
        self.users = users
        self.reports = reports
        self.messages = messages
        self.messenger = messenger

    def notify_moderators(self, reporter_id: str) -> bool:
        """Send the reporter's latest report to the first moderator.

        Returns False (after logging a warning) when there is no moderator or
        nothing to send.
        """
        moderators = self.users.list_by_role(ROLE_MODERATOR)
        if not moderators:
            logger.warning("No moderator available for report from %s", reporter_id)
            return False
        report = self.reports.latest_for_reporter(reporter_id)
        messages = self.messages.list_for_report(report.id) if report else []
        if not messages:
            logger.warning("No report messages found for reporter %s", reporter_id)
            return False

        moderator_id = moderators[0].facebook_id
        digest = build_digest(messages)
        if not digest.text.strip() and not digest.image_urls:
            logger.warning("Report %s from %s has no content to send", report.id, reporter_id)
            return False
        for chunk in chunk_text(digest.text):
            self.messenger.send_text(moderator_id, chunk)
        for start in range(0, len(digest.image_urls), IMAGE_CARD_BATCH):
            batch = digest.image_urls[start:start + IMAGE_CARD_BATCH]
            self.messenger.send_generic(moderator_id, message_templates.image_cards(batch, start=start + 1))
        logger.info("Report %s digest sent to moderator %s (%d images)", report.id, moderator_id, len(digest.image_urls))
        return True
