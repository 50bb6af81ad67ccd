# conversation.py
"""
Per-user conversation state machine.

A user is IDLE, REPORTING (``User.is_reporting`` holds the open report id) or
POSTING (``User.is_posting`` holds the draft post id). The posting stage is
never stored; it is recomputed from which Post fields are still null.

When both flags are set, REPORTING wins.

Persistence failures are logged and swallowed through ``_attempt``; the turn
carries on as if the write had succeeded. Messenger failures are logged by the
client and never retried.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import message_templates as templates
from broadcast import Broadcaster
from db_io import (
    POST_FIELDS,
    REPORT_TYPES,
    ROLE_MODERATOR,
    TYPE_IMAGE,
    TYPE_TEXT,
    MessageStore,
    Post,
    PostStore,
    ReportStore,
    User,
    UserStore,
)
from events import (
    AccountLinkEvent,
    AuthenticationEvent,
    DeliveryEvent,
    MessageEvent,
    MessagingEvent,
    PostbackEvent,
    ReadEvent,
)
from messenger_client import MessengerClient
from report_digest import ReportDigest

logger = logging.getLogger("conversation")

FILLER_REPLIES = [
    "Ok. I'm listening...",
    "Pen and paper are ready.",
    "I'm here to listen.",
    "Continue.",
]

TEXTS = {
    "welcome": "Hi! I'm here to help you report what happened and keep you updated with the community.",
    "report_started": "Thank you for reaching out. Tell me what happened, you can send text and photos. Type END when you are done.",
    "report_closed": "All information you reported had been noted down.",
    "attachment_received": "Message with attachment received",
    "quick_reply": "Quick reply tapped",
    "postback": "Postback called",
    "authenticated": "Authentication successful",
    "ask_title": "Let's create a post. What is the title?",
    "ask_link": "What is the link of the post?",
    "ask_description": "Add a short description, or type SKIP.",
    "ask_image": "Send an image URL for the post, or type SKIP.",
    "ask_broadcast": "Your post is ready. Broadcast it to all users now? (yes / no)",
    "broadcast_done": "Your post has been broadcast.",
    "broadcast_later": "OK, not broadcasting now. You can broadcast it later from the menu.",
    "no_reports": "No reports yet.",
}

NO_DESCRIPTION = "No description"
LATEST_REPORT_LIMIT = 5


class PostStage(str, Enum):
    NEED_TITLE = "NEED_TITLE"
    NEED_LINK = "NEED_LINK"
    NEED_DESCRIPTION = "NEED_DESCRIPTION"
    NEED_IMAGE = "NEED_IMAGE"
    NEED_BROADCAST_CONFIRM = "NEED_BROADCAST_CONFIRM"


_STAGE_BY_FIELD = dict(zip(POST_FIELDS, (PostStage.NEED_TITLE, PostStage.NEED_LINK, PostStage.NEED_DESCRIPTION, PostStage.NEED_IMAGE)))


def post_stage(post: Post) -> PostStage:
    for name in POST_FIELDS:
        if getattr(post, name) is None:
            return _STAGE_BY_FIELD[name]
    return PostStage.NEED_BROADCAST_CONFIRM


def normalize_text(text: Optional[str]) -> str:
    return (text or "").strip().lower()


@dataclass
class TaskResult:
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


class ConversationEngine:
    def __init__(
        self,
        users: UserStore,
        reports: ReportStore,
        messages: MessageStore,
        posts: PostStore,
        messenger: MessengerClient,
        digest: ReportDigest,
        broadcaster: Broadcaster,
        server_url: str,
        default_post_image_url: str,
        rng: Optional[random.Random] = None,
    ):
        self.users = users
        self.reports = reports
        self.messages = messages
        self.posts = posts
        self.messenger = messenger
        self.digest = digest
        self.broadcaster = broadcaster
        self.server_url = server_url
        self.default_post_image_url = default_post_image_url
        self.rng = rng or random.Random()
        # exact, lower-cased keywords answered with a single canned send
        self.canned: Dict[str, Callable[[User], Any]] = {
            "list": lambda u: messenger.send_payload(u.facebook_id, templates.list_demo(server_url)),
            "image": lambda u: messenger.send_image(u.facebook_id, templates.media_url(server_url, "image")),
            "gif": lambda u: messenger.send_image(u.facebook_id, templates.media_url(server_url, "gif")),
            "audio": lambda u: messenger.send_attachment(u.facebook_id, "audio", templates.media_url(server_url, "audio")),
            "video": lambda u: messenger.send_attachment(u.facebook_id, "video", templates.media_url(server_url, "video")),
            "file": lambda u: messenger.send_attachment(u.facebook_id, "file", templates.media_url(server_url, "file")),
            "menu": self.send_menu,
            "generic": lambda u: messenger.send_payload(u.facebook_id, templates.generic_demo(server_url)),
            "more picture": lambda u: messenger.send_payload(u.facebook_id, templates.multiple_images(server_url)),
            "receipt": lambda u: messenger.send_payload(u.facebook_id, templates.receipt_demo()),
            "quick reply": lambda u: messenger.send_payload(u.facebook_id, templates.quick_reply_demo()),
            "read receipt": lambda u: messenger.send_sender_action(u.facebook_id, "mark_seen"),
            "typing on": lambda u: messenger.send_sender_action(u.facebook_id, "typing_on"),
            "typing off": lambda u: messenger.send_sender_action(u.facebook_id, "typing_off"),
            "account linking": lambda u: messenger.send_payload(u.facebook_id, templates.account_linking(server_url)),
            "latest post": lambda u: broadcaster.send_latest_posts(u.facebook_id),
            "latest report": self.send_latest_reports,
            "hey": self.send_greeting,
            "hi": self.send_greeting,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle(self, event: MessagingEvent) -> None:
        if event.sender_id is None and isinstance(event, (MessageEvent, PostbackEvent, AuthenticationEvent)):
            logger.warning("Dropping %s without a sender id", type(event).__name__)
            return
        if isinstance(event, MessageEvent):
            self.handle_message(event)
        elif isinstance(event, PostbackEvent):
            self.handle_postback(event)
        elif isinstance(event, AuthenticationEvent):
            logger.info("Authentication for user %s with pass-through param %r", event.sender_id, event.ref)
            self.messenger.send_text(event.sender_id, TEXTS["authenticated"])
        elif isinstance(event, DeliveryEvent):
            for mid in event.message_ids:
                logger.info("Delivery confirmed for message %s", mid)
            logger.info("All messages before %s were delivered", event.watermark)
        elif isinstance(event, ReadEvent):
            logger.info("Messages read up to watermark %s seq %s", event.watermark, event.seq)
        elif isinstance(event, AccountLinkEvent):
            logger.info("Account link for user %s status=%s", event.sender_id, event.status)
        else:
            logger.info("Dropping unknown event from %s", event.sender_id)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _attempt(self, label: str, fn: Callable[..., Any], *args: Any) -> TaskResult:
        try:
            return TaskResult(ok=True, value=fn(*args))
        except Exception as exc:
            logger.exception("%s failed", label)
            return TaskResult(ok=False, error=exc)

    def ensure_user(self, sender_id: str) -> User:
        found = self._attempt("user lookup", self.users.get, sender_id)
        if found.ok and found.value is not None:
            return found.value
        if found.ok:
            created = self._attempt("user create", self.users.create, sender_id)
            if created.ok:
                return created.value
        # degraded turn: treat as a fresh idle user
        return User(facebook_id=str(sender_id))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def handle_message(self, event: MessageEvent) -> None:
        if event.is_echo:
            logger.info("Received echo for message %s and app %s with metadata %s", event.message_id, event.app_id, event.metadata)
            return
        if event.quick_reply_payload:
            logger.info("Quick reply for message %s with payload %s", event.message_id, event.quick_reply_payload)
            self.messenger.send_text(event.sender_id, TEXTS["quick_reply"])
            return

        user = self.ensure_user(event.sender_id)
        if user.is_reporting:
            self.continue_report(user, event)
            return
        if user.is_posting and event.text is not None:
            self.continue_post(user, event.text)
            return

        if event.text is not None:
            self.handle_idle_text(user, event.text)
        elif event.attachments:
            self.messenger.send_text(user.facebook_id, TEXTS["attachment_received"])

    def handle_idle_text(self, user: User, text: str) -> None:
        keyword = normalize_text(text)
        if keyword == "report":
            self.messenger.send_payload(user.facebook_id, templates.report_category_menu())
            return
        if keyword == "post":
            if user.role == ROLE_MODERATOR:
                self.start_post(user)
            else:
                self.send_menu(user)
            return
        handler = self.canned.get(keyword)
        if handler is None:
            self.send_menu(user)
            return
        handler(user)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def start_report(self, user: User, report_type: str) -> None:
        created = self._attempt("report create", self.reports.create, user.facebook_id, report_type)
        if not created.ok:
            return
        report = created.value
        self._attempt("user reporting update", self.users.set_reporting, user.facebook_id, report.id)
        user.is_reporting = report.id
        logger.info("User %s opened %s report %s", user.facebook_id, report_type, report.id)
        self.messenger.send_text(user.facebook_id, TEXTS["report_started"])

    def continue_report(self, user: User, event: MessageEvent) -> None:
        if event.text is not None:
            if normalize_text(event.text) == "end":
                self.end_report(user)
                return
            self._attempt("report message insert", self.messages.create, user.is_reporting, event.text, TYPE_TEXT)
            self.messenger.send_text(user.facebook_id, self.rng.choice(FILLER_REPLIES))
            return
        for attachment in event.attachments:
            if attachment.type == "image" and attachment.url:
                self._attempt("report image insert", self.messages.create, user.is_reporting, attachment.url, TYPE_IMAGE)
        if event.attachments:
            self.messenger.send_text(user.facebook_id, TEXTS["attachment_received"])

    def end_report(self, user: User) -> None:
        report_id = user.is_reporting
        self._attempt("user reporting clear", self.users.set_reporting, user.facebook_id, 0)
        user.is_reporting = 0
        logger.info("User %s closed report %s", user.facebook_id, report_id)
        self._attempt("report digest", self.digest.notify_moderators, user.facebook_id)
        self.messenger.send_text(user.facebook_id, TEXTS["report_closed"])

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def start_post(self, user: User) -> None:
        created = self._attempt("post create", self.posts.create, user.facebook_id)
        if not created.ok:
            return
        post = created.value
        self._attempt("user posting update", self.users.set_posting, user.facebook_id, post.id)
        user.is_posting = post.id
        self.messenger.send_text(user.facebook_id, TEXTS["ask_title"])

    def continue_post(self, user: User, text: str) -> None:
        found = self._attempt("post lookup", self.posts.get, user.is_posting)
        if not found.ok:
            return
        post = found.value
        if post is None:
            logger.warning("User %s points at missing post %s", user.facebook_id, user.is_posting)
            self._attempt("user posting clear", self.users.set_posting, user.facebook_id, 0)
            user.is_posting = 0
            self.send_menu(user)
            return

        skip = normalize_text(text) == "skip"
        stage = post_stage(post)
        if stage == PostStage.NEED_TITLE:
            self._set_post_field(post, "title", text)
            self.messenger.send_text(user.facebook_id, TEXTS["ask_link"])
        elif stage == PostStage.NEED_LINK:
            self._set_post_field(post, "link", text)
            self.messenger.send_text(user.facebook_id, TEXTS["ask_description"])
        elif stage == PostStage.NEED_DESCRIPTION:
            self._set_post_field(post, "description", NO_DESCRIPTION if skip else text)
            self.messenger.send_text(user.facebook_id, TEXTS["ask_image"])
        elif stage == PostStage.NEED_IMAGE:
            self._set_post_field(post, "image_url", self.default_post_image_url if skip else text)
            self.messenger.send_text(user.facebook_id, TEXTS["ask_broadcast"])
        else:
            self.finish_post(user, broadcast=normalize_text(text) == "yes")

    def _set_post_field(self, post: Post, name: str, value: str) -> None:
        self._attempt(f"post {name} update", self.posts.update_field, post.id, name, value)
        setattr(post, name, value)

    def finish_post(self, user: User, broadcast: bool) -> None:
        if broadcast:
            self._attempt("broadcast", self.broadcaster.broadcast_latest)
        self._attempt("user posting clear", self.users.set_posting, user.facebook_id, 0)
        user.is_posting = 0
        self.messenger.send_text(user.facebook_id, TEXTS["broadcast_done"] if broadcast else TEXTS["broadcast_later"])

    # ------------------------------------------------------------------
    # Postbacks
    # ------------------------------------------------------------------

    def handle_postback(self, event: PostbackEvent) -> None:
        logger.info("Received postback for user %s with payload %r", event.sender_id, event.payload)
        user = self.ensure_user(event.sender_id)
        payload = event.payload
        if payload in REPORT_TYPES:
            self.start_report(user, payload)
        elif payload == templates.PAYLOAD_GET_STARTED:
            self.messenger.send_text(user.facebook_id, TEXTS["welcome"])
            self.send_menu(user)
        elif payload == templates.PAYLOAD_REPORT:
            self.messenger.send_payload(user.facebook_id, templates.report_category_menu())
        elif payload == templates.PAYLOAD_LATEST_POST:
            self.broadcaster.send_latest_posts(user.facebook_id)
        elif payload == templates.PAYLOAD_BROADCAST and user.role == ROLE_MODERATOR:
            self._attempt("broadcast", self.broadcaster.broadcast_latest)
            self.messenger.send_text(user.facebook_id, TEXTS["broadcast_done"])
        elif payload == templates.PAYLOAD_BROADCAST:
            self.send_menu(user)
        else:
            self.messenger.send_text(user.facebook_id, TEXTS["postback"])

    # ------------------------------------------------------------------
    # Canned sends
    # ------------------------------------------------------------------

    def send_menu(self, user: User):
        return self.messenger.send_payload(user.facebook_id, templates.main_menu(user.role == ROLE_MODERATOR))

    def send_greeting(self, user: User):
        profile = self.messenger.fetch_profile(user.facebook_id) or {}
        name = profile.get("first_name")
        return self.messenger.send_text(user.facebook_id, f"Hey {name}!" if name else "Hey there!")

    def send_latest_reports(self, user: User):
        found = self._attempt("latest reports", self.reports.latest, LATEST_REPORT_LIMIT)
        reports = found.value or []
        if not reports:
            return self.messenger.send_text(user.facebook_id, TEXTS["no_reports"])
        lines = [f"#{r.id} {r.type} from {r.reporter_id} ({r.created_at[:10]})" for r in reports]
        return self.messenger.send_text(user.facebook_id, "Latest reports:\n" + "\n".join(lines))
