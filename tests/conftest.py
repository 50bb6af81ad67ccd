# tests/conftest.py
"""
Shared fixtures: in-memory stores with the same surface as the DynamoDB ones,
a recording messenger, and factories for raw webhook events.
"""
import os
import random
from dataclasses import replace

import pytest

# Force config BEFORE chatbot gets imported by any test
os.environ.setdefault("MESSENGER_APP_SECRET", "test-app-secret")
os.environ.setdefault("MESSENGER_VALIDATION_TOKEN", "test-validation-token")
os.environ.setdefault("MESSENGER_PAGE_ACCESS_TOKEN", "test-page-token")
os.environ.setdefault("SERVER_URL", "https://bot.example.com")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "ap-southeast-1")

from broadcast import Broadcaster
from conversation import ConversationEngine
from db_io import POST_FIELDS, ROLE_MODERATOR, ROLE_USER, Post, Report, ReportMessage, User
from events import classify_event
from messenger_client import SendResult
from report_digest import ReportDigest

DEFAULT_IMAGE = "https://bot.example.com/assets/default_post.png"


class FakeUserStore:
    def __init__(self):
        self.rows = {}
        self.writes = []

    def add(self, facebook_id, role=ROLE_USER, **kwargs):
        self.rows[facebook_id] = User(facebook_id=facebook_id, role=role, **kwargs)
        return self.rows[facebook_id]

    def get(self, facebook_id):
        row = self.rows.get(str(facebook_id))
        return replace(row) if row else None

    def create(self, facebook_id, role=ROLE_USER):
        self.writes.append(("create", facebook_id))
        return replace(self.add(str(facebook_id), role))

    def set_reporting(self, facebook_id, report_id):
        self.writes.append(("is_reporting", facebook_id, report_id))
        self.rows[facebook_id].is_reporting = report_id

    def set_posting(self, facebook_id, post_id):
        self.writes.append(("is_posting", facebook_id, post_id))
        self.rows[facebook_id].is_posting = post_id

    def list_by_role(self, role):
        return [replace(u) for u in self.rows.values() if u.role == role]


class FakeReportStore:
    def __init__(self):
        self.rows = []
        self.writes = []

    def create(self, reporter_id, report_type):
        report = Report(id=len(self.rows) + 1, reporter_id=str(reporter_id), type=report_type)
        self.rows.append(report)
        self.writes.append(("create", report.id))
        return report

    def latest_for_reporter(self, reporter_id):
        mine = [r for r in self.rows if r.reporter_id == str(reporter_id)]
        return max(mine, key=lambda r: r.id) if mine else None

    def latest(self, limit=10):
        return sorted(self.rows, key=lambda r: r.id, reverse=True)[:limit]


class FakeMessageStore:
    def __init__(self):
        self.rows = []
        self.writes = []

    def create(self, report_id, text, message_type="TEXT"):
        message = ReportMessage(id=len(self.rows) + 1, report_id=report_id, text=text, type=message_type)
        self.rows.append(message)
        self.writes.append(("create", message.id))
        return message

    def list_for_report(self, report_id):
        return sorted((m for m in self.rows if m.report_id == report_id), key=lambda m: m.id)


class FakePostStore:
    def __init__(self):
        self.rows = {}
        self.writes = []

    def add(self, post):
        self.rows[post.id] = post
        return post

    def create(self, user_id):
        post = Post(id=len(self.rows) + 1, user_id=str(user_id))
        self.rows[post.id] = post
        self.writes.append(("create", post.id))
        return replace(post)

    def get(self, post_id):
        row = self.rows.get(post_id)
        return replace(row) if row else None

    def update_field(self, post_id, name, value):
        assert name in POST_FIELDS
        self.writes.append((name, post_id, value))
        setattr(self.rows[post_id], name, value)

    def latest(self, limit=10):
        return [replace(p) for p in sorted(self.rows.values(), key=lambda p: p.id, reverse=True)[:limit]]


class RecordingMessenger:
    enabled = True

    def __init__(self, profile=None):
        self.sent = []
        self.profile_requests = []
        self.profile = profile
        self.failing_recipients = set()

    def _record(self, kind, recipient_id, body):
        self.sent.append((kind, recipient_id, body))
        ok = recipient_id not in self.failing_recipients
        return SendResult(ok=ok, recipient_id=recipient_id, error=None if ok else "HTTP 500")

    def send_text(self, recipient_id, text):
        return self._record("text", recipient_id, text)

    def send_payload(self, recipient_id, message):
        return self._record("payload", recipient_id, message)

    def send_attachment(self, recipient_id, attachment_type, url):
        return self._record(attachment_type, recipient_id, url)

    def send_image(self, recipient_id, url):
        return self._record("image", recipient_id, url)

    def send_generic(self, recipient_id, elements):
        return self._record("generic", recipient_id, elements)

    def send_sender_action(self, recipient_id, action):
        return self._record("action", recipient_id, action)

    def fetch_profile(self, user_id, fields="first_name,last_name"):
        self.profile_requests.append(user_id)
        return self.profile

    def texts_to(self, recipient_id):
        return [body for kind, rid, body in self.sent if kind == "text" and rid == recipient_id]


@pytest.fixture
def users():
    return FakeUserStore()


@pytest.fixture
def reports():
    return FakeReportStore()


@pytest.fixture
def messages():
    return FakeMessageStore()


@pytest.fixture
def posts():
    return FakePostStore()


@pytest.fixture
def messenger():
    return RecordingMessenger()


@pytest.fixture
def broadcaster(users, posts, messenger):
    return Broadcaster(users, posts, messenger, limit=10)


@pytest.fixture
def digest(users, reports, messages, messenger):
    return ReportDigest(users, reports, messages, messenger)


@pytest.fixture
def engine(users, reports, messages, posts, messenger, digest, broadcaster):
    return ConversationEngine(
        users=users,
        reports=reports,
        messages=messages,
        posts=posts,
        messenger=messenger,
        digest=digest,
        broadcaster=broadcaster,
        server_url="https://bot.example.com",
        default_post_image_url=DEFAULT_IMAGE,
        rng=random.Random(7),
    )


@pytest.fixture
def text_event():
    def make(sender_id, text, **message_fields):
        message = {"mid": "mid.1", "text": text, **message_fields}
        return classify_event({"sender": {"id": sender_id}, "recipient": {"id": "PAGE"}, "timestamp": 1, "message": message})
    return make


@pytest.fixture
def image_event():
    def make(sender_id, *urls):
        attachments = [{"type": "image", "payload": {"url": url}} for url in urls]
        message = {"mid": "mid.2", "attachments": attachments}
        return classify_event({"sender": {"id": sender_id}, "recipient": {"id": "PAGE"}, "timestamp": 2, "message": message})
    return make


@pytest.fixture
def postback_event():
    def make(sender_id, payload):
        return classify_event({"sender": {"id": sender_id}, "recipient": {"id": "PAGE"}, "timestamp": 3, "postback": {"payload": payload}})
    return make


@pytest.fixture
def moderator(users):
    return users.add("MOD1", role=ROLE_MODERATOR)
