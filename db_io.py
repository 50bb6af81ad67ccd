# db_io.py
"""
DynamoDB wrapper utilities and dataclasses.

Provides:
- User, Report, ReportMessage, Post
- IdSequence (table: id_counters by default) for generated integer ids
- UserStore (table: users by default)
- ReportStore (table: reports by default)
- MessageStore (table: report_messages by default)
- PostStore (table: posts by default)

Every store logs and re-raises on failure; callers decide whether a failed
write is fatal to the turn.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr

logger = logging.getLogger("db_io")

ROLE_USER = "USER"
ROLE_MODERATOR = "MODERATOR"
ROLE_NGO = "NGO"

REPORT_TYPE_SEX = "SEX"
REPORT_TYPE_DOMESTIC = "DOMESTIC"
REPORT_TYPE_OTHERS = "OTHERS"
REPORT_TYPE_EVENT = "EVENT"
REPORT_TYPE_NEWS = "NEWS"
REPORT_TYPES = (REPORT_TYPE_SEX, REPORT_TYPE_DOMESTIC, REPORT_TYPE_OTHERS, REPORT_TYPE_EVENT, REPORT_TYPE_NEWS)

TYPE_TEXT = "TEXT"
TYPE_IMAGE = "IMAGE"

POST_FIELDS = ("title", "link", "description", "image_url")


def iso_timestamp() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _as_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    return int(value)


@dataclass
class User:
    facebook_id: str
    role: str = ROLE_USER
    is_reporting: int = 0
    is_posting: int = 0
    created_at: str = field(default_factory=iso_timestamp)

    def to_item(self) -> Dict[str, Any]:
        return {
            "facebook_id": self.facebook_id,
            "role": self.role,
            "is_reporting": self.is_reporting,
            "is_posting": self.is_posting,
            "created_at": self.created_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "User":
        return cls(
            facebook_id=str(item["facebook_id"]),
            role=item.get("role", ROLE_USER),
            is_reporting=_as_int(item.get("is_reporting")),
            is_posting=_as_int(item.get("is_posting")),
            created_at=item.get("created_at", iso_timestamp()),
        )


@dataclass
class Report:
    id: int
    reporter_id: str
    type: str
    created_at: str = field(default_factory=iso_timestamp)

    def to_item(self) -> Dict[str, Any]:
        return {"id": self.id, "reporter_id": self.reporter_id, "type": self.type, "created_at": self.created_at}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Report":
        return cls(
            id=_as_int(item["id"]),
            reporter_id=str(item["reporter_id"]),
            type=item["type"],
            created_at=item.get("created_at", iso_timestamp()),
        )


@dataclass
class ReportMessage:
    id: int
    report_id: int
    text: str
    type: str = TYPE_TEXT

    def to_item(self) -> Dict[str, Any]:
        return {"id": self.id, "report_id": self.report_id, "text": self.text, "type": self.type}

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ReportMessage":
        return cls(
            id=_as_int(item["id"]),
            report_id=_as_int(item["report_id"]),
            text=item.get("text", ""),
            type=item.get("type", TYPE_TEXT),
        )


@dataclass
class Post:
    id: int
    user_id: str
    title: Optional[str] = None
    link: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return all(getattr(self, name) is not None for name in POST_FIELDS)

    def to_item(self) -> Dict[str, Any]:
        # absent attribute means unset
        item: Dict[str, Any] = {"id": self.id, "user_id": self.user_id}
        for name in POST_FIELDS:
            value = getattr(self, name)
            if value is not None:
                item[name] = value
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Post":
        return cls(
            id=_as_int(item["id"]),
            user_id=str(item["user_id"]),
            title=item.get("title"),
            link=item.get("link"),
            description=item.get("description"),
            image_url=item.get("image_url"),
        )


def _scan_all(table, **kwargs) -> Iterator[Dict[str, Any]]:
    while True:
        response = table.scan(**kwargs)
        yield from response.get("Items", [])
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return
        kwargs["ExclusiveStartKey"] = last_key


class _DynamoTable:
    default_table_name = ""

    def __init__(self, table_name: Optional[str], region: str, resource=None):
        self.table_name = table_name or self.default_table_name
        self.region = region
        resource = resource or boto3.resource("dynamodb", region_name=region)
        self._table = resource.Table(self.table_name)


class IdSequence(_DynamoTable):
    """Atomic per-entity counters (table default 'id_counters')."""

    default_table_name = "id_counters"

    def next_id(self, name: str) -> int:
        try:
            response = self._table.update_item(
                Key={"name": name},
                UpdateExpression="ADD #v :one",
                ExpressionAttributeNames={"#v": "value"},
                ExpressionAttributeValues={":one": 1},
                ReturnValues="UPDATED_NEW",
            )
            return int(response["Attributes"]["value"])
        except Exception:
            logger.exception("Dynamo counter update failed for %s", name)
            raise


class UserStore(_DynamoTable):
    """Persist users keyed by their page-scoped Messenger id."""

    default_table_name = "users"

    def get(self, facebook_id: str) -> Optional[User]:
        try:
            response = self._table.get_item(Key={"facebook_id": str(facebook_id)})
            item = response.get("Item")
            return User.from_item(item) if item else None
        except Exception:
            logger.exception("Dynamo user get failed")
            raise

    def create(self, facebook_id: str, role: str = ROLE_USER) -> User:
        user = User(facebook_id=str(facebook_id), role=role)
        try:
            self._table.put_item(Item=user.to_item(), ConditionExpression="attribute_not_exists(facebook_id)")
        except Exception:
            logger.exception("Dynamo user put failed")
            raise
        return user

    def set_reporting(self, facebook_id: str, report_id: int) -> None:
        self._set_flag(facebook_id, "is_reporting", report_id)

    def set_posting(self, facebook_id: str, post_id: int) -> None:
        self._set_flag(facebook_id, "is_posting", post_id)

    def _set_flag(self, facebook_id: str, name: str, value: int) -> None:
        try:
            self._table.update_item(
                Key={"facebook_id": str(facebook_id)},
                UpdateExpression="SET #f = :v",
                ExpressionAttributeNames={"#f": name},
                ExpressionAttributeValues={":v": value or 0},
            )
        except Exception:
            logger.exception("Dynamo user update of %s failed", name)
            raise

    def list_by_role(self, role: str) -> List[User]:
        try:
            users = [User.from_item(item) for item in _scan_all(self._table, FilterExpression=Attr("role").eq(role))]
        except Exception:
            logger.exception("Dynamo user scan failed")
            raise
        return sorted(users, key=lambda u: u.created_at)


class ReportStore(_DynamoTable):
    """Stores report headers (table default 'reports'). Append-only."""

    default_table_name = "reports"

    def __init__(self, table_name: Optional[str], region: str, sequence: IdSequence, resource=None):
        super().__init__(table_name, region, resource)
        self._sequence = sequence

    def create(self, reporter_id: str, report_type: str) -> Report:
        report = Report(id=self._sequence.next_id("report"), reporter_id=str(reporter_id), type=report_type)
        try:
            self._table.put_item(Item=report.to_item())
        except Exception:
            logger.exception("Dynamo report put failed")
            raise
        return report

    def latest_for_reporter(self, reporter_id: str) -> Optional[Report]:
        try:
            items = list(_scan_all(self._table, FilterExpression=Attr("reporter_id").eq(str(reporter_id))))
        except Exception:
            logger.exception("Dynamo report scan failed")
            raise
        reports = [Report.from_item(item) for item in items]
        return max(reports, key=lambda r: r.id) if reports else None

    def latest(self, limit: int = 10) -> List[Report]:
        try:
            reports = [Report.from_item(item) for item in _scan_all(self._table)]
        except Exception:
            logger.exception("Dynamo report scan failed")
            raise
        return sorted(reports, key=lambda r: r.id, reverse=True)[:limit]


class MessageStore(_DynamoTable):
    """Stores report messages (table default 'report_messages'). Immutable rows."""

    default_table_name = "report_messages"

    def __init__(self, table_name: Optional[str], region: str, sequence: IdSequence, resource=None):
        super().__init__(table_name, region, resource)
        self._sequence = sequence

    def create(self, report_id: int, text: str, message_type: str = TYPE_TEXT) -> ReportMessage:
        message = ReportMessage(id=self._sequence.next_id("message"), report_id=report_id, text=text, type=message_type)
        try:
            self._table.put_item(Item=message.to_item())
        except Exception:
            logger.exception("Dynamo message put failed")
            raise
        return message

    def list_for_report(self, report_id: int) -> List[ReportMessage]:
        try:
            items = list(_scan_all(self._table, FilterExpression=Attr("report_id").eq(report_id)))
        except Exception:
            logger.exception("Dynamo message scan failed")
            raise
        # ids come from a monotonic counter, so id order is insertion order
        return sorted((ReportMessage.from_item(item) for item in items), key=lambda m: m.id)


class PostStore(_DynamoTable):
    """Stores moderator posts (table default 'posts'), filled one field at a time."""

    default_table_name = "posts"

    def __init__(self, table_name: Optional[str], region: str, sequence: IdSequence, resource=None):
        super().__init__(table_name, region, resource)
        self._sequence = sequence

    def create(self, user_id: str) -> Post:
        post = Post(id=self._sequence.next_id("post"), user_id=str(user_id))
        try:
            self._table.put_item(Item=post.to_item())
        except Exception:
            logger.exception("Dynamo post put failed")
            raise
        return post

    def get(self, post_id: int) -> Optional[Post]:
        try:
            response = self._table.get_item(Key={"id": post_id})
            item = response.get("Item")
            return Post.from_item(item) if item else None
        except Exception:
            logger.exception("Dynamo post get failed")
            raise

    def update_field(self, post_id: int, name: str, value: str) -> None:
        if name not in POST_FIELDS:
            raise ValueError(f"unknown post field: {name}")
        try:
            self._table.update_item(
                Key={"id": post_id},
                UpdateExpression="SET #f = :v",
                ExpressionAttributeNames={"#f": name},
                ExpressionAttributeValues={":v": value},
            )
        except Exception:
            logger.exception("Dynamo post update of %s failed", name)
            raise

    def latest(self, limit: int = 10) -> List[Post]:
        try:
            posts = [Post.from_item(item) for item in _scan_all(self._table)]
        except Exception:
            logger.exception("Dynamo post scan failed")
            raise
        return sorted(posts, key=lambda p: p.id, reverse=True)[:limit]

