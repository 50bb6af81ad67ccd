# broadcast.py
"""
Fan-out of the latest posts to every ordinary user, one recipient at a time.
"""
from __future__ import annotations

import logging
from typing import List

import message_templates
from db_io import ROLE_USER, Post, PostStore, UserStore
from messenger_client import MessengerClient, SendResult

logger = logging.getLogger("broadcast")

NOTHING_POSTED = "Nothing has been posted yet."


class Broadcaster:
    def __init__(self, users: UserStore, posts: PostStore, messenger: MessengerClient, limit: int = 10):
        self.users = users
        self.posts = posts
        self.messenger = messenger
        self.limit = limit

    def latest_posts(self) -> List[Post]:
        # posts still being drafted have null fields and cannot render as cards
        return [post for post in self.posts.latest(self.limit) if post.is_complete]

    def send_latest_posts(self, recipient_id: str) -> SendResult:
        posts = self.latest_posts()
        if not posts:
            return self.messenger.send_text(recipient_id, NOTHING_POSTED)
        return self.messenger.send_generic(recipient_id, message_templates.post_cards(posts))

    def broadcast_latest(self) -> int:
        """Send the latest posts to all USER-role users; returns the number of successful sends."""
        recipients = self.users.list_by_role(ROLE_USER)
        posts = self.latest_posts()
        delivered = 0
        for user in recipients:
            try:
                if posts:
                    result = self.messenger.send_generic(user.facebook_id, message_templates.post_cards(posts))
                else:
                    result = self.messenger.send_text(user.facebook_id, NOTHING_POSTED)
            except Exception:
                logger.exception("Broadcast to user %s failed", user.facebook_id)
                continue
            if result.ok:
                delivered += 1
        logger.info("Broadcast delivered to %d of %d users", delivered, len(recipients))
        return delivered
