# config.py
"""
Environment-sourced settings for the Messenger reporting bot.

The four Messenger secrets are mandatory; everything else has a default.
"""
from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, validator

REQUIRED_ENV = {
    "app_secret": "MESSENGER_APP_SECRET",
    "validation_token": "MESSENGER_VALIDATION_TOKEN",
    "page_access_token": "MESSENGER_PAGE_ACCESS_TOKEN",
    "server_url": "SERVER_URL",
}


class ConfigurationError(RuntimeError):
    pass


class Settings(BaseModel):
    app_secret: str
    validation_token: str
    page_access_token: str
    server_url: str
    log_level: str = "INFO"
    aws_region: str = "ap-southeast-1"
    user_table_name: str = "users"
    report_table_name: str = "reports"
    message_table_name: str = "report_messages"
    post_table_name: str = "posts"
    counter_table_name: str = "id_counters"
    graph_api_version: str = "v2.6"
    default_post_image_url: Optional[str] = None
    latest_post_limit: int = 10
    port: int = 5000

    @validator("server_url")
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def post_image_url(self) -> str:
        return self.default_post_image_url or f"{self.server_url}/assets/default_post.png"


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    missing = [name for name in REQUIRED_ENV.values() if not env.get(name)]
    if missing:
        raise ConfigurationError(f"Missing config values: {', '.join(missing)}")
    values = {field: env[name] for field, name in REQUIRED_ENV.items()}
    optional = {
        "log_level": "LOG_LEVEL",
        "aws_region": "AWS_REGION",
        "user_table_name": "USER_TABLE_NAME",
        "report_table_name": "REPORT_TABLE_NAME",
        "message_table_name": "MESSAGE_TABLE_NAME",
        "post_table_name": "POST_TABLE_NAME",
        "counter_table_name": "COUNTER_TABLE_NAME",
        "graph_api_version": "GRAPH_API_VERSION",
        "default_post_image_url": "DEFAULT_POST_IMAGE_URL",
        "latest_post_limit": "LATEST_POST_LIMIT",
        "port": "PORT",
    }
    for field, name in optional.items():
        if env.get(name):
            values[field] = env[name]
    try:
        return Settings(**values)
    except ValueError as exc:
        raise ConfigurationError(str(exc)) from exc
