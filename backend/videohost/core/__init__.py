"""Core module for configuration and utilities."""

from videohost.core.celery_app import celery_app
from videohost.core.config import settings
from videohost.core.logging import setup_logging
from videohost.core.redis import get_redis

__all__ = [
    "celery_app",
    "settings",
    "setup_logging",
    "get_redis",
]
