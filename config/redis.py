"""
Redis connection settings for the care-line scheduling system
"""
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import redis

from .settings import int_env

DEFAULT_KEY_PREFIX = "careline"


@dataclass(frozen=True)
class RedisSettings:
    """Connection parameters read from REDIS_* environment variables"""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    socket_timeout: int = 5
    connect_timeout: int = 5
    key_prefix: str = DEFAULT_KEY_PREFIX

    @classmethod
    def from_env(cls) -> "RedisSettings":
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int_env("REDIS_PORT", 6379),
            db=int_env("REDIS_DB", 0),
            password=os.getenv("REDIS_PASSWORD") or None,
            socket_timeout=int_env("REDIS_SOCKET_TIMEOUT", 5),
            connect_timeout=int_env("REDIS_CONNECT_TIMEOUT", 5),
            key_prefix=os.getenv("REDIS_KEY_PREFIX") or DEFAULT_KEY_PREFIX,
        )

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    def connection_kwargs(self) -> Dict[str, Any]:
        kwargs = {
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.connect_timeout,
            # stores compare against str ids and ISO timestamps
            "decode_responses": True,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs


def get_key_prefix() -> str:
    """Namespace for every key this system writes"""
    return RedisSettings.from_env().key_prefix


def create_redis_connection(settings: Optional[RedisSettings] = None) -> redis.Redis:
    """Create a Redis client from the given or environment settings"""
    settings = settings or RedisSettings.from_env()
    return redis.Redis(**settings.connection_kwargs())
