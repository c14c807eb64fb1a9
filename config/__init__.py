"""
Configuration module for the care-line scheduling system
"""

from .redis import RedisSettings, create_redis_connection, get_key_prefix
from .settings import SchedulerSettings, VapiConfig

__all__ = [
    'RedisSettings',
    'create_redis_connection',
    'get_key_prefix',
    'SchedulerSettings',
    'VapiConfig',
]
