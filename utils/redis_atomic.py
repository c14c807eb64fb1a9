"""
Atomic Redis operations for the care-line scheduling system

Provides Lua scripts that give exactly one poller the right to fire a schedule
for a period, even when several processes evaluate the same schedule at once.
"""
import logging
from datetime import datetime
from typing import Optional

import redis

logger = logging.getLogger("redis-atomic")

# Lua script for atomically claiming a schedule's firing rights
CLAIM_SCHEDULE_SCRIPT = """
-- KEYS[1]: schedule hash
-- ARGV[1]: claimed_at ISO, ARGV[2]: claimed_at epoch, ARGV[3]: claim_before epoch or ''
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end

if redis.call('HGET', KEYS[1], 'is_active') ~= 'true' then
    return 0
end

local last_ts = redis.call('HGET', KEYS[1], 'last_executed_ts')
if last_ts and last_ts ~= '' then
    -- Already fired and no period boundary given (one-time schedules)
    if ARGV[3] == '' then
        return 0
    end
    -- Already fired in the current period
    if tonumber(last_ts) >= tonumber(ARGV[3]) then
        return 0
    end
end

redis.call('HSET', KEYS[1], 'last_executed_at', ARGV[1], 'last_executed_ts', ARGV[2])
return 1
"""

# Lua script for undoing a claim after a failed initiation
RELEASE_SCHEDULE_CLAIM_SCRIPT = """
-- KEYS[1]: schedule hash
-- ARGV[1]: claimed_at epoch, ARGV[2]: previous ISO or '', ARGV[3]: previous epoch or ''
local current = redis.call('HGET', KEYS[1], 'last_executed_ts')
if current ~= ARGV[1] then
    return 0
end

redis.call('HSET', KEYS[1], 'last_executed_at', ARGV[2], 'last_executed_ts', ARGV[3])
return 1
"""


def epoch_string(value: Optional[datetime]) -> str:
    """Stable string form of a timestamp for storage and Lua comparison"""
    return repr(value.timestamp()) if value else ""


class AtomicRedisOperations:
    """
    Provides atomic Redis operations to prevent double firing
    """

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize with Redis client

        Args:
            redis_client: Redis client instance
        """
        self.redis = redis_client

        # Register Lua scripts
        self._claim_script = self.redis.register_script(CLAIM_SCHEDULE_SCRIPT)
        self._release_script = self.redis.register_script(RELEASE_SCHEDULE_CLAIM_SCRIPT)

    def claim_schedule(self, schedule_key: str, claimed_at: datetime, claim_before: Optional[datetime]) -> Optional[bool]:
        """
        Atomically set last_executed_at if the schedule has not fired in this period

        Args:
            schedule_key: Redis key of the schedule hash
            claimed_at: Execution instant to record
            claim_before: Period boundary; None means the schedule may fire only once

        Returns:
            True if claimed, False if another executor already fired it,
            None if the schedule does not exist
        """
        result = self._claim_script(
            keys=[schedule_key],
            args=[claimed_at.isoformat(), epoch_string(claimed_at), epoch_string(claim_before)]
        )
        result = int(result)
        if result < 0:
            return None

        if result:
            logger.info(f"Claimed {schedule_key} at {claimed_at.isoformat()}")
        else:
            logger.info(f"Claim rejected for {schedule_key}: already fired this period")
        return bool(result)

    def release_schedule_claim(self, schedule_key: str, claimed_at: datetime, previous: Optional[datetime]) -> bool:
        """
        Restore last_executed_at if it still holds our claim

        Args:
            schedule_key: Redis key of the schedule hash
            claimed_at: Instant recorded by claim_schedule
            previous: Value to restore

        Returns:
            True if the claim was released
        """
        result = self._release_script(
            keys=[schedule_key],
            args=[
                epoch_string(claimed_at),
                previous.isoformat() if previous else "",
                epoch_string(previous),
            ]
        )
        released = bool(int(result))
        if not released:
            logger.warning(f"Claim on {schedule_key} was not released: timestamp changed since claim")
        return released


def create_atomic_redis_ops(redis_client: redis.Redis = None) -> AtomicRedisOperations:
    """
    Factory function to create AtomicRedisOperations instance

    Args:
        redis_client: Redis client instance (defaults to creating new one)

    Returns:
        AtomicRedisOperations instance
    """
    if redis_client is None:
        from config.redis import create_redis_connection
        redis_client = create_redis_connection()

    return AtomicRedisOperations(redis_client)
