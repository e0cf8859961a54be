from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL

_redis: Redis | None = None
SYNC_LOCK_TTL = 60  # seconds; covers one calendar insert round-trip


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _sync_lock_key(booking_id: UUID) -> str:
    return f"calendar-sync:{booking_id}"


async def acquire_calendar_sync_lock(booking_id: UUID) -> bool:
    """
    Claim the right to create the calendar event for a booking.
    Returns False if another request holds the lock. When Redis is
    unreachable the lock is granted and the conditional event-id update
    remains the only guard.
    """
    try:
        acquired = await get_redis().set(
            _sync_lock_key(booking_id), "1", nx=True, ex=SYNC_LOCK_TTL
        )
        return bool(acquired)
    except Exception:
        logger.opt(exception=True).warning(
            "Redis set failed, calendar sync lock not held"
        )
        return True


async def release_calendar_sync_lock(booking_id: UUID) -> None:
    try:
        await get_redis().delete(_sync_lock_key(booking_id))
    except Exception:
        logger.opt(exception=True).warning("Redis delete failed for calendar sync lock")
