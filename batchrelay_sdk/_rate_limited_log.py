"""
Thread-safe rate-limited logging utilities.

Confirmation polling can run for minutes per transaction and several
accounts poll at once; this keeps the repeated progress lines down to one
per interval while still showing that work is in progress.
"""
import logging
import threading
from typing import Dict, Optional

from cachetools import TTLCache

# Configure logger
logger = logging.getLogger(__name__)

# One TTL cache per interval, so each interval expires its own keys
_log_caches: Dict[int, TTLCache] = {}
_log_cache_lock = threading.RLock()


def _cache_for(interval: int) -> TTLCache:
    cache = _log_caches.get(interval)
    if cache is None:
        cache = TTLCache(maxsize=256, ttl=interval)
        _log_caches[interval] = cache
    return cache


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message with rate limiting, in a thread-safe manner.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between logs in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: Deduplication key; defaults to the level and message

    Returns:
        True if the message was logged, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = key or f"{level}:{message}"

    with _log_cache_lock:
        cache = _cache_for(interval)
        if cache_key in cache:
            return False
        log_method(message)
        cache[cache_key] = True
        return True


def reset_rate_limits() -> None:
    """Forget every suppressed key (mainly for tests)"""
    with _log_cache_lock:
        for cache in _log_caches.values():
            cache.clear()
