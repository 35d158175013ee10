from __future__ import annotations

import logging
import os
import threading
from functools import lru_cache

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "")
RBAC_CACHE_STORE = os.getenv("RBAC_CACHE_STORE", "auto").strip().lower()

_memory_versions: dict[int, int] = {}
_memory_lock = threading.Lock()


def redis_enabled() -> bool:
    if RBAC_CACHE_STORE == "memory":
        return False
    return bool(REDIS_URL)


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    return Redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=1.5)


def check_redis_ready() -> bool:
    if not redis_enabled():
        return True
    try:
        return bool(get_redis().ping())
    except Exception:
        return False


def _tenant_version_key(tenant_id: int) -> str:
    return f"rbac:version:tenant:{tenant_id}"


def get_tenant_version(tenant_id: int) -> int:
    """Current RBAC cache generation for a tenant, shared across workers via Redis."""
    if redis_enabled():
        try:
            raw = get_redis().get(_tenant_version_key(tenant_id))
            if raw is not None:
                return max(int(raw), 1)
            get_redis().set(_tenant_version_key(tenant_id), "1", nx=True)
            return 1
        except RedisError:
            logger.warning("redis unavailable, using in-process rbac cache version", exc_info=True)
    with _memory_lock:
        return _memory_versions.get(tenant_id, 1)


def bump_tenant_version(tenant_id: int) -> int:
    with _memory_lock:
        local_version = _memory_versions.get(tenant_id, 1) + 1
        _memory_versions[tenant_id] = local_version
    if redis_enabled():
        try:
            return int(get_redis().incr(_tenant_version_key(tenant_id)))
        except RedisError:
            logger.warning("redis unavailable, rbac cache version bumped locally only", exc_info=True)
    return local_version
