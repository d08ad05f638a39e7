"""
Redis Key Store

The relay's only source of truth. Exposes the four operations the registry
and dispatcher are written against: get, put (with optional TTL), delete and
list-by-prefix.

Redis is treated as a relaxed-consistency collaborator: there are no
multi-key transactions here, and every caller writes idempotent upserts so a
lost race produces a duplicate side effect at worst. Ephemeral records expire
through Redis TTLs only; nothing in the relay sweeps keys.

Usage:
    from pollcast.relay.key_store import KeyStore
    store = KeyStore.from_config(get_config())
    store.put("activesession:abc", json.dumps(session), ttl_seconds=600)
"""

from typing import Dict, Iterable, List, Optional

import redis

from pollcast.core.errors import StoreError
from pollcast.core.relay_logging import store_logger


class KeyStore:
    """
    Namespaced get/put/delete/list over a redis-py client.

    Keys passed in and returned are logical keys; the namespace prefix is
    applied and stripped here so callers never see it.
    """

    def __init__(self, client: redis.Redis, prefix: str = "pollcast:"):
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_config(cls, config) -> "KeyStore":
        client = redis.Redis(
            host=config.REDIS_HOST,
            port=config.REDIS_PORT,
            db=config.REDIS_DB,
            password=config.REDIS_PASSWORD,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        store_logger.log_info("STORE_INIT", "Redis key store configured", {
            "host": config.REDIS_HOST,
            "port": config.REDIS_PORT,
            "db": config.REDIS_DB,
            "prefix": config.KEY_PREFIX
        })
        return cls(client, prefix=config.KEY_PREFIX)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _strip(self, raw_key) -> str:
        if isinstance(raw_key, bytes):
            raw_key = raw_key.decode('utf-8')
        return raw_key[len(self._prefix):]

    @staticmethod
    def _decode(value) -> Optional[str]:
        if isinstance(value, bytes):
            return value.decode('utf-8')
        return value

    def get(self, key: str) -> Optional[str]:
        try:
            return self._decode(self._client.get(self._key(key)))
        except redis.RedisError as e:
            store_logger.log_error("STORE_GET_FAILED", f"Redis get error: {e}", {"key": key})
            raise StoreError(f"get failed for {key}") from e

    def get_many(self, keys: List[str]) -> Dict[str, str]:
        """Fetch several keys in one round trip; missing keys are omitted."""
        if not keys:
            return {}
        try:
            values = self._client.mget([self._key(k) for k in keys])
        except redis.RedisError as e:
            store_logger.log_error("STORE_MGET_FAILED", f"Redis mget error: {e}", {"count": len(keys)})
            raise StoreError("mget failed") from e
        return {
            key: self._decode(value)
            for key, value in zip(keys, values)
            if value is not None
        }

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Upsert a value. A TTL replaces any previous expiry; no TTL persists the key."""
        try:
            if ttl_seconds:
                self._client.set(self._key(key), value, ex=int(ttl_seconds))
            else:
                self._client.set(self._key(key), value)
        except redis.RedisError as e:
            store_logger.log_error("STORE_PUT_FAILED", f"Redis set error: {e}", {"key": key})
            raise StoreError(f"put failed for {key}") from e

    def delete(self, key: str) -> bool:
        """Delete a key. Returns True when something was removed."""
        try:
            return bool(self._client.delete(self._key(key)))
        except redis.RedisError as e:
            store_logger.log_error("STORE_DELETE_FAILED", f"Redis delete error: {e}", {"key": key})
            raise StoreError(f"delete failed for {key}") from e

    def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        """
        List logical keys starting with prefix.

        Uses SCAN so a large keyspace never blocks Redis. `limit` caps how
        many keys are returned, not how many are scanned.
        """
        pattern = f"{self._escape(self._key(prefix))}*"
        keys = []
        try:
            for raw_key in self._client.scan_iter(match=pattern, count=500):
                keys.append(self._strip(raw_key))
                if limit is not None and len(keys) >= limit:
                    break
        except redis.RedisError as e:
            store_logger.log_error("STORE_LIST_FAILED", f"Redis scan error: {e}", {"prefix": prefix})
            raise StoreError(f"list failed for {prefix}") from e
        return keys

    def count(self, prefix: str) -> int:
        return len(self.list(prefix))

    @staticmethod
    def _escape(pattern: str) -> str:
        # Glob metacharacters in ids would widen the SCAN match
        for ch in ('\\', '*', '?', '[', ']'):
            pattern = pattern.replace(ch, f"\\{ch}")
        return pattern

    def is_connected(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def health_check(self) -> Dict:
        """Check Redis health and return status."""
        connected = self.is_connected()
        return {
            "connected": connected,
            "prefix": self._prefix,
            "status": "healthy" if connected else "disconnected"
        }

    def iter_values(self, keys: Iterable[str]) -> Iterable[str]:
        """Values for keys that still exist, skipping ones that expired mid-scan."""
        return self.get_many(list(keys)).values()
