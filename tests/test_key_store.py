"""
Key store and input validation tests.

KeyStore runs against fakeredis; Redis failures are simulated with a
MagicMock client raising redis errors.
"""

from unittest.mock import MagicMock

import pytest
import redis

from pollcast.core.errors import StoreError, ValidationError
from pollcast.core.validation import (is_valid_scope_id, is_valid_token, optional_scope_id,
                                      require_code, require_token)
from pollcast.relay.key_store import KeyStore

pytestmark = pytest.mark.relay


class TestValidation:

    def test_token_shape(self):
        """
        HAPPY PATH: 48 lowercase hex characters only.
        """
        assert is_valid_token("a" * 48)
        assert not is_valid_token("A" * 48)
        assert not is_valid_token("a" * 47)
        assert not is_valid_token(None)

    def test_scope_ids_are_case_insensitive(self):
        assert is_valid_scope_id("ABCDEF01-2345")
        assert not is_valid_scope_id("abc")
        assert not is_valid_scope_id("not-a-guid-zzzz")

    def test_require_token_messages(self):
        with pytest.raises(ValidationError, match="Missing userToken"):
            require_token("")
        with pytest.raises(ValidationError, match="Invalid userToken format"):
            require_token("xyz")

    def test_optional_scope_id_treats_empty_as_absent(self):
        assert optional_scope_id(None, 'courseId') is None
        assert optional_scope_id('', 'courseId') is None
        with pytest.raises(ValidationError, match="Invalid activityId format"):
            optional_scope_id("bad id!", 'activityId')

    def test_require_code_accepts_numeric(self):
        """
        EDGE: JSON clients may send the code as a number.
        """
        assert require_code(123456) == "123456"
        assert require_code("654321") == "654321"
        with pytest.raises(ValidationError):
            require_code("12345")
        with pytest.raises(ValidationError):
            require_code(True)


class TestKeyStore:

    def test_put_get_delete(self, store):
        """
        HAPPY PATH: Basic round trip through the namespace.
        """
        store.put("user:abc", "42")
        assert store.get("user:abc") == "42"
        assert store.delete("user:abc") is True
        assert store.get("user:abc") is None
        assert store.delete("user:abc") is False

    def test_prefix_is_applied(self, store, fake_redis, config):
        store.put("chat:1", "tok")
        assert fake_redis.get(f"{config.KEY_PREFIX}chat:1") == "tok"
        assert fake_redis.get("chat:1") is None

    def test_ttl_is_set(self, store, fake_redis, config):
        store.put("code:123456", "42", ttl_seconds=600)
        ttl = fake_redis.ttl(f"{config.KEY_PREFIX}code:123456")
        assert 0 < ttl <= 600

    def test_put_without_ttl_persists(self, store, fake_redis, config):
        store.put("code:1", "x", ttl_seconds=60)
        store.put("code:1", "y")
        assert fake_redis.ttl(f"{config.KEY_PREFIX}code:1") == -1

    def test_list_by_prefix(self, store):
        store.put("class:c1:user:t1", "1")
        store.put("class:c1:user:t2", "2")
        store.put("class:c2:user:t3", "3")

        keys = store.list("class:c1:user:")

        assert sorted(keys) == ["class:c1:user:t1", "class:c1:user:t2"]
        assert store.count("class:c1:user:") == 2

    def test_list_ignores_other_namespaces(self, store, fake_redis):
        """
        EDGE: Keys outside the prefix are invisible.
        """
        fake_redis.set("class:c1:user:t9", "x")
        assert store.list("class:c1:user:") == []

    def test_list_limit(self, store):
        for i in range(10):
            store.put(f"user:{i}", str(i))
        assert len(store.list("user:", limit=3)) == 3

    def test_get_many_skips_missing(self, store):
        store.put("user:a", "1")
        store.put("user:b", "2")
        assert store.get_many(["user:a", "user:b", "user:c"]) == {"user:a": "1", "user:b": "2"}
        assert store.get_many([]) == {}

    def test_redis_errors_become_store_errors(self):
        """
        EDGE: Redis failures surface as StoreError, not raw redis exceptions.
        """
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("down")
        client.set.side_effect = redis.ConnectionError("down")
        client.ping.side_effect = redis.ConnectionError("down")
        store = KeyStore(client, prefix="p:")

        with pytest.raises(StoreError):
            store.get("x")
        with pytest.raises(StoreError):
            store.put("x", "1")
        assert store.is_connected() is False
        assert store.health_check()["status"] == "disconnected"

    def test_health_check_connected(self, store):
        health = store.health_check()
        assert health["connected"] is True
        assert health["status"] == "healthy"
