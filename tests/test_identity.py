"""
Identity and registration tests: code issuance, single-use consumption,
token supersession, reverse lookup repair and webhook replies.
"""

import pytest

from pollcast.core.errors import AuthError, ExpiredOrInvalidCode, ValidationError
from pollcast.core.validation import is_valid_token

pytestmark = pytest.mark.relay


class TestCodeIssuance:

    def test_issue_code_stores_handle_with_ttl(self, identity, store, fake_redis, config):
        """
        HAPPY PATH: Six-digit code mapped to the handle for ten minutes.
        """
        code = identity.issue_code("4242")

        assert len(code) == 6 and code.isdigit()
        assert store.get(f"code:{code}") == "4242"
        assert 0 < fake_redis.ttl(f"{config.KEY_PREFIX}code:{code}") <= 600

    def test_second_request_within_cooldown_is_refused(self, identity):
        """
        EDGE: One code per handle per two minutes.
        """
        assert identity.issue_code("4242") is not None
        assert identity.issue_code("4242") is None
        assert identity.issue_code("5555") is not None


class TestRegister:

    def test_register_mints_token(self, identity, store, messenger):
        code = identity.issue_code("4242")

        token = identity.register(code)

        assert is_valid_token(token)
        assert store.get(f"user:{token}") == "4242"
        assert store.get("chat:4242") == token
        assert any("Connected" in text for text in messenger.texts_for("4242"))

    def test_code_is_single_use(self, identity):
        """
        EDGE: A second register with the same code fails.
        """
        code = identity.issue_code("4242")
        identity.register(code)

        with pytest.raises(ExpiredOrInvalidCode):
            identity.register(code)

    def test_unknown_code(self, identity):
        with pytest.raises(ExpiredOrInvalidCode) as exc:
            identity.register("000000")
        assert exc.value.status_code == 400

    def test_malformed_code(self, identity):
        with pytest.raises(ValidationError):
            identity.register("12ab56")

    def test_reregistration_supersedes_old_token(self, identity, store, make_user, config):
        """
        HAPPY PATH: Old token stops working, memberships are kept.
        """
        old_token = make_user("4242")
        store.put(f"class:c0ffee00:user:{old_token}", "4242")
        store.put(f"activesession:{old_token}", "{}")

        store.delete("codelimit:4242")
        new_token = identity.register(identity.issue_code("4242"))

        assert new_token != old_token
        assert store.get(f"user:{old_token}") is None
        assert store.get(f"activesession:{old_token}") is None
        assert store.get(f"class:c0ffee00:user:{old_token}") == "4242"
        assert store.get("chat:4242") == new_token
        with pytest.raises(AuthError):
            identity.authenticate(old_token)

    def test_confirmation_failure_does_not_fail_registration(self, identity, messenger, store):
        """
        EDGE: Provider down during the confirmation message.
        """
        messenger.unreachable.add("4242")
        token = identity.register(identity.issue_code("4242"))
        assert store.get(f"user:{token}") == "4242"


class TestLookups:

    def test_authenticate_unknown_token(self, identity):
        with pytest.raises(AuthError):
            identity.authenticate("f" * 48)

    def test_reverse_index_repaired_by_scan(self, identity, store, make_user):
        """
        EDGE: chat: index missing, found by scanning user: keys and rewritten.
        """
        token = make_user("4242")
        store.delete("chat:4242")

        assert identity.find_token_for_handle("4242") == token
        assert store.get("chat:4242") == token

    def test_reverse_lookup_miss(self, identity):
        assert identity.find_token_for_handle("nobody") is None


class TestWebhook:

    def _update(self, chat_id, text):
        return {"message": {"chat": {"id": chat_id}, "text": text}}

    def test_start_issues_code(self, identity, messenger):
        reply = identity.handle_update(self._update(4242, "/start"))

        assert "registration code" in reply
        assert messenger.texts_for("4242") == [reply]

    def test_unregistered_handle_gets_code_for_any_text(self, identity):
        reply = identity.handle_update(self._update(4242, "hello"))
        assert "registration code" in reply

    def test_registered_handle_gets_already_connected(self, identity, make_user):
        make_user("4242")
        reply = identity.handle_update(self._update(4242, "hello"))
        assert "already connected" in reply

    def test_registered_handle_can_request_new_code(self, identity, store, make_user):
        make_user("4242")
        store.delete("codelimit:4242")
        reply = identity.handle_update(self._update(4242, "/code"))
        assert "registration code" in reply

    def test_cooldown_reply(self, identity):
        identity.handle_update(self._update(4242, "/start"))
        reply = identity.handle_update(self._update(4242, "/start"))
        assert "Please wait" in reply

    def test_update_without_message_is_ignored(self, identity, messenger):
        assert identity.handle_update({"edited_message": {}}) is None
        assert messenger.sent == []

    @pytest.mark.parametrize("update", [
        {"message": "hello"},
        {"message": {"chat": "4242", "text": "/start"}},
        {"message": {"chat": None}},
        ["not", "an", "object"],
    ])
    def test_malformed_update_is_ignored(self, identity, messenger, update):
        """
        EDGE: Wrongly shaped updates are dropped instead of raising.
        """
        assert identity.handle_update(update) is None
        assert messenger.sent == []

    def test_non_string_text_treated_as_plain_message(self, identity):
        reply = identity.handle_update({"message": {"chat": {"id": 4242}, "text": 7}})
        assert "registration code" in reply
