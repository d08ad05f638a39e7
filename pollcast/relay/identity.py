"""
Identity and registration.

A chat handle proves itself by relaying a one-time code from the bot chat to
the page-side client; the client trades the code for a persistent opaque
token. Key layout:

    user:{token}        -> chat handle   (permanent)
    chat:{handle}       -> token         (permanent reverse index)
    code:{code}         -> chat handle   (TTL 600s, single use)
    codelimit:{handle}  -> "1"           (TTL 120s)
"""

import secrets
from typing import Any, Dict, Optional

from pollcast.core.errors import AuthError, ExpiredOrInvalidCode
from pollcast.core.relay_logging import identity_logger
from pollcast.core.validation import require_code, require_token
from pollcast.relay.key_store import KeyStore
from pollcast.relay.messenger import send_quietly

CODE_COMMANDS = {'/start', '/code', 'code'}


def generate_code() -> str:
    """Six-digit registration code"""
    return str(100000 + secrets.randbelow(900000))


def generate_user_token() -> str:
    """48 lowercase hex characters (24 random bytes)"""
    return secrets.token_hex(24)


class IdentityService:
    def __init__(self, store: KeyStore, messenger, config):
        self.store = store
        self.messenger = messenger
        self.config = config

    # ------------------------------------------------------------------
    # Token lookups
    # ------------------------------------------------------------------

    def authenticate(self, token: Any) -> str:
        """Validate token shape, then resolve it to a chat handle or raise AuthError."""
        token = require_token(token)
        chat_handle = self.store.get(f"user:{token}")
        if not chat_handle:
            identity_logger.log_warning("UNKNOWN_TOKEN", "Token not registered", {
                "token_prefix": token[:8]
            })
            raise AuthError()
        return chat_handle

    def find_token_for_handle(self, chat_handle: str) -> Optional[str]:
        """
        Reverse lookup handle -> token.

        The chat: index can be missing for identities written before it
        existed or after a partial write. In that case walk at most
        REVERSE_LOOKUP_SCAN_LIMIT user: keys and repair the index if found.
        Best-effort: a miss past the scan bound reads as "not registered".
        """
        chat_handle = str(chat_handle)
        token = self.store.get(f"chat:{chat_handle}")
        if token:
            return token

        user_keys = self.store.list("user:", limit=self.config.REVERSE_LOOKUP_SCAN_LIMIT)
        for key, stored_handle in self.store.get_many(user_keys).items():
            if stored_handle == chat_handle:
                token = key[len("user:"):]
                self.store.put(f"chat:{chat_handle}", token)
                identity_logger.log_info("REVERSE_INDEX_REPAIRED", "Restored chat index from scan", {
                    "chat_handle": chat_handle,
                    "scanned": len(user_keys)
                })
                return token
        return None

    # ------------------------------------------------------------------
    # Registration codes
    # ------------------------------------------------------------------

    def issue_code(self, chat_handle: str) -> Optional[str]:
        """Issue a code unless this handle already got one within the cooldown."""
        chat_handle = str(chat_handle)
        limit_key = f"codelimit:{chat_handle}"
        if self.store.get(limit_key):
            return None

        self.store.put(limit_key, '1', ttl_seconds=self.config.CODE_REQUEST_COOLDOWN_SECONDS)
        code = generate_code()
        self.store.put(f"code:{code}", chat_handle, ttl_seconds=self.config.CODE_TTL_SECONDS)
        identity_logger.log_info("CODE_ISSUED", "Registration code issued", {"chat_handle": chat_handle})
        return code

    def register(self, code: Any) -> str:
        """Consume a one-time code and mint a token for its chat handle."""
        code = require_code(code)
        chat_handle = self.store.get(f"code:{code}")
        if not chat_handle:
            raise ExpiredOrInvalidCode()

        # Consume before anything else so a retried request can't reuse it
        self.store.delete(f"code:{code}")

        previous_token = self.find_token_for_handle(chat_handle)
        if previous_token:
            # Superseded, not merged: memberships stay, the old token stops working
            self.store.delete(f"user:{previous_token}")
            self.store.delete(f"activesession:{previous_token}")
            identity_logger.log_info("TOKEN_SUPERSEDED", "Old token removed on re-registration", {
                "chat_handle": chat_handle,
                "token_prefix": previous_token[:8]
            })

        token = generate_user_token()
        self.store.put(f"user:{token}", chat_handle)
        self.store.put(f"chat:{chat_handle}", token)

        send_quietly(
            self.messenger, chat_handle,
            "✅ *Connected!*\n\n"
            "You'll now receive Telegram notifications when a poll starts.\n\n"
            "Keep the poll tab open in your browser for this to work."
        )
        identity_logger.log_info("USER_REGISTERED", "Token issued", {
            "chat_handle": chat_handle,
            "token_prefix": token[:8]
        })
        return token

    # ------------------------------------------------------------------
    # Bot webhook
    # ------------------------------------------------------------------

    def handle_update(self, update: Dict[str, Any]) -> Optional[str]:
        """
        Handle an incoming bot update.

        Only registration matters here: code requests, and any message from
        a handle that has no token yet. Returns the reply that was sent.
        """
        message = update.get('message') if isinstance(update, dict) else None
        if not isinstance(message, dict) or not isinstance(message.get('chat'), dict):
            return None

        chat_handle = str(message['chat'].get('id') or '')
        if not chat_handle:
            return None
        text = message.get('text')
        text = text.strip().lower() if isinstance(text, str) else ''

        is_registered = self.find_token_for_handle(chat_handle) is not None

        if text in CODE_COMMANDS or not is_registered:
            code = self.issue_code(chat_handle)
            if code is None:
                reply = "⏳ *Please wait*\n\nYou can request a new code in 2 minutes."
            else:
                reply = (
                    f"🔔 *Poll Notifier*\n\n"
                    f"Your registration code is:\n\n`{code}`\n\n"
                    f"Enter this code in the extension to connect your account.\n\n"
                    f"_This code expires in 10 minutes._"
                )
        else:
            reply = (
                "✅ *You're already connected!*\n\n"
                "You'll receive notifications here when polls start.\n\n"
                "Send /code to get a new registration code."
            )

        send_quietly(self.messenger, chat_handle, reply)
        return reply
