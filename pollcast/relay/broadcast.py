"""
Broadcast Dispatcher

Fans one "poll started" message out to everyone present in a scope, and
sends the single-recipient variant for users outside any known scope.

Rate limits are keyed markers with a TTL equal to the window:
    broadcast:{activity or course}  -> epoch ms of the last broadcast
    ratelimit:{token}               -> epoch ms of the last notify
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Optional, Set

from pollcast.core.errors import RateLimited, TransportFailure, ValidationError
from pollcast.core.relay_logging import broadcast_logger
from pollcast.core.validation import optional_scope_id
from pollcast.relay.identity import IdentityService
from pollcast.relay.key_store import KeyStore
from pollcast.relay.messenger import format_poll_message


@dataclass
class BroadcastResult:
    notified: int
    course_id: Optional[str] = None
    activity_id: Optional[str] = None
    rate_limited: bool = False

    def to_dict(self):
        if self.rate_limited:
            return {
                'success': True,
                'notified': 0,
                'message': 'Rate limited - broadcast already sent recently'
            }
        return {
            'success': True,
            'notified': self.notified,
            'activityId': self.activity_id,
            'courseId': self.course_id
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class BroadcastDispatcher:
    def __init__(self, store: KeyStore, identity: IdentityService, messenger, config):
        self.store = store
        self.identity = identity
        self.messenger = messenger
        self.config = config

    def _within_window(self, marker_key: str) -> bool:
        """True when the marker exists and is younger than the rate-limit window."""
        last = self.store.get(marker_key)
        if not last:
            return False
        try:
            elapsed = _now_ms() - int(last)
        except ValueError:
            # Unreadable marker still counts; the TTL clears it
            return True
        return elapsed < self.config.RATE_LIMIT_SECONDS * 1000

    def _mark(self, marker_key: str):
        self.store.put(marker_key, str(_now_ms()), ttl_seconds=self.config.RATE_LIMIT_SECONDS)

    def recipients(self, course_id: Optional[str] = None, activity_id: Optional[str] = None) -> Set[str]:
        """Union of activity and course member handles. Each handle appears once."""
        handles = set()
        if activity_id:
            keys = self.store.list(f"activity:{activity_id}:user:")
            handles.update(v for v in self.store.iter_values(keys) if v)
        if course_id:
            keys = self.store.list(f"class:{course_id}:user:")
            handles.update(v for v in self.store.iter_values(keys) if v)
        return handles

    def _deliver(self, chat_handle: str, text: str) -> bool:
        try:
            return self.messenger.send(chat_handle, text).ok
        except TransportFailure:
            return False

    def broadcast(self, token, course_id=None, activity_id=None, title=None, message=None) -> BroadcastResult:
        course_id = optional_scope_id(course_id, 'courseId')
        activity_id = optional_scope_id(activity_id, 'activityId')
        if not course_id and not activity_id:
            raise ValidationError('Missing userToken or both courseId and activityId')
        self.identity.authenticate(token)

        marker_key = f"broadcast:{activity_id or course_id}"
        if self._within_window(marker_key):
            broadcast_logger.log_info("BROADCAST_SUPPRESSED", "Scope already broadcast this window", {
                "scope": activity_id or course_id
            })
            return BroadcastResult(notified=0, course_id=course_id, activity_id=activity_id,
                                   rate_limited=True)
        self._mark(marker_key)

        handles = self.recipients(course_id, activity_id)
        if not handles:
            return BroadcastResult(notified=0, course_id=course_id, activity_id=activity_id)

        text = format_poll_message(title, message)
        notified = 0
        start_time = time.time()
        with ThreadPoolExecutor(max_workers=self.config.BROADCAST_MAX_WORKERS) as executor:
            future_to_handle = {
                executor.submit(self._deliver, handle, text): handle
                for handle in handles
            }
            for future in as_completed(future_to_handle):
                if future.result():
                    notified += 1

        broadcast_logger.log_info("BROADCAST_SENT", "Broadcast delivered", {
            "scope": activity_id or course_id,
            "recipients": len(handles),
            "notified": notified,
            "duration": f"{time.time() - start_time:.3f}s"
        })
        return BroadcastResult(notified=notified, course_id=course_id, activity_id=activity_id)

    def notify(self, token, title=None, message=None) -> None:
        """Message only the caller. Raises RateLimited or TransportFailure."""
        chat_handle = self.identity.authenticate(token)

        marker_key = f"ratelimit:{token}"
        if self._within_window(marker_key):
            raise RateLimited(retry_after=self.config.RATE_LIMIT_SECONDS)
        self._mark(marker_key)

        result = self.messenger.send(chat_handle, format_poll_message(title, message))
        if not result.ok:
            raise TransportFailure()
        broadcast_logger.log_info("NOTIFY_SENT", "Single-user notification delivered", {
            "token_prefix": token[:8]
        })
