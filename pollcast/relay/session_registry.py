"""
Session Registry

Tracks who is present where. Course membership is permanent, activity
membership lasts one lecture (6h TTL) and the active session lasts ten
minutes unless a heartbeat rewrites it. Presence of a record is the only
"is present" predicate; nothing here deletes memberships.

Key layout:

    class:{course}:user:{token}        -> chat handle
    userclass:{token}:{course}         -> "1"
    activity:{activity}:user:{token}   -> chat handle   (TTL 6h)
    useractivity:{token}:{activity}    -> "1"           (TTL 6h)
    activesession:{token}              -> JSON {activityId, courseId, joinedAt}
"""

import json
import time
from dataclasses import asdict, dataclass
from typing import Optional

from pollcast.core.errors import ValidationError
from pollcast.core.relay_logging import registry_logger
from pollcast.core.validation import optional_scope_id
from pollcast.relay.identity import IdentityService
from pollcast.relay.key_store import KeyStore
from pollcast.relay.messenger import send_quietly


def _students(count: int) -> str:
    return 'student' if count == 1 else 'students'


@dataclass
class JoinSessionResult:
    course_id: Optional[str]
    activity_id: Optional[str]
    is_new_join: bool
    is_new_session: bool
    joined_course: bool
    joined_activity: bool
    member_count: int

    def to_dict(self):
        """Response body for /join-session"""
        return {
            'success': True,
            'courseId': self.course_id,
            'activityId': self.activity_id,
            'isNewJoin': self.is_new_join,
            'isNewSession': self.is_new_session,
            'joinedCourse': self.joined_course,
            'joinedActivity': self.joined_activity,
            'memberCount': self.member_count
        }


@dataclass
class ActiveSession:
    course_id: Optional[str]
    activity_id: Optional[str]
    joined_at: int

    def to_json(self) -> str:
        return json.dumps({
            'activityId': self.activity_id,
            'courseId': self.course_id,
            'joinedAt': self.joined_at
        })

    @classmethod
    def from_json(cls, raw: str) -> Optional["ActiveSession"]:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return cls(
            course_id=data.get('courseId'),
            activity_id=data.get('activityId'),
            joined_at=int(data.get('joinedAt') or 0)
        )


class SessionRegistry:
    def __init__(self, store: KeyStore, identity: IdentityService, messenger, config):
        self.store = store
        self.identity = identity
        self.messenger = messenger
        self.config = config

    # ------------------------------------------------------------------
    # Counts
    # ------------------------------------------------------------------

    def course_member_count(self, course_id: str) -> int:
        return self.store.count(f"class:{course_id}:user:")

    def activity_member_count(self, activity_id: str) -> int:
        return self.store.count(f"activity:{activity_id}:user:")

    def member_count(self, course_id: Optional[str] = None, activity_id: Optional[str] = None) -> int:
        """
        Display estimate only: activity members, falling back to course
        members when the activity has none. Broadcast recipients are
        computed separately and are always the union of both scopes.
        """
        count = 0
        if activity_id:
            count = self.activity_member_count(activity_id)
        if count == 0 and course_id:
            count = self.course_member_count(course_id)
        return count

    # ------------------------------------------------------------------
    # Active session
    # ------------------------------------------------------------------

    def get_active_session(self, token: str) -> Optional[ActiveSession]:
        raw = self.store.get(f"activesession:{token}")
        if raw is None:
            return None
        return ActiveSession.from_json(raw)

    def _write_active_session(self, token: str, course_id: Optional[str], activity_id: Optional[str]):
        session = ActiveSession(
            course_id=course_id,
            activity_id=activity_id,
            joined_at=int(time.time() * 1000)
        )
        self.store.put(f"activesession:{token}", session.to_json(),
                       ttl_seconds=self.config.SESSION_TTL_SECONDS)
        return session

    # ------------------------------------------------------------------
    # Membership upserts
    # ------------------------------------------------------------------

    def _join_course(self, token: str, chat_handle: str, course_id: str) -> bool:
        """Returns True when this created the membership."""
        membership_key = f"class:{course_id}:user:{token}"
        if self.store.get(membership_key):
            return False
        self.store.put(membership_key, chat_handle)
        self.store.put(f"userclass:{token}:{course_id}", '1')
        return True

    def _join_activity(self, token: str, chat_handle: str, activity_id: str) -> bool:
        membership_key = f"activity:{activity_id}:user:{token}"
        if self.store.get(membership_key):
            return False
        ttl = self.config.ACTIVITY_TTL_SECONDS
        self.store.put(membership_key, chat_handle, ttl_seconds=ttl)
        self.store.put(f"useractivity:{token}:{activity_id}", '1', ttl_seconds=ttl)
        return True

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def join_session(self, token, course_id=None, activity_id=None) -> JoinSessionResult:
        course_id = optional_scope_id(course_id, 'courseId')
        activity_id = optional_scope_id(activity_id, 'activityId')
        if not course_id and not activity_id:
            raise ValidationError('Missing userToken or both courseId and activityId')
        chat_handle = self.identity.authenticate(token)

        previous = self.get_active_session(token)
        is_new_session = previous is None or previous.activity_id != activity_id

        joined_course = bool(course_id) and self._join_course(token, chat_handle, course_id)
        joined_activity = bool(activity_id) and self._join_activity(token, chat_handle, activity_id)

        # Always overwritten, even for the same activity, to refresh the TTL
        self._write_active_session(token, course_id, activity_id)

        member_count = self.member_count(course_id, activity_id)

        if is_new_session:
            lines = ["📍 *Joined Session!*\n\n", "🟢 You're now active in:\n"]
            if activity_id:
                lines.append(f"Activity: `{activity_id[:8]}...`\n")
            if course_id:
                lines.append(f"🎓 Course: `{course_id[:8]}...`\n")
            lines.append(f"\n👥 *{member_count}* {_students(member_count)} in this session\n\n")
            lines.append("When anyone detects a poll, everyone gets notified!\n\n")
            lines.append("_Session auto-expires when you close the tab._")
            send_quietly(self.messenger, chat_handle, ''.join(lines))

        result = JoinSessionResult(
            course_id=course_id,
            activity_id=activity_id,
            is_new_join=joined_course or joined_activity,
            is_new_session=is_new_session,
            joined_course=joined_course,
            joined_activity=joined_activity,
            member_count=member_count
        )
        registry_logger.log_info("SESSION_JOINED", "Session joined", {
            "token_prefix": token[:8],
            **{k: v for k, v in asdict(result).items() if k != 'member_count'}
        })
        return result

    def join_class(self, token, course_id) -> bool:
        """Course-only join kept for older clients. Returns is_new_join."""
        course_id = optional_scope_id(course_id, 'courseId')
        if not course_id:
            raise ValidationError('Missing userToken or courseId')
        chat_handle = self.identity.authenticate(token)

        is_new_join = self._join_course(token, chat_handle, course_id)
        if is_new_join:
            count = self.course_member_count(course_id)
            send_quietly(
                self.messenger, chat_handle,
                f"📚 *Joined Class!*\n\n"
                f"You're now connected to:\n`{course_id}`\n\n"
                f"👥 *{count}* {_students(count)} in this class\n\n"
                f"When anyone detects a poll, everyone gets notified! "
                f"Keep the poll tab open for best results."
            )
        registry_logger.log_info("CLASS_JOINED", "Class joined", {
            "token_prefix": token[:8],
            "course_id": course_id,
            "is_new_join": is_new_join
        })
        return is_new_join

    def heartbeat(self, token, course_id=None, activity_id=None):
        """Refresh the active session TTL. Membership is never touched."""
        course_id = optional_scope_id(course_id, 'courseId')
        activity_id = optional_scope_id(activity_id, 'activityId')
        self.identity.authenticate(token)
        session = self._write_active_session(token, course_id, activity_id)
        registry_logger.log_debug("HEARTBEAT", "Active session refreshed", {"token_prefix": token[:8]})
        return session

    def leave(self, token) -> bool:
        """Drop the active session. Returns True if one existed."""
        chat_handle = self.identity.authenticate(token)
        existed = self.store.get(f"activesession:{token}") is not None
        self.store.delete(f"activesession:{token}")

        if existed:
            send_quietly(
                self.messenger, chat_handle,
                "👋 *Left Session*\n\n"
                "You've left the active session.\n\n"
                "Your class enrollment is still saved."
            )
        registry_logger.log_info("SESSION_LEFT", "Session left", {
            "token_prefix": token[:8],
            "had_session": existed
        })
        return existed
