"""
Transport frame scanner.

Frames are JSON most of the time. The scanner walks the decoded structure
to a fixed depth looking for identifier-shaped fields; the first value seen
for each field wins, parents before children. Bodies that don't decode fall
back to regex extraction over the raw text.

Start/end classification is a keyword heuristic over the lowercased raw
text and is independent of identifier extraction. A frame can read as both.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from pollcast.detector.signals import ExtractedIds

ID_VALUE = re.compile(r'^[a-f0-9-]+$', re.IGNORECASE)

ACTIVITY_FIELDS = ('activityId', 'activity_id', 'activityGuid', 'activity')
COURSE_FIELDS = ('courseId', 'course_id', 'courseGuid', 'course')
QUESTION_FIELDS = ('questionId', 'question_id', 'questionGuid', 'pollId', 'poll_id')

DEFAULT_MAX_DEPTH = 5


def _pair(name: str):
    return re.compile(rf'"{name}"\s*:\s*"([a-f0-9-]+)"', re.IGNORECASE)


FALLBACK_ACTIVITY = [_pair('activityId'), _pair('activity_id'), _pair('activity')]
FALLBACK_COURSE = [_pair('courseId'), _pair('course_id'), _pair('course')]
FALLBACK_QUESTION = [_pair('questionId'), _pair('question_id'), _pair('questionGuid'), _pair('id')]

START_STATES = ('"status":"active"', '"status":"open"', '"state":"active"', '"state":"open"')
END_STATES = ('"status":"closed"', '"state":"closed"')


@dataclass
class FrameScan:
    ids: ExtractedIds = field(default_factory=ExtractedIds)
    is_start: bool = False
    is_end: bool = False


def _id_value(value: Any) -> Optional[str]:
    if isinstance(value, str) and value and ID_VALUE.match(value):
        return value
    return None


def _children(obj):
    if isinstance(obj, dict):
        return obj.values()
    return obj


def _first_field(obj: dict, names) -> Optional[str]:
    for name in names:
        value = _id_value(obj.get(name))
        if value:
            return value
    return None


def scan_scope_ids(obj: Any, max_depth: int = DEFAULT_MAX_DEPTH, found: Optional[ExtractedIds] = None,
                   depth: int = 0) -> ExtractedIds:
    """Course and activity ids anywhere in the structure, first match per field."""
    found = found or ExtractedIds()
    if depth > max_depth or not isinstance(obj, (dict, list)):
        return found

    if isinstance(obj, dict):
        if not found.activity_id:
            found.activity_id = _first_field(obj, ACTIVITY_FIELDS)
        if not found.course_id:
            found.course_id = _first_field(obj, COURSE_FIELDS)

    for child in _children(obj):
        if isinstance(child, (dict, list)):
            scan_scope_ids(child, max_depth, found, depth + 1)
    return found


def find_question_id(obj: Any, max_depth: int = DEFAULT_MAX_DEPTH, depth: int = 0) -> Optional[str]:
    """
    Question id from a named field, or from `id` on an object whose
    type/__typename mentions a question or poll.
    """
    if depth > max_depth or not isinstance(obj, (dict, list)):
        return None

    if isinstance(obj, dict):
        question_id = _first_field(obj, QUESTION_FIELDS)
        if question_id:
            return question_id

        object_id = _id_value(obj.get('id'))
        if object_id:
            object_type = str(obj.get('type') or obj.get('__typename') or '').lower()
            if 'question' in object_type or 'poll' in object_type:
                return object_id

    for child in _children(obj):
        if isinstance(child, (dict, list)):
            found = find_question_id(child, max_depth, depth + 1)
            if found:
                return found
    return None


def _search_first(patterns, text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def is_poll_start(lowered: str) -> bool:
    mentions_poll = 'poll' in lowered or 'question' in lowered
    return (
        (('start' in lowered or 'open' in lowered) and mentions_poll)
        or any(marker in lowered for marker in START_STATES)
    )


def is_poll_end(lowered: str) -> bool:
    mentions_poll = 'poll' in lowered or 'question' in lowered
    return (
        (('stop' in lowered or 'close' in lowered or 'end' in lowered) and mentions_poll)
        or any(marker in lowered for marker in END_STATES)
    )


def frame_text(raw: Union[str, bytes, None]) -> str:
    if raw is None:
        return ''
    if isinstance(raw, bytes):
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            return ''
    return str(raw)


def scan_frame(raw: Union[str, bytes, None], max_depth: int = DEFAULT_MAX_DEPTH) -> FrameScan:
    text = frame_text(raw)
    lowered = text.lower()

    try:
        decoded = json.loads(text)
    except ValueError:
        ids = ExtractedIds(
            course_id=_search_first(FALLBACK_COURSE, text),
            activity_id=_search_first(FALLBACK_ACTIVITY, text),
            question_id=_search_first(FALLBACK_QUESTION, text)
        )
    else:
        ids = scan_scope_ids(decoded, max_depth)
        ids.question_id = find_question_id(decoded, max_depth)

    return FrameScan(ids=ids, is_start=is_poll_start(lowered), is_end=is_poll_end(lowered))
