"""
Hash-route grammar of the monitored single-page app.

Patterns are tried in order; the first match decides the route kind:

    #/class/{id}/poll                 class_poll      (course id)
    #/class/{id}/question/{qid}       class_question  (course id, question id)
    #/course/{id}                     course          (course id)
    #/class/{id}                      class           (course id)
    #/activity/{id}                   activity        (activity id)
    #/question/{id}                   question        (question id)
    anything else                     unknown
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

ID = r'([a-f0-9-]+)'


class RouteKind(Enum):
    CLASS_POLL = "class_poll"
    CLASS_QUESTION = "class_question"
    COURSE = "course"
    CLASS = "class"
    ACTIVITY = "activity"
    QUESTION = "question"
    UNKNOWN = "unknown"


ROUTE_PATTERNS = [
    (RouteKind.CLASS_POLL, re.compile(rf'#/class/{ID}/poll', re.IGNORECASE)),
    (RouteKind.CLASS_QUESTION, re.compile(rf'#/class/{ID}/question/{ID}', re.IGNORECASE)),
    (RouteKind.COURSE, re.compile(rf'#/course/{ID}', re.IGNORECASE)),
    (RouteKind.CLASS, re.compile(rf'#/class/{ID}', re.IGNORECASE)),
    (RouteKind.ACTIVITY, re.compile(rf'#/activity/{ID}', re.IGNORECASE)),
    (RouteKind.QUESTION, re.compile(rf'#/question/{ID}', re.IGNORECASE)),
]

QUESTION_SEGMENT = re.compile(rf'/question/{ID}', re.IGNORECASE)
CLASS_SEGMENT = re.compile(rf'#/class/{ID}', re.IGNORECASE)

COURSE_ROUTES = {RouteKind.CLASS_POLL, RouteKind.CLASS_QUESTION, RouteKind.COURSE, RouteKind.CLASS}


@dataclass
class Route:
    kind: RouteKind
    url: str
    fragment: str
    course_id: Optional[str] = None
    activity_id: Optional[str] = None
    question_id: Optional[str] = None

    @property
    def has_poll(self) -> bool:
        return '/poll' in self.fragment

    @property
    def has_question(self) -> bool:
        return '/question/' in self.fragment

    @property
    def shows_poll(self) -> bool:
        """The route alone says a poll or question is on screen."""
        return self.has_poll or self.has_question

    @property
    def class_id(self) -> Optional[str]:
        """Course id from a #/class/ prefix, whatever follows it."""
        match = CLASS_SEGMENT.search(self.fragment)
        return match.group(1) if match else None


def fragment_of(url: str) -> str:
    """'#...' part of a URL, or '' when there is none. A bare fragment passes through."""
    if not url:
        return ''
    index = url.find('#')
    return url[index:] if index >= 0 else ''


def parse_route(url: str) -> Route:
    fragment = fragment_of(url)
    route = Route(kind=RouteKind.UNKNOWN, url=url or '', fragment=fragment)

    for kind, pattern in ROUTE_PATTERNS:
        match = pattern.search(fragment)
        if not match:
            continue
        route.kind = kind
        if kind in COURSE_ROUTES:
            route.course_id = match.group(1)
        elif kind is RouteKind.ACTIVITY:
            route.activity_id = match.group(1)
        else:
            route.question_id = match.group(1)
        if kind is RouteKind.CLASS_QUESTION:
            route.question_id = match.group(2)
        break

    # A question segment can trail routes the grammar doesn't name
    if route.question_id is None:
        match = QUESTION_SEGMENT.search(fragment)
        if match:
            route.question_id = match.group(1)
    return route
