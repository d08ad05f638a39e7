"""
Page model for DOM observation.

The detector never touches a browser. A host adapter flattens the document
into PageElement records (tag, classes, attributes, text content, computed
style, whether it is laid out) and exposes them, together with inline script
text and the app's storage, through a PageView. Element rules below play the
part of CSS selectors over those records.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from pollcast.detector.signals import ExtractedIds

ACTIVE_TEXT_PATTERNS = [
    re.compile(r'answer now', re.IGNORECASE),
    re.compile(r'submit your answer', re.IGNORECASE),
    re.compile(r'poll is open', re.IGNORECASE),
    re.compile(r'question is open', re.IGNORECASE),
    re.compile(r'time remaining', re.IGNORECASE),
    re.compile(r'seconds? left', re.IGNORECASE),
    re.compile(r'respond now', re.IGNORECASE),
    re.compile(r'select your answer', re.IGNORECASE),
]

WAITING_TEXT_PATTERNS = [
    re.compile(r'your instructor started class', re.IGNORECASE),
    re.compile(r'waiting for', re.IGNORECASE),
    re.compile(r'no active', re.IGNORECASE),
    re.compile(r'class has ended', re.IGNORECASE),
]

ID_VALUE = re.compile(r'^[a-f0-9-]+$', re.IGNORECASE)


@dataclass
class PageElement:
    tag: str = 'div'
    classes: Tuple[str, ...] = ()
    attrs: Dict[str, str] = field(default_factory=dict)
    text: str = ''
    style: Dict[str, str] = field(default_factory=dict)
    in_layout: bool = True

    @property
    def class_string(self) -> str:
        return ' '.join(self.classes)

    @property
    def role(self) -> Optional[str]:
        return self.attrs.get('role')

    @property
    def disabled(self) -> bool:
        return 'disabled' in self.attrs

    def data(self, *names: str) -> Optional[str]:
        """First present data-* attribute among names"""
        for name in names:
            value = self.attrs.get(f'data-{name}')
            if value:
                return value
        return None

    def is_visible(self) -> bool:
        return (
            self.style.get('display') != 'none'
            and self.style.get('visibility') != 'hidden'
            and str(self.style.get('opacity', '1')) not in ('0', '0.0')
            and self.in_layout
        )


@dataclass(frozen=True)
class ElementRule:
    """
    Structural stand-in for a simple CSS selector.

    An element matches when its tag fits (if given), any of the conditions
    holds (class substring, exact class or role) and no excluded fragment
    appears in its class string.
    """
    name: str
    class_fragments: Tuple[str, ...] = ()
    exact_classes: Tuple[str, ...] = ()
    role: Optional[str] = None
    tag: Optional[str] = None
    exclude_fragments: Tuple[str, ...] = ()
    require_enabled: bool = False

    def matches(self, element: PageElement) -> bool:
        if self.tag and element.tag.lower() != self.tag:
            return False
        class_string = element.class_string
        hit = (
            any(fragment in class_string for fragment in self.class_fragments)
            or any(name in element.classes for name in self.exact_classes)
            or (self.role is not None and element.role == self.role)
        )
        if not hit:
            return False
        if any(fragment in class_string for fragment in self.exclude_fragments):
            return False
        if self.require_enabled and element.disabled:
            return False
        return True


def _fragment(name: str, **kwargs) -> ElementRule:
    return ElementRule(name=f'[class*="{name}"]', class_fragments=(name,), **kwargs)


# Priority order: first rule with a visible match decides
POLL_MARKER_RULES = [
    _fragment('poll-active'),
    _fragment('poll-open'),
    _fragment('question-active'),
    _fragment('question-open'),
    _fragment('answering'),
    _fragment('live-poll'),
    _fragment('live-question'),
    ElementRule(name='[class*="timer"]:not([class*="timer-hidden"])',
                class_fragments=('timer',), exclude_fragments=('timer-hidden',)),
    _fragment('countdown'),
    _fragment('time-remaining'),
    ElementRule(name='button[class*="submit"]:not([disabled])',
                class_fragments=('submit',), tag='button', require_enabled=True),
    ElementRule(name='button[class*="answer"]:not([disabled])',
                class_fragments=('answer',), tag='button', require_enabled=True),
    _fragment('answer-option'),
    _fragment('response-option'),
    _fragment('choice-container'),
]

TEXT_REGION_RULES = [
    ElementRule(name='.join-title-box', exact_classes=('join-title-box',)),
    ElementRule(name='.join-title', exact_classes=('join-title',)),
    ElementRule(name='[role="alert"]', role='alert'),
    _fragment('status'),
    _fragment('notification'),
    _fragment('banner'),
    _fragment('message'),
]

WAITING_REGION_RULE = ElementRule(
    name='[role="alert"], .join-title-box, [class*="status"]',
    role='alert', exact_classes=('join-title-box',), class_fragments=('status',)
)

SCRIPT_ID_PATTERNS = {
    'activity_id': [
        re.compile(r'["\']activityId["\']\s*:\s*["\']([a-f0-9-]+)["\']', re.IGNORECASE),
        re.compile(r'activityId\s*=\s*["\']([a-f0-9-]+)["\']', re.IGNORECASE),
    ],
    'course_id': [
        re.compile(r'["\']courseId["\']\s*:\s*["\']([a-f0-9-]+)["\']', re.IGNORECASE),
        re.compile(r'courseId\s*=\s*["\']([a-f0-9-]+)["\']', re.IGNORECASE),
    ],
}

STORAGE_KEYS = ('activityId', 'courseId', 'currentActivity', 'currentCourse')


class PageView:
    """What the collector may ask of the monitored page. Hosts subclass this."""

    def elements(self) -> Iterable[PageElement]:
        raise NotImplementedError

    def inline_scripts(self) -> Iterable[str]:
        return []

    def storage_get(self, key: str) -> Optional[str]:
        return None


class StaticPage(PageView):
    """PageView over a fixed snapshot; hosts rebuild it per mutation batch."""

    def __init__(self, elements: Optional[List[PageElement]] = None,
                 scripts: Optional[List[str]] = None,
                 storage: Optional[Dict[str, str]] = None):
        self._elements = list(elements or [])
        self._scripts = list(scripts or [])
        self._storage = dict(storage or {})

    def elements(self) -> Iterable[PageElement]:
        return self._elements

    def inline_scripts(self) -> Iterable[str]:
        return self._scripts

    def storage_get(self, key: str) -> Optional[str]:
        return self._storage.get(key)

    def replace(self, elements: List[PageElement]):
        self._elements = list(elements)


def find_waiting_text(page: PageView) -> Optional[str]:
    for element in page.elements():
        if not WAITING_REGION_RULE.matches(element):
            continue
        for pattern in WAITING_TEXT_PATTERNS:
            if pattern.search(element.text or ''):
                return element.text.strip()
    return None


def find_active_text(page: PageView) -> Optional[Tuple[str, str]]:
    """(region rule name, matched pattern) for the first active-poll phrase"""
    elements = list(page.elements())
    for rule in TEXT_REGION_RULES:
        for element in elements:
            if not rule.matches(element):
                continue
            for pattern in ACTIVE_TEXT_PATTERNS:
                if pattern.search(element.text or ''):
                    return rule.name, pattern.pattern
    return None


def find_poll_marker(page: PageView) -> Optional[str]:
    """Name of the first marker rule with a visible matching element"""
    elements = list(page.elements())
    for rule in POLL_MARKER_RULES:
        if any(rule.matches(element) and element.is_visible() for element in elements):
            return rule.name
    return None


def scrape_embedded_ids(page: PageView) -> ExtractedIds:
    """Course/activity ids from inline scripts, data attributes, then app storage."""
    found = ExtractedIds()

    for script in page.inline_scripts():
        for attr, patterns in SCRIPT_ID_PATTERNS.items():
            if getattr(found, attr):
                continue
            for pattern in patterns:
                match = pattern.search(script or '')
                if match:
                    setattr(found, attr, match.group(1))
                    break

    for element in page.elements():
        if not found.activity_id:
            found.activity_id = element.data('activity-id', 'activityid')
        if not found.course_id:
            found.course_id = element.data('course-id', 'courseid')

    for key in STORAGE_KEYS:
        value = page.storage_get(key)
        if not value or not ID_VALUE.match(value):
            continue
        if 'activity' in key.lower() and not found.activity_id:
            found.activity_id = value
        elif 'course' in key.lower() and not found.course_id:
            found.course_id = value

    return found
