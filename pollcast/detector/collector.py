"""
Signal collector and identifier resolution.

The collector turns raw page observations into Signals. It never raises:
anything that goes wrong while reading the page or a frame is logged at
debug level and reported as "no signal".

Identifier priority, highest first:
    1. the current URL
    2. a value already resolved on this page, or the host's last-seen value
    3. a value found in a transport frame
    4. a value scraped from embedded page data
Lower sources only fill ids that are still empty.
"""

import time
from typing import Callable, MutableMapping, Optional

from pollcast.core.relay_logging import detector_logger
from pollcast.detector.frame_scanner import DEFAULT_MAX_DEPTH, scan_frame
from pollcast.detector.page import (PageView, find_active_text, find_poll_marker,
                                    find_waiting_text, scrape_embedded_ids)
from pollcast.detector.routes import Route, RouteKind
from pollcast.detector.signals import ExtractedIds, Signal, SignalKind

LAST_COURSE_KEY = 'lastCourseId'
LAST_ACTIVITY_KEY = 'lastActivityId'


def _now_ms() -> int:
    return int(time.time() * 1000)


class SignalCollector:
    def __init__(self, page: PageView, clock: Optional[Callable[[], int]] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH):
        self.page = page
        self.clock = clock or _now_ms
        self.max_depth = max_depth

    def observe_dom(self) -> Signal:
        now = self.clock()
        try:
            waiting = find_waiting_text(self.page)
            if waiting:
                return Signal(SignalKind.DOM_TEXT, found=False, timestamp=now,
                              detail=waiting, reason='waiting_state')

            text_hit = find_active_text(self.page)
            if text_hit:
                region, pattern = text_hit
                return Signal(SignalKind.DOM_TEXT, found=True, timestamp=now,
                              detail=f"{pattern} in {region}")

            marker = find_poll_marker(self.page)
            if marker:
                return Signal(SignalKind.DOM_SELECTOR, found=True, timestamp=now, detail=marker)
        except Exception as e:
            detector_logger.log_debug("DOM_CHECK_FAILED", f"{type(e).__name__}: {e}")
            return Signal(SignalKind.DOM_SELECTOR, found=False, timestamp=now, reason='collector_error')

        return Signal(SignalKind.DOM_SELECTOR, found=False, timestamp=now)

    def observe_frame(self, raw) -> Optional[Signal]:
        try:
            scan = scan_frame(raw, self.max_depth)
        except Exception as e:
            detector_logger.log_debug("FRAME_SCAN_FAILED", f"{type(e).__name__}: {e}")
            return None
        text = raw if isinstance(raw, str) else ''
        return Signal(
            SignalKind.TRANSPORT_FRAME,
            found=scan.is_start,
            timestamp=self.clock(),
            extracted=scan.ids,
            detail=text[:200] or None,
            ends=scan.is_end
        )

    def scrape_ids(self) -> ExtractedIds:
        try:
            return scrape_embedded_ids(self.page)
        except Exception as e:
            detector_logger.log_debug("EMBEDDED_SCAN_FAILED", f"{type(e).__name__}: {e}")
            return ExtractedIds()


class IdentifierResolver:
    """
    Keeps the page's course/activity ids on the detector state and mirrors
    every newly resolved value into the host's persisted store so the next
    page load can start from it.
    """

    def __init__(self, state, persisted: Optional[MutableMapping[str, str]] = None):
        self.state = state
        self.persisted = persisted if persisted is not None else {}

    def _set_course(self, course_id: str, source: str):
        self.state.cached_course_id = course_id
        self.persisted[LAST_COURSE_KEY] = course_id
        detector_logger.log_debug("COURSE_RESOLVED", f"Course id from {source}", {"course_id": course_id})

    def _set_activity(self, activity_id: str, source: str):
        self.state.cached_activity_id = activity_id
        self.persisted[LAST_ACTIVITY_KEY] = activity_id
        detector_logger.log_debug("ACTIVITY_RESOLVED", f"Activity id from {source}", {"activity_id": activity_id})

    def resolve_route(self, route: Route) -> ExtractedIds:
        """URL values always win; pages that don't name an id fall back to the last one seen."""
        if route.course_id:
            self._set_course(route.course_id, 'url')
        elif route.kind in (RouteKind.ACTIVITY, RouteKind.QUESTION) and not self.state.cached_course_id:
            stored = self.persisted.get(LAST_COURSE_KEY)
            if stored:
                self.state.cached_course_id = stored

        if route.activity_id:
            self._set_activity(route.activity_id, 'url')
        elif route.kind is RouteKind.QUESTION and not self.state.cached_activity_id:
            stored = self.persisted.get(LAST_ACTIVITY_KEY)
            if stored:
                self.state.cached_activity_id = stored

        return self.current()

    def offer(self, ids: ExtractedIds, source: str):
        """Fill still-empty ids from a lower-priority source"""
        if ids.course_id and not self.state.cached_course_id:
            self._set_course(ids.course_id, source)
        if ids.activity_id and not self.state.cached_activity_id:
            self._set_activity(ids.activity_id, source)

    def current(self) -> ExtractedIds:
        return ExtractedIds(
            course_id=self.state.cached_course_id,
            activity_id=self.state.cached_activity_id
        )
