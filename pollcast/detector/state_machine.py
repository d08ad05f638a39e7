"""
Event fusion state machine.

One PollDetector per monitored page. The host feeds it observations
serially (mutations, transport frames, route changes, a periodic URL tick)
and it turns them into at most one `started` per live question:

    IDLE -> ACTIVE   a signal says "live poll", the global cooldown has
                     elapsed and the question (if known) was not the last
                     one announced
    ACTIVE -> IDLE   waiting text; DOM markers gone while the route shows no
                     poll; route lost its poll/question segment; a frame
                     reads as the poll closing

A frame naming a different question than the one on screen forces a quiet
IDLE re-entry (no `ended`) so a new question is announced even while the
previous one's results are still displayed. If the cooldown blocks it, the
phase stays put and the question is retried on the next callback after the
cooldown.

Nothing here is locked: the host must not call in concurrently.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, MutableMapping, Optional

from pollcast.core.relay_logging import detector_logger
from pollcast.detector.collector import IdentifierResolver, SignalCollector
from pollcast.detector.frame_scanner import DEFAULT_MAX_DEPTH
from pollcast.detector.lifecycle import ENDED, SESSION_ACTIVE, SESSION_INACTIVE, STARTED, LifecycleEmitter
from pollcast.detector.page import PageView
from pollcast.detector.routes import Route, RouteKind, parse_route
from pollcast.detector.signals import ExtractedIds, Signal, SignalKind


class Phase(Enum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass
class DetectorSettings:
    cooldown_ms: int = 5000
    session_debounce_ms: int = 30000
    scan_depth: int = DEFAULT_MAX_DEPTH


@dataclass
class DetectorState:
    phase: Phase = Phase.IDLE
    last_transition_time: Optional[int] = None
    last_notified_question_id: Optional[str] = None
    cached_course_id: Optional[str] = None
    cached_activity_id: Optional[str] = None
    current_question_from_url: Optional[str] = None
    last_poll_url: Optional[str] = None
    current_url: str = ''
    last_checked_url: Optional[str] = None
    session_announced: bool = False
    last_session_key: Optional[str] = None
    last_session_time: Optional[int] = None
    closed: bool = False
    pending_question: Optional[Signal] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class PollDetector:
    """
    Args:
        page: PageView over the monitored document
        emitter: lifecycle hub that receives started/ended/session events
        settings: cooldowns and scan depth
        clock: returns epoch milliseconds; injectable for tests
        persisted: host storage for last-seen course/activity ids
        frame_source: object with subscribe(callback) -> unsubscribe callable
    """

    def __init__(self, page: PageView, emitter: LifecycleEmitter,
                 settings: Optional[DetectorSettings] = None,
                 clock: Optional[Callable[[], int]] = None,
                 persisted: Optional[MutableMapping[str, str]] = None,
                 frame_source=None):
        self.settings = settings or DetectorSettings()
        self.clock = clock or _now_ms
        self.emitter = emitter
        self.state = DetectorState()
        self.collector = SignalCollector(page, clock=self.clock, max_depth=self.settings.scan_depth)
        self.resolver = IdentifierResolver(self.state, persisted)
        self.frame_source = frame_source
        self._unsubscribe = None

    # ------------------------------------------------------------------
    # Host callbacks
    # ------------------------------------------------------------------

    def start(self, url: str):
        """Page loaded: hook frames first, then read the route and the DOM once."""
        if self.frame_source is not None:
            self._unsubscribe = self.frame_source.subscribe(self.on_frame)
        self.on_route_change(url)
        self.on_mutation()

    def on_mutation(self):
        if self.state.closed:
            return
        self._retry_pending()
        signal = self.collector.observe_dom()
        if signal.found:
            self._handle_detected(signal)
        elif self.state.phase is Phase.ACTIVE:
            if signal.reason == 'waiting_state':
                self._handle_ended('waiting_state')
            elif signal.reason is None and not parse_route(self.state.current_url).shows_poll:
                self._handle_ended('markers_gone')

    def on_frame(self, raw):
        if self.state.closed:
            return
        self._retry_pending()
        signal = self.collector.observe_frame(raw)
        if signal is None:
            return

        self.resolver.offer(signal.extracted, 'frame')

        if signal.found:
            question_id = signal.extracted.question_id
            if question_id and question_id != self.state.current_question_from_url:
                if question_id != self.state.last_notified_question_id:
                    detector_logger.log_info("NEW_QUESTION", "Frame announced a different question", {
                        "question_id": question_id,
                        "previous": self.state.last_notified_question_id
                    })
                    self._retrigger(signal)
            else:
                self._handle_detected(signal)

        if signal.ends:
            self._handle_ended('frame_end')

    def on_route_change(self, url: str):
        if self.state.closed:
            return
        self.state.current_url = url or ''
        self.state.last_checked_url = self.state.current_url

        route = parse_route(self.state.current_url)
        ids = self.resolver.resolve_route(route)
        if route.kind is RouteKind.QUESTION and not (ids.course_id and ids.activity_id):
            self.resolver.offer(self.collector.scrape_ids(), 'page')

        self._check_url(route)
        self.announce_session()

    def on_interval(self, url: str):
        """Periodic fallback for navigations that never fired a route change."""
        if self.state.closed:
            return
        self._retry_pending()
        url = url or ''
        if url == self.state.last_checked_url:
            return
        self.state.last_checked_url = url
        self.state.current_url = url
        self._check_url(parse_route(url))

    def on_visibility(self, visible: bool):
        """Tab came back into view: refresh the session announcement."""
        if visible and not self.state.closed:
            self.announce_session()

    def close(self):
        """Leaving the page. Every later callback is a no-op."""
        if self.state.closed:
            return
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.state.session_announced:
            self.state.session_announced = False
            self.emitter.emit(SESSION_INACTIVE, {})
        self.state.closed = True

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_url(self, route: Route):
        state = self.state
        if route.has_poll and route.url != state.last_poll_url:
            state.last_poll_url = route.url
            self._handle_detected(Signal(
                SignalKind.URL_POLL, found=True, timestamp=self.clock(),
                extracted=ExtractedIds(course_id=route.class_id), detail=route.url
            ))
        elif route.has_question and route.url != state.last_poll_url:
            state.current_question_from_url = route.question_id
            state.last_poll_url = route.url
            self._handle_detected(Signal(
                SignalKind.URL_QUESTION, found=True, timestamp=self.clock(),
                extracted=ExtractedIds(course_id=route.class_id, question_id=route.question_id),
                detail=route.question_id
            ))
        elif state.last_poll_url is not None and not route.shows_poll:
            state.last_poll_url = None
            state.current_question_from_url = None
            self._handle_ended('route_left_poll')

    def _in_cooldown(self, now: int) -> bool:
        last = self.state.last_transition_time
        return last is not None and now - last < self.settings.cooldown_ms

    def _retrigger(self, signal: Signal) -> bool:
        """
        Quiet re-entry for a new question: the old one is over, but nobody
        needs an `ended`. Inside the cooldown the phase is left as it was and
        the question waits in `pending_question` for a later callback.
        """
        state = self.state
        previous = state.phase
        state.phase = Phase.IDLE
        if self._handle_detected(signal):
            state.pending_question = None
            return True
        state.phase = previous
        state.pending_question = signal
        return False

    def _retry_pending(self):
        pending = self.state.pending_question
        if pending is None or self._in_cooldown(self.clock()):
            return
        if pending.extracted.question_id == self.state.last_notified_question_id:
            self.state.pending_question = None
            return
        self._retrigger(pending)

    def _handle_detected(self, signal: Signal) -> bool:
        state = self.state
        now = self.clock()

        if self._in_cooldown(now):
            return False

        question_id = signal.extracted.question_id
        if question_id and question_id == state.last_notified_question_id:
            detector_logger.log_debug("DUPLICATE_QUESTION", "Already announced", {"question_id": question_id})
            return False

        if state.phase is not Phase.IDLE:
            return False

        state.phase = Phase.ACTIVE
        state.last_transition_time = now
        if question_id:
            state.last_notified_question_id = question_id

        self.emitter.emit(STARTED, {
            "course_id": signal.extracted.course_id or state.cached_course_id,
            "activity_id": state.cached_activity_id,
            "question_id": question_id,
            "detection_kind": signal.kind.value,
            "detail": signal.detail,
            "url": state.current_url,
            "timestamp": now
        })
        return True

    def _handle_ended(self, reason: str):
        self.state.pending_question = None
        if self.state.phase is not Phase.ACTIVE:
            return
        self.state.phase = Phase.IDLE
        self.emitter.emit(ENDED, {"reason": reason, "timestamp": self.clock()})

    def announce_session(self) -> bool:
        """
        Emit session_active for the resolved ids, at most once per
        (course, activity) pair per debounce window. A different activity
        always goes out immediately because its key differs.
        """
        course_id = self.state.cached_course_id
        activity_id = self.state.cached_activity_id
        if not course_id and not activity_id:
            return False

        key = f"{course_id or 'none'}-{activity_id or 'none'}"
        now = self.clock()
        if (key == self.state.last_session_key and self.state.last_session_time is not None
                and now - self.state.last_session_time < self.settings.session_debounce_ms):
            return False

        self.state.last_session_key = key
        self.state.last_session_time = now
        self.state.session_announced = True
        self.emitter.emit(SESSION_ACTIVE, {"course_id": course_id, "activity_id": activity_id})
        return True
