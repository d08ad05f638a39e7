"""
Page model, signal collector and identifier resolution tests.
"""

import pytest

from pollcast.detector.collector import (LAST_ACTIVITY_KEY, LAST_COURSE_KEY, IdentifierResolver,
                                         SignalCollector)
from pollcast.detector.page import (PageElement, PageView, StaticPage, find_poll_marker,
                                    scrape_embedded_ids)
from pollcast.detector.routes import parse_route
from pollcast.detector.signals import ExtractedIds, SignalKind
from pollcast.detector.state_machine import DetectorState

pytestmark = pytest.mark.detector


def el(*classes, tag='div', text='', **kwargs):
    return PageElement(tag=tag, classes=tuple(classes), text=text, **kwargs)


class BrokenPage(PageView):
    def elements(self):
        raise RuntimeError("detached node")


class TestVisibility:

    @pytest.mark.parametrize("style,in_layout,visible", [
        ({}, True, True),
        ({'display': 'none'}, True, False),
        ({'visibility': 'hidden'}, True, False),
        ({'opacity': '0'}, True, False),
        ({}, False, False),
    ])
    def test_rules(self, style, in_layout, visible):
        assert el('x', style=style, in_layout=in_layout).is_visible() is visible


class TestMarkers:

    def test_hidden_marker_ignored(self):
        page = StaticPage([el('poll-active-banner', style={'display': 'none'})])
        assert find_poll_marker(page) is None

    def test_visible_marker_found(self):
        page = StaticPage([el('poll-active-banner')])
        assert find_poll_marker(page) == '[class*="poll-active"]'

    def test_hidden_timer_excluded(self):
        assert find_poll_marker(StaticPage([el('timer-hidden')])) is None
        assert find_poll_marker(StaticPage([el('timer-widget')])) is not None

    def test_disabled_submit_button_ignored(self):
        disabled = el('submit-btn', tag='button', attrs={'disabled': ''})
        assert find_poll_marker(StaticPage([disabled])) is None
        assert find_poll_marker(StaticPage([el('submit-btn', tag='button')])) is not None

    def test_submit_class_on_div_ignored(self):
        assert find_poll_marker(StaticPage([el('submit-area')])) is None


class TestCollectorDom:

    def test_waiting_text_wins(self, clock):
        """
        EDGE: Waiting text forces a non-signal even with markers on screen.
        """
        page = StaticPage([
            el('status-bar', text='Waiting for your instructor'),
            el('poll-active'),
        ])
        signal = SignalCollector(page, clock).observe_dom()
        assert signal.found is False
        assert signal.reason == 'waiting_state'

    def test_active_text(self, clock):
        page = StaticPage([el('join-title', text='Answer now!')])
        signal = SignalCollector(page, clock).observe_dom()
        assert signal.found is True
        assert signal.kind is SignalKind.DOM_TEXT
        assert signal.timestamp == clock.now

    def test_role_alert_text(self, clock):
        page = StaticPage([el(text='10 seconds left', attrs={'role': 'alert'})])
        assert SignalCollector(page, clock).observe_dom().found is True

    def test_marker(self, clock):
        page = StaticPage([el('answer-option')])
        signal = SignalCollector(page, clock).observe_dom()
        assert signal.kind is SignalKind.DOM_SELECTOR
        assert signal.detail == '[class*="answer-option"]'

    def test_nothing(self, clock):
        signal = SignalCollector(StaticPage([el('header')]), clock).observe_dom()
        assert signal.found is False
        assert signal.reason is None

    def test_errors_become_no_signal(self, clock):
        signal = SignalCollector(BrokenPage(), clock).observe_dom()
        assert signal.found is False
        assert signal.reason == 'collector_error'


class TestEmbeddedIds:

    def test_script_then_attributes_then_storage(self):
        page = StaticPage(
            elements=[el(attrs={'data-course-id': 'cccc0000-1111'})],
            scripts=['window.boot = {"activityId": "aaaa0000-1111"};'],
            storage={'courseId': 'dddd0000-2222', 'currentActivity': 'eeee0000-3333'}
        )
        ids = scrape_embedded_ids(page)
        assert ids.activity_id == 'aaaa0000-1111'
        assert ids.course_id == 'cccc0000-1111'

    def test_storage_values_must_look_like_ids(self):
        page = StaticPage(storage={'courseId': 'not an id', 'currentCourse': 'dddd0000-2222'})
        assert scrape_embedded_ids(page).course_id == 'dddd0000-2222'


class TestIdentifierResolver:

    def test_url_overrides_cache(self):
        state = DetectorState(cached_course_id='def00000')
        persisted = {}
        resolver = IdentifierResolver(state, persisted)

        resolver.resolve_route(parse_route('#/course/abc00000'))

        assert state.cached_course_id == 'abc00000'
        assert persisted[LAST_COURSE_KEY] == 'abc00000'

    def test_question_page_uses_persisted_values(self):
        state = DetectorState()
        resolver = IdentifierResolver(state, {LAST_COURSE_KEY: 'c0000000', LAST_ACTIVITY_KEY: 'a0000000'})

        ids = resolver.resolve_route(parse_route('#/question/f0000000'))

        assert ids.course_id == 'c0000000'
        assert ids.activity_id == 'a0000000'

    def test_course_page_does_not_pull_stale_activity(self):
        state = DetectorState()
        resolver = IdentifierResolver(state, {LAST_ACTIVITY_KEY: 'a0000000'})

        ids = resolver.resolve_route(parse_route('#/course/c0000000'))

        assert ids.activity_id is None

    def test_lower_sources_only_fill_gaps(self):
        """
        EDGE: Frame values never replace an id already resolved.
        """
        state = DetectorState(cached_course_id='c0000000')
        resolver = IdentifierResolver(state)

        resolver.offer(ExtractedIds(course_id='c1111111', activity_id='a1111111'), 'frame')

        assert state.cached_course_id == 'c0000000'
        assert state.cached_activity_id == 'a1111111'
