"""
Host relay bridge.

Listens to the detector's lifecycle events and makes the matching relay
calls. Network failures are logged and dropped: nothing raised here may
reach the detector.
"""

import threading
from typing import Any, Dict, Optional

import requests

from pollcast.core.relay_logging import bridge_logger
from pollcast.detector.lifecycle import ENDED, SESSION_ACTIVE, SESSION_INACTIVE, STARTED, LifecycleEvent
from pollcast.relay.messenger import DEFAULT_MESSAGE, DEFAULT_TITLE

HEARTBEAT_INTERVAL_SECONDS = 300


class RelayBridge:
    def __init__(self, base_url: str, user_token: Optional[str] = None, push_enabled: bool = True,
                 session: Optional[requests.Session] = None, timeout: int = 10,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS):
        self.base_url = base_url.rstrip('/')
        self.user_token = user_token
        self.push_enabled = push_enabled
        self.session = session or requests.Session()
        self.timeout = timeout
        self.heartbeat_interval = heartbeat_interval

        self.current_session: Optional[Dict[str, Optional[str]]] = None
        self._heartbeat_stop: Optional[threading.Event] = None
        self._heartbeat_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def attach(self, emitter):
        emitter.add_listener(self.handle_event)
        return self

    def handle_event(self, event: LifecycleEvent):
        handlers = {
            STARTED: self.on_started,
            ENDED: self.on_ended,
            SESSION_ACTIVE: self.on_session_active,
            SESSION_INACTIVE: self.on_session_inactive,
        }
        handler = handlers.get(event.event_type)
        if handler:
            handler(event.payload)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _post(self, path: str, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """POST JSON to the relay. Returns the decoded body, or None on any failure."""
        url = f"{self.base_url}{path}"
        try:
            response = self.session.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            bridge_logger.log_warning("RELAY_UNREACHABLE", f"POST {path} failed: {e}")
            return None

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code >= 400:
            bridge_logger.log_warning("RELAY_REJECTED", f"POST {path} returned {response.status_code}", {
                "error": (data or {}).get('error') if isinstance(data, dict) else None
            })
            return None
        return data if isinstance(data, dict) else {}

    @property
    def is_connected(self) -> bool:
        return bool(self.user_token) and self.push_enabled

    # ------------------------------------------------------------------
    # Lifecycle handlers
    # ------------------------------------------------------------------

    def on_session_active(self, payload: Dict[str, Any]):
        if not self.is_connected:
            bridge_logger.log_debug("JOIN_SKIPPED", "No token or push disabled")
            return

        course_id = payload.get('course_id')
        activity_id = payload.get('activity_id')
        result = self._post('/join-session', {
            'userToken': self.user_token,
            'courseId': course_id,
            'activityId': activity_id
        })
        if not result or not result.get('success'):
            return

        bridge_logger.log_info("SESSION_JOINED", "Joined relay session", {
            "is_new_session": result.get('isNewSession'),
            "member_count": result.get('memberCount')
        })
        with self._lock:
            self.current_session = {'courseId': course_id, 'activityId': activity_id}
        self.start_heartbeat()

    def on_session_inactive(self, payload: Dict[str, Any]):
        self.stop_heartbeat()
        with self._lock:
            self.current_session = None
        if self.user_token:
            self._post('/leave-session', {'userToken': self.user_token})
            bridge_logger.log_info("SESSION_LEFT", "Left relay session")

    def on_started(self, payload: Dict[str, Any]):
        if not self.is_connected:
            return
        course_id = payload.get('course_id')
        activity_id = payload.get('activity_id')

        if course_id or activity_id:
            result = self._post('/broadcast', {
                'userToken': self.user_token,
                'courseId': course_id,
                'activityId': activity_id,
                'title': DEFAULT_TITLE,
                'message': DEFAULT_MESSAGE
            })
            if result is not None:
                bridge_logger.log_info("BROADCAST_REQUESTED", "Broadcast accepted", {
                    "notified": result.get('notified')
                })
        else:
            self._post('/notify', {
                'userToken': self.user_token,
                'title': DEFAULT_TITLE,
                'message': DEFAULT_MESSAGE
            })

    def on_ended(self, payload: Dict[str, Any]):
        bridge_logger.log_info("POLL_ENDED", "Poll ended", payload)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def send_heartbeat(self) -> bool:
        with self._lock:
            current = dict(self.current_session) if self.current_session else None
        if not current or not self.user_token:
            return False
        result = self._post('/heartbeat', {'userToken': self.user_token, **current})
        return result is not None

    def _heartbeat_loop(self, stop: threading.Event):
        while not stop.wait(self.heartbeat_interval):
            self.send_heartbeat()

    def start_heartbeat(self):
        """Beat now, then every interval. A running loop is left alone."""
        if self._heartbeat_thread is not None and self._heartbeat_thread.is_alive():
            return
        self.send_heartbeat()
        self._heartbeat_stop = threading.Event()
        self._heartbeat_thread = threading.Thread(
            target=self._heartbeat_loop, args=(self._heartbeat_stop,),
            name="pollcast-heartbeat", daemon=True
        )
        self._heartbeat_thread.start()

    def stop_heartbeat(self, join_timeout: float = 2.0):
        """Signal the loop and wait briefly for it to exit before dropping it."""
        if self._heartbeat_stop is not None:
            self._heartbeat_stop.set()
        thread = self._heartbeat_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(join_timeout)
        self._heartbeat_thread = None
        self._heartbeat_stop = None

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat_thread is not None and self._heartbeat_thread.is_alive()
