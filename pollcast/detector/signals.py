"""Typed observations passed from the collector to the fusion state machine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SignalKind(Enum):
    DOM_TEXT = "dom_text"
    DOM_SELECTOR = "dom_selector"
    TRANSPORT_FRAME = "transport_frame"
    URL_POLL = "url_poll"
    URL_QUESTION = "url_question"


@dataclass
class ExtractedIds:
    course_id: Optional[str] = None
    activity_id: Optional[str] = None
    question_id: Optional[str] = None


@dataclass
class Signal:
    """
    One observation. Never stored; consumed as soon as it is produced.

    `found` means "looks like a live poll". `ends` is only set by transport
    frames whose text reads as a poll closing. `reason` explains a negative
    result the machine must act on (waiting_state) or ignore
    (collector_error).
    """
    kind: SignalKind
    found: bool
    timestamp: int
    extracted: ExtractedIds = field(default_factory=ExtractedIds)
    detail: Optional[str] = None
    reason: Optional[str] = None
    ends: bool = False
