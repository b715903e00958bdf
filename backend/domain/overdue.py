"""Pure overdue decision for a single checked-out device.

The decision only looks at the holder's sessions for the current weekday,
the device's checkout time and the wall clock. It never reads or writes
storage; applying the outcome is the reconciliation service's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from backend.domain.models import Session
from backend.domain.time_policy import (
    NO_SCHEDULE_TIMEOUT,
    OVERDUE_BUFFER_MINUTES,
    minutes_of_day,
)


class OverdueDecision(str, Enum):
    NOT_OVERDUE = "not_overdue"
    OVERDUE = "overdue"


class DecisionReason(str, Enum):
    NO_SCHEDULE_TIMEOUT_EXCEEDED = "no_schedule_timeout_exceeded"
    WITHIN_NO_SCHEDULE_TIMEOUT = "within_no_schedule_timeout"
    IN_SESSION = "in_session"
    BEFORE_FIRST_SESSION = "before_first_session"
    NEXT_SESSION_WITHIN_BUFFER = "next_session_within_buffer"
    BUFFER_EXCEEDED = "buffer_exceeded"
    WITHIN_BUFFER = "within_buffer"


@dataclass(frozen=True)
class OverdueAssessment:
    decision: OverdueDecision
    reason: DecisionReason
    minutes_since_ended: Optional[int] = None
    minutes_until_next_session: Optional[int] = None

    @property
    def is_overdue(self) -> bool:
        return self.decision is OverdueDecision.OVERDUE


def decide(
    now: datetime,
    checked_out_at: datetime,
    todays_sessions: Sequence[Session],
    *,
    buffer_minutes: int = OVERDUE_BUFFER_MINUTES,
    no_schedule_timeout: timedelta = NO_SCHEDULE_TIMEOUT,
) -> OverdueAssessment:
    """Decide whether the holder should already have returned the device.

    ``todays_sessions`` may arrive in any order.
    """
    if not todays_sessions:
        if now - checked_out_at > no_schedule_timeout:
            return OverdueAssessment(
                OverdueDecision.OVERDUE,
                DecisionReason.NO_SCHEDULE_TIMEOUT_EXCEEDED,
            )
        return OverdueAssessment(
            OverdueDecision.NOT_OVERDUE,
            DecisionReason.WITHIN_NO_SCHEDULE_TIMEOUT,
        )

    now_minutes = minutes_of_day(now)

    # Both ends inclusive: a session ending this minute still counts.
    for session in todays_sessions:
        if session.start_minutes <= now_minutes <= session.end_minutes:
            return OverdueAssessment(OverdueDecision.NOT_OVERDUE, DecisionReason.IN_SESSION)

    ended_ends = [
        session.end_minutes
        for session in todays_sessions
        if session.end_minutes < now_minutes
    ]
    if not ended_ends:
        return OverdueAssessment(
            OverdueDecision.NOT_OVERDUE,
            DecisionReason.BEFORE_FIRST_SESSION,
        )

    minutes_since_ended = now_minutes - max(ended_ends)

    upcoming_starts = [
        session.start_minutes
        for session in todays_sessions
        if session.start_minutes > now_minutes
    ]
    minutes_until_next = (
        min(upcoming_starts) - now_minutes if upcoming_starts else None
    )
    if minutes_until_next is not None and minutes_until_next <= buffer_minutes:
        return OverdueAssessment(
            OverdueDecision.NOT_OVERDUE,
            DecisionReason.NEXT_SESSION_WITHIN_BUFFER,
            minutes_since_ended=minutes_since_ended,
            minutes_until_next_session=minutes_until_next,
        )

    if minutes_since_ended > buffer_minutes:
        return OverdueAssessment(
            OverdueDecision.OVERDUE,
            DecisionReason.BUFFER_EXCEEDED,
            minutes_since_ended=minutes_since_ended,
            minutes_until_next_session=minutes_until_next,
        )
    return OverdueAssessment(
        OverdueDecision.NOT_OVERDUE,
        DecisionReason.WITHIN_BUFFER,
        minutes_since_ended=minutes_since_ended,
        minutes_until_next_session=minutes_until_next,
    )
