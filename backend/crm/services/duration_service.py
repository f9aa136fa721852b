# Overview: Days-open / days-to-close metrics derived from the transition log.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from crm.time_utils import ceil_days_between, to_naive_utc, to_utc_z, utcnow
from .state_machine import is_terminal


@dataclass(frozen=True)
class DurationSummary:
    days_elapsed: int
    is_closed: bool
    closed_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "days_elapsed": self.days_elapsed,
            "is_closed": self.is_closed,
            "closed_at": to_utc_z(self.closed_at),
        }


def first_close(history) -> datetime | None:
    """Timestamp of the earliest transition into a terminal state, if any."""
    ordered = sorted(history, key=lambda t: (to_naive_utc(t.created_at), getattr(t, "seq", 0)))
    for transition in ordered:
        if is_terminal(transition.to_state):
            return to_naive_utc(transition.created_at)
    return None


def summarize(opportunity, ordered_history, now: datetime | None = None) -> DurationSummary:
    """
    Days an opportunity has been open, or took to close.

    A closed opportunity is measured to its FIRST terminal transition. When a
    deal is re-opened and closed again, the figure stays at the original close
    instead of moving with every re-close.

    If the opportunity is in a terminal state but no terminal transition is on
    record (its audit row is still pending), it is measured to `now`.
    """
    now = to_naive_utc(now) if now is not None else utcnow()
    created_at = to_naive_utc(opportunity.created_at)

    if not is_terminal(opportunity.state):
        return DurationSummary(
            days_elapsed=ceil_days_between(created_at, now),
            is_closed=False,
            closed_at=None,
        )

    closed_at = first_close(ordered_history) or now
    return DurationSummary(
        days_elapsed=ceil_days_between(created_at, closed_at),
        is_closed=True,
        closed_at=closed_at,
    )
