# Overview: Append-only audit trail of opportunity state changes.

"""
History Recorder

WHY TWO PHASES:
A state change touches two records: the opportunity row and a new transition
row. The store only promises atomicity per write, so a state change is
committed first together with a "pending" entry on the opportunity row, then
the transition row is inserted and the pending entry removed in a second
commit.

If the second commit fails, the opportunity's current state is still correct
and only the narrative is incomplete. That is reported as HistoryWriteFailure
(a degraded success), the pending entry stays on the row, and
reconcile_pending() writes it later.

IDEMPOTENCE:
Transition rows are keyed by (opportunity_id, seq). Writing the same pending
entry twice, from a retry or a reconciliation run racing a late commit, finds
the existing row instead of inserting a second one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..models import OpportunityTransition
from crm.time_utils import parse_iso_datetime
from .concurrency import run_with_retry
from .state_machine import INITIAL_STATE


class HistoryWriteFailure(Exception):
    """The state change committed but its audit row could not be written."""

    def __init__(self, opportunity_id: str, seq: int, cause: Exception | None = None):
        self.opportunity_id = opportunity_id
        self.seq = seq
        self.cause = cause
        super().__init__(
            f"Transition {seq} of opportunity {opportunity_id} is pending reconciliation"
        )


def pending_entry(*, seq: int, from_state: str | None, to_state: str, comment: str | None, changed_by: int, at) -> dict:
    """JSON-safe description of a transition that still has to be written."""
    return {
        "seq": seq,
        "from_state": from_state,
        "to_state": to_state,
        "comment": comment,
        "changed_by": changed_by,
        # Naive UTC; parse_iso_datetime reads it back unchanged
        "at": at.isoformat(),
    }


def initial_transition(*, opportunity_id: str, to_state: str, changed_by: int, at) -> OpportunityTransition:
    """Creation event: seq 0, no from_state."""
    return OpportunityTransition(
        opportunity_id=opportunity_id,
        seq=0,
        from_state=None,
        to_state=to_state,
        comment=None,
        changed_by=changed_by,
        created_at=at,
    )


def record_transition(
    store,
    opportunity_id: str,
    entry: dict,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
) -> OpportunityTransition:
    """
    Write the audit row described by a pending entry and clear the entry.

    Returns the stored transition, which is the pre-existing row when this
    seq was already recorded.

    Raises:
        HistoryWriteFailure: the row could not be written within `attempts`
    """
    seq = entry["seq"]

    def _op() -> OpportunityTransition:
        existing = store.find_transition(opportunity_id, seq)
        if existing is not None:
            store.resolve_pending(opportunity_id, seq)
            return existing

        transition = OpportunityTransition(
            opportunity_id=opportunity_id,
            seq=seq,
            from_state=entry.get("from_state"),
            to_state=entry["to_state"],
            comment=entry.get("comment"),
            changed_by=entry["changed_by"],
            created_at=parse_iso_datetime(entry["at"]),
        )
        try:
            return store.append_transition(transition)
        except IntegrityError:
            # Lost a race with another writer for the same seq
            store.rollback()
            existing = store.find_transition(opportunity_id, seq)
            if existing is None:
                raise
            store.resolve_pending(opportunity_id, seq)
            return existing

    try:
        return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base, session=store.session)
    except SQLAlchemyError as exc:
        store.rollback()
        raise HistoryWriteFailure(opportunity_id, seq, exc) from exc


def list_history(store, opportunity_id: str, order: str = "asc") -> list[OpportunityTransition]:
    return store.list_history(opportunity_id, order=order)


@dataclass
class ReconcileReport:
    written: list[tuple[str, int]] = field(default_factory=list)
    failed: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "written": [{"opportunity_id": o, "seq": s} for o, s in self.written],
            "failed": [{"opportunity_id": o, "seq": s} for o, s in self.failed],
        }


def reconcile_pending(store, *, attempts: int = 3, backoff_base: float = 0.1) -> ReconcileReport:
    """
    Write every outstanding audit row, oldest seq first per opportunity.

    Safe to run repeatedly and concurrently with live traffic.
    """
    report = ReconcileReport()
    for opportunity in store.list_pending():
        opportunity_id = opportunity.id
        entries = sorted(opportunity.pending_transitions or [], key=lambda e: e["seq"])
        for entry in entries:
            try:
                record_transition(store, opportunity_id, entry, attempts=attempts, backoff_base=backoff_base)
            except HistoryWriteFailure:
                current_app.logger.exception(
                    "Reconciliation failed for opportunity %s transition %s", opportunity_id, entry["seq"]
                )
                report.failed.append((opportunity_id, entry["seq"]))
                continue
            current_app.logger.info(
                "Reconciled opportunity %s transition %s (%s -> %s)",
                opportunity_id, entry["seq"], entry.get("from_state"), entry["to_state"],
            )
            report.written.append((opportunity_id, entry["seq"]))
    return report


def verify_history(store, opportunity_id: str) -> list[str]:
    """
    Check the audit-trail invariants for one opportunity.

    Returns a list of problems; empty when the trail is sound.
    """
    problems = []
    history = store.list_history(opportunity_id, order="asc")
    if not history:
        return ["history is empty"]

    first = history[0]
    if first.from_state is not None or first.seq != 0 or first.to_state != INITIAL_STATE:
        problems.append("first transition is not the creation event")

    for prev, cur in zip(history, history[1:]):
        if cur.created_at < prev.created_at:
            problems.append(f"transition {cur.seq} is older than transition {prev.seq}")

    opportunity = store.get(opportunity_id)
    if opportunity is not None and not opportunity.pending_transitions:
        if history[-1].to_state != opportunity.state:
            problems.append(
                f"last transition ends in '{history[-1].to_state}' but opportunity is '{opportunity.state}'"
            )
    return problems
