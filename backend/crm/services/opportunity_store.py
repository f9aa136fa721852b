# Overview: SQLAlchemy-backed record store for opportunities and their transitions.

"""
Opportunity Store

Each public write method is one commit: either everything it touched is
visible afterwards or nothing is. The store never spans a commit across two
calls; composing calls into a user-visible operation (and deciding what a
partial failure means) belongs to lifecycle_service.

The store takes its session at construction so tests and background jobs can
hand in their own; by default it uses the Flask-SQLAlchemy scoped session.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Opportunity, OpportunityTransition


HISTORY_ORDERS = {"asc", "desc"}


class NotFound(LookupError):
    """Target opportunity does not exist."""

    def __init__(self, opportunity_id: str):
        self.opportunity_id = opportunity_id
        super().__init__(f"Opportunity {opportunity_id} not found")


class OpportunityStore:
    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # -- reads ---------------------------------------------------------------

    def get(self, opportunity_id: str) -> Opportunity | None:
        """Fresh read; any identity-map copy is overwritten with current row data."""
        if not opportunity_id:
            return None
        return self.session.get(Opportunity, opportunity_id, populate_existing=True)

    def require(self, opportunity_id: str) -> Opportunity:
        opportunity = self.get(opportunity_id)
        if opportunity is None:
            raise NotFound(opportunity_id)
        return opportunity

    def list_opportunities(self, *, owner_id: int | None = None, state: str | None = None) -> list[Opportunity]:
        """Newest first. owner_id=None means every owner."""
        stmt = select(Opportunity)
        if owner_id is not None:
            stmt = stmt.where(Opportunity.created_by == owner_id)
        if state is not None:
            stmt = stmt.where(Opportunity.state == state)
        stmt = stmt.order_by(Opportunity.created_at.desc(), Opportunity.id.asc())
        return list(self.session.scalars(stmt).unique())

    def list_history(self, opportunity_id: str, order: str = "asc") -> list[OpportunityTransition]:
        """
        Transitions ordered by timestamp; seq breaks ties between rows written
        within the same clock tick.
        """
        if order not in HISTORY_ORDERS:
            raise ValueError(f"order must be one of: {', '.join(sorted(HISTORY_ORDERS))}")
        stmt = select(OpportunityTransition).where(OpportunityTransition.opportunity_id == opportunity_id)
        if order == "asc":
            stmt = stmt.order_by(OpportunityTransition.created_at.asc(), OpportunityTransition.seq.asc())
        else:
            stmt = stmt.order_by(OpportunityTransition.created_at.desc(), OpportunityTransition.seq.desc())
        return list(self.session.scalars(stmt).unique())

    def find_transition(self, opportunity_id: str, seq: int) -> OpportunityTransition | None:
        stmt = select(OpportunityTransition).where(
            OpportunityTransition.opportunity_id == opportunity_id,
            OpportunityTransition.seq == seq,
        )
        return self.session.scalars(stmt).unique().first()

    def list_pending(self) -> list[Opportunity]:
        """Opportunities with at least one unwritten audit row."""
        stmt = select(Opportunity).where(Opportunity.pending_transitions.isnot(None))
        return [o for o in self.session.scalars(stmt).unique() if o.pending_transitions]

    # -- writes --------------------------------------------------------------

    def insert(self, opportunity: Opportunity, initial: OpportunityTransition) -> Opportunity:
        """Insert an opportunity together with its creation transition (one commit)."""
        self.session.add(opportunity)
        self.session.add(initial)
        self._commit()
        return opportunity

    def save(self, opportunity: Opportunity) -> Opportunity:
        """
        Persist pending attribute changes on a loaded opportunity.

        Raises StaleDataError when the row changed since it was read.
        """
        self.session.add(opportunity)
        self._commit()
        return opportunity

    def append_transition(self, transition: OpportunityTransition) -> OpportunityTransition:
        """
        Insert an audit row and drop the matching pending entry from its
        opportunity in the same commit.
        """
        self.session.add(transition)
        opportunity = self.session.get(Opportunity, transition.opportunity_id)
        if opportunity is not None:
            _drop_pending(opportunity, transition.seq)
        self._commit()
        return transition

    def resolve_pending(self, opportunity_id: str, seq: int) -> None:
        """Drop a pending entry whose audit row already exists."""
        opportunity = self.get(opportunity_id)
        if opportunity is None or not _drop_pending(opportunity, seq):
            return
        self._commit()

    def delete(self, opportunity: Opportunity) -> None:
        """Delete the opportunity and every transition that belongs to it (one commit)."""
        self.session.query(OpportunityTransition).filter(
            OpportunityTransition.opportunity_id == opportunity.id
        ).delete(synchronize_session=False)
        self.session.delete(opportunity)
        self._commit()

    def rollback(self) -> None:
        self.session.rollback()

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise


def _drop_pending(opportunity: Opportunity, seq: int) -> bool:
    pending = list(opportunity.pending_transitions or [])
    remaining = [p for p in pending if p.get("seq") != seq]
    if len(remaining) == len(pending):
        return False
    # Reassign rather than mutate so the JSON column is flagged dirty
    opportunity.pending_transitions = remaining or None
    return True
