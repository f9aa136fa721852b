# Overview: Public operations on opportunities; composes authorization, state machine and history.

"""
Opportunity Lifecycle Service

================================================================================
PURPOSE: The only way opportunities are created, edited, moved and deleted
================================================================================

OPERATIONS:
    create        validate -> insert opportunity + creation transition (one commit)
    change_state  authorize(update) -> validate transition -> commit state
                  -> write audit row (second commit, may degrade)
    edit          authorize(update) -> validate changed fields -> commit
                  (not historized: only state changes are lifecycle events)
    delete        authorize(delete) -> delete transitions + opportunity
                  (absent id is a successful no-op)

RULES:
1. Every operation re-reads the opportunity; no decision is based on a copy
   from an earlier call.
2. created_by comes from the caller identity, never from input, and is never
   changed afterwards.
3. A state change whose audit row cannot be written is still a success for
   the caller (the state is correct) but is logged and left pending for
   history_service.reconcile_pending.
4. Non-admin callers cannot tell a missing opportunity from someone else's:
   both are PermissionDenied.

Collaborators are injected (store, clock) so the service holds no
process-wide state.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from flask import current_app

from ..models import Consumables, Opportunity, OpportunityTransition, ROLE_ADMIN
from ..models.opportunities import new_opportunity_id
from ..validation import (
    FieldViolation,
    ValidationError,
    clean_comment,
    validate_opportunity_create,
    validate_opportunity_patch,
)
from crm.time_utils import to_naive_utc, utcnow
from . import history_service
from .authorization import OP_CREATE, OP_DELETE, OP_READ, OP_UPDATE, PermissionDenied, authorize
from .concurrency import run_with_retry
from .duration_service import DurationSummary, summarize
from .history_service import HistoryWriteFailure
from .opportunity_store import NotFound, OpportunityStore
from .state_machine import INITIAL_STATE, is_valid_state, require_meaningful_change, validate_transition


@dataclass
class StateChangeResult:
    opportunity: Opportunity
    history: list[OpportunityTransition]
    history_recorded: bool

    def to_dict(self) -> dict:
        return {
            "opportunity": self.opportunity.to_dict(),
            "history": [t.to_dict() for t in self.history],
            "history_recorded": self.history_recorded,
        }


class OpportunityLifecycle:
    def __init__(
        self,
        store: OpportunityStore | None = None,
        *,
        clock: Callable[[], Any] = utcnow,
        history_attempts: int = 3,
        history_backoff: float = 0.1,
    ):
        self.store = store if store is not None else OpportunityStore()
        self.clock = clock
        self.history_attempts = history_attempts
        self.history_backoff = history_backoff

    @classmethod
    def from_config(cls, config, store: OpportunityStore | None = None) -> "OpportunityLifecycle":
        return cls(
            store,
            history_attempts=config.get("HISTORY_WRITE_ATTEMPTS", 3),
            history_backoff=config.get("HISTORY_RETRY_BACKOFF", 0.1),
        )

    def _now(self):
        return to_naive_utc(self.clock())

    def _stamp(self, opportunity: Opportunity):
        # History is ordered by created_at; a write never stamps earlier than the last one.
        return max(self._now(), to_naive_utc(opportunity.updated_at))

    def _load_authorized(self, opportunity_id: str, caller_id, caller_role, operation: str) -> Opportunity:
        if caller_id is None:
            raise PermissionDenied(operation, opportunity_id)
        opportunity = self.store.get(opportunity_id)
        if opportunity is None:
            if caller_role == ROLE_ADMIN:
                raise NotFound(opportunity_id)
            raise PermissionDenied(operation, opportunity_id)
        authorize(caller_id, caller_role, operation, opportunity)
        return opportunity

    # -- commands ------------------------------------------------------------

    def create(self, data: dict, caller_id) -> Opportunity:
        """
        Create an opportunity in the initial state owned by the caller.

        Raises:
            PermissionDenied: no caller identity
            ValidationError: one or more field constraints failed (all listed)
        """
        authorize(caller_id, None, OP_CREATE)
        cleaned = validate_opportunity_create(data)

        now = self._now()
        opportunity = Opportunity(
            id=new_opportunity_id(),
            client_id=cleaned["client_id"],
            title=cleaned["title"],
            description=cleaned["description"],
            state=INITIAL_STATE,
            estimated_value=cleaned["estimated_value"],
            expected_close_date=cleaned["expected_close_date"],
            notes=cleaned["notes"],
            created_by=caller_id,
            created_at=now,
            updated_at=now,
            state_seq=0,
            pending_transitions=None,
        )

        opportunity.product_association = cleaned["product_association"]

        initial = history_service.initial_transition(
            opportunity_id=opportunity.id,
            to_state=INITIAL_STATE,
            changed_by=caller_id,
            at=now,
        )
        self.store.insert(opportunity, initial)
        return opportunity

    def change_state(self, opportunity_id: str, caller_id, caller_role, to_state, comment: str | None = None) -> StateChangeResult:
        """
        Move an opportunity to `to_state` and append the audit row.

        Raises:
            PermissionDenied, NotFound, InvalidTransition, NoOpRejected,
            ValidationError (comment too long)
        """
        def _commit_state():
            opportunity = self._load_authorized(opportunity_id, caller_id, caller_role, OP_UPDATE)
            cleaned = clean_comment(comment)
            from_state = opportunity.state
            validate_transition(from_state, to_state)
            require_meaningful_change(from_state, to_state, cleaned)

            now = self._stamp(opportunity)
            seq = opportunity.state_seq + 1
            entry = history_service.pending_entry(
                seq=seq,
                from_state=from_state,
                to_state=to_state,
                comment=cleaned,
                changed_by=caller_id,
                at=now,
            )
            opportunity.state = to_state
            opportunity.state_seq = seq
            opportunity.updated_at = now
            opportunity.pending_transitions = [*(opportunity.pending_transitions or []), entry]
            self.store.save(opportunity)
            return entry

        entry = run_with_retry(_commit_state, session=self.store.session)

        history_recorded = True
        try:
            history_service.record_transition(
                self.store,
                opportunity_id,
                entry,
                attempts=self.history_attempts,
                backoff_base=self.history_backoff,
            )
        except HistoryWriteFailure as exc:
            history_recorded = False
            current_app.logger.error(
                "State of opportunity %s changed to %s but transition %s was not recorded: %s",
                opportunity_id, entry["to_state"], exc.seq, exc.cause,
            )

        return StateChangeResult(
            opportunity=self.store.require(opportunity_id),
            history=self.store.list_history(opportunity_id, order="asc"),
            history_recorded=history_recorded,
        )

    def edit(self, opportunity_id: str, caller_id, caller_role, patch: dict) -> Opportunity:
        """
        Update descriptive fields. Never touches state, client or owner.

        Raises:
            PermissionDenied, NotFound, ValidationError
        """
        def _op():
            opportunity = self._load_authorized(opportunity_id, caller_id, caller_role, OP_UPDATE)
            cleaned = validate_opportunity_patch(patch)
            for key, value in cleaned.items():
                if key == "product_association":
                    opportunity.product_association = value
                elif key == "clear_consumables":
                    if isinstance(opportunity.product_association, Consumables):
                        opportunity.product_association = None
                else:
                    setattr(opportunity, key, value)
            opportunity.updated_at = self._stamp(opportunity)
            return self.store.save(opportunity)

        return run_with_retry(_op, session=self.store.session)

    def delete(self, opportunity_id: str, caller_id, caller_role) -> bool:
        """
        Delete an opportunity and its history.

        Returns True when something was deleted, False when the id was
        already absent (still a success).

        Raises:
            PermissionDenied
        """
        if caller_id is None:
            raise PermissionDenied(OP_DELETE, opportunity_id)
        opportunity = self.store.get(opportunity_id)
        if opportunity is None:
            return False
        authorize(caller_id, caller_role, OP_DELETE, opportunity)
        self.store.delete(opportunity)
        return True

    # -- queries -------------------------------------------------------------

    def get(self, opportunity_id: str, caller_id, caller_role) -> Opportunity:
        return self._load_authorized(opportunity_id, caller_id, caller_role, OP_READ)

    def history(self, opportunity_id: str, caller_id, caller_role, order: str = "asc") -> list[OpportunityTransition]:
        self._load_authorized(opportunity_id, caller_id, caller_role, OP_READ)
        return history_service.list_history(self.store, opportunity_id, order=order)

    def summary(self, opportunity_id: str, caller_id, caller_role, now=None) -> DurationSummary:
        opportunity = self._load_authorized(opportunity_id, caller_id, caller_role, OP_READ)
        history = self.store.list_history(opportunity_id, order="asc")
        return summarize(opportunity, history, now=now if now is not None else self._now())

    def list_for(self, caller_id, caller_role, *, state: str | None = None) -> list[Opportunity]:
        """Admins see every opportunity, everyone else only their own."""
        if caller_id is None:
            raise PermissionDenied(OP_READ)
        if state is not None and not is_valid_state(state):
            raise ValidationError([FieldViolation("state", f"Unknown state '{state}'")])
        owner_id = None if caller_role == ROLE_ADMIN else caller_id
        return self.store.list_opportunities(owner_id=owner_id, state=state)
