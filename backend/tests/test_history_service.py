"""
History recorder tests.

Verifies:
- A failed audit write keeps the new state and reports a degraded success
- The pending entry survives until reconciliation writes the row
- Writing the same transition twice stores it once
- verify_history flags broken trails
"""

import pytest
from sqlalchemy.exc import OperationalError

from crm.models import OpportunityTransition, ROLE_USER
from crm.services import history_service
from crm.services.history_service import HistoryWriteFailure
from crm.services.lifecycle_service import OpportunityLifecycle
from crm.services.opportunity_store import OpportunityStore


class BrokenHistoryStore(OpportunityStore):
    """Store whose audit-row writes fail until `healed` is set."""

    def __init__(self, session=None):
        super().__init__(session)
        self.healed = False
        self.append_calls = 0

    def append_transition(self, transition):
        self.append_calls += 1
        if not self.healed:
            raise OperationalError("INSERT INTO opportunity_transitions", {}, Exception("database is locked"))
        return super().append_transition(transition)


@pytest.fixture
def broken_store(db_session):
    return BrokenHistoryStore()


@pytest.fixture
def degraded_lifecycle(broken_store, clock):
    return OpportunityLifecycle(broken_store, clock=clock, history_attempts=2, history_backoff=0.0)


@pytest.fixture
def degraded_change(degraded_lifecycle, broken_store, opportunity, owner, clock):
    """Opportunity moved to 'ganada' whose audit row failed to write."""
    clock.advance(days=3)
    broken_store.healed = False
    return degraded_lifecycle.change_state(opportunity.id, owner.id, ROLE_USER, "ganada", "Firmado")


class TestDegradedStateChange:
    def test_state_committed_but_history_not_recorded(self, degraded_change, broken_store):
        assert degraded_change.history_recorded is False
        assert degraded_change.opportunity.state == "ganada"
        assert degraded_change.opportunity.state_seq == 1
        assert [t.seq for t in degraded_change.history] == [0]
        assert broken_store.append_calls == 2

    def test_pending_entry_describes_the_change(self, degraded_change, opportunity, owner, clock):
        pending = degraded_change.opportunity.pending_transitions
        assert len(pending) == 1
        entry = pending[0]
        assert entry["seq"] == 1
        assert (entry["from_state"], entry["to_state"]) == ("nueva", "ganada")
        assert entry["comment"] == "Firmado"
        assert entry["changed_by"] == owner.id
        assert entry["at"] == clock.now.isoformat()
        assert degraded_change.opportunity.to_dict()["history_pending"] is True

    def test_duration_falls_back_to_now_while_pending(self, degraded_lifecycle, degraded_change, opportunity, owner, clock):
        clock.advance(days=2)
        summary = degraded_lifecycle.summary(opportunity.id, owner.id, ROLE_USER)
        assert summary.is_closed is True
        assert summary.days_elapsed == 5

    def test_next_change_still_accepted(self, degraded_lifecycle, degraded_change, broken_store, opportunity, owner):
        broken_store.healed = True
        result = degraded_lifecycle.change_state(opportunity.id, owner.id, ROLE_USER, "cerrada")

        assert result.history_recorded is True
        assert [t.seq for t in result.history] == [0, 2]
        assert [e["seq"] for e in result.opportunity.pending_transitions] == [1]


class TestReconcile:
    def test_reconcile_writes_pending_rows(self, degraded_change, broken_store, opportunity, owner, app):
        broken_store.healed = True
        report = history_service.reconcile_pending(broken_store, attempts=1, backoff_base=0.0)

        assert report.written == [(opportunity.id, 1)]
        assert report.failed == []

        history = broken_store.list_history(opportunity.id)
        assert [(t.seq, t.from_state, t.to_state) for t in history] == [(0, None, "nueva"), (1, "nueva", "ganada")]
        assert history[1].changed_by == owner.id
        assert history[1].comment == "Firmado"
        assert not broken_store.get(opportunity.id).pending_transitions

    def test_reconcile_restores_original_timestamp(self, degraded_change, broken_store, opportunity, clock):
        stamped = clock.now
        clock.advance(days=10)
        broken_store.healed = True
        history_service.reconcile_pending(broken_store, attempts=1, backoff_base=0.0)

        assert broken_store.find_transition(opportunity.id, 1).created_at == stamped

    def test_reconcile_twice_is_a_noop(self, degraded_change, broken_store, db_session):
        broken_store.healed = True
        history_service.reconcile_pending(broken_store, attempts=1, backoff_base=0.0)
        second = history_service.reconcile_pending(broken_store, attempts=1, backoff_base=0.0)

        assert second.written == []
        assert second.failed == []
        assert db_session.query(OpportunityTransition).count() == 2

    def test_reconcile_reports_rows_that_still_fail(self, degraded_change, broken_store, opportunity):
        report = history_service.reconcile_pending(broken_store, attempts=1, backoff_base=0.0)

        assert report.written == []
        assert report.failed == [(opportunity.id, 1)]
        assert broken_store.get(opportunity.id).pending_transitions

    def test_reconcile_orders_by_seq(self, degraded_lifecycle, degraded_change, broken_store, opportunity, owner):
        degraded_lifecycle.change_state(opportunity.id, owner.id, ROLE_USER, "en_seguimiento", "Reabierta")
        broken_store.healed = True

        report = history_service.reconcile_pending(broken_store, attempts=1, backoff_base=0.0)

        assert report.written == [(opportunity.id, 1), (opportunity.id, 2)]
        assert history_service.verify_history(broken_store, opportunity.id) == []


class TestRecordTransition:
    def test_same_entry_written_once(self, lifecycle, opportunity, owner, clock, db_session):
        store = lifecycle.store
        entry = history_service.pending_entry(
            seq=1, from_state="nueva", to_state="en_seguimiento",
            comment=None, changed_by=owner.id, at=clock.now,
        )
        first = history_service.record_transition(store, opportunity.id, entry, attempts=1, backoff_base=0.0)
        second = history_service.record_transition(store, opportunity.id, entry, attempts=1, backoff_base=0.0)

        assert first.id == second.id
        assert db_session.query(OpportunityTransition).filter_by(opportunity_id=opportunity.id, seq=1).count() == 1

    def test_failure_wraps_cause(self, broken_store, opportunity, owner, clock):
        entry = history_service.pending_entry(
            seq=1, from_state="nueva", to_state="perdida",
            comment=None, changed_by=owner.id, at=clock.now,
        )
        with pytest.raises(HistoryWriteFailure) as exc:
            history_service.record_transition(broken_store, opportunity.id, entry, attempts=3, backoff_base=0.0)

        assert exc.value.seq == 1
        assert exc.value.opportunity_id == opportunity.id
        assert isinstance(exc.value.cause, OperationalError)
        assert broken_store.append_calls == 3


class TestVerifyHistory:
    def test_sound_trail(self, lifecycle, opportunity, owner):
        lifecycle.change_state(opportunity.id, owner.id, ROLE_USER, "en_seguimiento")
        assert history_service.verify_history(lifecycle.store, opportunity.id) == []

    def test_empty_trail(self, lifecycle):
        assert history_service.verify_history(lifecycle.store, "missing") == ["history is empty"]

    def test_state_mismatch_detected(self, lifecycle, opportunity, owner, db_session):
        opp = lifecycle.get(opportunity.id, owner.id, ROLE_USER)
        opp.state = "ganada"
        db_session.commit()

        problems = history_service.verify_history(lifecycle.store, opportunity.id)
        assert len(problems) == 1
        assert "ganada" in problems[0]

    def test_creation_event_must_enter_nueva(self, lifecycle, opportunity, owner, db_session):
        lifecycle.change_state(opportunity.id, owner.id, ROLE_USER, "en_seguimiento")
        creation = lifecycle.store.list_history(opportunity.id, order="asc")[0]
        creation.to_state = "en_seguimiento"
        db_session.commit()

        problems = history_service.verify_history(lifecycle.store, opportunity.id)
        assert problems == ["first transition is not the creation event"]
